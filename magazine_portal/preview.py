from __future__ import annotations

import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Sequence

from .draft import PreviewSlots, StagedImage
from .errors import PreviewError


def _guess_content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def data_url(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


async def read_preview(path: str | Path) -> StagedImage:
    """Read one file off the event loop and build its staged image."""
    p = Path(path)
    try:
        data = await asyncio.to_thread(p.read_bytes)
    except OSError as e:
        raise PreviewError(f"Failed to read image file: {p}: {e}") from e

    content_type = _guess_content_type(p)
    return StagedImage(
        filename=p.name,
        data=data,
        content_type=content_type,
        preview=data_url(data, content_type),
    )


async def stage_files(paths: Sequence[str | Path]) -> tuple[StagedImage, ...]:
    """
    Stage every selected file concurrently.

    Returns the staged images in selection order, whatever order the reads finish in.
    """
    slots = PreviewSlots(len(paths))

    async def _fill(index: int, path: str | Path) -> None:
        slots.fill(index, await read_preview(path))

    await asyncio.gather(*(_fill(i, p) for i, p in enumerate(paths)))
    return slots.images()
