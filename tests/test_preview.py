from __future__ import annotations

import asyncio
import base64
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from magazine_portal.draft import StagedImage
from magazine_portal.errors import PreviewError
from magazine_portal.preview import read_preview, stage_files


class TestReadPreview(unittest.TestCase):
    def test_builds_data_url(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "cover.png"
            path.write_bytes(b"\x89PNG-bytes")

            staged = asyncio.run(read_preview(path))

            self.assertEqual(staged.filename, "cover.png")
            self.assertEqual(staged.content_type, "image/png")
            self.assertEqual(staged.data, b"\x89PNG-bytes")
            expected = base64.b64encode(b"\x89PNG-bytes").decode("ascii")
            self.assertEqual(staged.preview, f"data:image/png;base64,{expected}")
            self.assertIsNone(staged.link)

    def test_missing_file_raises_preview_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(PreviewError):
                asyncio.run(read_preview(Path(td) / "missing.jpg"))


class TestStageFiles(unittest.TestCase):
    def test_keeps_selection_order_when_reads_finish_out_of_order(self) -> None:
        delays = {"a.jpg": 0.03, "b.jpg": 0.0, "c.jpg": 0.015}
        finished: list[str] = []

        async def _fake_read(path: str) -> StagedImage:
            await asyncio.sleep(delays[path])
            finished.append(path)
            return StagedImage(filename=path, data=path.encode("utf-8"))

        with mock.patch("magazine_portal.preview.read_preview", _fake_read):
            staged = asyncio.run(stage_files(["a.jpg", "b.jpg", "c.jpg"]))

        self.assertEqual(finished, ["b.jpg", "c.jpg", "a.jpg"])
        self.assertEqual([s.filename for s in staged], ["a.jpg", "b.jpg", "c.jpg"])

    def test_reads_real_files(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            paths = []
            for name in ("one.jpg", "two.gif"):
                p = Path(td) / name
                p.write_bytes(name.encode("utf-8"))
                paths.append(p)

            staged = asyncio.run(stage_files(paths))

            self.assertEqual([s.filename for s in staged], ["one.jpg", "two.gif"])
            self.assertEqual(staged[1].content_type, "image/gif")

    def test_empty_selection(self) -> None:
        self.assertEqual(asyncio.run(stage_files([])), ())


if __name__ == "__main__":
    unittest.main()
