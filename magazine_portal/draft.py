from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Sequence

from .post import Category, normalize_hashtag


@dataclass(frozen=True)
class StagedImage:
    """A locally selected file awaiting upload, paired with its preview."""

    filename: str
    data: bytes = field(repr=False)
    content_type: str = "application/octet-stream"
    preview: str = field(default="", repr=False)
    link: str | None = None


@dataclass(frozen=True)
class PostFields:
    title: str
    category: Category = Category.BOARD_GAME
    description: str | None = None
    hashtags: Sequence[str] = ()


class PreviewSlots:
    """
    Fixed-size, selection-ordered slots for staged images.

    Slots are allocated when files are selected and filled by index as each
    read completes, so completion order never changes the final order.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("size must be non-negative")
        self._slots: list[StagedImage | None] = [None] * size

    def __len__(self) -> int:
        return len(self._slots)

    def fill(self, index: int, image: StagedImage) -> None:
        if not 0 <= index < len(self._slots):
            raise IndexError(f"slot {index} out of range")
        if self._slots[index] is not None:
            raise ValueError(f"slot {index} is already filled")
        self._slots[index] = image

    @property
    def complete(self) -> bool:
        return all(s is not None for s in self._slots)

    def missing(self) -> list[int]:
        return [i for i, s in enumerate(self._slots) if s is None]

    def images(self) -> tuple[StagedImage, ...]:
        missing = self.missing()
        if missing:
            raise ValueError(f"slots not filled: {missing}")
        return tuple(s for s in self._slots if s is not None)


@dataclass(frozen=True)
class Draft:
    """
    In-progress submission form. Every edit returns a new Draft.
    """

    title: str = ""
    description: str = ""
    category: Category = Category.BOARD_GAME
    hashtags: tuple[str, ...] = ()
    hashtag_input: str = ""
    images: tuple[StagedImage, ...] = ()

    def with_title(self, title: str) -> "Draft":
        return replace(self, title=title or "")

    def with_description(self, description: str) -> "Draft":
        return replace(self, description=description or "")

    def with_category(self, category: Category | str) -> "Draft":
        return replace(self, category=Category.parse(category))

    def with_hashtag_input(self, text: str) -> "Draft":
        return replace(self, hashtag_input=text or "")

    def commit_hashtag(self) -> "Draft":
        """
        Commit the typed hashtag (the Enter key).

        Empty or already-present tags are dropped without error; the input is
        cleared either way.
        """
        tag = normalize_hashtag(self.hashtag_input)
        if not tag or tag in self.hashtags:
            return replace(self, hashtag_input="")
        return replace(self, hashtags=self.hashtags + (tag,), hashtag_input="")

    def remove_hashtag(self, index: int) -> "Draft":
        _check_index(index, len(self.hashtags), "hashtag")
        return replace(
            self,
            hashtags=tuple(t for i, t in enumerate(self.hashtags) if i != index),
        )

    def with_staged(self, images: Iterable[StagedImage]) -> "Draft":
        return replace(self, images=self.images + tuple(images))

    def with_image_link(self, index: int, link: str | None) -> "Draft":
        _check_index(index, len(self.images), "image")
        updated = list(self.images)
        updated[index] = replace(updated[index], link=(link or "").strip() or None)
        return replace(self, images=tuple(updated))

    def remove_image(self, index: int) -> "Draft":
        _check_index(index, len(self.images), "image")
        return replace(
            self,
            images=tuple(img for i, img in enumerate(self.images) if i != index),
        )

    def fields(self) -> PostFields:
        return PostFields(
            title=self.title,
            category=self.category,
            description=self.description.strip() or None,
            hashtags=self.hashtags,
        )

    def reset(self) -> "Draft":
        return Draft()


def _check_index(index: int, size: int, what: str) -> None:
    if not 0 <= index < size:
        raise IndexError(f"{what} index {index} out of range")
