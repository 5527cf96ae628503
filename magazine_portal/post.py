from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .errors import ValidationError


class Category(str, Enum):
    BOARD_GAME = "board-game"
    PERFUME = "perfume"
    COCKTAIL = "cocktail"
    MUSIC = "music"
    FILM = "film"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "Category | str") -> "Category":
        if isinstance(value, Category):
            return value
        raw = (value or "").strip().casefold()
        for member in cls:
            if member.value == raw:
                return member
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(
            "unknown category",
            code="unknown_category",
            message=f"Category must be one of: {allowed}",
        )


@dataclass(frozen=True)
class Image:
    """A stored image; `link` is an optional external target opened on click."""

    url: str
    link: str | None = None

    def __post_init__(self) -> None:
        if not (self.link or "").strip():
            object.__setattr__(self, "link", None)


@dataclass(frozen=True)
class Post:
    """A published magazine post as listed to readers."""

    id: str
    title: str
    category: Category
    hashtags: Sequence[str]
    images: Sequence[Image]
    created_by: str
    created_at: str
    description: str | None = None
    views: int = 0

    @property
    def thumbnail(self) -> Image | None:
        return self.images[0] if self.images else None


def normalize_hashtag(value: str) -> str:
    tag = (value or "").strip()
    if tag.startswith("#"):
        tag = tag[1:].strip()
    return tag


def normalize_hashtags(values: Sequence[str]) -> tuple[str, ...]:
    """Trim tags and drop empty or duplicate entries, keeping first-seen order."""
    out: list[str] = []
    seen: set[str] = set()

    for item in values:
        tag = normalize_hashtag(item)
        if not tag or tag in seen:
            continue
        seen.add(tag)
        out.append(tag)

    return tuple(out)
