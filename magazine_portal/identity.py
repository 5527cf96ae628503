from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class UserIdentity:
    """The signed-in user as supplied by the identity provider."""

    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None

    def __post_init__(self) -> None:
        uid = (self.uid or "").strip()
        if not uid:
            raise ValueError("uid must be non-empty")
        object.__setattr__(self, "uid", uid)
