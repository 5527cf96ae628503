from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .post import Post


def _matches_query(post: Post, needle: str) -> bool:
    if needle in (post.title or "").casefold():
        return True
    return any(needle in (tag or "").casefold() for tag in post.hashtags)


def compute_visible(
    all_posts: Sequence[Post],
    query: str | None,
    active_tag: str | None,
) -> list[Post]:
    """
    Narrow `all_posts` by the active hashtag, then by the free-text query.

    - active_tag is an exact, case-sensitive hashtag match.
    - query is trimmed and case-folded; it matches a title or any hashtag by substring.
    - With neither filter active the input is returned unchanged, in the same order.

    The relative order of `all_posts` is always preserved.
    """
    result: Iterable[Post] = all_posts

    if active_tag:
        result = [p for p in result if active_tag in p.hashtags]

    needle = (query or "").strip().casefold()
    if needle:
        result = [p for p in result if _matches_query(p, needle)]

    return list(result)


@dataclass
class FeedFilter:
    """
    Search state for the post list: the fetched posts plus both predicates.

    `select_tag` is the only way to change the active tag, so the
    clear-query-on-select policy is applied in one step.
    """

    posts: Sequence[Post] = field(default_factory=tuple)
    query: str = ""
    active_tag: str | None = None

    def __post_init__(self) -> None:
        if not self.active_tag:
            self.active_tag = None

    @property
    def visible(self) -> list[Post]:
        return compute_visible(self.posts, self.query, self.active_tag)

    @property
    def is_filtering(self) -> bool:
        return bool(self.query.strip()) or bool(self.active_tag)

    def set_posts(self, posts: Sequence[Post]) -> None:
        self.posts = tuple(posts)

    def set_query(self, text: str) -> None:
        self.query = text or ""

    def select_tag(self, tag: str) -> None:
        """
        Toggle `tag`: re-selecting the active tag clears it; a new tag also clears the query.

        A blank tag is ignored.
        """
        if not (tag or "").strip():
            return
        if self.active_tag == tag:
            self.active_tag = None
            return
        self.active_tag = tag
        self.query = ""

    def clear_tag(self) -> None:
        self.active_tag = None

    def clear(self) -> None:
        self.query = ""
        self.active_tag = None

    def empty_message(self) -> str | None:
        if self.visible:
            return None
        if self.is_filtering:
            return "No matching posts. Try a different search."
        return "No posts yet."
