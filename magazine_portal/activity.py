from __future__ import annotations

from typing import Any, Mapping, Protocol

from .post import Post
from .run_log import RunLogger


class ActivitySink(Protocol):
    def record_activity(self, uid: str, action: str, context: Mapping[str, Any] | None = None) -> None: ...


class ActivityLogger:
    """
    Best-effort user activity recorder.

    Recording never raises: a failing sink is reported to the run log and the
    calling operation carries on. The sink runs inline, so it should be cheap.
    """

    def __init__(
        self,
        sink: ActivitySink,
        *,
        logger: RunLogger | None = None,
        enabled: bool = True,
        min_search_chars: int = 2,
    ) -> None:
        self._sink = sink
        self._logger = logger or RunLogger.null()
        self._enabled = bool(enabled)
        self._min_search_chars = max(0, int(min_search_chars))

    def log(self, uid: str, action: str, **context: Any) -> bool:
        if not self._enabled:
            return False

        try:
            self._sink.record_activity(uid, action, context)
        except Exception as e:
            self._logger.exception("activity_log_failed", exc=e, action=action, activity_uid=uid)
            return False
        return True

    def search(self, uid: str, query: str) -> bool:
        text = query or ""
        if len(text) <= self._min_search_chars:
            return False
        return self.log(uid, "search", query=text)

    def view_post(self, uid: str, post: Post) -> bool:
        return self.log(uid, "view_post", postId=post.id, postTitle=post.title)

    def click_image_link(self, uid: str, post: Post, link: str | None) -> bool:
        target = (link or "").strip()
        if not target:
            return False
        return self.log(uid, "click_image_link", postId=post.id, link=target)
