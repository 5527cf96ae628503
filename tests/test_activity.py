from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from typing import Any, Mapping

from magazine_portal.activity import ActivityLogger
from magazine_portal.post import Category, Image, Post
from magazine_portal.run_log import RunLogger


class _RecordingSink:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def record_activity(self, uid: str, action: str, context: Mapping[str, Any] | None = None) -> None:
        if self.fail:
            raise RuntimeError("sink offline")
        self.records.append((uid, action, dict(context or {})))


_POST = Post(
    id="p1",
    title="Old Fashioned",
    category=Category.COCKTAIL,
    hashtags=("whiskey",),
    images=(Image(url="https://cdn.example.com/p1.jpg", link="https://example.com/bar"),),
    created_by="admin",
    created_at="2025-01-01T00:00:00+00:00",
)


class TestActivityLogger(unittest.TestCase):
    def test_search_only_logged_above_threshold(self) -> None:
        sink = _RecordingSink()
        activity = ActivityLogger(sink)

        self.assertFalse(activity.search("u1", "ji"))
        self.assertTrue(activity.search("u1", "jaz"))
        self.assertEqual(sink.records, [("u1", "search", {"query": "jaz"})])

    def test_view_and_click_events(self) -> None:
        sink = _RecordingSink()
        activity = ActivityLogger(sink)

        activity.view_post("u1", _POST)
        activity.click_image_link("u1", _POST, "https://example.com/bar")
        activity.click_image_link("u1", _POST, "")

        self.assertEqual(
            sink.records,
            [
                ("u1", "view_post", {"postId": "p1", "postTitle": "Old Fashioned"}),
                ("u1", "click_image_link", {"postId": "p1", "link": "https://example.com/bar"}),
            ],
        )

    def test_failures_never_raise_and_are_logged(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / "portal.log"
            with RunLogger.open(log_path) as log:
                activity = ActivityLogger(_RecordingSink(fail=True), logger=log)
                self.assertFalse(activity.view_post("u1", _POST))

            lines = [json.loads(ln) for ln in log_path.read_text(encoding="utf-8").splitlines() if ln.strip()]
            self.assertEqual(lines[-1]["event"], "activity_log_failed")
            self.assertEqual(lines[-1]["data"]["action"], "view_post")
            self.assertEqual(lines[-1]["data"]["error"]["type"], "RuntimeError")

    def test_disabled(self) -> None:
        sink = _RecordingSink()
        activity = ActivityLogger(sink, enabled=False)
        self.assertFalse(activity.search("u1", "long query"))
        self.assertEqual(sink.records, [])


if __name__ == "__main__":
    unittest.main()
