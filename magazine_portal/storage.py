from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from .errors import StorageError, ValidationError
from .identity import UserIdentity
from .post import Category, Image, Post, normalize_hashtags
from .storage_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def _as_path(value: str | Path) -> str:
    return str(value)


@dataclass(frozen=True)
class UserProfile:
    uid: str
    email: str | None
    display_name: str | None
    photo_url: str | None
    is_admin: bool
    created_at: str
    last_login: str


@dataclass(frozen=True)
class ActivityRecord:
    id: int
    uid: str
    action: str
    context: dict[str, Any]
    created_at: str


class SQLitePostStore:
    """
    Persistence layer for posts, user profiles, and activity logs.

    A post and its images are written in one transaction, so readers see
    either the whole post or nothing.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLitePostStore":
        db_path = _as_path(path)
        if db_path != ":memory:":
            p = Path(db_path)
            p.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLitePostStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # Posts

    def create_post(
        self,
        *,
        title: str,
        category: Category,
        hashtags: Sequence[str],
        images: Sequence[Image],
        created_by: str,
        description: str | None = None,
        post_id: str | None = None,
        created_at: str | None = None,
        max_images: int = 5,
    ) -> str:
        t = (title or "").strip()
        if not t:
            raise ValueError("title must be non-empty")

        author = (created_by or "").strip()
        if not author:
            raise ValueError("created_by must be non-empty")

        if not images:
            raise ValueError("a post needs at least one image")
        if len(images) > max_images:
            raise ValueError(f"a post holds at most {max_images} images")
        for img in images:
            if not (img.url or "").strip():
                raise ValueError("every image needs a url")

        tags = normalize_hashtags(hashtags)
        if list(tags) != list(hashtags):
            raise ValueError("hashtags must be trimmed, non-empty, and distinct")

        pid = (post_id or uuid.uuid4().hex).strip()
        ts = (created_at or _utc_now_iso()).strip()
        desc = (description or "").strip() or None

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO posts(
                      id, title, description, category, hashtags_json,
                      created_by, created_at, updated_at, views
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)
                    """.strip(),
                    (pid, t, desc, Category.parse(category).value, _json_dumps(list(tags)), author, ts, ts),
                )
                self._conn.executemany(
                    "INSERT INTO post_images(post_id, position, url, link) VALUES (?, ?, ?, ?)",
                    [(pid, i, img.url, img.link) for i, img in enumerate(images)],
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to create post: {e}") from e

        return pid

    def fetch_all_posts(self) -> list[Post]:
        """Return every post, newest first."""
        try:
            rows = self._conn.execute(
                """
                SELECT id, title, description, category, hashtags_json,
                       created_by, created_at, views
                FROM posts
                ORDER BY created_at DESC, rowid DESC
                """.strip()
            ).fetchall()
            images = self._images_by_post()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to fetch posts: {e}") from e

        return [self._row_to_post(r, images.get(str(r["id"]), [])) for r in rows]

    def get_post(self, post_id: str) -> Post | None:
        pid = (post_id or "").strip()
        if not pid:
            raise ValueError("post_id must be non-empty")

        try:
            row = self._conn.execute(
                """
                SELECT id, title, description, category, hashtags_json,
                       created_by, created_at, views
                FROM posts
                WHERE id = ?
                """.strip(),
                (pid,),
            ).fetchone()
            if row is None:
                return None
            images = self._images_by_post(pid)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to read post {pid}: {e}") from e

        return self._row_to_post(row, images.get(pid, []))

    def delete_post(self, post_id: str) -> bool:
        pid = (post_id or "").strip()
        if not pid:
            raise ValueError("post_id must be non-empty")

        try:
            with self._conn:
                cur = self._conn.execute("DELETE FROM posts WHERE id = ?", (pid,))
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to delete post {pid}: {e}") from e

        return cur.rowcount > 0

    def post_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(1) AS n FROM posts").fetchone()
        return int(row["n"]) if row is not None else 0

    def _images_by_post(self, post_id: str | None = None) -> dict[str, list[Image]]:
        sql = "SELECT post_id, position, url, link FROM post_images"
        params: tuple[Any, ...] = ()
        if post_id is not None:
            sql += " WHERE post_id = ?"
            params = (post_id,)
        sql += " ORDER BY post_id, position"

        out: dict[str, list[Image]] = {}
        for r in self._conn.execute(sql, params).fetchall():
            out.setdefault(str(r["post_id"]), []).append(
                Image(url=str(r["url"]), link=r["link"])
            )
        return out

    def _row_to_post(self, row: sqlite3.Row, images: Sequence[Image]) -> Post:
        try:
            tags = json.loads(row["hashtags_json"] or "[]")
        except Exception as e:
            raise StorageError(f"Stored hashtags for post {row['id']} could not be parsed: {e}") from e

        if not isinstance(tags, list):
            tags = []

        try:
            category = Category.parse(str(row["category"]))
        except ValidationError as e:
            raise StorageError(f"Stored category for post {row['id']} is invalid: {row['category']}") from e

        return Post(
            id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]) if row["description"] is not None else None,
            category=category,
            hashtags=tuple(str(t) for t in tags),
            images=tuple(images),
            created_by=str(row["created_by"]),
            created_at=str(row["created_at"]),
            views=int(row["views"] or 0),
        )

    # Users

    def create_user_profile(self, identity: UserIdentity, *, now: str | None = None) -> UserProfile:
        """Create the profile on first sign-in, or refresh its details; admin status is kept."""
        ts = (now or _utc_now_iso()).strip()

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO users(uid, email, display_name, photo_url, is_admin, created_at, last_login)
                    VALUES (?, ?, ?, ?, 0, ?, ?)
                    ON CONFLICT(uid) DO UPDATE SET
                      email = COALESCE(excluded.email, users.email),
                      display_name = COALESCE(excluded.display_name, users.display_name),
                      photo_url = COALESCE(excluded.photo_url, users.photo_url),
                      last_login = excluded.last_login
                    """.strip(),
                    (identity.uid, identity.email, identity.display_name, identity.photo_url, ts, ts),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to create user profile: {e}") from e

        profile = self.get_user_profile(identity.uid)
        if profile is None:
            raise StorageError("Failed to read user profile after insert")
        return profile

    def get_user_profile(self, uid: str) -> UserProfile | None:
        key = (uid or "").strip()
        if not key:
            raise ValueError("uid must be non-empty")

        row = self._conn.execute(
            "SELECT uid, email, display_name, photo_url, is_admin, created_at, last_login FROM users WHERE uid = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None

        return UserProfile(
            uid=str(row["uid"]),
            email=row["email"],
            display_name=row["display_name"],
            photo_url=row["photo_url"],
            is_admin=bool(row["is_admin"]),
            created_at=str(row["created_at"]),
            last_login=str(row["last_login"]),
        )

    def update_last_login(self, uid: str, *, now: str | None = None) -> None:
        ts = (now or _utc_now_iso()).strip()
        try:
            with self._conn:
                self._conn.execute("UPDATE users SET last_login = ? WHERE uid = ?", (ts, uid))
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to update last login: {e}") from e

    def set_admin(self, uid: str, is_admin: bool = True) -> None:
        try:
            with self._conn:
                cur = self._conn.execute(
                    "UPDATE users SET is_admin = ? WHERE uid = ?",
                    (1 if is_admin else 0, uid),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to update admin flag: {e}") from e

        if cur.rowcount == 0:
            raise StorageError(f"No user profile for uid={uid}")

    def is_admin(self, uid: str) -> bool:
        """Unknown users and lookup failures count as non-admin."""
        key = (uid or "").strip()
        if not key:
            return False
        try:
            row = self._conn.execute("SELECT is_admin FROM users WHERE uid = ?", (key,)).fetchone()
        except sqlite3.DatabaseError:
            return False
        return row is not None and bool(row["is_admin"])

    # Activity

    def record_activity(
        self,
        uid: str,
        action: str,
        context: Mapping[str, Any] | None = None,
        *,
        created_at: str | None = None,
    ) -> None:
        key = (uid or "").strip()
        act = (action or "").strip()
        if not key or not act:
            raise ValueError("uid and action must be non-empty")

        ts = (created_at or _utc_now_iso()).strip()

        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO activity_logs(uid, action, context_json, created_at) VALUES (?, ?, ?, ?)",
                    (key, act, _json_dumps(dict(context or {})), ts),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to record activity: {e}") from e

    def user_activity(self, uid: str, *, limit: int | None = None) -> list[ActivityRecord]:
        """Return a user's activity, newest first."""
        if limit is not None and limit <= 0:
            return []

        sql = """
        SELECT id, uid, action, context_json, created_at
        FROM activity_logs
        WHERE uid = ?
        ORDER BY created_at DESC, id DESC
        """.strip()
        params: tuple[Any, ...] = (uid,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (uid, int(limit))

        out: list[ActivityRecord] = []
        for r in self._conn.execute(sql, params).fetchall():
            try:
                ctx = json.loads(r["context_json"] or "{}")
            except Exception:
                ctx = {}
            if not isinstance(ctx, dict):
                ctx = {}
            out.append(
                ActivityRecord(
                    id=int(r["id"]),
                    uid=str(r["uid"]),
                    action=str(r["action"]),
                    context=ctx,
                    created_at=str(r["created_at"]),
                )
            )
        return out
