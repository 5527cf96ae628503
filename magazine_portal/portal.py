from __future__ import annotations

from typing import Protocol, Sequence

from .activity import ActivityLogger
from .blob_store import BlobStore
from .errors import PermissionDenied
from .identity import UserIdentity
from .post import Post
from .run_log import RunLogger
from .search import FeedFilter
from .storage import SQLitePostStore, UserProfile


class PostCatalog(Protocol):
    def fetch_all_posts(self) -> Sequence[Post]: ...

    def get_post(self, post_id: str) -> Post | None: ...

    def delete_post(self, post_id: str) -> bool: ...

    def is_admin(self, uid: str) -> bool: ...


def sign_in(store: SQLitePostStore, identity: UserIdentity) -> UserProfile:
    """Record a sign-in: create the profile the first time, refresh last login after that."""
    profile = store.get_user_profile(identity.uid)
    if profile is None:
        return store.create_user_profile(identity)

    store.update_last_login(identity.uid)
    refreshed = store.get_user_profile(identity.uid)
    return refreshed if refreshed is not None else profile


class PortalSession:
    """
    Reader-side state for one signed-in user: the fetched posts, the search
    filter, and the activity events raised while browsing.
    """

    def __init__(
        self,
        user: UserIdentity,
        catalog: PostCatalog,
        *,
        activity: ActivityLogger | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        self._user = user
        self._catalog = catalog
        self._activity = activity
        self._log = logger or RunLogger.null()
        self._filter = FeedFilter()
        self._is_admin = False
        self._loaded = False

    @property
    def user(self) -> UserIdentity:
        return self._user

    @property
    def is_admin(self) -> bool:
        return self._is_admin

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def filter(self) -> FeedFilter:
        return self._filter

    @property
    def visible_posts(self) -> list[Post]:
        return self._filter.visible

    def load(self) -> list[Post]:
        self._is_admin = bool(self._catalog.is_admin(self._user.uid))
        self.refresh()
        self._loaded = True
        self._log.info(
            "session_loaded",
            is_admin=self._is_admin,
            post_count=len(self._filter.posts),
        )
        return self.visible_posts

    def refresh(self) -> list[Post]:
        self._filter.set_posts(self._catalog.fetch_all_posts())
        return self.visible_posts

    def search(self, text: str) -> list[Post]:
        self._filter.set_query(text)
        if self._activity is not None:
            self._activity.search(self._user.uid, text)
        return self.visible_posts

    def select_tag(self, tag: str) -> list[Post]:
        self._filter.select_tag(tag)
        return self.visible_posts

    def clear_filters(self) -> list[Post]:
        self._filter.clear()
        return self.visible_posts

    def open_post(self, post: Post) -> Post:
        if self._activity is not None:
            self._activity.view_post(self._user.uid, post)
        return post

    def click_image_link(self, post: Post, link: str | None) -> str | None:
        """Return the link to open, or None when the image has no link."""
        target = (link or "").strip()
        if not target:
            return None
        if self._activity is not None:
            self._activity.click_image_link(self._user.uid, post, target)
        return target

    def require_admin(self) -> None:
        if not self._is_admin:
            raise PermissionDenied(f"User {self._user.uid} is not an admin")

    async def delete_post(self, post_id: str, *, blobs: BlobStore) -> bool:
        """
        Delete a post's record, then its image blobs. Admin only.

        Blob deletion is best-effort: a blob that cannot be removed is
        logged as orphaned and does not undo the record deletion.
        Returns False when the post does not exist.
        """
        self.require_admin()

        post = self._catalog.get_post(post_id)
        if post is None:
            return False

        deleted = self._catalog.delete_post(post.id)
        if not deleted:
            self.refresh()
            return False

        orphaned = []
        for image in post.images:
            handle = blobs.handle_for_url(image.url)
            if handle is None:
                self._log.warning("blob_url_unrecognized", post_id=post.id, url=image.url)
                continue
            try:
                await blobs.delete(handle)
            except Exception as e:
                self._log.exception("blob_delete_failed", exc=e, post_id=post.id, path=handle.path)
                orphaned.append(handle)

        if orphaned:
            self._log.warning(
                "orphaned_blobs",
                reason="delete_failed",
                post_id=post.id,
                paths=[h.path for h in orphaned],
            )

        self._log.info("post_deleted", post_id=post.id, image_count=len(post.images))
        self.refresh()
        return deleted
