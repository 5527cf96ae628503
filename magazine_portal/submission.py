from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from .blob_store import BlobHandle, BlobStore, generate_blob_path
from .config_schema import SubmissionConfig
from .draft import Draft, PostFields, StagedImage
from .errors import CommitError, UploadError, UploadFailure, ValidationError
from .post import Category, Image, normalize_hashtags
from .run_log import RunLogger

IMAGE_COUNT_OUT_OF_RANGE = "image count out of range"
TITLE_REQUIRED = "title required"

PathFactory = Callable[[str, int], str]


class PostRepository(Protocol):
    def create_post(
        self,
        *,
        title: str,
        category: Category,
        hashtags: Sequence[str],
        images: Sequence[Image],
        created_by: str,
        description: str | None = None,
        max_images: int = 5,
    ) -> str: ...


@dataclass(frozen=True)
class SubmissionLimits:
    min_images: int = 1
    max_images: int = 5
    path_prefix: str = "posts"

    def __post_init__(self) -> None:
        if self.min_images < 1:
            raise ValueError("min_images must be >= 1")
        if self.max_images < self.min_images:
            raise ValueError("max_images must be >= min_images")

    @classmethod
    def from_config(cls, cfg: SubmissionConfig) -> "SubmissionLimits":
        return cls(
            min_images=cfg.min_images,
            max_images=cfg.max_images,
            path_prefix=cfg.path_prefix,
        )


@dataclass(frozen=True)
class UploadedImage:
    index: int
    handle: BlobHandle
    url: str


def validate_submission(
    fields: PostFields,
    staged: Sequence[StagedImage],
    *,
    limits: SubmissionLimits,
) -> Category:
    """
    Check a submission before any I/O; the first failing check wins.

    Returns the parsed category.
    """
    if not (fields.title or "").strip():
        raise ValidationError(TITLE_REQUIRED, code="title_required", message="Enter a title.")

    count = len(staged)
    if count == 0:
        raise ValidationError(
            IMAGE_COUNT_OUT_OF_RANGE,
            code="no_images",
            message="Select at least one image.",
        )
    if count < limits.min_images or count > limits.max_images:
        raise ValidationError(
            IMAGE_COUNT_OUT_OF_RANGE,
            code="too_many_images" if count > limits.max_images else "too_few_images",
            message=f"Select {limits.min_images} to {limits.max_images} images ({count} selected).",
        )

    return Category.parse(fields.category)


class SubmissionPipeline:
    """
    Turns staged images plus form fields into stored blobs and one post record.

    All uploads run concurrently and are joined before anything is committed.
    If any upload fails no record is written; blobs that did get stored are
    reported as orphaned in the run log and left in place.
    """

    def __init__(
        self,
        blobs: BlobStore,
        posts: PostRepository,
        *,
        logger: RunLogger | None = None,
        limits: SubmissionLimits | None = None,
        path_factory: PathFactory | None = None,
    ) -> None:
        self._blobs = blobs
        self._posts = posts
        self._log = logger or RunLogger.null()
        self._limits = limits or SubmissionLimits()
        self._path_factory = path_factory or self._default_path

    @property
    def limits(self) -> SubmissionLimits:
        return self._limits

    def _default_path(self, filename: str, index: int) -> str:
        return generate_blob_path(filename, index, prefix=self._limits.path_prefix)

    async def submit(
        self,
        fields: PostFields,
        staged: Sequence[StagedImage],
        *,
        created_by: str,
    ) -> str:
        category = validate_submission(fields, staged, limits=self._limits)

        author = (created_by or "").strip()
        if not author:
            raise ValueError("created_by must be non-empty")

        self._log.info(
            "submission_started",
            title=fields.title.strip(),
            image_count=len(staged),
            created_by=author,
        )

        uploaded = await self._upload_all(staged)
        images = [Image(url=u.url, link=staged[u.index].link) for u in uploaded]
        urls = [u.url for u in uploaded]

        try:
            post_id = self._posts.create_post(
                title=fields.title.strip(),
                description=(fields.description or "").strip() or None,
                category=category,
                hashtags=normalize_hashtags(fields.hashtags),
                images=images,
                created_by=author,
                max_images=self._limits.max_images,
            )
        except Exception as e:
            self._log.exception("commit_failed", exc=e, created_by=author)
            self._log_orphans([u.handle for u in uploaded], reason="commit_failed")
            raise CommitError(f"Failed to create post record: {e}", orphaned_urls=urls) from e

        self._log.info("post_committed", post_id=post_id, image_count=len(images), created_by=author)
        return post_id

    async def submit_draft(self, draft: Draft, *, created_by: str) -> str:
        return await self.submit(draft.fields(), draft.images, created_by=created_by)

    async def _upload_all(self, staged: Sequence[StagedImage]) -> list[UploadedImage]:
        stored: list[BlobHandle] = []

        async def _upload_one(index: int, image: StagedImage) -> UploadedImage:
            path = self._path_factory(image.filename, index)
            handle = await self._blobs.store(image.data, path, content_type=image.content_type)
            stored.append(handle)
            url = await self._blobs.resolve_url(handle)
            self._log.info("blob_uploaded", index=index, path=handle.path, size=handle.size)
            return UploadedImage(index=index, handle=handle, url=url)

        results = await asyncio.gather(
            *(_upload_one(i, img) for i, img in enumerate(staged)),
            return_exceptions=True,
        )

        uploaded: list[UploadedImage] = []
        failures: list[UploadFailure] = []
        for index, result in enumerate(results):
            if isinstance(result, UploadedImage):
                uploaded.append(result)
                continue
            if not isinstance(result, Exception):
                raise result
            failures.append(UploadFailure(index=index, filename=staged[index].filename, cause=result))
            self._log.error(
                "upload_failed",
                index=index,
                filename=staged[index].filename,
                error_type=type(result).__name__,
                error_message=str(result),
            )

        if failures:
            self._log_orphans(stored, reason="upload_failed")
            raise UploadError(failures, orphaned_urls=[u.url for u in uploaded])

        return uploaded

    def _log_orphans(self, handles: Sequence[BlobHandle], *, reason: str) -> None:
        if not handles:
            return
        self._log.warning(
            "orphaned_blobs",
            reason=reason,
            paths=[h.path for h in handles],
        )
