from __future__ import annotations

import asyncio
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Protocol
from urllib.parse import quote, unquote

from .config import BlobCredentials
from .config_schema import BlobsConfig
from .errors import BlobStoreError

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._\-]+")


@dataclass(frozen=True)
class BlobHandle:
    """Opaque reference to a stored blob, returned by `BlobStore.store`."""

    path: str
    size: int
    content_type: str


class BlobStore(Protocol):
    async def store(self, data: bytes, path: str, *, content_type: str) -> BlobHandle: ...

    async def resolve_url(self, handle: BlobHandle) -> str: ...

    async def delete(self, handle: BlobHandle) -> None: ...

    def handle_for_url(self, url: str) -> BlobHandle | None: ...


def safe_filename(name: str) -> str:
    base = PurePosixPath((name or "").replace("\\", "/")).name
    cleaned = _UNSAFE_NAME_RE.sub("_", base).strip("._")
    return cleaned or "image"


def generate_blob_path(
    filename: str,
    index: int,
    *,
    prefix: str = "posts",
    now_ms: Callable[[], int] | None = None,
    token: Callable[[], str] | None = None,
) -> str:
    """
    Build a unique storage key: `<prefix>/<utc-millis>_<index>_<token>_<filename>`.

    The random token keeps two uploads of the same file name in the same
    millisecond from colliding.
    """
    millis = now_ms() if now_ms is not None else int(time.time() * 1000)
    tok = token() if token is not None else secrets.token_hex(4)
    return f"{prefix.strip('/')}/{int(millis)}_{int(index)}_{tok}_{safe_filename(filename)}"


def _check_relative_key(path: str) -> PurePosixPath:
    key = PurePosixPath((path or "").strip())
    if not key.parts or key.is_absolute() or ".." in key.parts:
        raise BlobStoreError(f"Invalid blob path: {path!r}")
    return key


class LocalBlobStore:
    """
    Filesystem blob store.

    Blobs live under `root_dir`; URLs are `public_base_url/<path>`, or file
    URIs when no base URL is configured.
    """

    def __init__(self, root_dir: str | Path, *, public_base_url: str | None = None) -> None:
        self._root = Path(root_dir)
        self._base_url = (public_base_url or "").strip().rstrip("/") or None

    @property
    def root_dir(self) -> Path:
        return self._root

    def _local_path(self, path: str) -> Path:
        return self._root.joinpath(*_check_relative_key(path).parts)

    async def store(self, data: bytes, path: str, *, content_type: str) -> BlobHandle:
        target = self._local_path(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(data)
            tmp.replace(target)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BlobStoreError(f"Failed to store blob {path}: {e}") from e

        return BlobHandle(path=path, size=len(data), content_type=content_type)

    async def resolve_url(self, handle: BlobHandle) -> str:
        target = self._local_path(handle.path)
        exists = await asyncio.to_thread(target.is_file)
        if not exists:
            raise BlobStoreError(f"Blob not found: {handle.path}")

        if self._base_url is None:
            return target.resolve().as_uri()
        return f"{self._base_url}/{quote(handle.path)}"

    async def delete(self, handle: BlobHandle) -> None:
        target = self._local_path(handle.path)
        try:
            await asyncio.to_thread(target.unlink, True)
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {handle.path}: {e}") from e

    def handle_for_url(self, url: str) -> BlobHandle | None:
        return _handle_for_url(url, self._base_url or self._root.resolve().as_uri())


class S3BlobStore:
    """
    S3-compatible blob store (AWS S3, Cloudflare R2, MinIO).

    Objects are written with `put_object`; URLs are built from
    `public_base_url`, which must serve the bucket publicly.
    """

    def __init__(self, bucket: str, *, public_base_url: str, client: Any) -> None:
        b = (bucket or "").strip()
        if not b:
            raise ValueError("bucket must be non-empty")
        base = (public_base_url or "").strip().rstrip("/")
        if not base:
            raise ValueError("public_base_url must be non-empty")

        self._bucket = b
        self._base_url = base
        self._client = client

    @classmethod
    def from_config(cls, blobs: BlobsConfig, credentials: BlobCredentials) -> "S3BlobStore":
        import boto3

        client = boto3.client(
            "s3",
            endpoint_url=blobs.endpoint_url,
            aws_access_key_id=credentials.access_key,
            aws_secret_access_key=credentials.secret_key,
            region_name=blobs.region_name,
        )
        return cls(blobs.bucket or "", public_base_url=blobs.public_base_url or "", client=client)

    async def store(self, data: bytes, path: str, *, content_type: str) -> BlobHandle:
        key = str(_check_relative_key(path))
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            raise BlobStoreError(f"Failed to upload s3://{self._bucket}/{key}: {e}") from e

        return BlobHandle(path=key, size=len(data), content_type=content_type)

    async def resolve_url(self, handle: BlobHandle) -> str:
        key = str(_check_relative_key(handle.path))
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except Exception as e:
            raise BlobStoreError(f"Blob not found: s3://{self._bucket}/{key}: {e}") from e
        return f"{self._base_url}/{quote(key)}"

    async def delete(self, handle: BlobHandle) -> None:
        key = str(_check_relative_key(handle.path))
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except Exception as e:
            raise BlobStoreError(f"Failed to delete s3://{self._bucket}/{key}: {e}") from e

    def handle_for_url(self, url: str) -> BlobHandle | None:
        return _handle_for_url(url, self._base_url)


def _handle_for_url(url: str, base_url: str) -> BlobHandle | None:
    u = (url or "").strip()
    prefix = base_url.rstrip("/") + "/"
    if not u.startswith(prefix):
        return None
    path = unquote(u[len(prefix):])
    if not path:
        return None
    return BlobHandle(path=path, size=0, content_type="application/octet-stream")


def blob_store_from_config(
    blobs: BlobsConfig, credentials: BlobCredentials | None = None
) -> LocalBlobStore | S3BlobStore:
    if blobs.backend == "s3":
        if credentials is None:
            raise ValueError("credentials are required for the s3 backend")
        return S3BlobStore.from_config(blobs, credentials)
    return LocalBlobStore(blobs.root_dir, public_base_url=blobs.public_base_url)
