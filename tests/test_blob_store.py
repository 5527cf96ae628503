from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path
from typing import Any

from magazine_portal.blob_store import (
    BlobHandle,
    LocalBlobStore,
    S3BlobStore,
    blob_store_from_config,
    generate_blob_path,
    safe_filename,
)
from magazine_portal.config_schema import BlobsConfig
from magazine_portal.errors import BlobStoreError


class TestBlobPaths(unittest.TestCase):
    def test_generate_blob_path_layout(self) -> None:
        path = generate_blob_path(
            "My Photo (1).JPG",
            2,
            prefix="posts/",
            now_ms=lambda: 1700000000123,
            token=lambda: "abcd1234",
        )
        self.assertEqual(path, "posts/1700000000123_2_abcd1234_My_Photo_1_.JPG")

    def test_same_name_same_millisecond_does_not_collide(self) -> None:
        a = generate_blob_path("a.jpg", 0, now_ms=lambda: 1)
        b = generate_blob_path("a.jpg", 0, now_ms=lambda: 1)
        self.assertNotEqual(a, b)

    def test_safe_filename(self) -> None:
        self.assertEqual(safe_filename("../../etc/passwd"), "passwd")
        self.assertEqual(safe_filename("C:\\photos\\cat.png"), "cat.png")
        self.assertEqual(safe_filename("..."), "image")


class TestLocalBlobStore(unittest.TestCase):
    def test_store_resolve_delete(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = LocalBlobStore(Path(td), public_base_url="https://cdn.example.com/")

            handle = asyncio.run(store.store(b"bytes", "posts/1_0_a.jpg", content_type="image/jpeg"))
            self.assertEqual(handle.size, 5)
            self.assertEqual((Path(td) / "posts" / "1_0_a.jpg").read_bytes(), b"bytes")

            url = asyncio.run(store.resolve_url(handle))
            self.assertEqual(url, "https://cdn.example.com/posts/1_0_a.jpg")
            self.assertEqual(store.handle_for_url(url).path, "posts/1_0_a.jpg")  # type: ignore[union-attr]

            asyncio.run(store.delete(handle))
            self.assertFalse((Path(td) / "posts" / "1_0_a.jpg").exists())

    def test_file_uri_without_base_url(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = LocalBlobStore(Path(td))
            handle = asyncio.run(store.store(b"x", "posts/a b.jpg", content_type="image/jpeg"))
            url = asyncio.run(store.resolve_url(handle))
            self.assertTrue(url.startswith("file://"))
            found = store.handle_for_url(url)
            assert found is not None
            self.assertEqual(found.path, "posts/a b.jpg")

    def test_resolve_missing_blob_fails(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = LocalBlobStore(Path(td))
            with self.assertRaises(BlobStoreError):
                asyncio.run(store.resolve_url(BlobHandle(path="posts/missing.jpg", size=0, content_type="image/jpeg")))

    def test_rejects_escaping_paths(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = LocalBlobStore(Path(td))
            for bad in ("../outside.jpg", "/abs.jpg", ""):
                with self.assertRaises(BlobStoreError):
                    asyncio.run(store.store(b"x", bad, content_type="image/jpeg"))


class _FakeS3Client:
    def __init__(self, *, fail_put: bool = False) -> None:
        self.fail_put = fail_put
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("put_object", kwargs))
        if self.fail_put:
            raise RuntimeError("access denied")
        self.objects[kwargs["Key"]] = kwargs["Body"]
        return {}

    def head_object(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("head_object", kwargs))
        if kwargs["Key"] not in self.objects:
            raise RuntimeError("404")
        return {"ContentLength": len(self.objects[kwargs["Key"]])}

    def delete_object(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("delete_object", kwargs))
        self.objects.pop(kwargs["Key"], None)
        return {}


class TestS3BlobStore(unittest.TestCase):
    def test_put_and_public_url(self) -> None:
        client = _FakeS3Client()
        store = S3BlobStore("media", public_base_url="https://media.example.com", client=client)

        handle = asyncio.run(store.store(b"img", "posts/x.png", content_type="image/png"))
        url = asyncio.run(store.resolve_url(handle))

        self.assertEqual(url, "https://media.example.com/posts/x.png")
        name, kwargs = client.calls[0]
        self.assertEqual(name, "put_object")
        self.assertEqual(kwargs["Bucket"], "media")
        self.assertEqual(kwargs["ContentType"], "image/png")

        asyncio.run(store.delete(handle))
        self.assertEqual(client.objects, {})

    def test_failures_are_wrapped(self) -> None:
        store = S3BlobStore("media", public_base_url="https://media.example.com", client=_FakeS3Client(fail_put=True))
        with self.assertRaises(BlobStoreError):
            asyncio.run(store.store(b"img", "posts/x.png", content_type="image/png"))

        with self.assertRaises(BlobStoreError):
            asyncio.run(store.resolve_url(BlobHandle(path="posts/none.png", size=0, content_type="image/png")))


class TestBlobStoreFromConfig(unittest.TestCase):
    def test_local_backend(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = blob_store_from_config(BlobsConfig(root_dir=td))
            self.assertIsInstance(store, LocalBlobStore)

    def test_s3_requires_credentials(self) -> None:
        cfg = BlobsConfig(backend="s3", bucket="media", public_base_url="https://media.example.com")
        with self.assertRaises(ValueError):
            blob_store_from_config(cfg)


if __name__ == "__main__":
    unittest.main()
