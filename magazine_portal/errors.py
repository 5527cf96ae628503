from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class StorageError(RuntimeError):
    """Raised when reading or writing state in SQLite fails."""


class BlobStoreError(RuntimeError):
    """Raised when storing, resolving, or deleting a blob fails."""


class PreviewError(RuntimeError):
    """Raised when a staged file cannot be read for its local preview."""


class PermissionDenied(RuntimeError):
    """Raised when a non-admin user attempts an admin-only operation."""


class SubmissionError(RuntimeError):
    """Base class for every terminal failure of a post submission."""

    is_user_correctable = False


class ValidationError(SubmissionError):
    """
    Raised before any I/O when the submitted fields cannot be accepted.

    `kind` groups related failures ("image count out of range"), while `code`
    and `message` tell the user exactly what to fix.
    """

    is_user_correctable = True

    def __init__(self, kind: str, *, code: str, message: str | None = None) -> None:
        super().__init__(message or kind)
        self.kind = kind
        self.code = code
        self.message = message or kind


@dataclass(frozen=True)
class UploadFailure:
    index: int
    filename: str
    cause: BaseException


class UploadError(SubmissionError):
    """Raised when one or more image uploads failed; no post record is created."""

    def __init__(self, failures: Sequence[UploadFailure], *, orphaned_urls: Sequence[str] = ()) -> None:
        self.failures = list(failures)
        self.orphaned_urls = list(orphaned_urls)
        names = ", ".join(f"#{f.index} {f.filename}" for f in self.failures)
        super().__init__(f"{len(self.failures)} image upload(s) failed: {names}")

    @property
    def failed_indexes(self) -> list[int]:
        return [f.index for f in self.failures]


class CommitError(SubmissionError):
    """Raised when the post record could not be created after all uploads succeeded."""

    def __init__(self, message: str, *, orphaned_urls: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.orphaned_urls = list(orphaned_urls)
