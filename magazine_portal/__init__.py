from __future__ import annotations

from .config import config_sha256, load_config, resolve_blob_credentials
from .config_schema import AppConfig
from .draft import Draft, PostFields, StagedImage
from .errors import (
    CommitError,
    ConfigError,
    SubmissionError,
    UploadError,
    ValidationError,
)
from .post import Category, Image, Post
from .search import FeedFilter, compute_visible
from .submission import SubmissionLimits, SubmissionPipeline

__all__ = [
    "AppConfig",
    "Category",
    "CommitError",
    "ConfigError",
    "Draft",
    "FeedFilter",
    "Image",
    "Post",
    "PostFields",
    "StagedImage",
    "SubmissionError",
    "SubmissionLimits",
    "SubmissionPipeline",
    "UploadError",
    "ValidationError",
    "compute_visible",
    "config_sha256",
    "load_config",
    "resolve_blob_credentials",
]
