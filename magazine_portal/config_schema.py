from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PREFIX_RE = re.compile(r"^[A-Za-z0-9_\-]+(/[A-Za-z0-9_\-]+)*$")


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    database_path: str = "state/portal.sqlite"

    @field_validator("database_path")
    @classmethod
    def _path_must_be_set(cls, v: str) -> str:
        value = (v or "").strip()
        if not value:
            raise ValueError("must be non-empty")
        return value


class BlobsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    backend: Literal["local", "s3"] = "local"
    root_dir: str = "state/blobs"
    public_base_url: str | None = None

    bucket: str | None = None
    endpoint_url: str | None = None
    region_name: str = "auto"
    access_key_env: str = "BLOB_ACCESS_KEY"
    secret_key_env: str = "BLOB_SECRET_KEY"

    @field_validator("access_key_env", "secret_key_env")
    @classmethod
    def _env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @model_validator(mode="after")
    def _s3_needs_bucket_and_url(self) -> "BlobsConfig":
        if self.backend == "s3":
            if not (self.bucket or "").strip():
                raise ValueError("bucket is required when backend is s3")
            if not (self.public_base_url or "").strip():
                raise ValueError("public_base_url is required when backend is s3")
        return self


class SubmissionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    min_images: PositiveInt = 1
    max_images: PositiveInt = 5
    path_prefix: str = "posts"

    @field_validator("path_prefix")
    @classmethod
    def _prefix_must_be_clean(cls, v: str) -> str:
        value = (v or "").strip().strip("/")
        if not _PREFIX_RE.fullmatch(value):
            raise ValueError("must be a relative path of letters, digits, '-' or '_'")
        return value

    @model_validator(mode="after")
    def _max_must_cover_min(self) -> "SubmissionConfig":
        if self.max_images < self.min_images:
            raise ValueError("max_images must be >= min_images")
        return self


class ActivityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    min_search_chars: NonNegativeInt = 2  # searches longer than this are recorded


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    run_log_path: str = "state/portal.log"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    storage: StorageConfig = Field(default_factory=StorageConfig)
    blobs: BlobsConfig = Field(default_factory=BlobsConfig)
    submission: SubmissionConfig = Field(default_factory=SubmissionConfig)
    activity: ActivityConfig = Field(default_factory=ActivityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
