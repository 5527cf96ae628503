from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError


@dataclass(frozen=True)
class BlobCredentials:
    access_key: str
    secret_key: str


def load_config(path: str | Path) -> AppConfig:
    """
    Load a YAML config file and validate it into a typed AppConfig.

    Relative paths inside the file are resolved against the file's directory.
    Raises ConfigError with a readable validation message on failure.
    """
    p = Path(path)

    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")

    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {p}") from e

    try:
        data = yaml.safe_load(raw_text)
    except Exception as e:  # PyYAML can raise multiple exception types
        raise ConfigError(f"Failed to parse YAML in {p}: {e}") from e

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {p} must be a mapping/object")

    try:
        cfg = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_pydantic_errors(e, p)) from e

    return _anchor_paths(cfg, p.resolve().parent)


def resolve_blob_credentials(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> BlobCredentials | None:
    """
    Validate that S3 credential variables are present when the s3 backend is used.

    Returns None for the local backend.
    """
    if config.blobs.backend != "s3":
        return None

    env = os.environ if environ is None else environ

    access_env = config.blobs.access_key_env
    secret_env = config.blobs.secret_key_env

    missing: list[str] = []
    if not (env.get(access_env) or "").strip():
        missing.append(access_env)
    if not (env.get(secret_env) or "").strip():
        missing.append(secret_env)

    if missing:
        joined = ", ".join(missing)
        raise ConfigError(f"Missing required environment variables: {joined}")

    return BlobCredentials(
        access_key=env[access_env].strip(),
        secret_key=env[secret_env].strip(),
    )


def config_sha256(config: AppConfig) -> str:
    """
    Compute a stable SHA-256 hash of the config values.
    """
    payload = json.dumps(
        config.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def _anchor(value: str, base: Path) -> str:
    if value == ":memory:":
        return value
    p = Path(value).expanduser()
    if p.is_absolute():
        return str(p)
    return str(base / p)


def _anchor_paths(cfg: AppConfig, base: Path) -> AppConfig:
    return cfg.model_copy(
        update={
            "storage": cfg.storage.model_copy(
                update={"database_path": _anchor(cfg.storage.database_path, base)}
            ),
            "blobs": cfg.blobs.model_copy(
                update={"root_dir": _anchor(cfg.blobs.root_dir, base)}
            ),
            "logging": cfg.logging.model_copy(
                update={"run_log_path": _anchor(cfg.logging.run_log_path, base)}
            ),
        }
    )


def _format_pydantic_errors(err: ValidationError, path: Path) -> str:
    lines: list[str] = [f"Invalid configuration in {path}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", [])) or "<root>"
        msg = item.get("msg", "invalid value")
        lines.append(f"- {loc}: {msg}")
    return "\n".join(lines)
