from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from .activity import ActivityLogger
from .blob_store import blob_store_from_config
from .config import load_config, resolve_blob_credentials
from .config_schema import AppConfig
from .draft import Draft
from .errors import (
    BlobStoreError,
    CommitError,
    ConfigError,
    PermissionDenied,
    PreviewError,
    StorageError,
    UploadError,
    ValidationError,
)
from .identity import UserIdentity
from .portal import PortalSession, sign_in
from .post import Category, Post
from .preview import stage_files
from .run_log import RunLogger
from .storage import SQLitePostStore
from .submission import SubmissionLimits, SubmissionPipeline

_IMAGE_LINK_SEP = "::"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="magazine_portal")

    subparsers = parser.add_subparsers(dest="command", required=True)

    posts = subparsers.add_parser("posts", help="List posts, optionally filtered.")
    posts.add_argument("--config", required=True, help="Path to YAML config file.")
    posts.add_argument("--user", required=True, help="uid of the reading user.")
    posts.add_argument("--query", default="", help="Free-text search over titles and hashtags.")
    posts.add_argument("--tag", default=None, help="Exact hashtag filter.")
    posts.set_defaults(_handler=_cmd_posts)

    submit = subparsers.add_parser("submit", help="Upload images and create a post (admin only).")
    submit.add_argument("--config", required=True, help="Path to YAML config file.")
    submit.add_argument("--user", required=True, help="uid of the submitting admin.")
    submit.add_argument("--title", required=True)
    submit.add_argument(
        "--category",
        default=Category.BOARD_GAME.value,
        choices=[c.value for c in Category],
    )
    submit.add_argument("--description", default="")
    submit.add_argument(
        "--hashtag",
        action="append",
        default=[],
        help="Hashtag to add; repeat for several.",
    )
    submit.add_argument(
        "--image",
        action="append",
        default=[],
        help=f"Image file, optionally followed by {_IMAGE_LINK_SEP}LINK; repeat in display order.",
    )
    submit.set_defaults(_handler=_cmd_submit)

    delete = subparsers.add_parser("delete", help="Delete a post and its images (admin only).")
    delete.add_argument("--config", required=True, help="Path to YAML config file.")
    delete.add_argument("--user", required=True, help="uid of the admin.")
    delete.add_argument("post_id")
    delete.set_defaults(_handler=_cmd_delete)

    grant = subparsers.add_parser("grant-admin", help="Mark a user as admin.")
    grant.add_argument("--config", required=True, help="Path to YAML config file.")
    grant.add_argument("uid")
    grant.add_argument("--email", default=None)
    grant.add_argument("--revoke", action="store_true", help="Remove admin rights instead.")
    grant.set_defaults(_handler=_cmd_grant_admin)

    activity = subparsers.add_parser("activity", help="Print a user's activity log as JSON lines.")
    activity.add_argument("--config", required=True, help="Path to YAML config file.")
    activity.add_argument("--user", required=True)
    activity.add_argument("--limit", type=int, default=None)
    activity.set_defaults(_handler=_cmd_activity)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _open_logger(cfg: AppConfig, uid: str | None = None) -> RunLogger:
    return RunLogger.open(Path(cfg.logging.run_log_path), overwrite=False, uid=uid)


def _activity_logger(cfg: AppConfig, store: SQLitePostStore, log: RunLogger) -> ActivityLogger:
    return ActivityLogger(
        store,
        logger=log,
        enabled=cfg.activity.enabled,
        min_search_chars=cfg.activity.min_search_chars,
    )


def _format_post(post: Post) -> str:
    tags = " ".join(f"#{t}" for t in post.hashtags)
    return f"{post.id}\t{post.category.value}\t{post.title}\t{len(post.images)} image(s)\t{tags}".rstrip()


def _split_image_arg(value: str) -> tuple[str, str | None]:
    path, sep, link = value.partition(_IMAGE_LINK_SEP)
    return path.strip(), (link.strip() or None) if sep else None


def _cmd_posts(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    with _open_logger(cfg, args.user) as log, SQLitePostStore.open(cfg.storage.database_path) as store:
        session = PortalSession(
            UserIdentity(args.user),
            store,
            activity=_activity_logger(cfg, store, log),
            logger=log,
        )
        session.load()
        if args.tag:
            session.select_tag(args.tag)
        if args.query:
            session.search(args.query)

        visible = session.visible_posts
        for post in visible:
            print(_format_post(post))

        message = session.filter.empty_message()
        if message:
            _eprint(message)

    return 0


async def _submit(args: argparse.Namespace, cfg: AppConfig, store: SQLitePostStore, log: RunLogger) -> str:
    session = PortalSession(UserIdentity(args.user), store, logger=log)
    session.load()
    session.require_admin()

    parsed = [_split_image_arg(v) for v in args.image]
    staged = await stage_files([path for path, _ in parsed])

    draft = (
        Draft()
        .with_title(args.title)
        .with_category(args.category)
        .with_description(args.description)
        .with_staged(staged)
    )
    for tag in args.hashtag:
        draft = draft.with_hashtag_input(tag).commit_hashtag()
    for index, (_, link) in enumerate(parsed):
        if link:
            draft = draft.with_image_link(index, link)

    pipeline = SubmissionPipeline(
        blob_store_from_config(cfg.blobs, resolve_blob_credentials(cfg)),
        store,
        logger=log,
        limits=SubmissionLimits.from_config(cfg.submission),
    )
    return await pipeline.submit_draft(draft, created_by=args.user)


def _cmd_submit(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    with _open_logger(cfg, args.user) as log:
        log.info("submit_command_started", image_count=len(args.image))
        try:
            with SQLitePostStore.open(cfg.storage.database_path) as store:
                post_id = asyncio.run(_submit(args, cfg, store, log))
        except Exception as e:
            log.exception("submit_command_failed", exc=e)
            raise

    print(f"post_id={post_id}")
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    with _open_logger(cfg, args.user) as log, SQLitePostStore.open(cfg.storage.database_path) as store:
        session = PortalSession(UserIdentity(args.user), store, logger=log)
        session.load()
        blobs = blob_store_from_config(cfg.blobs, resolve_blob_credentials(cfg))
        deleted = asyncio.run(session.delete_post(args.post_id, blobs=blobs))

    print(f"deleted={str(deleted).lower()}")
    return 0 if deleted else 4


def _cmd_grant_admin(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    with SQLitePostStore.open(cfg.storage.database_path) as store:
        sign_in(store, UserIdentity(args.uid, email=args.email))
        store.set_admin(args.uid, not args.revoke)
        profile = store.get_user_profile(args.uid)

    print(f"uid={args.uid}")
    print(f"is_admin={str(bool(profile and profile.is_admin)).lower()}")
    return 0


def _cmd_activity(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    with SQLitePostStore.open(cfg.storage.database_path) as store:
        records = store.user_activity(args.user, limit=args.limit)

    for record in records:
        print(json.dumps(asdict(record), ensure_ascii=False, sort_keys=True))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except (ConfigError, ValidationError) as e:
        _eprint(str(getattr(e, "message", None) or e))
        return 2
    except PermissionDenied as e:
        _eprint(str(e))
        return 5
    except UploadError as e:
        _eprint(str(e))
        for failure in e.failures:
            _eprint(f"- image {failure.index} ({failure.filename}): {failure.cause}")
        return 3
    except (CommitError, StorageError, BlobStoreError, PreviewError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
