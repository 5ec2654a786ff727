from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from image_inverter.app import create_store, run
from image_inverter.diagnostics import configure_logging
from image_inverter.notifications import NotificationStreamError
from image_inverter.settings import ConfigurationError, Settings, load_settings
from image_inverter.storage import S3ObjectStore

LOGGER = logging.getLogger("image_inverter")

_STORE_ERRORS = (BotoCoreError, ClientError, OSError)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image_inverter",
        description="Invert images created in the input bucket and publish them to the output bucket.",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("listen", help="Process bucket notifications until stopped (default).")

    upload = commands.add_parser("upload", help="Upload a local file.")
    upload.add_argument("path", type=Path)
    target = upload.add_mutually_exclusive_group()
    target.add_argument("--bucket", help="Target bucket (defaults to the input bucket).")
    target.add_argument(
        "--versioned",
        action="store_true",
        help="Upload to the versioning bucket, keeping earlier versions of the key.",
    )
    upload.add_argument("--key", help="Object key (defaults to the file name).")

    download = commands.add_parser("download", help="Download an object to a local file.")
    download.add_argument("bucket")
    download.add_argument("key")
    download.add_argument("dest", type=Path)

    listing = commands.add_parser("list", help="List objects in buckets.")
    listing.add_argument(
        "buckets",
        nargs="*",
        help="Buckets to list (defaults to input, output and versioning).",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "listen"

    if command == "listen":
        return _listen()

    configure_logging()
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 1
    store = create_store(settings)

    if command == "upload":
        return _upload(
            store,
            settings,
            path=args.path,
            bucket=settings.versioning_bucket if args.versioned else args.bucket,
            key=args.key,
        )
    if command == "download":
        return _download(store, bucket=args.bucket, key=args.key, dest=args.dest)
    buckets = args.buckets or [settings.input_bucket, settings.output_bucket, settings.versioning_bucket]
    return _list(store, buckets, versioned={settings.versioning_bucket})


def _listen() -> int:
    try:
        asyncio.run(run())
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 1
    except NotificationStreamError as exc:
        LOGGER.error("%s", exc)
        return 1
    except (BotoCoreError, ClientError) as exc:
        LOGGER.error("object store unavailable", extra={"error": str(exc)})
        return 1
    return 0


def _upload(
    store: S3ObjectStore,
    settings: Settings,
    *,
    path: Path,
    bucket: str | None,
    key: str | None,
) -> int:
    bucket = bucket or settings.input_bucket
    key = key or path.name
    content_type, _ = mimetypes.guess_type(path.name)
    try:
        if settings.ensure_buckets:
            store.ensure_bucket(bucket)
            if bucket == settings.versioning_bucket:
                store.enable_versioning(bucket)
        result = store.upload(bucket, key, path, content_type=content_type)
    except _STORE_ERRORS as exc:
        LOGGER.error("Failed to upload file", extra={"path": str(path), "error": str(exc)})
        return 1

    LOGGER.info("Uploaded (key = %s, size = %d)", result.key, result.size)
    return 0


def _download(store: S3ObjectStore, *, bucket: str, key: str, dest: Path) -> int:
    try:
        store.download(bucket, key, dest)
    except _STORE_ERRORS as exc:
        LOGGER.error("Cannot download object.", extra={"bucket": bucket, "key": key, "error": str(exc)})
        return 1

    LOGGER.info("Downloaded %s/%s to %s", bucket, key, dest)
    return 0


def _list(store: S3ObjectStore, buckets: list[str], *, versioned: set[str]) -> int:
    status = 0
    for bucket in buckets:
        print(f"------ {bucket} ------")
        try:
            if bucket in versioned:
                objects = store.list_object_versions(bucket)
            else:
                objects = store.list_objects(bucket)
        except _STORE_ERRORS as exc:
            LOGGER.error("Cannot list bucket", extra={"bucket": bucket, "error": str(exc)})
            status = 1
            continue
        for item in objects:
            modified = item.last_modified.isoformat() if item.last_modified else "-"
            row = f"{item.key:<20} | {modified:<30} | {item.size}"
            if bucket in versioned:
                row += f" | {item.version_id or '-'}"
            print(row)
        print()
    return status


if __name__ == "__main__":
    raise SystemExit(main())
