from __future__ import annotations

import asyncio
import logging
import signal

from botocore.exceptions import BotoCoreError, ClientError

from image_inverter.consumer import NotificationConsumer
from image_inverter.diagnostics import configure_logging
from image_inverter.notifications import BucketNotificationListener
from image_inverter.pipeline import TransformPipeline
from image_inverter.settings import Settings, load_settings
from image_inverter.staging import StagingArea
from image_inverter.storage import S3ObjectStore, create_s3_client

LOGGER = logging.getLogger(__name__)

_BOOTSTRAP_ERRORS = (BotoCoreError, ClientError)


def build_consumer(settings: Settings, store: S3ObjectStore) -> NotificationConsumer:
    pipeline = TransformPipeline(
        store=store,
        staging=StagingArea(directory=settings.staging_dir, prefix=settings.staging_prefix),
        input_bucket=settings.input_bucket,
        output_bucket=settings.output_bucket,
        result_suffix=settings.result_suffix,
    )
    return NotificationConsumer(
        source=BucketNotificationListener.from_settings(settings),
        processor=pipeline,
        bucket=settings.input_bucket,
        events=settings.event_kinds,
        prefix=settings.notification_prefix,
        suffix=settings.notification_suffix,
        retry_base_delay_ms=settings.listen_retry_base_delay_ms,
        retry_max_delay_ms=settings.listen_retry_max_delay_ms,
        retry_max_attempts=settings.listen_retry_max_attempts,
    )


def create_store(settings: Settings) -> S3ObjectStore:
    return S3ObjectStore(client=create_s3_client(settings), region=settings.region)


def prepare_buckets(store: S3ObjectStore, settings: Settings) -> bool:
    """Create missing buckets and enable versioning on the versioning bucket.

    Each failed step is logged and skipped. Returns False when any step failed.
    """

    failed: set[str] = set()
    for bucket in (settings.input_bucket, settings.output_bucket, settings.versioning_bucket):
        try:
            store.ensure_bucket(bucket)
        except _BOOTSTRAP_ERRORS as exc:
            LOGGER.error("cannot prepare bucket", extra={"bucket": bucket, "error": str(exc)})
            failed.add(bucket)

    if settings.versioning_bucket not in failed:
        try:
            store.enable_versioning(settings.versioning_bucket)
        except _BOOTSTRAP_ERRORS as exc:
            LOGGER.error(
                "cannot enable versioning",
                extra={"bucket": settings.versioning_bucket, "error": str(exc)},
            )
            failed.add(settings.versioning_bucket)

    return not failed


async def run(stop_event: asyncio.Event | None = None) -> None:
    configure_logging()
    settings = load_settings()
    stop_event = stop_event or asyncio.Event()
    _install_signal_handlers(stop_event)

    LOGGER.info(
        "Starting bucket listener",
        extra={
            "endpoint": settings.endpoint_url,
            "input_bucket": settings.input_bucket,
            "output_bucket": settings.output_bucket,
        },
    )

    store = create_store(settings)
    if settings.ensure_buckets:
        # Logs and continues on failure; subscription retries handle an unreachable store.
        await asyncio.to_thread(prepare_buckets, store, settings)

    consumer = build_consumer(settings, store)
    await consumer.run(stop_event)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread.
            LOGGER.debug("signal handler not installed", extra={"signal": signum.name})
