from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Iterable, Sequence
from typing import Protocol

from image_inverter.models import NotificationEvent, ObjectRecord
from image_inverter.notifications import NotificationStreamError

LOGGER = logging.getLogger(__name__)


class EventStream(Iterable[NotificationEvent], Protocol):
    def close(self) -> None:
        ...


class NotificationSource(Protocol):
    def listen(
        self,
        bucket: str,
        events: Sequence[str],
        *,
        prefix: str = "",
        suffix: str = "",
    ) -> EventStream:
        ...


class RecordProcessor(Protocol):
    def process(self, record: ObjectRecord) -> bool:
        ...


class NotificationConsumer:
    """Subscribes to bucket notifications and processes records one at a time.

    Runs until ``stop_event`` is set. Per-event and per-record failures are
    logged and never end the loop; only exhausting the subscription retries
    does.
    """

    def __init__(
        self,
        *,
        source: NotificationSource,
        processor: RecordProcessor,
        bucket: str,
        events: Sequence[str] = ("s3:ObjectCreated:*",),
        prefix: str = "",
        suffix: str = "",
        retry_base_delay_ms: int = 500,
        retry_max_delay_ms: int = 30000,
        retry_max_attempts: int = 10,
    ) -> None:
        if retry_max_attempts <= 0:
            raise ValueError("retry_max_attempts must be > 0")

        self._source = source
        self._processor = processor
        self._bucket = bucket
        self._events = tuple(events)
        self._prefix = prefix
        self._suffix = suffix
        self._retry_base_s = retry_base_delay_ms / 1000.0
        self._retry_max_s = retry_max_delay_ms / 1000.0
        self._retry_max_attempts = retry_max_attempts

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        stop_event = stop_event or asyncio.Event()
        attempt = 1

        while not stop_event.is_set():
            try:
                stream = await asyncio.to_thread(
                    self._source.listen,
                    self._bucket,
                    self._events,
                    prefix=self._prefix,
                    suffix=self._suffix,
                )
            except Exception as exc:
                if attempt >= self._retry_max_attempts:
                    LOGGER.error(
                        "cannot subscribe to bucket notifications",
                        extra={"bucket": self._bucket, "attempt": attempt, "error": str(exc)},
                    )
                    raise NotificationStreamError(
                        f"giving up on bucket {self._bucket} after {attempt} attempts"
                    ) from exc

                LOGGER.warning(
                    "subscription failed, retrying",
                    extra={"bucket": self._bucket, "attempt": attempt, "error": str(exc)},
                )
                await _wait(stop_event, self._retry_delay(attempt - 1))
                attempt += 1
                continue

            attempt = 1
            LOGGER.info("Listening for notifications on %s", self._bucket)
            try:
                await self._consume(stream, stop_event)
            finally:
                stream.close()

            if not stop_event.is_set():
                LOGGER.warning("notification stream ended, resubscribing", extra={"bucket": self._bucket})
                await _wait(stop_event, self._retry_delay(0))

        LOGGER.info("Stopped listening on %s", self._bucket)

    async def _consume(self, stream: EventStream, stop_event: asyncio.Event) -> None:
        events = iter(stream)
        stop_task = asyncio.create_task(stop_event.wait(), name="consumer_stop")

        try:
            while True:
                read_task = asyncio.create_task(
                    asyncio.to_thread(next, events, None),
                    name="notification_read",
                )
                done, _ = await asyncio.wait(
                    {read_task, stop_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if read_task not in done:
                    # Closing the stream unblocks the reader thread.
                    stream.close()
                    await asyncio.gather(read_task, return_exceptions=True)
                    return

                try:
                    event = read_task.result()
                except Exception as exc:
                    LOGGER.error(
                        "notification stream failed",
                        extra={"bucket": self._bucket, "error": str(exc)},
                    )
                    return
                if event is None:
                    return

                await self._handle_event(event, stop_event)
                if stop_event.is_set():
                    return
        finally:
            stop_task.cancel()
            await asyncio.gather(stop_task, return_exceptions=True)

    async def _handle_event(self, event: NotificationEvent, stop_event: asyncio.Event) -> None:
        if event.stream_error is not None:
            LOGGER.error("%s", event.stream_error, extra={"bucket": self._bucket})

        for index, record in enumerate(event.records):
            if stop_event.is_set():
                LOGGER.warning(
                    "stop requested, skipping remaining records",
                    extra={"skipped": len(event.records) - index},
                )
                return
            await self._handle_record(record)

    async def _handle_record(self, record: ObjectRecord) -> None:
        try:
            await asyncio.to_thread(self._processor.process, record)
        except Exception:
            LOGGER.exception("unexpected failure processing object", extra={"key": record.key})

    def _retry_delay(self, attempt: int) -> float:
        exponential = min(self._retry_max_s, self._retry_base_s * (2**attempt))
        return exponential * random.uniform(0.8, 1.2)


async def _wait(stop_event: asyncio.Event, delay: float) -> None:
    """Sleep for ``delay`` seconds, waking early when a stop is requested."""

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass
