from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Sequence
from typing import Any
from urllib.parse import quote, unquote_plus, urlencode

import urllib3
from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from pydantic import BaseModel, Field, ValidationError

from image_inverter.models import NotificationEvent, ObjectRecord
from image_inverter.settings import Settings

LOGGER = logging.getLogger(__name__)

_ERROR_BODY_LIMIT = 512


class NotificationStreamError(RuntimeError):
    """Raised when a bucket notification subscription cannot be established."""


class _S3Object(BaseModel):
    key: str
    content_type: str | None = Field(default=None, alias="contentType")


class _S3Entity(BaseModel):
    object_: _S3Object = Field(alias="object")


class _NotificationRecord(BaseModel):
    s3: _S3Entity


class _NotificationMessage(BaseModel):
    records: list[_NotificationRecord] | None = Field(default=None, alias="Records")


def parse_notification(line: bytes | str) -> NotificationEvent:
    """Turn one JSON line of the listen stream into a NotificationEvent.

    Malformed lines become events carrying ``stream_error`` and no records.
    """

    try:
        payload = json.loads(line)
    except ValueError as exc:
        return NotificationEvent(stream_error=exc)

    try:
        message = _NotificationMessage.model_validate(payload)
    except ValidationError as exc:
        return NotificationEvent(stream_error=exc)

    records = tuple(
        ObjectRecord(
            # Object keys are URL-encoded in notification payloads.
            key=unquote_plus(record.s3.object_.key),
            content_type=record.s3.object_.content_type or "",
        )
        for record in message.records or ()
    )
    return NotificationEvent(records=records)


class NotificationStream:
    """Open subscription; iterating blocks until the next notification arrives."""

    def __init__(self, response: Any) -> None:
        self._response = response
        self._closed = False

    def __iter__(self) -> Iterator[NotificationEvent]:
        try:
            for raw_line in self._response:
                line = raw_line.strip()
                if not line:
                    # keep-alive padding
                    continue
                yield parse_notification(line)
        except (urllib3.exceptions.HTTPError, OSError) as exc:
            if self._closed:
                return
            yield NotificationEvent(stream_error=exc)

    def __enter__(self) -> NotificationStream:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # shutdown() interrupts a read blocked in another thread; close() alone does not.
        self._response.shutdown()
        self._response.close()


class BucketNotificationListener:
    """Client for the MinIO ListenBucketNotification API."""

    def __init__(
        self,
        *,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        connect_timeout_s: float = 5.0,
        pool: urllib3.PoolManager | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url.rstrip("/")
        self._credentials = Credentials(access_key, secret_key)
        self._region = region
        self._connect_timeout_s = connect_timeout_s
        self._pool = pool or urllib3.PoolManager()

    @classmethod
    def from_settings(cls, settings: Settings) -> BucketNotificationListener:
        return cls(
            endpoint_url=settings.endpoint_url,
            access_key=settings.access_key,
            secret_key=settings.secret_key,
            region=settings.region,
            connect_timeout_s=settings.s3_connect_timeout_s,
        )

    def build_request(
        self,
        bucket: str,
        events: Sequence[str],
        *,
        prefix: str = "",
        suffix: str = "",
    ) -> AWSRequest:
        params = [("events", event) for event in events]
        params += [("prefix", prefix), ("suffix", suffix)]
        query = urlencode(params, quote_via=quote, safe="")
        request = AWSRequest(
            method="GET",
            url=f"{self._endpoint_url}/{quote(bucket, safe='')}?{query}",
        )
        S3SigV4Auth(self._credentials, "s3", self._region).add_auth(request)
        return request

    def listen(
        self,
        bucket: str,
        events: Sequence[str],
        *,
        prefix: str = "",
        suffix: str = "",
    ) -> NotificationStream:
        request = self.build_request(bucket, events, prefix=prefix, suffix=suffix)
        try:
            response = self._pool.request(
                "GET",
                request.url,
                headers=dict(request.headers.items()),
                preload_content=False,
                retries=False,
                # No read timeout: the stream stays silent between notifications.
                timeout=urllib3.Timeout(connect=self._connect_timeout_s, read=None),
            )
        except urllib3.exceptions.HTTPError as exc:
            raise NotificationStreamError(
                f"cannot connect to {self._endpoint_url}: {exc}"
            ) from exc

        if response.status != 200:
            body = response.read(_ERROR_BODY_LIMIT)
            response.close()
            raise NotificationStreamError(
                f"listening on bucket {bucket} failed with HTTP {response.status}: "
                f"{body.decode('utf-8', errors='replace')}"
            )

        LOGGER.debug("notification stream opened", extra={"bucket": bucket, "events": ",".join(events)})
        return NotificationStream(response)
