from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from typing import Any

import pytest
import urllib3
from pydantic import ValidationError

from image_inverter.notifications import (
    BucketNotificationListener,
    NotificationStream,
    NotificationStreamError,
    parse_notification,
)


def _minio_message(*objects: dict[str, Any]) -> bytes:
    return json.dumps(
        {
            "EventName": "s3:ObjectCreated:Put",
            "Key": "input-images/cat.jpg",
            "Records": [
                {
                    "eventVersion": "2.0",
                    "eventSource": "minio:s3",
                    "eventName": "s3:ObjectCreated:Put",
                    "s3": {
                        "bucket": {"name": "input-images"},
                        "object": obj,
                    },
                }
                for obj in objects
            ],
        }
    ).encode("utf-8")


class _FakeResponse:
    def __init__(
        self,
        lines: Sequence[bytes] = (),
        *,
        status: int = 200,
        body: bytes = b"",
        error: Exception | None = None,
    ) -> None:
        self.status = status
        self._lines = list(lines)
        self._body = body
        self._error = error
        self.shutdown_called = False
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        yield from self._lines
        if self._error is not None:
            raise self._error

    def read(self, amt: int | None = None) -> bytes:
        return self._body[:amt]

    def shutdown(self) -> None:
        self.shutdown_called = True

    def close(self) -> None:
        self.closed = True


class _FakePool:
    def __init__(self, outcome: _FakeResponse | Exception) -> None:
        self._outcome = outcome
        self.requests: list[tuple[str, str, dict[str, Any]]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append((method, url, kwargs))
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


def _listener(pool: _FakePool) -> BucketNotificationListener:
    return BucketNotificationListener(
        endpoint_url="http://localhost:9000/",
        access_key="minioadmin",
        secret_key="minioadmin",
        pool=pool,  # type: ignore[arg-type]
    )


def test_records_are_extracted_in_order_with_decoded_keys() -> None:
    event = parse_notification(
        _minio_message(
            {"key": "my+cat%282%29.jpg", "size": 10, "contentType": "image/jpeg"},
            {"key": "logo.png", "size": 20, "contentType": "image/png"},
        )
    )

    assert event.stream_error is None
    assert [(r.key, r.content_type) for r in event.records] == [
        ("my cat(2).jpg", "image/jpeg"),
        ("logo.png", "image/png"),
    ]


def test_missing_content_type_becomes_empty_string() -> None:
    event = parse_notification(_minio_message({"key": "blob"}))

    assert event.records[0].content_type == ""


def test_invalid_json_becomes_stream_error() -> None:
    event = parse_notification(b"{not json")

    assert isinstance(event.stream_error, ValueError)
    assert event.records == ()


def test_unexpected_shape_becomes_stream_error() -> None:
    event = parse_notification(b'{"Records": [{"s3": {}}]}')

    assert isinstance(event.stream_error, ValidationError)
    assert event.records == ()


def test_null_records_is_an_empty_event() -> None:
    event = parse_notification(b'{"Records": null}')

    assert event.stream_error is None
    assert event.records == ()


def test_stream_skips_keepalive_padding() -> None:
    response = _FakeResponse(
        [b" \n", _minio_message({"key": "a.jpg", "contentType": "image/jpeg"}) + b"\n", b"\n"]
    )

    events = list(NotificationStream(response))

    assert len(events) == 1
    assert events[0].records[0].key == "a.jpg"


def test_transport_error_is_reported_once_then_stream_ends() -> None:
    response = _FakeResponse(
        [_minio_message({"key": "a.jpg", "contentType": "image/jpeg"})],
        error=urllib3.exceptions.ProtocolError("connection broken"),
    )

    events = list(NotificationStream(response))

    assert len(events) == 2
    assert isinstance(events[1].stream_error, urllib3.exceptions.ProtocolError)
    assert events[1].records == ()


def test_close_shuts_down_and_suppresses_late_errors() -> None:
    response = _FakeResponse(error=OSError("socket closed"))
    stream = NotificationStream(response)

    stream.close()
    stream.close()

    assert response.shutdown_called and response.closed
    assert stream.closed
    assert list(stream) == []


def test_request_is_signed_and_carries_event_filter() -> None:
    listener = _listener(_FakePool(_FakeResponse()))

    request = listener.build_request("input-images", ["s3:ObjectCreated:*"])

    assert request.url == (
        "http://localhost:9000/input-images?events=s3%3AObjectCreated%3A%2A&prefix=&suffix="
    )
    assert request.headers["Authorization"].startswith("AWS4-HMAC-SHA256 Credential=minioadmin/")
    assert "X-Amz-Date" in request.headers


def test_listen_streams_without_read_timeout() -> None:
    pool = _FakePool(_FakeResponse([_minio_message({"key": "a.jpg", "contentType": "image/jpeg"})]))

    stream = _listener(pool).listen("input-images", ["s3:ObjectCreated:*"])

    method, url, kwargs = pool.requests[0]
    assert method == "GET"
    assert url.startswith("http://localhost:9000/input-images?events=")
    assert kwargs["preload_content"] is False
    assert kwargs["timeout"].read_timeout is None
    assert "Authorization" in kwargs["headers"]
    assert [e.records[0].key for e in stream] == ["a.jpg"]


def test_listen_rejects_non_200_responses() -> None:
    response = _FakeResponse(status=403, body=b"<Error><Code>AccessDenied</Code></Error>")

    with pytest.raises(NotificationStreamError, match="HTTP 403.*AccessDenied"):
        _listener(_FakePool(response)).listen("input-images", ["s3:ObjectCreated:*"])

    assert response.closed


def test_listen_wraps_connection_errors() -> None:
    pool = _FakePool(urllib3.exceptions.NewConnectionError(None, "connection refused"))

    with pytest.raises(NotificationStreamError, match="cannot connect"):
        _listener(pool).listen("input-images", ["s3:ObjectCreated:*"])
