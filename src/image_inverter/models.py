from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict


class ObjectRecord(BaseModel):
    """One created object announced by the bucket notification stream."""

    model_config = ConfigDict(frozen=True)

    key: str
    content_type: str = ""


class NotificationEvent(BaseModel):
    """Single message from the notification stream.

    A message can carry a stream error, records, or both.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    stream_error: Exception | None = None
    records: tuple[ObjectRecord, ...] = ()


class StagedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    purpose: Literal["source", "result"]


class UploadResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    size: int


class ObjectSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    size: int
    last_modified: datetime | None = None
    version_id: str | None = None
