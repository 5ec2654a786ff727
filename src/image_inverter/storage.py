from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from image_inverter.models import ObjectSummary, UploadResult
from image_inverter.settings import Settings

LOGGER = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


class S3Client(Protocol):
    def download_file(self, Bucket: str, Key: str, Filename: str) -> None:
        ...

    def upload_file(
        self,
        Filename: str,
        Bucket: str,
        Key: str,
        ExtraArgs: dict[str, Any] | None = None,
    ) -> None:
        ...

    def head_bucket(self, *, Bucket: str) -> dict[str, Any]:
        ...

    def create_bucket(self, **kwargs: Any) -> dict[str, Any]:
        ...

    def put_bucket_versioning(self, **kwargs: Any) -> dict[str, Any]:
        ...

    def get_paginator(self, operation_name: str) -> Any:
        ...


class ObjectStore(Protocol):
    def download(self, bucket: str, key: str, path: Path) -> None:
        ...

    def upload(
        self,
        bucket: str,
        key: str,
        path: Path,
        content_type: str | None = None,
    ) -> UploadResult:
        ...


def create_s3_client(settings: Settings) -> S3Client:
    config = Config(
        signature_version="s3v4",
        s3={"addressing_style": "path"},
        connect_timeout=settings.s3_connect_timeout_s,
        read_timeout=settings.s3_read_timeout_s,
        retries={"max_attempts": settings.s3_max_attempts, "mode": "standard"},
    )
    return boto3.client(
        "s3",
        endpoint_url=settings.endpoint_url,
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        region_name=settings.region,
        config=config,
    )


class S3ObjectStore:
    """Object store backed by an S3-compatible client (MinIO in practice)."""

    def __init__(self, *, client: S3Client, region: str = "us-east-1") -> None:
        self._client = client
        self._region = region

    def download(self, bucket: str, key: str, path: Path) -> None:
        self._client.download_file(Bucket=bucket, Key=key, Filename=str(path))

    def upload(
        self,
        bucket: str,
        key: str,
        path: Path,
        content_type: str | None = None,
    ) -> UploadResult:
        extra_args = {"ContentType": content_type} if content_type else None
        self._client.upload_file(
            Filename=str(path),
            Bucket=bucket,
            Key=key,
            ExtraArgs=extra_args,
        )
        return UploadResult(key=key, size=path.stat().st_size)

    def ensure_bucket(self, bucket: str) -> bool:
        """Create the bucket if missing.

        Returns True when the bucket was created in this call, False when it already existed.
        """

        try:
            self._client.head_bucket(Bucket=bucket)
            return False
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_BUCKET_CODES:
                raise

        kwargs: dict[str, Any] = {"Bucket": bucket}
        if self._region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        self._client.create_bucket(**kwargs)
        LOGGER.info("Created bucket %s", bucket)
        return True

    def list_objects(self, bucket: str) -> list[ObjectSummary]:
        paginator = self._client.get_paginator("list_objects_v2")
        summaries: list[ObjectSummary] = []
        for page in paginator.paginate(Bucket=bucket):
            for item in page.get("Contents", []):
                summaries.append(
                    ObjectSummary(
                        key=item["Key"],
                        size=int(item.get("Size", 0)),
                        last_modified=item.get("LastModified"),
                    )
                )
        return summaries

    def enable_versioning(self, bucket: str) -> None:
        self._client.put_bucket_versioning(
            Bucket=bucket,
            VersioningConfiguration={"Status": "Enabled"},
        )
        LOGGER.info("Enabled versioning on %s", bucket)

    def list_object_versions(self, bucket: str) -> list[ObjectSummary]:
        """Every stored version of every object, delete markers excluded."""

        paginator = self._client.get_paginator("list_object_versions")
        summaries: list[ObjectSummary] = []
        for page in paginator.paginate(Bucket=bucket):
            for item in page.get("Versions", []):
                summaries.append(
                    ObjectSummary(
                        key=item["Key"],
                        size=int(item.get("Size", 0)),
                        last_modified=item.get("LastModified"),
                        version_id=item.get("VersionId"),
                    )
                )
        return summaries


def _error_code(exc: ClientError) -> str:
    error = exc.response.get("Error", {}) if isinstance(exc.response, dict) else {}
    return str(error.get("Code", ""))
