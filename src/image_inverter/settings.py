from __future__ import annotations

from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CREDENTIAL_ENV_VARS = ("MINIO_ACCESSKEY", "MINIO_SECRETKEY")


class ConfigurationError(RuntimeError):
    """Raised when the service cannot start with the current environment."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False)

    access_key: str = Field(alias="MINIO_ACCESSKEY")
    secret_key: str = Field(alias="MINIO_SECRETKEY")
    endpoint: str = Field(default="localhost:9000", alias="MINIO_ENDPOINT")
    secure: bool = Field(default=False, alias="MINIO_SECURE")
    region: str = Field(default="us-east-1", alias="MINIO_REGION")

    input_bucket: str = Field(default="input-images", alias="INPUT_BUCKET")
    output_bucket: str = Field(default="inverted-images", alias="OUTPUT_BUCKET")
    versioning_bucket: str = Field(default="versioning-demo", alias="VERSIONING_BUCKET")
    notification_events: str = Field(default="s3:ObjectCreated:*", alias="NOTIFICATION_EVENTS")
    notification_prefix: str = Field(default="", alias="NOTIFICATION_PREFIX")
    notification_suffix: str = Field(default="", alias="NOTIFICATION_SUFFIX")

    staging_dir: Path | None = Field(default=None, alias="STAGING_DIR")
    staging_prefix: str = Field(default="image_listener_temp_", alias="STAGING_PREFIX")
    result_suffix: str = Field(default="_inverted", alias="RESULT_SUFFIX")

    s3_connect_timeout_s: float = Field(default=5.0, alias="S3_CONNECT_TIMEOUT_S")
    s3_read_timeout_s: float = Field(default=60.0, alias="S3_READ_TIMEOUT_S")
    s3_max_attempts: int = Field(default=3, alias="S3_MAX_ATTEMPTS")

    listen_retry_base_delay_ms: int = Field(default=500, alias="LISTEN_RETRY_BASE_DELAY_MS")
    listen_retry_max_delay_ms: int = Field(default=30000, alias="LISTEN_RETRY_MAX_DELAY_MS")
    listen_retry_max_attempts: int = Field(default=10, alias="LISTEN_RETRY_MAX_ATTEMPTS")

    ensure_buckets: bool = Field(default=True, alias="ENSURE_BUCKETS")

    @field_validator("access_key", "secret_key")
    @classmethod
    def _validate_credential(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("credential must not be empty")
        return value

    @field_validator("input_bucket", "output_bucket", "versioning_bucket", "endpoint")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("notification_events")
    @classmethod
    def _validate_events(cls, value: str) -> str:
        if not _split_csv(value):
            raise ValueError("NOTIFICATION_EVENTS must name at least one event kind")
        return value

    @field_validator("s3_connect_timeout_s", "s3_read_timeout_s")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value

    @field_validator("s3_max_attempts", "listen_retry_max_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("attempts must be >= 1")
        return value

    @field_validator("listen_retry_base_delay_ms", "listen_retry_max_delay_ms")
    @classmethod
    def _validate_delay(cls, value: int) -> int:
        if value < 0:
            raise ValueError("delays must be >= 0")
        return value

    @property
    def endpoint_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.endpoint}"

    @property
    def event_kinds(self) -> tuple[str, ...]:
        return _split_csv(self.notification_events)


def load_settings() -> Settings:
    """Read settings from the environment.

    Missing credentials are reported with the fixed user-facing message; any
    other invalid value names the variables at fault.
    """

    try:
        return Settings()
    except ValidationError as exc:
        fields = [str(error["loc"][0]) for error in exc.errors() if error["loc"]]
        if any(field.upper() in CREDENTIAL_ENV_VARS for field in fields):
            raise ConfigurationError("please set MINIO_ACCESSKEY and MINIO_SECRETKEY") from exc
        raise ConfigurationError(f"invalid configuration: {', '.join(fields)}") from exc


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())
