from __future__ import annotations

from pathlib import Path

import pytest

from image_inverter.settings import ConfigurationError, Settings, load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MINIO_ACCESSKEY", "MINIO_SECRETKEY", "MINIO_SECURE", "STAGING_DIR"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_fixed_buckets(credentials_env: None) -> None:
    settings = load_settings()

    assert settings.input_bucket == "input-images"
    assert settings.output_bucket == "inverted-images"
    assert settings.versioning_bucket == "versioning-demo"
    assert settings.endpoint_url == "http://localhost:9000"
    assert settings.event_kinds == ("s3:ObjectCreated:*",)
    assert settings.staging_dir is None


def test_missing_credentials_fail_with_user_facing_message(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MINIO_ACCESSKEY", "minioadmin")

    with pytest.raises(ConfigurationError, match="please set MINIO_ACCESSKEY and MINIO_SECRETKEY"):
        load_settings()


def test_blank_credentials_are_treated_as_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MINIO_ACCESSKEY", "   ")
    monkeypatch.setenv("MINIO_SECRETKEY", "secret")

    with pytest.raises(ConfigurationError, match="please set MINIO_ACCESSKEY"):
        load_settings()


def test_invalid_retry_attempts_name_the_variable(
    credentials_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LISTEN_RETRY_MAX_ATTEMPTS", "0")

    with pytest.raises(ConfigurationError) as excinfo:
        load_settings()

    assert "LISTEN_RETRY_MAX_ATTEMPTS" in str(excinfo.value).upper()


def test_event_kinds_are_split_on_commas(
    credentials_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("NOTIFICATION_EVENTS", "s3:ObjectCreated:Put, s3:ObjectCreated:Copy,")

    settings = Settings()

    assert settings.event_kinds == ("s3:ObjectCreated:Put", "s3:ObjectCreated:Copy")


def test_secure_endpoint_and_staging_dir(
    credentials_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("MINIO_SECURE", "true")
    monkeypatch.setenv("MINIO_ENDPOINT", "minio.internal:9443")
    monkeypatch.setenv("STAGING_DIR", str(tmp_path))

    settings = Settings()

    assert settings.endpoint_url == "https://minio.internal:9443"
    assert settings.staging_dir == tmp_path
