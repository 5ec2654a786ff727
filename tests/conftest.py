"""
This file configures pytest.

Run the suite from the repository root:

pip install -e ".[test]"
pytest -q tests

Integration tests need a running MinIO server and RUN_INTEGRATION_TESTS=1.
"""

from __future__ import annotations

import io
import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from PIL import Image

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"

src_str = str(SRC_ROOT)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from image_inverter.diagnostics import ColorFormatter  # noqa: E402


def encode_image(
    fmt: str,
    *,
    size: tuple[int, int] = (8, 8),
    color: tuple[int, ...] = (200, 40, 10),
    mode: str = "RGB",
) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def credentials_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MINIO_ACCESSKEY", "minioadmin")
    monkeypatch.setenv("MINIO_SECRETKEY", "minioadmin")


@pytest.fixture()
def restore_root_logging() -> Iterator[None]:
    """Drop the handler configure_logging installs on the root logger."""

    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, ColorFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
