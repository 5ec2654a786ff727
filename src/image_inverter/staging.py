from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Literal

from image_inverter.models import StagedFile

LOGGER = logging.getLogger(__name__)

Purpose = Literal["source", "result"]


class StagingIOError(OSError):
    """Raised when a staging path cannot be allocated."""


class StagingArea:
    """Allocates uniquely named local files and removes them again.

    Every path handed out stays in ``live_paths`` until ``release`` is called
    for it, which makes leaks observable.
    """

    def __init__(self, *, directory: Path | None = None, prefix: str = "image_listener_temp_") -> None:
        self._directory = Path(directory) if directory is not None else Path(tempfile.gettempdir())
        self._prefix = prefix
        self._live: set[Path] = set()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def live_paths(self) -> frozenset[Path]:
        return frozenset(self._live)

    def create(self, purpose: Purpose = "source", *, suffix: str = "") -> StagedFile:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=self._prefix, suffix=suffix, dir=self._directory)
            os.close(fd)
        except OSError as exc:
            raise StagingIOError(f"cannot create staging file in {self._directory}: {exc}") from exc
        return self._track(Path(name), purpose)

    def create_derived(self, base: StagedFile, suffix: str, purpose: Purpose = "result") -> StagedFile:
        """Create ``<base path><suffix>``; unique because the base path is."""

        path = base.path.with_name(base.path.name + suffix)
        try:
            with open(path, "x"):
                pass
        except OSError as exc:
            raise StagingIOError(f"cannot create staging file {path}: {exc}") from exc
        return self._track(path, purpose)

    def release(self, staged: StagedFile) -> None:
        self._live.discard(staged.path)
        try:
            staged.path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning(
                "cannot remove staging file",
                extra={"path": str(staged.path), "error": str(exc)},
            )

    @contextmanager
    def staged(self, purpose: Purpose = "source", *, suffix: str = "") -> Iterator[StagedFile]:
        staged = self.create(purpose, suffix=suffix)
        try:
            yield staged
        finally:
            self.release(staged)

    def _track(self, path: Path, purpose: Purpose) -> StagedFile:
        self._live.add(path)
        LOGGER.debug("staging file created", extra={"path": str(path), "purpose": purpose})
        return StagedFile(path=path, purpose=purpose)
