from __future__ import annotations

import logging
from contextlib import ExitStack

from PIL import Image

from image_inverter.models import ObjectRecord, StagedFile
from image_inverter.router import UNSUPPORTED_MESSAGE, ImageFormat, classify
from image_inverter.staging import StagingArea, StagingIOError
from image_inverter.storage import ObjectStore
from image_inverter.transform import Transform, invert

LOGGER = logging.getLogger(__name__)


class TransformPipeline:
    """Download, transform and republish one object.

    ``process`` never raises: every failure is logged and ends the processing
    of that record only. Staging files are released before ``process``
    returns, whichever step failed.
    """

    def __init__(
        self,
        *,
        store: ObjectStore,
        staging: StagingArea,
        input_bucket: str,
        output_bucket: str,
        transform: Transform = invert,
        result_suffix: str = "_inverted",
    ) -> None:
        self._store = store
        self._staging = staging
        self._input_bucket = input_bucket
        self._output_bucket = output_bucket
        self._transform = transform
        self._result_suffix = result_suffix

    def process(self, record: ObjectRecord) -> bool:
        """Return True when the transformed object was uploaded."""

        image_format = classify(record.content_type)
        if image_format is None:
            LOGGER.error(
                UNSUPPORTED_MESSAGE,
                extra={"key": record.key, "content_type": record.content_type},
            )
            return False

        try:
            with ExitStack() as cleanup:
                return self._process_staged(record, image_format, cleanup)
        except Exception:
            LOGGER.exception("unexpected failure processing object", extra={"key": record.key})
            return False

    def _process_staged(
        self,
        record: ObjectRecord,
        image_format: ImageFormat,
        cleanup: ExitStack,
    ) -> bool:
        source = self._allocate(record, cleanup)
        if source is None:
            return False
        result = self._allocate(
            record,
            cleanup,
            base=source,
            suffix=self._result_suffix + image_format.extension,
        )
        if result is None:
            return False

        try:
            self._store.download(self._input_bucket, record.key, source.path)
        except Exception as exc:
            LOGGER.error(
                "cannot download object",
                extra={"bucket": self._input_bucket, "key": record.key, "error": str(exc)},
            )
            return False

        try:
            image = Image.open(source.path)
            image.load()
        except Exception as exc:
            LOGGER.error(
                "cannot open temporary file",
                extra={"key": record.key, "path": str(source.path), "error": str(exc)},
            )
            return False

        with image:
            transformed = self._transform(image)
            try:
                transformed.save(result.path, format=image_format.pillow_format)
            except Exception as exc:
                LOGGER.error(
                    "cannot save image",
                    extra={"key": record.key, "path": str(result.path), "error": str(exc)},
                )
                return False

        try:
            uploaded = self._store.upload(
                self._output_bucket,
                record.key,
                result.path,
                content_type=image_format.content_type,
            )
        except Exception as exc:
            LOGGER.error(
                "CANNOT UPLOAD OBJECT",
                extra={"bucket": self._output_bucket, "key": record.key, "error": str(exc)},
            )
            return False

        LOGGER.info("Uploaded %s (size: %d)", uploaded.key, uploaded.size)
        return True

    def _allocate(
        self,
        record: ObjectRecord,
        cleanup: ExitStack,
        *,
        base: StagedFile | None = None,
        suffix: str = "",
    ) -> StagedFile | None:
        try:
            if base is None:
                staged = self._staging.create("source", suffix=suffix)
            else:
                staged = self._staging.create_derived(base, suffix, "result")
        except StagingIOError as exc:
            LOGGER.error(
                "cannot create temporary file",
                extra={"key": record.key, "error": str(exc)},
            )
            return None

        cleanup.callback(self._staging.release, staged)
        return staged
