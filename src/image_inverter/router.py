from __future__ import annotations

from pydantic import BaseModel, ConfigDict

UNSUPPORTED_MESSAGE = "Not a JPEG or PNG file"


class ImageFormat(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    extension: str
    content_type: str
    pillow_format: str


SUPPORTED_FORMATS: dict[str, ImageFormat] = {
    "image/jpeg": ImageFormat(
        name="jpg",
        extension=".jpg",
        content_type="image/jpeg",
        pillow_format="JPEG",
    ),
    "image/png": ImageFormat(
        name="png",
        extension=".png",
        content_type="image/png",
        pillow_format="PNG",
    ),
}


def classify(content_type: str | None) -> ImageFormat | None:
    """Map a declared MIME type to a supported format, or None when unsupported."""

    if not content_type:
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()
    return SUPPORTED_FORMATS.get(media_type)
