from __future__ import annotations

from collections.abc import Callable

from PIL import Image, ImageOps

Transform = Callable[[Image.Image], Image.Image]

_ALPHA_MODES = {"RGBA", "LA", "PA"}


def invert(image: Image.Image) -> Image.Image:
    """Invert colour values, leaving any alpha channel untouched."""

    if image.mode in _ALPHA_MODES or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        alpha = rgba.getchannel("A")
        inverted = ImageOps.invert(rgba.convert("RGB"))
        inverted.putalpha(alpha)
        return inverted

    if image.mode not in ("L", "RGB"):
        image = image.convert("RGB")
    return ImageOps.invert(image)
