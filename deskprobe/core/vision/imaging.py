from __future__ import annotations

import base64
import io
import re

from PIL import Image

# base64 prefixes of the magic bytes of common image formats
_MAGIC_PREFIXES = (
    ("iVBORw0KGgo", "image/png"),
    ("/9j/", "image/jpeg"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
)

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

_DATA_URI_PREFIX = re.compile(r"^data:image/\w+;base64,")

# Gap between the halves of a side-by-side image
SEPARATOR_PX = 16


def strip_data_uri(image_b64: str) -> str:
    return _DATA_URI_PREFIX.sub("", image_b64)


def media_type_of(image_b64: str) -> str:
    """Guess the media type of a base64 image, defaulting to JPEG."""
    for prefix, media_type in _MAGIC_PREFIXES:
        if image_b64.startswith(prefix):
            return media_type
    return "image/jpeg"


def extension_for(image_b64: str) -> str:
    return _EXTENSIONS[media_type_of(strip_data_uri(image_b64))]


def image_to_base64(image: Image.Image, quality: int = 75) -> str:
    """Encode a PIL image as a base64 JPEG."""
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def side_by_side(left_b64: str, right_b64: str, quality: int = 75) -> str:
    """
    Paste two base64 images next to each other on a white canvas.

    The left image keeps its pixel coordinates; the right one starts
    ``SEPARATOR_PX`` pixels after the left image's width.
    """
    with Image.open(io.BytesIO(base64.b64decode(strip_data_uri(left_b64)))) as left, Image.open(
        io.BytesIO(base64.b64decode(strip_data_uri(right_b64)))
    ) as right:
        canvas = Image.new(
            "RGB",
            (left.width + SEPARATOR_PX + right.width, max(left.height, right.height)),
            "white",
        )
        canvas.paste(left.convert("RGB"), (0, 0))
        canvas.paste(right.convert("RGB"), (left.width + SEPARATOR_PX, 0))
    return image_to_base64(canvas, quality=quality)
