"""
Image loading for the transformation pipeline.

Camera frames and uploads arrive as encoded bytes. They are decoded to RGBA
and downscaled by the longest edge so the neighbourhood filters stay within
a predictable time budget on kiosk hardware.
"""

from __future__ import annotations

from io import BytesIO
from typing import Tuple

from PIL import Image, ImageOps

from .pixel_buffer import PixelBuffer


def _compute_resize_dims(width: int, height: int, max_long_edge: int) -> Tuple[int, int]:
    """Preserve aspect ratio while constraining the longest edge."""
    if max_long_edge <= 0:
        return width, height
    long_edge = max(width, height)
    if long_edge <= max_long_edge:
        return width, height
    scale = max_long_edge / long_edge
    return max(1, int(width * scale)), max(1, int(height * scale))


def decode_image(image_bytes: bytes) -> Image.Image:
    """
    Decode bytes into an RGBA PIL image, honouring EXIF orientation.

    Raises:
        ValueError: if the bytes are not a readable image.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc
    # Phone uploads are often rotated via EXIF only.
    image = ImageOps.exif_transpose(image)
    return image.convert("RGBA")


def load_pixel_buffer_from_bytes(image_bytes: bytes, max_long_edge: int = 0) -> PixelBuffer:
    """Decode, optionally downscale, and wrap as a `PixelBuffer`."""
    image = decode_image(image_bytes)
    orig_w, orig_h = image.size
    new_w, new_h = _compute_resize_dims(orig_w, orig_h, max_long_edge)
    if (new_w, new_h) != (orig_w, orig_h):
        image = image.resize((new_w, new_h), Image.BILINEAR)
    return PixelBuffer.from_image(image)
