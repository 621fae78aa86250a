"""Watercolor look: soft blur followed by per-channel posterization."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import cv2
import numpy as np

from .params import WatercolorParams
from .pixel_buffer import PixelBuffer, round_half_up

logger = logging.getLogger(__name__)

BLUR_PASSES = 2  # two box passes approximate a Gaussian


def soft_blur(pixels: np.ndarray, radius: int) -> np.ndarray:
    """Blur all four channels with repeated box filters of size 2r+1."""
    if radius <= 0:
        return pixels.copy()
    ksize = (2 * radius + 1, 2 * radius + 1)
    out = np.ascontiguousarray(pixels)
    for _ in range(BLUR_PASSES):
        out = cv2.blur(out, ksize, borderType=cv2.BORDER_REPLICATE)
    return out


def posterize(pixels: np.ndarray, factor: int) -> np.ndarray:
    """Floor R, G and B onto multiples of `factor`; alpha is untouched."""
    factor = int(min(max(factor, 1), 255))
    out = pixels.copy()
    if factor == 1:
        return out
    rgb = out[..., :3].astype(np.int32)
    out[..., :3] = ((rgb // factor) * factor).astype(np.uint8)
    return out


def watercolor(
    buffer: PixelBuffer,
    params: Optional[WatercolorParams] = None,
    progress: Optional[Callable[[int], None]] = None,
) -> PixelBuffer:
    """Blur then posterize; quantization runs after blur so band edges stay soft."""
    params = params or WatercolorParams()
    radius = round_half_up(params.blur_radius)
    factor = round_half_up(params.color_reduction_factor)

    blurred = soft_blur(buffer.array(), radius)
    if progress:
        progress(60)

    out = posterize(blurred, factor)
    logger.debug("watercolor: %dx%d radius=%d factor=%d", buffer.width, buffer.height, radius, factor)
    return PixelBuffer.from_array(out)
