"""
Oil-painting effect (intensity mode filter).

Each interior pixel looks at its `(2r+1)^2` window, buckets every neighbour
by mean intensity into `levels` bins and takes the average colour of the
most populated bin. Ties go to the lowest bin. The result is the flat,
brush-stroke look of a posterized painting.

Pixels within `r` of the image edge have no full window and are copied
from the source unchanged.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from .params import OilPaintingParams
from .pixel_buffer import PixelBuffer, clamp_to_byte, round_half_up, window_sums

logger = logging.getLogger(__name__)


def intensity_bins(pixels: np.ndarray, levels: int) -> np.ndarray:
    """Bin index `floor(mean(R, G, B) * (levels - 1) / 255)` using exact integers."""
    total = pixels[..., :3].astype(np.int64).sum(axis=2)
    return (total * (levels - 1)) // 765


def oilpainting(
    buffer: PixelBuffer,
    params: Optional[OilPaintingParams] = None,
    progress: Optional[Callable[[int], None]] = None,
) -> PixelBuffer:
    params = params or OilPaintingParams()
    radius = max(0, round_half_up(params.oil_radius))
    levels = max(1, round_half_up(params.oil_intensity))
    src = buffer.pixels
    h, w = buffer.height, buffer.width

    out = buffer.array()
    if h <= 2 * radius or w <= 2 * radius:
        logger.debug("oilpainting: %dx%d smaller than window for radius=%d, copying", w, h, radius)
        return PixelBuffer.from_array(out)

    bins = intensity_bins(src, levels)
    channels = [src[..., c].astype(np.int64) for c in range(3)]

    inner_shape = (h - 2 * radius, w - 2 * radius)
    best_count = np.zeros(inner_shape, dtype=np.int64)
    best_sums = np.zeros(inner_shape + (3,), dtype=np.int64)

    present = np.unique(bins)
    for step, level in enumerate(present):
        mask = (bins == level).astype(np.int64)
        count = window_sums(mask, radius)
        # Strictly greater keeps the earliest (lowest) bin on ties.
        better = count > best_count
        if np.any(better):
            best_count = np.where(better, count, best_count)
            for c in range(3):
                sums = window_sums(channels[c] * mask, radius)
                best_sums[..., c] = np.where(better, sums, best_sums[..., c])
        if progress and len(present) > 1:
            progress(10 + int(80 * (step + 1) / len(present)))

    averages = best_sums / np.maximum(best_count, 1)[..., None]
    out[radius : h - radius, radius : w - radius, :3] = clamp_to_byte(averages)

    logger.debug("oilpainting: %dx%d radius=%d levels=%d bins_used=%d", w, h, radius, levels, len(present))
    return PixelBuffer.from_array(out)
