"""
Pencil-sketch rendering.

The filter turns a photo into dark strokes on white paper:

1. luma plane with a mild contrast boost (`L ** 1.2`),
2. neighbourhood edge detection over a `(2r+1)^2` window where only pixels
   with more than two "active" neighbours count as edges (isolated noise
   gradients are suppressed),
3. line shaping that zeroes faint lines and concentrates contrast on strong
   ones,
4. composition onto a background of configurable whiteness.

Pixels closer than `r` to any image edge have no full neighbourhood and are
painted pure white.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from .params import PencilParams
from .pixel_buffer import PixelBuffer, clamp_to_byte, luminance, round_half_up

logger = logging.getLogger(__name__)

CONTRAST_GAMMA = 1.2
LINE_GAMMA = 1.5
MIN_ACTIVE_NEIGHBOURS = 2  # strictly more than this many must be active


def grayscale_plane(pixels: np.ndarray) -> np.ndarray:
    """Contrast-boosted luma in [0, 1]."""
    return np.power(luminance(pixels), CONTRAST_GAMMA)


def edge_plane(gray: np.ndarray, radius: int, edge_strength: float, edge_threshold: float) -> np.ndarray:
    """
    Edge strength for every pixel; border pixels (within `radius`) are 0.

    For each interior pixel the gradient against every neighbour is
    `|L[c] - L[n]|`. Neighbours whose gradient exceeds `edge_threshold / 255`
    are active; the edge value is `min(1, max_active_gradient * strength)`
    when more than two neighbours are active.
    """
    h, w = gray.shape
    edges = np.zeros_like(gray, dtype=np.float64)
    if h <= 2 * radius or w <= 2 * radius:
        return edges

    threshold = edge_threshold / 255.0
    center = gray[radius : h - radius, radius : w - radius]
    max_gradient = np.zeros_like(center)
    active_count = np.zeros(center.shape, dtype=np.int32)

    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            if dx == 0 and dy == 0:
                continue
            neighbour = gray[radius + dy : h - radius + dy, radius + dx : w - radius + dx]
            gradient = np.abs(center - neighbour)
            active = gradient > threshold
            active_count += active
            np.maximum(max_gradient, np.where(active, gradient, 0.0), out=max_gradient)

    interior = np.where(
        active_count > MIN_ACTIVE_NEIGHBOURS,
        np.minimum(1.0, max_gradient * edge_strength),
        0.0,
    )
    edges[radius : h - radius, radius : w - radius] = interior
    return edges


def shape_lines(edges: np.ndarray, params: PencilParams) -> np.ndarray:
    """Map edge strength to line darkness in [0, max_line_intensity]."""
    line = edges * params.line_weight
    strong = line > params.min_line_intensity
    shaped = np.minimum(params.max_line_intensity, np.power(np.where(strong, line, 0.0), LINE_GAMMA))
    return np.where(strong, shaped, 0.0)


def pencil(
    buffer: PixelBuffer,
    params: Optional[PencilParams] = None,
    progress: Optional[Callable[[int], None]] = None,
) -> PixelBuffer:
    """Render `buffer` as a pencil sketch; returns a new buffer."""
    params = params or PencilParams()
    radius = max(1, round_half_up(params.noise_reduction))
    h, w = buffer.height, buffer.width

    gray = grayscale_plane(buffer.pixels)
    if progress:
        progress(25)

    edges = edge_plane(gray, radius, params.edge_strength, params.edge_threshold)
    if progress:
        progress(70)

    line = shape_lines(edges, params)
    value = np.maximum(255.0 * params.background_whiteness, 255.0 * (1.0 - line))
    value_u8 = clamp_to_byte(value)

    out = np.full((h, w, 4), 255, dtype=np.uint8)
    if h > 2 * radius and w > 2 * radius:
        inner = value_u8[radius : h - radius, radius : w - radius]
        out[radius : h - radius, radius : w - radius, :3] = inner[..., None]

    logger.debug(
        "pencil: %dx%d radius=%d strength=%.3f weight=%.3f whiteness=%.3f edge_pixels=%d",
        w,
        h,
        radius,
        params.edge_strength,
        params.line_weight,
        params.background_whiteness,
        int(np.count_nonzero(line)),
    )
    return PixelBuffer.from_array(out)
