"""
High-level synchronous transformation pipeline.

`process_image_bytes` is the direct path used by the local script and by
callers that do not need the job queue:
bytes in -> decode/resize -> transformation -> PNG bytes out.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from . import config
from .engine import TransformationEngine, get_engine
from .preprocessing import load_pixel_buffer_from_bytes

logger = logging.getLogger(__name__)


def process_image_bytes(
    image_bytes: bytes,
    kind: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
    engine: Optional[TransformationEngine] = None,
) -> bytes:
    """
    Full pipeline from raw bytes to RGBA PNG bytes.

    Raises:
        ValueError: when the input image is invalid.
        UnsupportedKind: when `kind` is not a known transformation.
        AlgorithmFailure: when the transformation itself fails.
    """
    settings = config.get_settings()
    kind = kind or settings.default_transformation
    engine = engine or get_engine()

    buffer = load_pixel_buffer_from_bytes(image_bytes, settings.max_long_edge)
    outcome = engine.run(buffer, kind, params)
    logger.info(
        "Transformed %dx%d image with %s in %.1f ms",
        buffer.width,
        buffer.height,
        kind,
        outcome.metadata["processing_time_ms"],
    )
    return outcome.buffer.to_png_bytes(dpi=settings.print_dpi)
