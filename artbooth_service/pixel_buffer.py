"""
In-memory RGBA image representation shared by every transformation.

A `PixelBuffer` owns an `(height, width, 4)` uint8 array. Constructors copy
their input so no two buffers ever alias the same memory, which lets the
neighbourhood filters read the source while writing a fresh output.
"""

from __future__ import annotations

from io import BytesIO
from typing import Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from .errors import InvalidPixelBuffer

CHANNELS = 4

# ITU-R BT.601 luma weights, also used by the pencil filter.
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


class PixelBuffer:
    """Width, height and interleaved RGBA bytes."""

    __slots__ = ("width", "height", "_pixels")

    def __init__(self, width: int, height: int, pixels: np.ndarray):
        width = int(width)
        height = int(height)
        if width <= 0 or height <= 0:
            raise InvalidPixelBuffer(f"Image dimensions must be positive, got {width}x{height}")
        arr = np.asarray(pixels)
        if arr.size != width * height * CHANNELS:
            raise InvalidPixelBuffer(
                f"Expected {width * height * CHANNELS} bytes for {width}x{height} RGBA, got {arr.size}"
            )
        if arr.dtype != np.uint8:
            arr = clamp_to_byte(arr)
        self.width = width
        self.height = height
        self._pixels = arr.reshape(height, width, CHANNELS).copy()

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes | bytearray | Sequence[int]) -> "PixelBuffer":
        if isinstance(data, (bytes, bytearray, memoryview)):
            arr = np.frombuffer(bytes(data), dtype=np.uint8)
        else:
            arr = np.asarray(data)
        return cls(width, height, arr)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        arr = np.asarray(array)
        if arr.ndim != 3 or arr.shape[2] != CHANNELS:
            raise InvalidPixelBuffer(f"Expected an (H, W, 4) array, got shape {arr.shape}")
        return cls(arr.shape[1], arr.shape[0], arr)

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls.from_array(np.array(rgba, dtype=np.uint8))

    @classmethod
    def solid(cls, width: int, height: int, rgba: Tuple[int, int, int, int]) -> "PixelBuffer":
        if width <= 0 or height <= 0:
            raise InvalidPixelBuffer(f"Image dimensions must be positive, got {width}x{height}")
        arr = np.empty((height, width, CHANNELS), dtype=np.uint8)
        arr[...] = clamp_to_byte(np.asarray(rgba))
        return cls(width, height, arr)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def pixels(self) -> np.ndarray:
        """Read-only view of the RGBA array."""
        view = self._pixels.view()
        view.flags.writeable = False
        return view

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def array(self) -> np.ndarray:
        """Return a writable copy of the RGBA array."""
        return self._pixels.copy()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self._pixels)

    def to_bytes(self) -> bytes:
        return self._pixels.tobytes()

    def to_image(self) -> Image.Image:
        return Image.fromarray(self._pixels)

    def to_png_bytes(self, dpi: Optional[int] = None) -> bytes:
        buf = BytesIO()
        if dpi:
            self.to_image().save(buf, format="PNG", dpi=(dpi, dpi))
        else:
            self.to_image().save(buf, format="PNG")
        return buf.getvalue()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.size == other.size and np.array_equal(self._pixels, other._pixels)

    def __repr__(self) -> str:
        return f"PixelBuffer(width={self.width}, height={self.height})"


# ----------------------------------------------------------------------
# Shared numeric helpers
# ----------------------------------------------------------------------


def clamp_to_byte(values: np.ndarray) -> np.ndarray:
    """Round half-to-even and clamp into 0..255 as uint8."""
    arr = np.asarray(values)
    if arr.dtype == np.uint8:
        return arr.copy()
    if np.issubdtype(arr.dtype, np.floating):
        arr = np.rint(arr)
    return np.clip(arr, 0, 255).astype(np.uint8)


def luminance(pixels: np.ndarray) -> np.ndarray:
    """Per-pixel luma normalized to [0, 1] as float64."""
    rgb = pixels[..., :3].astype(np.float64)
    r_w, g_w, b_w = LUMA_WEIGHTS
    return (rgb[..., 0] * r_w + rgb[..., 1] * g_w + rgb[..., 2] * b_w) / 255.0


def round_half_up(value: float) -> int:
    return int(np.floor(float(value) + 0.5))


def window_sums(plane: np.ndarray, radius: int) -> np.ndarray:
    """
    Sum of each `(2r+1)^2` window centred on an interior pixel.

    Returns an array of shape `(H - 2r, W - 2r)`; entry `[y, x]` is the window
    centred on `plane[y + r, x + r]`. Uses an int64 integral image so sums are
    exact for integer inputs.
    """
    h, w = plane.shape
    k = 2 * radius + 1
    integral = np.zeros((h + 1, w + 1), dtype=np.int64)
    integral[1:, 1:] = np.cumsum(np.cumsum(plane.astype(np.int64), axis=0), axis=1)
    return integral[k:, k:] - integral[:-k, k:] - integral[k:, :-k] + integral[:-k, :-k]
