"""Tests for the RGBA pixel buffer and its numeric helpers."""

from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from artbooth_service.errors import InvalidPixelBuffer
from artbooth_service.pixel_buffer import (
    PixelBuffer,
    clamp_to_byte,
    luminance,
    round_half_up,
    window_sums,
)

# ---------------------------------------------------------------------------
# Construction and validation
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_from_bytes(self) -> None:
        buf = PixelBuffer.from_bytes(2, 1, bytes([1, 2, 3, 4, 5, 6, 7, 8]))
        assert buf.size == (2, 1)
        assert buf.to_bytes() == bytes([1, 2, 3, 4, 5, 6, 7, 8])
        assert buf.pixels.shape == (1, 2, 4)

    def test_length_mismatch_rejected(self) -> None:
        with pytest.raises(InvalidPixelBuffer, match="Expected 16 bytes"):
            PixelBuffer.from_bytes(2, 2, bytes(15))

    @pytest.mark.parametrize("width,height", [(0, 4), (4, 0), (-1, 2)])
    def test_non_positive_dimensions_rejected(self, width: int, height: int) -> None:
        with pytest.raises(InvalidPixelBuffer):
            PixelBuffer.from_bytes(width, height, b"")

    def test_invalid_buffer_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            PixelBuffer.from_bytes(1, 1, bytes(3))

    def test_from_array_requires_four_channels(self) -> None:
        with pytest.raises(InvalidPixelBuffer, match="shape"):
            PixelBuffer.from_array(np.zeros((2, 2, 3), dtype=np.uint8))

    def test_values_clamped_on_write(self) -> None:
        arr = np.array([[[300.0, -5.0, 12.4, 254.6]]])
        buf = PixelBuffer.from_array(arr)
        assert list(buf.pixels[0, 0]) == [255, 0, 12, 255]

    def test_solid(self) -> None:
        buf = PixelBuffer.solid(3, 2, (1, 2, 3, 4))
        assert buf.size == (3, 2)
        assert np.all(buf.pixels == np.array([1, 2, 3, 4], dtype=np.uint8))

    def test_from_image_converts_to_rgba(self) -> None:
        image = Image.new("RGB", (5, 3), color=(10, 20, 30))
        buf = PixelBuffer.from_image(image)
        assert buf.size == (5, 3)
        assert list(buf.pixels[2, 4]) == [10, 20, 30, 255]


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------


class TestOwnership:
    def test_constructor_copies_input(self) -> None:
        arr = np.zeros((2, 2, 4), dtype=np.uint8)
        buf = PixelBuffer.from_array(arr)
        arr[...] = 99
        assert np.all(buf.pixels == 0)

    def test_pixels_view_is_read_only(self) -> None:
        buf = PixelBuffer.solid(2, 2, (0, 0, 0, 0))
        with pytest.raises(ValueError):
            buf.pixels[0, 0, 0] = 1

    def test_array_and_copy_are_independent(self) -> None:
        buf = PixelBuffer.solid(2, 2, (5, 5, 5, 5))
        arr = buf.array()
        arr[...] = 0
        clone = buf.copy()
        assert clone == buf
        assert clone is not buf
        assert np.all(buf.pixels == 5)

    def test_equality(self) -> None:
        a = PixelBuffer.solid(2, 2, (1, 1, 1, 1))
        b = PixelBuffer.solid(2, 2, (1, 1, 1, 1))
        c = PixelBuffer.solid(2, 2, (1, 1, 1, 2))
        assert a == b
        assert a != c
        assert a != PixelBuffer.solid(1, 4, (1, 1, 1, 1))


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncoding:
    def test_png_bytes_decode_back(self) -> None:
        buf = PixelBuffer.solid(7, 3, (10, 20, 30, 128))
        image = Image.open(BytesIO(buf.to_png_bytes()))
        assert image.size == (7, 3)
        assert image.mode == "RGBA"
        assert image.getpixel((0, 0)) == (10, 20, 30, 128)

    def test_png_dpi_metadata(self) -> None:
        buf = PixelBuffer.solid(2, 2, (0, 0, 0, 255))
        image = Image.open(BytesIO(buf.to_png_bytes(dpi=300)))
        assert round(image.info["dpi"][0]) == 300


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_clamp_to_byte_rounds_half_to_even(self) -> None:
        out = clamp_to_byte(np.array([0.5, 1.5, 2.5, 256.0, -1.0]))
        assert list(out) == [0, 2, 2, 255, 0]
        assert out.dtype == np.uint8

    def test_luminance_extremes(self) -> None:
        pixels = np.array([[[255, 255, 255, 255], [0, 0, 0, 255]]], dtype=np.uint8)
        lum = luminance(pixels)
        assert lum[0, 0] == pytest.approx(1.0)
        assert lum[0, 1] == 0.0

    def test_luminance_weights(self) -> None:
        pixels = np.array([[[255, 0, 0, 255]]], dtype=np.uint8)
        assert luminance(pixels)[0, 0] == pytest.approx(0.299)

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (2.49, 2), (0.5, 1), (3.0, 3), (-0.6, -1)])
    def test_round_half_up(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected

    def test_window_sums_of_ones(self) -> None:
        sums = window_sums(np.ones((5, 6), dtype=np.int64), 1)
        assert sums.shape == (3, 4)
        assert np.all(sums == 9)

    def test_window_sums_matches_brute_force(self) -> None:
        rng = np.random.default_rng(3)
        plane = rng.integers(0, 50, size=(7, 9))
        r = 2
        sums = window_sums(plane, r)
        for y in range(sums.shape[0]):
            for x in range(sums.shape[1]):
                assert sums[y, x] == plane[y : y + 2 * r + 1, x : x + 2 * r + 1].sum()
