"""Shared test fixtures and helpers.

Provides small synthetic images and a manual worker pool that records
dispatched requests without running them, so scheduler state transitions
can be driven step by step.
"""

from io import BytesIO
import threading

import numpy as np
import pytest
from PIL import Image

from artbooth_service.engine import BaseProcessor
from artbooth_service.params import TransformationKind
from artbooth_service.pixel_buffer import PixelBuffer

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def solid_buffer(
    width: int = 8,
    height: int = 8,
    rgba: tuple[int, int, int, int] = (120, 80, 40, 255),
) -> PixelBuffer:
    """Uniform single-colour buffer."""
    return PixelBuffer.solid(width, height, rgba)


def random_buffer(width: int = 16, height: int = 12, seed: int = 0) -> PixelBuffer:
    """Noise image with random alpha, reproducible from `seed`."""
    rng = np.random.default_rng(seed)
    return PixelBuffer.from_array(rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8))


def png_bytes(
    size: tuple[int, int] = (16, 16),
    color: tuple[int, ...] = (200, 100, 50),
    mode: str = "RGB",
) -> bytes:
    """Encode a solid image as PNG bytes."""
    buf = BytesIO()
    Image.new(mode, size, color=color).save(buf, format="PNG")
    return buf.getvalue()


class ManualWorkerPool:
    """Worker pool stand-in that only records what it was asked to run."""

    def __init__(self) -> None:
        self.requests = []
        self.fail_submit = False
        self.shut_down = False
        self.abandoned = []

    def submit(self, request, sink) -> None:
        if self.fail_submit:
            raise RuntimeError("pool is down")
        self.requests.append(request)

    def abandon(self, job_id: str, attempt: int) -> bool:
        self.abandoned.append((job_id, attempt))
        return True

    def shutdown(self, wait: bool = True) -> None:
        self.shut_down = True

    def request_for(self, job_id: str):
        return [r for r in self.requests if r.job_id == job_id][-1]


class StallingProcessor(BaseProcessor):
    """Returns its input, except that watercolor blocks until `release` is set."""

    name = "stalling"

    def __init__(self) -> None:
        self.release = threading.Event()

    def supports(self, kind) -> bool:
        return True

    def transform(self, buffer, kind, params, progress=None):
        if kind is TransformationKind.WATERCOLOR:
            self.release.wait(10)
        return buffer.copy()


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def manual_pool() -> ManualWorkerPool:
    return ManualWorkerPool()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def noise_buffer() -> PixelBuffer:
    return random_buffer()
