"""
Transformation engine: dispatches a kind to the processor that runs it.

The engine keeps nothing but a processor handle. Processors expose an
`initialize()` / `cleanup()` lifecycle so heavier backends (GPU kernels,
learned models) can acquire resources without changing call sites; the
built-in numpy processor needs neither.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from threading import Lock
import time
from typing import Any, Callable, Dict, Mapping, Optional, Union

from . import config
from .errors import AlgorithmFailure, ArtboothError, UnsupportedKind
from .oil_painting import oilpainting
from .params import TransformationKind, TransformationParams, resolve_params
from .pencil import pencil
from .pixel_buffer import PixelBuffer
from .watercolor import watercolor

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ParamsInput = Union[None, Mapping[str, Any], TransformationParams]


@dataclass
class TransformationResult:
    buffer: PixelBuffer
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseProcessor:
    """Interface every transformation backend implements."""

    name = "base"

    def initialize(self) -> None:  # pragma: no cover - interface only
        pass

    def supports(self, kind: TransformationKind) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def transform(
        self,
        buffer: PixelBuffer,
        kind: TransformationKind,
        params: TransformationParams,
        progress: Optional[ProgressCallback] = None,
    ) -> PixelBuffer:  # pragma: no cover - interface only
        raise NotImplementedError

    def cleanup(self) -> None:  # pragma: no cover - interface only
        pass


class NumpyProcessor(BaseProcessor):
    """CPU implementation of the three artistic filters."""

    name = "numpy"

    _ALGORITHMS = {
        TransformationKind.PENCIL: pencil,
        TransformationKind.WATERCOLOR: watercolor,
        TransformationKind.OILPAINTING: oilpainting,
    }

    def supports(self, kind: TransformationKind) -> bool:
        return kind in self._ALGORITHMS

    def transform(self, buffer, kind, params, progress=None):
        algorithm = self._ALGORITHMS.get(kind)
        if algorithm is None:
            raise UnsupportedKind(kind.value)
        return algorithm(buffer, params, progress=progress)


PROCESSORS = {
    NumpyProcessor.name: NumpyProcessor,
}


def create_processor(name: str) -> BaseProcessor:
    """Instantiate a registered processor by name."""
    try:
        return PROCESSORS[name.lower()]()
    except KeyError as exc:
        raise ValueError(f"Unknown processor type: {name}") from exc


class TransformationEngine:
    def __init__(self, processor: Optional[BaseProcessor] = None):
        self._processor = processor or NumpyProcessor()
        self._initialized = False
        self._lock = Lock()

    @property
    def processor(self) -> BaseProcessor:
        return self._processor

    def initialize(self) -> None:
        with self._lock:
            if not self._initialized:
                self._processor.initialize()
                self._initialized = True
                logger.info("Transformation processor '%s' initialized", self._processor.name)

    def cleanup(self) -> None:
        with self._lock:
            if self._initialized:
                self._processor.cleanup()
                self._initialized = False
                logger.info("Transformation processor '%s' released", self._processor.name)

    def supports(self, kind: Union[str, TransformationKind]) -> bool:
        parsed = TransformationKind.parse(kind)
        return parsed is not None and self._processor.supports(parsed)

    def run(
        self,
        buffer: PixelBuffer,
        kind: Union[str, TransformationKind],
        params: ParamsInput = None,
        progress: Optional[ProgressCallback] = None,
    ) -> TransformationResult:
        """
        Transform `buffer` and return the new buffer plus timing metadata.

        Raises:
            UnsupportedKind: when `kind` is not a known, supported kind.
            AlgorithmFailure: for any other fault inside the processor.
        """
        parsed = TransformationKind.parse(kind)
        if parsed is None or not self._processor.supports(parsed):
            raise UnsupportedKind(getattr(kind, "value", kind))
        if not self._initialized:
            self.initialize()

        resolved = resolve_params(parsed, params)
        started = time.perf_counter()
        try:
            result = self._processor.transform(buffer, parsed, resolved, progress=progress)
        except ArtboothError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise AlgorithmFailure(f"{parsed.value} transformation failed: {exc}") from exc
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        return TransformationResult(
            buffer=result,
            metadata={
                "processor": self._processor.name,
                "processing_time_ms": elapsed_ms,
                "parameters": resolved.as_dict(),
            },
        )

    def transform(
        self,
        buffer: PixelBuffer,
        kind: Union[str, TransformationKind],
        params: ParamsInput = None,
    ) -> PixelBuffer:
        return self.run(buffer, kind, params).buffer


_ENGINE: Optional[TransformationEngine] = None
_ENGINE_LOCK = Lock()


def get_engine() -> TransformationEngine:
    """Return the process-wide engine built from settings, creating it on first use."""
    global _ENGINE
    if _ENGINE is not None:
        return _ENGINE

    with _ENGINE_LOCK:
        if _ENGINE is None:
            settings = config.get_settings()
            _ENGINE = TransformationEngine(create_processor(settings.processor))
    return _ENGINE
