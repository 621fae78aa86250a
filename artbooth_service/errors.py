"""
Error taxonomy for the transformation core.

Every per-job failure is reduced to a `JobError` record that lives on the
Job itself; exceptions never cross the worker boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class JobError:
    kind: str
    message: str
    details: Optional[Dict[str, Any]] = field(default=None)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = dict(self.details)
        return out


class ArtboothError(Exception):
    """Base class for failures that end up in a Job's error record."""

    error_kind = "AlgorithmFailure"

    def to_record(self, details: Optional[Dict[str, Any]] = None) -> JobError:
        return JobError(kind=self.error_kind, message=str(self), details=details)


class UnsupportedKind(ArtboothError):
    error_kind = "UnsupportedKind"

    def __init__(self, kind: Any):
        super().__init__(f"Unsupported transformation type: {kind}")
        self.kind = kind


class AlgorithmFailure(ArtboothError):
    error_kind = "AlgorithmFailure"


class WorkerUnavailable(ArtboothError):
    error_kind = "WorkerUnavailable"


class JobTimeout(ArtboothError):
    error_kind = "Timeout"


class InvalidPixelBuffer(ValueError):
    """Raised for malformed image data before a Job is created."""
