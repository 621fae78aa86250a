"""Job record and the messages exchanged with workers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any, Dict, Optional
import uuid

from .errors import JobError
from .params import TransformationParams
from .pixel_buffer import PixelBuffer


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


def new_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:12]}"


@dataclass
class Job:
    id: str
    image: PixelBuffer
    kind: str
    params: Optional[TransformationParams]
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result: Optional[PixelBuffer] = None
    error: Optional[JobError] = None
    attempt: int = 0
    created_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def view(self) -> Dict[str, Any]:
        """JSON-friendly summary without pixel data."""
        return {
            "jobId": self.id,
            "type": self.kind,
            "params": self.params.as_dict() if self.params is not None else {},
            "status": self.status.value,
            "progress": self.progress,
            "attempt": self.attempt,
            "width": self.image.width,
            "height": self.image.height,
            "hasResult": self.result is not None,
            "error": self.error.as_dict() if self.error else None,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class WorkerRequest:
    job_id: str
    attempt: int
    image: PixelBuffer
    kind: str
    params: Optional[TransformationParams]


@dataclass(frozen=True)
class WorkerMessage:
    """
    One message from a worker about one job attempt.

    Exactly one of `progress`, `result`, `error` is populated.
    """

    job_id: str
    attempt: int
    progress: Optional[int] = None
    result: Optional[PixelBuffer] = None
    error: Optional[JobError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        populated = sum(x is not None for x in (self.progress, self.result, self.error))
        if populated != 1:
            raise ValueError("WorkerMessage needs exactly one of progress, result or error")

    @property
    def is_terminal(self) -> bool:
        return self.progress is None

    @classmethod
    def progress_update(cls, job_id: str, attempt: int, percent: int) -> "WorkerMessage":
        return cls(job_id=job_id, attempt=attempt, progress=int(min(max(percent, 0), 100)))

    @classmethod
    def completed(
        cls, job_id: str, attempt: int, result: PixelBuffer, metadata: Optional[Dict[str, Any]] = None
    ) -> "WorkerMessage":
        return cls(job_id=job_id, attempt=attempt, result=result, metadata=metadata or {})

    @classmethod
    def failed(cls, job_id: str, attempt: int, error: JobError) -> "WorkerMessage":
        return cls(job_id=job_id, attempt=attempt, error=error)
