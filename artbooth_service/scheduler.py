"""
Bounded-concurrency job scheduler.

The scheduler is the single owner of the job table. Callers enqueue and
retry; workers talk back through `post()`, which only appends to an inbox.
Every mutation of the table happens under one lock, either in a caller's
`enqueue`/`retry` or while applying inbox messages (from the coordinator
thread started by `start()`, or from `drain()`).

Admission is FIFO over queued jobs. A retried job re-joins at the tail.
At most `concurrency_limit` jobs are `processing` at any moment. A
dispatched job must start (its worker reports first progress) within
`start_timeout_seconds` or it fails with `WorkerUnavailable`; once started
it must finish within `job_timeout_seconds` or it fails with `Timeout`.
Either way its slot is released and the pool is told to abandon the
attempt.

Listener snapshots are queued in the order the changes happened and
delivered by one thread at a time.
"""

from __future__ import annotations

from collections import deque
import dataclasses
import logging
import queue
import threading
import time
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from . import config
from .errors import InvalidPixelBuffer, JobError, JobTimeout, UnsupportedKind, WorkerUnavailable
from .jobs import Job, JobStatus, WorkerMessage, WorkerRequest, new_job_id
from .params import TransformationKind, TransformationParams, resolve_params
from .pixel_buffer import PixelBuffer
from .queue_worker import ThreadWorkerPool

logger = logging.getLogger(__name__)

JobListener = Callable[[Job], None]


class JobScheduler:
    def __init__(
        self,
        worker_pool,
        concurrency_limit: int = 2,
        job_timeout_seconds: Optional[float] = None,
        supported_kinds: Optional[Iterable[Union[str, TransformationKind]]] = None,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.05,
        start_timeout_seconds: Optional[float] = None,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.concurrency_limit = concurrency_limit
        self.job_timeout_seconds = job_timeout_seconds
        self.start_timeout_seconds = start_timeout_seconds
        self.poll_interval = poll_interval
        self._pool = worker_pool
        self._clock = clock
        kinds = supported_kinds if supported_kinds is not None else list(TransformationKind)
        self._supported = {getattr(k, "value", str(k)) for k in kinds}

        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._jobs: Dict[str, Job] = {}
        self._pending: Deque[str] = deque()
        self._processing: Set[str] = set()
        # job id -> (deadline, phase); phase is "start" until the worker reports in
        self._deadlines: Dict[str, Tuple[float, str]] = {}
        self._started: Set[str] = set()
        self._listeners: List[JobListener] = []
        self._outbox: Deque[Job] = deque()
        self._delivering = False

        self._inbox: "queue.Queue[WorkerMessage]" = queue.Queue()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Caller operations
    # ------------------------------------------------------------------

    def enqueue(
        self,
        buffer: PixelBuffer,
        kind: Union[str, TransformationKind],
        params: Union[None, Mapping[str, Any], TransformationParams] = None,
    ) -> str:
        """
        Submit an image for transformation and return the new job id.

        The parameters are resolved into a frozen snapshot here, so later
        settings changes never affect this job.

        Raises:
            InvalidPixelBuffer: the image is malformed; no job is created.
            ValueError: a parameter override is not numeric.
        """
        if not isinstance(buffer, PixelBuffer):
            raise InvalidPixelBuffer(f"Expected a PixelBuffer, got {type(buffer).__name__}")
        image = buffer.copy()
        parsed = TransformationKind.parse(kind)
        kind_name = parsed.value if parsed is not None else str(getattr(kind, "value", kind))
        snapshot = resolve_params(parsed, params) if parsed is not None else None

        job = Job(id=new_job_id(), image=image, kind=kind_name, params=snapshot)
        events: List[Job] = []
        with self._lock:
            self._jobs[job.id] = job
            logger.info("Enqueued %s type=%s size=%dx%d", job.id, kind_name, image.width, image.height)
            if kind_name not in self._supported:
                self._fail(job, UnsupportedKind(kind_name).to_record(), events)
            else:
                events.append(dataclasses.replace(job))
                self._pending.append(job.id)
                self._dispatch(events)
            self._outbox.extend(events)
            self._changed.notify_all()
        self._deliver()
        return job.id

    def retry(self, job_id: str) -> bool:
        """Re-queue a failed job at the tail. Returns False (no-op) for any other state."""
        events: List[Job] = []
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.FAILED:
                return False
            job.status = JobStatus.QUEUED
            job.error = None
            job.progress = 0
            self._pending.append(job.id)
            events.append(dataclasses.replace(job))
            logger.info("Retrying %s (previous attempts=%d)", job.id, job.attempt)
            self._dispatch(events)
            self._outbox.extend(events)
            self._changed.notify_all()
        self._deliver()
        return True

    # ------------------------------------------------------------------
    # Worker messages
    # ------------------------------------------------------------------

    def post(self, message: WorkerMessage) -> None:
        """Thread-safe inbox used by workers."""
        self._inbox.put(message)

    def drain(self) -> int:
        """Apply every message currently in the inbox; returns how many were read."""
        handled = 0
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                return handled
            self.handle_message(message)
            handled += 1

    def handle_message(self, message: WorkerMessage) -> bool:
        """
        Apply one worker message. Returns False when it was discarded.

        Messages for unknown jobs, jobs not currently processing, or an
        earlier attempt of the job are dropped.
        """
        events: List[Job] = []
        with self._lock:
            job = self._jobs.get(message.job_id)
            if job is None or job.status is not JobStatus.PROCESSING or message.attempt != job.attempt:
                logger.debug(
                    "Discarding message for %s attempt=%d (job state=%s)",
                    message.job_id,
                    message.attempt,
                    job.status.value if job else "unknown",
                )
                return False

            if message.progress is not None:
                if job.id not in self._started:
                    self._mark_started(job)
                job.progress = message.progress
                events.append(dataclasses.replace(job))
            elif message.result is not None:
                self._release(job.id)
                job.status = JobStatus.COMPLETED
                job.result = message.result
                job.progress = 100
                job.metadata = dict(message.metadata)
                events.append(dataclasses.replace(job))
                logger.info("Completed %s attempt=%d", job.id, job.attempt)
                self._dispatch(events)
            else:
                self._fail(job, message.error, events)
                self._dispatch(events)
            self._outbox.extend(events)
            self._changed.notify_all()
        self._deliver()
        return True

    def expire_overdue(self, now: Optional[float] = None) -> List[str]:
        """
        Fail every processing job whose deadline has passed.

        A job that never started fails with `WorkerUnavailable`, a started
        one with `Timeout`. The pool is asked to abandon the attempt so a
        stuck worker thread does not hold back the jobs dispatched next.
        """
        now = self._clock() if now is None else now
        events: List[Job] = []
        expired: List[str] = []
        with self._lock:
            for job_id, (deadline, phase) in list(self._deadlines.items()):
                if now < deadline:
                    continue
                job = self._jobs[job_id]
                if phase == "start":
                    failure = WorkerUnavailable(
                        f"Worker did not start within {self.start_timeout_seconds:g}s"
                    )
                else:
                    failure = JobTimeout(f"No result from worker within {self.job_timeout_seconds:g}s")
                logger.warning("Job %s expired on attempt %d (%s)", job_id, job.attempt, failure.error_kind)
                self._fail(job, failure.to_record({"attempt": job.attempt}), events)
                self._pool.abandon(job_id, job.attempt)
                expired.append(job_id)
            if expired:
                self._dispatch(events)
                self._outbox.extend(events)
                self._changed.notify_all()
        self._deliver()
        return expired

    # ------------------------------------------------------------------
    # Internal state transitions (lock held)
    # ------------------------------------------------------------------

    def _dispatch(self, events: List[Job]) -> None:
        while self._pending and len(self._processing) < self.concurrency_limit:
            job = self._jobs[self._pending.popleft()]
            if job.status is not JobStatus.QUEUED:
                continue
            if job.kind not in self._supported:
                self._fail(job, UnsupportedKind(job.kind).to_record(), events)
                continue

            job.status = JobStatus.PROCESSING
            job.attempt += 1
            job.progress = 0
            self._processing.add(job.id)
            if self.start_timeout_seconds:
                self._deadlines[job.id] = (self._clock() + self.start_timeout_seconds, "start")
            events.append(dataclasses.replace(job))

            request = WorkerRequest(
                job_id=job.id,
                attempt=job.attempt,
                image=job.image.copy(),
                kind=job.kind,
                params=job.params,
            )
            try:
                self._pool.submit(request, self.post)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Worker pool rejected %s", job.id)
                self._fail(job, WorkerUnavailable(f"Worker could not start: {exc}").to_record(), events)
                continue
            logger.info("Dispatched %s attempt=%d (%d/%d slots busy)", job.id, job.attempt, len(self._processing), self.concurrency_limit)

    def _mark_started(self, job: Job) -> None:
        self._started.add(job.id)
        if self.job_timeout_seconds:
            self._deadlines[job.id] = (self._clock() + self.job_timeout_seconds, "run")
        else:
            self._deadlines.pop(job.id, None)

    def _release(self, job_id: str) -> None:
        self._processing.discard(job_id)
        self._started.discard(job_id)
        self._deadlines.pop(job_id, None)

    def _fail(self, job: Job, error: Optional[JobError], events: List[Job]) -> None:
        self._release(job.id)
        job.status = JobStatus.FAILED
        job.result = None
        job.error = error or JobError(kind="AlgorithmFailure", message="Unknown error")
        events.append(dataclasses.replace(job))
        logger.info("Failed %s: %s (%s)", job.id, job.error.message, job.error.kind)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def add_listener(self, listener: JobListener) -> None:
        """Register a callback that receives a snapshot taken at each job change."""
        with self._lock:
            self._listeners.append(listener)

    def _deliver(self) -> None:
        """
        Hand queued snapshots to listeners in the order the changes happened.

        Only one thread delivers at a time. A caller that finds delivery in
        progress returns at once and the delivering thread picks up its
        snapshots, so listeners never see a job's changes out of order.
        """
        with self._lock:
            if self._delivering:
                return
            self._delivering = True
        try:
            while True:
                with self._lock:
                    batch = list(self._outbox)
                    self._outbox.clear()
                    listeners = list(self._listeners)
                    if not batch:
                        self._delivering = False
                        return
                for snapshot in batch:
                    for listener in listeners:
                        try:
                            listener(snapshot)
                        except Exception:  # noqa: BLE001
                            logger.exception("Job listener failed for %s", snapshot.id)
        except BaseException:
            with self._lock:
                self._delivering = False
            raise

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return dataclasses.replace(job) if job else None

    def jobs(self) -> List[Job]:
        with self._lock:
            return [dataclasses.replace(job) for job in self._jobs.values()]

    def counts(self) -> Dict[str, int]:
        with self._lock:
            out = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                out[job.status.value] += 1
            return out

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """
        Block until `job_id` is completed or failed and return a snapshot.

        Without a running coordinator thread, the waiting caller drains the
        inbox itself. Must not be called from a listener.

        Raises:
            KeyError: unknown job id.
            TimeoutError: the job is still pending after `timeout` seconds.
        """
        give_up = None if timeout is None else time.monotonic() + timeout
        while True:
            if not self.running:
                self.drain()
                self.expire_overdue()
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None:
                    raise KeyError(job_id)
                if job.status.is_terminal:
                    return dataclasses.replace(job)
                remaining = None if give_up is None else give_up - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError(f"Job {job_id} still {job.status.value} after {timeout}s")
                wait_for = self.poll_interval if remaining is None else min(self.poll_interval, remaining)
                self._changed.wait(wait_for)

    # ------------------------------------------------------------------
    # Coordinator lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "JobScheduler":
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="artbooth-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started (limit=%d, timeout=%s)", self.concurrency_limit, self.job_timeout_seconds)
        return self

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                message = self._inbox.get(timeout=self.poll_interval)
            except queue.Empty:
                message = None
            if message is not None:
                self.handle_message(message)
            self.expire_overdue()

    def shutdown(self, wait: bool = True) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._pool.shutdown(wait=wait)
        self.drain()
        logger.info("Scheduler stopped")

    def __enter__(self) -> "JobScheduler":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


def build_scheduler(settings: Optional[config.Settings] = None) -> JobScheduler:
    """Wire a thread pool and scheduler from settings."""
    settings = settings or config.get_settings()
    pool = ThreadWorkerPool(max_workers=config.worker_count(settings))
    return JobScheduler(
        pool,
        concurrency_limit=settings.concurrency_limit,
        job_timeout_seconds=settings.job_timeout_seconds,
        start_timeout_seconds=settings.worker_start_timeout_seconds,
    )
