"""
Worker side of the job queue.

A worker receives a `WorkerRequest` holding its own copy of the image and
reports back only through a message sink: zero or more progress messages
followed by exactly one terminal result or error. The first progress
message is sent as soon as a thread picks the request up, which tells the
scheduler the attempt has started. Workers never see the scheduler's job
table.
"""

from __future__ import annotations

from concurrent.futures import Future
import logging
import queue
import threading
from typing import Callable, Dict, Optional, Set, Tuple

from .engine import TransformationEngine, get_engine
from .errors import AlgorithmFailure, ArtboothError
from .jobs import WorkerMessage, WorkerRequest

logger = logging.getLogger(__name__)

MessageSink = Callable[[WorkerMessage], None]
AttemptKey = Tuple[str, int]
_Task = Tuple[WorkerRequest, TransformationEngine, MessageSink, Future]


def run_transformation(request: WorkerRequest, engine: TransformationEngine, emit: MessageSink) -> None:
    """
    Execute one request and report through `emit`. Never raises.

    Progress values are monotonic within an attempt; the terminal message
    is always the last one emitted.
    """
    last = 0

    def report(percent: int) -> None:
        nonlocal last
        percent = int(min(max(percent, 0), 99))
        if percent > last:
            last = percent
            emit(WorkerMessage.progress_update(request.job_id, request.attempt, percent))

    report(5)
    try:
        outcome = engine.run(request.image, request.kind, request.params, progress=report)
    except ArtboothError as exc:
        logger.warning("Job %s attempt %d failed: %s", request.job_id, request.attempt, exc)
        emit(WorkerMessage.failed(request.job_id, request.attempt, exc.to_record()))
        return
    except Exception as exc:  # noqa: BLE001
        logger.exception("Job %s attempt %d crashed", request.job_id, request.attempt)
        failure = AlgorithmFailure(f"Unexpected worker error: {exc}")
        emit(WorkerMessage.failed(request.job_id, request.attempt, failure.to_record()))
        return

    emit(
        WorkerMessage.completed(
            request.job_id,
            request.attempt,
            outcome.buffer,
            metadata=outcome.metadata,
        )
    )


class ThreadWorkerPool:
    """
    Fixed-capacity pool of worker threads.

    Python threads cannot be interrupted, so a job the scheduler gives up on
    keeps its thread busy until the algorithm returns. `abandon()` retires
    that thread and starts a replacement, which keeps `max_workers` threads
    available for new work.
    """

    def __init__(self, max_workers: int = 2, engine: Optional[TransformationEngine] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._engine = engine
        self._lock = threading.Lock()
        self._tasks: "queue.Queue[Optional[_Task]]" = queue.Queue()
        self._futures: Dict[AttemptKey, Future] = {}
        self._active: Dict[AttemptKey, threading.Thread] = {}
        self._threads: Set[threading.Thread] = set()
        self._retired: Set[threading.Thread] = set()
        self._spawned = 0
        self._shutdown = False
        with self._lock:
            for _ in range(max_workers):
                self._spawn()

    @property
    def engine(self) -> TransformationEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    @property
    def live_workers(self) -> int:
        """Threads that can still pick up new requests."""
        with self._lock:
            return len(self._threads - self._retired)

    def _spawn(self) -> None:
        self._spawned += 1
        thread = threading.Thread(target=self._work, name=f"artbooth-worker_{self._spawned}", daemon=True)
        self._threads.add(thread)
        thread.start()

    def _work(self) -> None:
        me = threading.current_thread()
        while True:
            task = self._tasks.get()
            if task is None:
                break
            request, engine, sink, future = task
            key = (request.job_id, request.attempt)
            with self._lock:
                if not future.set_running_or_notify_cancel():
                    self._futures.pop(key, None)
                    continue
                self._active[key] = me
            try:
                run_transformation(request, engine, sink)
            except Exception as exc:  # noqa: BLE001
                # Only a failing sink can get here.
                logger.exception("Worker sink failed for %s attempt %d", request.job_id, request.attempt)
                future.set_exception(exc)
            else:
                future.set_result(None)
            with self._lock:
                self._active.pop(key, None)
                self._futures.pop(key, None)
                if me in self._retired:
                    break
        with self._lock:
            self._threads.discard(me)
            self._retired.discard(me)

    def submit(self, request: WorkerRequest, sink: MessageSink) -> Future:
        """
        Schedule `request` on a worker thread.

        Raises:
            RuntimeError: if the pool has been shut down.
        """
        engine = self.engine
        future: Future = Future()
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
            self._futures[(request.job_id, request.attempt)] = future
            self._tasks.put((request, engine, sink, future))
        return future

    def abandon(self, job_id: str, attempt: int) -> bool:
        """
        Stop waiting for one attempt.

        A request that has not started is cancelled. A running one keeps its
        thread, which exits once the algorithm returns, and a fresh thread
        takes its place. Returns False when the attempt is not in the pool.
        """
        key = (job_id, attempt)
        with self._lock:
            future = self._futures.get(key)
            if future is None:
                return False
            if future.cancel():
                self._futures.pop(key, None)
                logger.info("Cancelled %s attempt %d before it started", job_id, attempt)
                return True
            thread = self._active.get(key)
            if thread is None or thread in self._retired:
                return False
            self._retired.add(thread)
            if not self._shutdown:
                self._spawn()
        logger.warning("Abandoned %s attempt %d on %s; started a replacement worker", job_id, attempt, thread.name)
        return True

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting work and let the threads exit after the queued requests.

        Retired threads are not joined. The engine belongs to the caller and
        is left initialized.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            threads = list(self._threads - self._retired)
        for _ in threads:
            self._tasks.put(None)
        if wait:
            for thread in threads:
                thread.join()
