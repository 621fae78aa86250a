"""Tests for the worker boundary: message protocol and thread pool."""

import threading

import pytest

from artbooth_service.engine import TransformationEngine
from artbooth_service.errors import JobError
from artbooth_service.jobs import WorkerMessage, WorkerRequest
from artbooth_service.params import OilPaintingParams
from artbooth_service.queue_worker import ThreadWorkerPool, run_transformation

from .conftest import StallingProcessor, random_buffer, solid_buffer
from .test_engine import RecordingProcessor


def _request(kind: str = "oilpainting", params=None, attempt: int = 1, job_id: str = "job-1") -> WorkerRequest:
    return WorkerRequest(
        job_id=job_id,
        attempt=attempt,
        image=random_buffer(10, 10, seed=1),
        kind=kind,
        params=params,
    )


class TestWorkerMessage:
    def test_exactly_one_payload(self) -> None:
        with pytest.raises(ValueError):
            WorkerMessage(job_id="j", attempt=1)
        with pytest.raises(ValueError):
            WorkerMessage(job_id="j", attempt=1, progress=5, error=JobError("Timeout", "late"))

    def test_progress_clamped(self) -> None:
        assert WorkerMessage.progress_update("j", 1, 140).progress == 100
        assert WorkerMessage.progress_update("j", 1, -3).progress == 0

    def test_terminal_flag(self) -> None:
        assert not WorkerMessage.progress_update("j", 1, 50).is_terminal
        assert WorkerMessage.completed("j", 1, solid_buffer()).is_terminal
        assert WorkerMessage.failed("j", 1, JobError("AlgorithmFailure", "x")).is_terminal


class TestRunTransformation:
    def test_progress_then_single_result(self) -> None:
        messages = []
        run_transformation(_request(params=OilPaintingParams(oil_radius=1, oil_intensity=4)), TransformationEngine(), messages.append)

        assert messages[-1].result is not None
        assert all(m.progress is not None for m in messages[:-1])
        assert sum(m.is_terminal for m in messages) == 1
        progress = [m.progress for m in messages[:-1]]
        assert progress == sorted(progress)
        assert all(0 <= p < 100 for p in progress)
        assert all(m.job_id == "job-1" and m.attempt == 1 for m in messages)
        assert messages[-1].metadata["processor"] == "numpy"

    def test_unknown_kind_reports_error(self) -> None:
        messages = []
        run_transformation(_request(kind="unknown"), TransformationEngine(), messages.append)
        terminal = messages[-1]
        assert terminal.error is not None
        assert terminal.error.kind == "UnsupportedKind"
        assert sum(m.is_terminal for m in messages) == 1

    def test_algorithm_fault_reported_not_raised(self) -> None:
        messages = []
        engine = TransformationEngine(RecordingProcessor(fail_with=MemoryError("out of memory")))
        run_transformation(_request(kind="pencil"), engine, messages.append)
        assert messages[-1].error.kind == "AlgorithmFailure"
        assert "out of memory" in messages[-1].error.message

    def test_result_is_new_buffer(self) -> None:
        request = _request(kind="watercolor")
        messages = []
        run_transformation(request, TransformationEngine(), messages.append)
        assert messages[-1].result is not request.image


class TestThreadWorkerPool:
    def test_submit_runs_on_worker_thread(self) -> None:
        pool = ThreadWorkerPool(max_workers=2, engine=TransformationEngine())
        messages = []
        try:
            future = pool.submit(_request(kind="pencil"), messages.append)
            future.result(timeout=30)
        finally:
            pool.shutdown()
        assert messages[-1].result is not None
        assert messages[-1].result.size == (10, 10)

    def test_submit_after_shutdown_raises(self) -> None:
        pool = ThreadWorkerPool(max_workers=1, engine=TransformationEngine())
        pool.shutdown()
        with pytest.raises(RuntimeError):
            pool.submit(_request(), lambda m: None)

    def test_shutdown_leaves_engine_to_its_owner(self) -> None:
        processor = RecordingProcessor()
        engine = TransformationEngine(processor)
        engine.initialize()
        pool = ThreadWorkerPool(max_workers=1, engine=engine)
        pool.shutdown()
        assert "cleanup" not in processor.calls

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            ThreadWorkerPool(max_workers=0)


class TestAbandon:
    def _started(self):
        """Message sink that flags the first progress message."""
        started = threading.Event()

        def sink(message: WorkerMessage) -> None:
            if message.progress is not None:
                started.set()

        return started, sink

    def test_running_attempt_gets_replacement_thread(self) -> None:
        processor = StallingProcessor()
        pool = ThreadWorkerPool(max_workers=1, engine=TransformationEngine(processor))
        try:
            started, sink = self._started()
            pool.submit(_request(kind="watercolor", job_id="job-stuck"), sink)
            assert started.wait(5)

            assert pool.abandon("job-stuck", 1)
            assert pool.live_workers == 1

            messages = []
            future = pool.submit(_request(kind="pencil", job_id="job-next"), messages.append)
            future.result(timeout=5)
            assert messages[-1].result is not None
        finally:
            processor.release.set()
            pool.shutdown()

    def test_queued_attempt_is_cancelled(self) -> None:
        processor = StallingProcessor()
        pool = ThreadWorkerPool(max_workers=1, engine=TransformationEngine(processor))
        try:
            started, sink = self._started()
            first = pool.submit(_request(kind="watercolor", job_id="job-a"), sink)
            assert started.wait(5)

            messages = []
            second = pool.submit(_request(kind="pencil", job_id="job-b"), messages.append)
            assert pool.abandon("job-b", 1)
            assert second.cancelled()

            processor.release.set()
            first.result(timeout=5)
        finally:
            processor.release.set()
            pool.shutdown()
        assert messages == []
        assert pool.live_workers == 0

    def test_unknown_attempt(self) -> None:
        pool = ThreadWorkerPool(max_workers=1, engine=TransformationEngine())
        try:
            assert not pool.abandon("job-missing", 1)
        finally:
            pool.shutdown()
