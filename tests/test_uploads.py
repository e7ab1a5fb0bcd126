"""Tests for the upload coordinator."""

from __future__ import annotations

import threading
import time

import pytest
from helpers import GatedStore

from blobdrive import (
    MemoryObjectStore,
    NotAuthorizedError,
    UidAuthContext,
    UploadCoordinator,
    UploadSource,
    UploadState,
    UploadTask,
)
from blobdrive.uploads import CANCELLED_MESSAGE, UploadEvent

TIMEOUT = 5


class BatchRecorder:
    """Collects on_batch_complete calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[UploadTask, ...]]] = []

    def __call__(self, batch_id: str, tasks: tuple[UploadTask, ...]) -> None:
        self.calls.append((batch_id, tasks))


class TestSubmit:
    """Tests for submitting uploads."""

    def test_upload_writes_objects_and_finishes_tasks(self) -> None:
        store = MemoryObjectStore()
        with UploadCoordinator(store) as coordinator:
            batch_id = coordinator.submit(
                [UploadSource("a.txt", b"aaa"), UploadSource("b.txt", b"bb")], "docs"
            )
            assert coordinator.wait(batch_id, TIMEOUT)

            tasks = coordinator.batch(batch_id)

        assert [t.key for t in tasks] == ["docs/a.txt", "docs/b.txt"]
        assert all(t.state is UploadState.DONE and t.progress == 100.0 for t in tasks)
        assert store.get("docs/a.txt") == b"aaa"

    def test_tasks_are_tracked_as_soon_as_submit_returns(self) -> None:
        store = GatedStore()
        release = store.gate("a.txt")
        with UploadCoordinator(store) as coordinator:
            batch_id = coordinator.submit([UploadSource("a.txt", b"a")], "")

            (task,) = coordinator.tasks
            assert task.name == "a.txt"
            assert not task.state.is_terminal

            release.set()
            coordinator.wait(batch_id, TIMEOUT)

    def test_name_overrides_change_the_key(self) -> None:
        store = MemoryObjectStore()
        with UploadCoordinator(store) as coordinator:
            batch_id = coordinator.submit(
                [UploadSource("a.txt", b"new")], "", {"a.txt": "a (1).txt"}
            )
            coordinator.wait(batch_id, TIMEOUT)

        assert store.keys() == ["a (1).txt"]

    def test_progress_is_reported_per_chunk(self) -> None:
        store = MemoryObjectStore(chunk_size=4)
        seen: list[float] = []
        with UploadCoordinator(store) as coordinator:
            original = coordinator._apply

            def spy(event: UploadEvent) -> None:
                if event.kind == "progress":
                    seen.append(event.progress)
                original(event)

            coordinator._apply = spy  # type: ignore[method-assign]
            batch_id = coordinator.submit([UploadSource("a.bin", b"0123456789")], "")
            coordinator.wait(batch_id, TIMEOUT)

        assert seen == [40.0, 80.0, 100.0]

    def test_empty_file_completes(self) -> None:
        with UploadCoordinator(MemoryObjectStore()) as coordinator:
            batch_id = coordinator.submit([UploadSource("empty.txt", b"")], "")
            coordinator.wait(batch_id, TIMEOUT)

            (task,) = coordinator.tasks

        assert task.state is UploadState.DONE

    def test_unauthorized_submit_is_rejected(self) -> None:
        store = MemoryObjectStore()
        with UploadCoordinator(store, auth=UidAuthContext()) as coordinator:
            with pytest.raises(NotAuthorizedError):
                coordinator.submit([UploadSource("a.txt", b"a")], "")

            assert coordinator.tasks == ()
        assert store.calls == []


class TestBatchCompletion:
    """Tests for the aggregate completion signal."""

    def test_one_success_one_failure_fires_once(self) -> None:
        store = MemoryObjectStore()
        store.fail_on_put.add("b.txt")
        recorder = BatchRecorder()
        with UploadCoordinator(store, on_batch_complete=recorder) as coordinator:
            batch_id = coordinator.submit(
                [UploadSource("a.txt", b"a"), UploadSource("b.txt", b"b")], ""
            )
            assert coordinator.wait(batch_id, TIMEOUT)
            states = {t.name: t.state for t in coordinator.tasks}
            failed = next(t for t in coordinator.tasks if t.name == "b.txt")

        assert len(recorder.calls) == 1
        assert recorder.calls[0][0] == batch_id
        assert states == {"a.txt": UploadState.DONE, "b.txt": UploadState.FAILED}
        assert failed.error_message == "Upload failed for b.txt"

    def test_each_batch_fires_its_own_signal(self) -> None:
        recorder = BatchRecorder()
        with UploadCoordinator(MemoryObjectStore(), on_batch_complete=recorder) as coordinator:
            first = coordinator.submit([UploadSource("a.txt", b"a")], "")
            second = coordinator.submit([UploadSource("b.txt", b"b")], "")
            coordinator.wait(first, TIMEOUT)
            coordinator.wait(second, TIMEOUT)

        assert sorted(c[0] for c in recorder.calls) == sorted([first, second])

    def test_empty_batch_completes_immediately(self) -> None:
        recorder = BatchRecorder()
        with UploadCoordinator(MemoryObjectStore(), on_batch_complete=recorder) as coordinator:
            batch_id = coordinator.submit([], "")

            assert coordinator.wait(batch_id, TIMEOUT)

        assert recorder.calls == [(batch_id, ())]

    def test_failing_callback_does_not_stop_the_coordinator(self) -> None:
        def explode(batch_id: str, tasks: tuple[UploadTask, ...]) -> None:
            raise RuntimeError("boom")

        with UploadCoordinator(MemoryObjectStore(), on_batch_complete=explode) as coordinator:
            first = coordinator.submit([UploadSource("a.txt", b"a")], "")
            assert coordinator.wait(first, TIMEOUT)
            second = coordinator.submit([UploadSource("b.txt", b"b")], "")
            assert coordinator.wait(second, TIMEOUT)


class TestProgressOrdering:
    """Tests for out-of-order progress reports."""

    def test_latest_report_wins(self) -> None:
        store = GatedStore()
        release = store.gate("a.txt")
        with UploadCoordinator(store) as coordinator:
            batch_id = coordinator.submit([UploadSource("a.txt", b"a")], "")
            (task,) = coordinator.tasks

            coordinator._send(UploadEvent(kind="progress", task_id=task.id, progress=60.0), wait=True)
            coordinator._send(UploadEvent(kind="progress", task_id=task.id, progress=30.0), wait=True)
            assert coordinator.get(task.id).progress == 30.0  # type: ignore[union-attr]

            release.set()
            coordinator.wait(batch_id, TIMEOUT)

    def test_late_progress_after_done_is_ignored(self) -> None:
        with UploadCoordinator(MemoryObjectStore()) as coordinator:
            batch_id = coordinator.submit([UploadSource("a.txt", b"a")], "")
            coordinator.wait(batch_id, TIMEOUT)
            (task,) = coordinator.tasks

            coordinator._send(UploadEvent(kind="progress", task_id=task.id, progress=10.0), wait=True)

            assert coordinator.get(task.id).state is UploadState.DONE  # type: ignore[union-attr]
            assert coordinator.get(task.id).progress == 100.0  # type: ignore[union-attr]


class TestClear:
    """Tests for clearing finished tasks."""

    def test_clear_removes_only_finished_tasks(self) -> None:
        store = GatedStore()
        store.fail_on_put.add("b.txt")
        release = store.gate("c.txt")
        with UploadCoordinator(store, max_uploads=3) as coordinator:
            done_batch = coordinator.submit(
                [UploadSource("a.txt", b"a"), UploadSource("b.txt", b"b")], ""
            )
            coordinator.wait(done_batch, TIMEOUT)
            running_batch = coordinator.submit([UploadSource("c.txt", b"c")], "")

            removed = coordinator.clear()

            assert removed == 2
            assert [t.name for t in coordinator.tasks] == ["c.txt"]
            release.set()
            coordinator.wait(running_batch, TIMEOUT)

    def test_auto_dismiss_removes_done_tasks(self) -> None:
        store = MemoryObjectStore()
        store.fail_on_put.add("b.txt")
        with UploadCoordinator(store, auto_dismiss_after=0.01) as coordinator:
            batch_id = coordinator.submit(
                [UploadSource("a.txt", b"a"), UploadSource("b.txt", b"b")], ""
            )
            coordinator.wait(batch_id, TIMEOUT)

            deadline = time.monotonic() + TIMEOUT
            while len(coordinator.tasks) > 1 and time.monotonic() < deadline:
                time.sleep(0.01)

            assert [t.name for t in coordinator.tasks] == ["b.txt"]

    def test_clear_forgets_cleared_tasks_and_batches(self) -> None:
        with UploadCoordinator(MemoryObjectStore()) as coordinator:
            batch_id = coordinator.submit([UploadSource("a.txt", b"a"), UploadSource("b.txt", b"b")], "")
            coordinator.wait(batch_id, TIMEOUT)

            coordinator.clear()

            assert coordinator._cancel_flags == {}
            assert coordinator._batch_done == {}
            assert coordinator.wait(batch_id, 0)
            deadline = time.monotonic() + TIMEOUT
            while coordinator._futures and time.monotonic() < deadline:
                time.sleep(0.01)
            assert coordinator._futures == {}

    def test_dismiss_forgets_the_batch(self) -> None:
        with UploadCoordinator(MemoryObjectStore(), auto_dismiss_after=0.01) as coordinator:
            batch_id = coordinator.submit([UploadSource("a.txt", b"a")], "")
            coordinator.wait(batch_id, TIMEOUT)

            deadline = time.monotonic() + TIMEOUT
            while coordinator.tasks and time.monotonic() < deadline:
                time.sleep(0.01)

            assert coordinator.tasks == ()
            assert coordinator._cancel_flags == {}
            assert coordinator._batch_done == {}


class TestCancel:
    """Tests for cancelling uploads."""

    def test_cancel_in_flight_upload(self) -> None:
        store = GatedStore()
        release = store.gate("big.bin")
        with UploadCoordinator(store) as coordinator:
            batch_id = coordinator.submit([UploadSource("big.bin", b"x" * 10)], "")
            assert store.entered["big.bin"].wait(TIMEOUT)
            (task,) = coordinator.tasks

            assert coordinator.cancel(task.id)
            release.set()
            assert coordinator.wait(batch_id, TIMEOUT)

            cancelled = coordinator.get(task.id)

        assert cancelled is not None
        assert cancelled.state is UploadState.FAILED
        assert cancelled.error_message == CANCELLED_MESSAGE
        assert "big.bin" not in store.keys()

    def test_cancel_before_start_never_touches_the_store(self) -> None:
        store = GatedStore()
        release = store.gate("first.txt")
        with UploadCoordinator(store, max_uploads=1) as coordinator:
            batch_id = coordinator.submit(
                [UploadSource("first.txt", b"1"), UploadSource("second.txt", b"2")], ""
            )
            assert store.entered["first.txt"].wait(TIMEOUT)
            second = next(t for t in coordinator.tasks if t.name == "second.txt")

            assert coordinator.cancel(second.id)
            release.set()
            assert coordinator.wait(batch_id, TIMEOUT)

            states = {t.name: t.state for t in coordinator.tasks}

        assert states == {"first.txt": UploadState.DONE, "second.txt": UploadState.FAILED}
        assert "second.txt" not in store.calls_of("put")

    def test_cancel_finished_upload_returns_false(self) -> None:
        with UploadCoordinator(MemoryObjectStore()) as coordinator:
            batch_id = coordinator.submit([UploadSource("a.txt", b"a")], "")
            coordinator.wait(batch_id, TIMEOUT)
            (task,) = coordinator.tasks

            assert not coordinator.cancel(task.id)

    def test_cancel_after_last_progress_report_still_fails_the_task(self) -> None:
        class SlowAckStore(MemoryObjectStore):
            """Holds a put open after the data is stored and fully reported."""

            def __init__(self) -> None:
                super().__init__()
                self.stored = threading.Event()
                self.release = threading.Event()

            def put(self, key, data, progress=None):  # type: ignore[no-untyped-def]
                super().put(key, data, progress)
                self.stored.set()
                self.release.wait(TIMEOUT)

        store = SlowAckStore()
        with UploadCoordinator(store) as coordinator:
            batch_id = coordinator.submit([UploadSource("late.bin", b"x" * 10)], "")
            assert store.stored.wait(TIMEOUT)
            (task,) = coordinator.tasks

            assert coordinator.cancel(task.id)
            store.release.set()
            assert coordinator.wait(batch_id, TIMEOUT)

            cancelled = coordinator.get(task.id)

        assert cancelled is not None
        assert cancelled.state is UploadState.FAILED
        assert cancelled.error_message == CANCELLED_MESSAGE
        assert "late.bin" not in store.keys()


class TestConcurrency:
    """Tests for the upload bound."""

    def test_at_most_max_uploads_run_at_once(self) -> None:
        active = 0
        peak = 0
        lock = threading.Lock()

        class CountingStore(MemoryObjectStore):
            def put(self, key, data, progress=None):  # type: ignore[no-untyped-def]
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.02)
                try:
                    super().put(key, data, progress)
                finally:
                    with lock:
                        active -= 1

        with UploadCoordinator(CountingStore(), max_uploads=2) as coordinator:
            batch_id = coordinator.submit(
                [UploadSource(f"{i}.txt", b"x") for i in range(6)], ""
            )
            assert coordinator.wait(batch_id, TIMEOUT)

        assert peak <= 2
