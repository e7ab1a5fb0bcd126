"""Concurrent multi-file uploads with per-file progress.

Transfers run on a bounded thread pool and never touch the task table
themselves. They post UploadEvents onto a queue; one dispatcher thread owned
by the coordinator applies every event and publishes an immutable snapshot.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Mapping, Sequence

from blobdrive import paths
from blobdrive.auth import AuthContext, require_authorized
from blobdrive.exceptions import BlobDriveError, NotFoundError, UploadCancelledError
from blobdrive.models import UploadSource, UploadState, UploadTask
from blobdrive.store import ObjectStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Upload cancelled"

BatchCallback = Callable[[str, tuple[UploadTask, ...]], None]

EventKind = Literal["submit", "started", "progress", "done", "failed", "clear", "dismiss"]


@dataclass
class UploadEvent:
    """Message posted to the dispatcher. ``ack`` is set once it has been applied."""

    kind: EventKind
    task_id: str = ""
    progress: float = 0.0
    message: str | None = None
    tasks: tuple[UploadTask, ...] = ()
    ack: threading.Event | None = None
    result: Any = field(default=None, repr=False)


class UploadCoordinator:
    """Runs uploads concurrently and tracks one UploadTask per file.

    Example:
        coordinator = UploadCoordinator(store, on_batch_complete=refresh)
        batch_id = coordinator.submit([UploadSource("a.txt", b"...")], "docs")
        coordinator.wait(batch_id)
        coordinator.clear()
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        auth: AuthContext | None = None,
        max_uploads: int = 4,
        on_batch_complete: BatchCallback | None = None,
        auto_dismiss_after: float | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Object store receiving the uploads
            auth: Optional authorization gate checked on submit
            max_uploads: Maximum number of transfers running at once
            on_batch_complete: Called once per batch, from the dispatcher thread,
                when every file of the batch is Done or Failed
            auto_dismiss_after: If set, Done tasks are removed this many seconds
                after they finish
        """
        self.store = store
        self.auth = auth
        self.on_batch_complete = on_batch_complete
        self.auto_dismiss_after = auto_dismiss_after
        self._pool = ThreadPoolExecutor(max_workers=max_uploads, thread_name_prefix="upload")
        self._events: queue.Queue[UploadEvent | None] = queue.Queue()
        self._dispatcher: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._closed = False

        # Owned by the dispatcher thread.
        self._tasks: dict[str, UploadTask] = {}
        self._remaining: dict[str, set[str]] = {}

        self._snapshot: tuple[UploadTask, ...] = ()
        self._batch_done: dict[str, threading.Event] = {}
        self._cancel_flags: dict[str, threading.Event] = {}
        self._futures: dict[str, Future[None]] = {}

    def __enter__(self) -> UploadCoordinator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def tasks(self) -> tuple[UploadTask, ...]:
        """Current tasks in submission order."""
        return self._snapshot

    def get(self, task_id: str) -> UploadTask | None:
        return next((t for t in self._snapshot if t.id == task_id), None)

    def batch(self, batch_id: str) -> tuple[UploadTask, ...]:
        return tuple(t for t in self._snapshot if t.batch_id == batch_id)

    def submit(
        self,
        files: Sequence[UploadSource],
        target_path: str,
        name_overrides: Mapping[str, str] | None = None,
    ) -> str:
        """Start uploading ``files`` into ``target_path`` and return the batch id.

        No collision checks happen here: each file is written to
        ``target_path/<name>``, with ``name_overrides`` mapping a file's name
        to the name it should be stored under.
        """
        if self._closed:
            raise BlobDriveError("Upload coordinator is closed")
        require_authorized(self.auth)
        overrides = name_overrides or {}
        batch_id = uuid.uuid4().hex
        target_path = paths.normalize(target_path)

        tasks = []
        for source in files:
            name = paths.validate_name(overrides.get(source.name, source.name))
            tasks.append(
                UploadTask(
                    id=uuid.uuid4().hex,
                    batch_id=batch_id,
                    name=name,
                    key=paths.join(target_path, name),
                )
            )
        self._batch_done[batch_id] = threading.Event()
        for task in tasks:
            self._cancel_flags[task.id] = threading.Event()
        self._send(UploadEvent(kind="submit", message=batch_id, tasks=tuple(tasks)), wait=True)

        for task, source in zip(tasks, files):
            future = self._pool.submit(self._transfer, task, source.data)
            self._futures[task.id] = future
            future.add_done_callback(lambda _, task_id=task.id: self._futures.pop(task_id, None))
        logger.info(f"Submitted {len(tasks)} upload(s) to {target_path or '/'}")
        return batch_id

    def cancel(self, task_id: str) -> bool:
        """Cancel an unfinished upload. Returns False if it already finished."""
        task = self.get(task_id)
        if task is None or task.state.is_terminal:
            return False
        flag = self._cancel_flags.get(task_id)
        if flag is None:
            return False
        flag.set()
        future = self._futures.get(task_id)
        if future is not None and future.cancel():
            self._send(UploadEvent(kind="failed", task_id=task_id, message=CANCELLED_MESSAGE))
        logger.warning(f"Cancelling upload of {task.key}")
        return True

    def wait(self, batch_id: str, timeout: float | None = None) -> bool:
        """Block until every file of the batch is Done or Failed.

        A batch whose tasks were all cleared or dismissed counts as finished.
        """
        done = self._batch_done.get(batch_id)
        return True if done is None else done.wait(timeout)

    def clear(self) -> int:
        """Remove Done and Failed tasks and return how many were removed."""
        return self._send(UploadEvent(kind="clear"), wait=True)  # type: ignore[no-any-return]

    def close(self) -> None:
        """Wait for running transfers, then stop the dispatcher."""
        if self._closed:
            return
        self._closed = True
        self._pool.shutdown(wait=True)
        if self._dispatcher is not None:
            self._events.put(None)
            self._dispatcher.join()

    def _send(self, event: UploadEvent, *, wait: bool = False) -> Any:
        self._ensure_dispatcher()
        if wait:
            event.ack = threading.Event()
        self._events.put(event)
        if event.ack is not None:
            event.ack.wait()
        return event.result

    def _ensure_dispatcher(self) -> None:
        with self._start_lock:
            if self._dispatcher is None:
                self._dispatcher = threading.Thread(
                    target=self._dispatch, name="upload-dispatcher", daemon=True
                )
                self._dispatcher.start()

    def _transfer(self, task: UploadTask, data: bytes) -> None:
        cancel_flag = self._cancel_flags[task.id]
        if cancel_flag.is_set():
            self._send(UploadEvent(kind="failed", task_id=task.id, message=CANCELLED_MESSAGE))
            return
        self._send(UploadEvent(kind="started", task_id=task.id))

        def report(sent: int, total: int) -> None:
            if cancel_flag.is_set():
                raise UploadCancelledError(CANCELLED_MESSAGE)
            percent = 100.0 if total == 0 else sent * 100.0 / total
            self._send(UploadEvent(kind="progress", task_id=task.id, progress=percent))

        try:
            self.store.put(task.key, data, report)
            # A cancel that arrives after the last progress report still wins.
            if cancel_flag.is_set():
                raise UploadCancelledError(CANCELLED_MESSAGE)
        except UploadCancelledError:
            self._discard_partial(task.key)
            self._send(UploadEvent(kind="failed", task_id=task.id, message=CANCELLED_MESSAGE))
        except Exception as e:
            logger.error(f"Upload of {task.key} failed: {e}")
            self._send(UploadEvent(kind="failed", task_id=task.id, message=str(e) or type(e).__name__))
        else:
            logger.info(f"Uploaded {task.key}")
            self._send(UploadEvent(kind="done", task_id=task.id))

    def _discard_partial(self, key: str) -> None:
        try:
            self.store.delete(key)
        except NotFoundError:
            pass
        except BlobDriveError as e:
            logger.warning(f"Could not remove cancelled upload {key}: {e}")

    def _dispatch(self) -> None:
        while True:
            event = self._events.get()
            if event is None:
                break
            try:
                self._apply(event)
            finally:
                if event.ack is not None:
                    event.ack.set()

    def _apply(self, event: UploadEvent) -> None:
        finished: list[str] = []
        if event.kind == "submit":
            batch_id = event.message or ""
            for task in event.tasks:
                self._tasks[task.id] = task
            self._remaining[batch_id] = {t.id for t in event.tasks}
            if not event.tasks:
                finished.append(batch_id)
        elif event.kind == "clear":
            removed = [tid for tid, t in self._tasks.items() if t.state.is_terminal]
            self._forget(removed)
            event.result = len(removed)
        elif event.kind == "dismiss":
            task = self._tasks.get(event.task_id)
            if task is not None and task.state is UploadState.DONE:
                self._forget([event.task_id])
        else:
            task = self._tasks.get(event.task_id)
            if task is None or task.state.is_terminal:
                return
            if event.kind == "started":
                task = replace(task, state=UploadState.IN_PROGRESS)
            elif event.kind == "progress":
                task = replace(task, state=UploadState.IN_PROGRESS, progress=event.progress)
            elif event.kind == "done":
                task = replace(task, state=UploadState.DONE, progress=100.0)
                self._schedule_dismiss(task.id)
            else:
                task = replace(task, state=UploadState.FAILED, error_message=event.message)
            self._tasks[task.id] = task
            if task.state.is_terminal:
                remaining = self._remaining.get(task.batch_id, set())
                remaining.discard(task.id)
                if not remaining and self._remaining.pop(task.batch_id, None) is not None:
                    finished.append(task.batch_id)

        self._snapshot = tuple(self._tasks.values())
        for batch_id in finished:
            self._finish_batch(batch_id)

    def _forget(self, task_ids: list[str]) -> None:
        """Drop tasks with their cancel flags, and the wait events of batches left empty."""
        batches = set()
        for task_id in task_ids:
            batches.add(self._tasks.pop(task_id).batch_id)
            self._cancel_flags.pop(task_id, None)
        live = {t.batch_id for t in self._tasks.values()}
        for batch_id in batches - live:
            self._batch_done.pop(batch_id, None)

    def _schedule_dismiss(self, task_id: str) -> None:
        if self.auto_dismiss_after is None:
            return
        timer = threading.Timer(
            self.auto_dismiss_after,
            lambda: self._events.put(UploadEvent(kind="dismiss", task_id=task_id)),
        )
        timer.daemon = True
        timer.start()

    def _finish_batch(self, batch_id: str) -> None:
        self._remaining.pop(batch_id, None)
        tasks = self.batch(batch_id)
        done = sum(1 for t in tasks if t.state is UploadState.DONE)
        logger.info(f"Upload batch finished: {done}/{len(tasks)} succeeded")
        if self.on_batch_complete is not None:
            try:
                self.on_batch_complete(batch_id, tasks)
            except Exception:
                logger.exception("Batch completion callback failed")
        self._batch_done[batch_id].set()
