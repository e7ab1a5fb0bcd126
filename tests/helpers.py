"""Shared test helpers for blobdrive tests."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from blobdrive.models import FileEntry, FolderEntry
from blobdrive.store import MemoryObjectStore, ProgressCallback

FIXED_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def file_entry(full_path: str, size: int = 0) -> FileEntry:
    return FileEntry(
        name=full_path.rpartition("/")[2],
        full_path=full_path,
        size=size,
        updated_at=FIXED_TIME,
        content_ref=f"memory://{full_path}",
    )


def folder_entry(full_path: str) -> FolderEntry:
    return FolderEntry(name=full_path.rpartition("/")[2], full_path=full_path)


class GatedStore(MemoryObjectStore):
    """MemoryObjectStore whose puts to gated keys block until released."""

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(*args, **kwargs)
        self.entered: dict[str, threading.Event] = {}
        self.gates: dict[str, threading.Event] = {}

    def gate(self, key: str) -> threading.Event:
        self.entered[key] = threading.Event()
        self.gates[key] = threading.Event()
        return self.gates[key]

    def put(self, key: str, data: bytes, progress: ProgressCallback | None = None) -> None:
        if key in self.gates:
            self.entered[key].set()
            self.gates[key].wait(5)
        super().put(key, data, progress)


class NoCopyStore(MemoryObjectStore):
    """A store without server-side copy, so moves go through get and put."""

    copy = None  # type: ignore[assignment]
