"""Object store protocol and an in-memory implementation.

The store is flat: keys are slash-joined paths and there are no folders,
renames or moves. Everything hierarchical is derived on top of the five
primitives below.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol, runtime_checkable

from blobdrive import paths
from blobdrive.exceptions import NotFoundError, TransportError
from blobdrive.models import Listing, ObjectMetadata

logger = logging.getLogger(__name__)

# Called as progress(bytes_transferred, total_bytes) while a put is running.
ProgressCallback = Callable[[int, int], None]

DEFAULT_CHUNK_SIZE = 64 * 1024


@runtime_checkable
class ObjectStore(Protocol):
    """Primitive operations offered by a flat, key-addressed blob store."""

    def list(self, prefix: str) -> Listing:
        """Return direct sub-prefixes and objects under ``prefix`` ("" is the root)."""
        ...

    def get_metadata(self, key: str) -> ObjectMetadata:
        ...

    def get_download_url(self, key: str) -> str:
        ...

    def get(self, key: str) -> bytes:
        ...

    def put(self, key: str, data: bytes, progress: ProgressCallback | None = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def supports_copy(store: ObjectStore) -> bool:
    """True if the store can copy objects server-side."""
    return callable(getattr(store, "copy", None))


def split_listing(prefix: str, keys: Iterable[str]) -> Listing:
    """Group flat ``keys`` into the direct sub-prefixes and objects of ``prefix``."""
    prefix = paths.normalize(prefix)
    start = f"{prefix}/" if prefix else ""
    prefixes: dict[str, None] = {}
    objects: list[str] = []
    for key in keys:
        if not key.startswith(start):
            continue
        rest = key[len(start):]
        head, sep, _ = rest.partition("/")
        if sep:
            prefixes[start + head] = None
        elif rest:
            objects.append(key)
    return Listing(prefixes=tuple(prefixes), objects=tuple(objects))


class MemoryObjectStore:
    """Thread-safe object store kept in a dict.

    Keys listed in ``fail_on_put``, ``fail_on_delete`` or ``fail_on_metadata``
    raise TransportError for that primitive, which makes partial failures
    reproducible. Every primitive call is appended to ``calls`` as
    ``(operation, key)``.
    """

    def __init__(
        self,
        objects: dict[str, bytes] | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._objects: dict[str, tuple[bytes, datetime]] = {}
        self.chunk_size = chunk_size
        self.fail_on_put: set[str] = set()
        self.fail_on_delete: set[str] = set()
        self.fail_on_metadata: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        for key, data in (objects or {}).items():
            self._objects[key] = (data, self._clock())

    def _record(self, operation: str, key: str) -> None:
        with self._lock:
            self.calls.append((operation, key))

    def calls_of(self, operation: str) -> list[str]:
        """Keys passed to ``operation`` so far, in call order."""
        with self._lock:
            return [key for op, key in self.calls if op == operation]

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)

    def list(self, prefix: str) -> Listing:
        self._record("list", prefix)
        return split_listing(prefix, self.keys())

    def get_metadata(self, key: str) -> ObjectMetadata:
        self._record("get_metadata", key)
        if key in self.fail_on_metadata:
            raise TransportError(f"Metadata request failed for {key}")
        with self._lock:
            try:
                data, updated_at = self._objects[key]
            except KeyError:
                raise NotFoundError(key) from None
        return ObjectMetadata(size=len(data), updated_at=updated_at)

    def get_download_url(self, key: str) -> str:
        self._record("get_download_url", key)
        with self._lock:
            if key not in self._objects:
                raise NotFoundError(key)
        return f"memory://{key}"

    def get(self, key: str) -> bytes:
        self._record("get", key)
        with self._lock:
            try:
                return self._objects[key][0]
            except KeyError:
                raise NotFoundError(key) from None

    def put(self, key: str, data: bytes, progress: ProgressCallback | None = None) -> None:
        self._record("put", key)
        total = len(data)
        if progress is not None:
            if total == 0:
                progress(0, 0)
            for sent in range(self.chunk_size, total + self.chunk_size, self.chunk_size):
                progress(min(sent, total), total)
        if key in self.fail_on_put:
            raise TransportError(f"Upload failed for {key}")
        with self._lock:
            self._objects[key] = (bytes(data), self._clock())

    def copy(self, source_key: str, dest_key: str) -> None:
        self._record("copy", source_key)
        if dest_key in self.fail_on_put:
            raise TransportError(f"Copy failed for {source_key} -> {dest_key}")
        with self._lock:
            try:
                data, _ = self._objects[source_key]
            except KeyError:
                raise NotFoundError(source_key) from None
            self._objects[dest_key] = (data, self._clock())

    def delete(self, key: str) -> None:
        self._record("delete", key)
        if key in self.fail_on_delete:
            raise TransportError(f"Delete failed for {key}")
        with self._lock:
            if self._objects.pop(key, None) is None:
                raise NotFoundError(key)
        logger.debug(f"Deleted object {key}")
