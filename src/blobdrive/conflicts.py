"""Name collision detection and resolution.

Conflict checks read a listing taken after earlier mutations completed.
Another session may still write to the same folder between the check and
the mutation; that window is accepted, not prevented.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Sequence

from blobdrive import paths
from blobdrive.exceptions import StaleConflictError
from blobdrive.models import (
    MoveConflict,
    PendingConflict,
    RenameConflict,
    Resolution,
    UploadConflict,
)
from blobdrive.namespace import NamespaceResolver

logger = logging.getLogger(__name__)


def split_extension(name: str) -> tuple[str, str]:
    """Split at the last dot that is not the first character.

    >>> split_extension("report.final.pdf")
    ('report.final', '.pdf')
    >>> split_extension(".bashrc")
    ('.bashrc', '')
    """
    index = name.rfind(".")
    if index <= 0:
        return name, ""
    return name[:index], name[index:]


def make_unique(name: str, taken: Iterable[str]) -> str:
    """Return ``base (n)ext`` for the smallest n >= 1 not in ``taken``.

    Only call this once a collision is confirmed: even a free ``name`` gets
    a counter.
    """
    taken = set(taken)
    base, ext = split_extension(name)
    counter = 1
    while True:
        candidate = f"{base} ({counter}){ext}"
        if candidate not in taken:
            return candidate
        counter += 1


def keep_both_names(names: Sequence[str], taken: Iterable[str]) -> dict[str, str]:
    """Give every name in ``names`` that is in ``taken`` a fresh unique name.

    Names chosen earlier in the sequence count as taken for later ones, so a
    batch never collides with itself.
    """
    taken = set(taken)
    occupied = taken | set(names)
    mapping: dict[str, str] = {}
    for name in names:
        if name in taken:
            unique = make_unique(name, occupied)
            occupied.add(unique)
            mapping[name] = unique
        else:
            mapping[name] = name
    return mapping


def _incoming_names(conflict: PendingConflict) -> list[str]:
    if isinstance(conflict, UploadConflict):
        return [f.name for f in conflict.files]
    if isinstance(conflict, MoveConflict):
        return [conflict.item.name]
    return [conflict.new_name]


def destination_path(conflict: PendingConflict) -> str:
    """Folder in which the conflicting names live."""
    if isinstance(conflict, UploadConflict):
        return conflict.target_path
    if isinstance(conflict, MoveConflict):
        return conflict.target_folder_path
    return paths.parent_of(conflict.item.full_path)


def resolve(
    conflict: PendingConflict, choice: Resolution, taken_names: Iterable[str]
) -> dict[str, str] | None:
    """Map each incoming name to the name it should be written under.

    ``taken_names`` must come from the current destination listing, not the
    one the conflict was detected against. Returns None for Cancel.
    """
    names = _incoming_names(conflict)
    if choice is Resolution.CANCEL:
        return None
    if choice is Resolution.REPLACE:
        return {name: name for name in names}
    return keep_both_names(names, set(taken_names))


class ConflictDetector:
    """Finds which candidate names already occupy a folder."""

    def __init__(self, resolver: NamespaceResolver) -> None:
        self.resolver = resolver

    def existing_names(self, path: str) -> set[str]:
        return self.resolver.names(path)

    def find_conflicts(self, path: str, candidate_names: Iterable[str]) -> set[str]:
        return self.existing_names(path) & set(candidate_names)

    def conflicting_in_order(self, path: str, candidate_names: Sequence[str]) -> tuple[str, ...]:
        """Like find_conflicts, but ordered as ``candidate_names``."""
        found = self.find_conflicts(path, candidate_names)
        return tuple(dict.fromkeys(n for n in candidate_names if n in found))


class ConflictGate:
    """Holds the single outstanding PendingConflict.

    A new conflict cannot be opened while one is waiting, and only the
    outstanding conflict object itself can be taken for resolution.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: PendingConflict | None = None

    @property
    def pending(self) -> PendingConflict | None:
        return self._pending

    def open(self, conflict: PendingConflict) -> PendingConflict:
        with self._lock:
            if self._pending is not None:
                raise StaleConflictError("Another conflict is awaiting resolution")
            self._pending = conflict
        logger.info(f"Conflict at {destination_path(conflict) or '/'}: {conflict.conflicting_names}")
        return conflict

    def take(self, conflict: PendingConflict) -> PendingConflict:
        with self._lock:
            if self._pending is not conflict:
                raise StaleConflictError("Conflict is not the one awaiting resolution")
            self._pending = None
        return conflict
