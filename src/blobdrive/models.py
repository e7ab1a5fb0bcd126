"""Data models for the blobdrive library."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal, Union


@dataclass(frozen=True)
class Listing:
    """Raw result of a prefix listing: full keys of sub-prefixes and direct objects."""

    prefixes: tuple[str, ...] = ()
    objects: tuple[str, ...] = ()


@dataclass(frozen=True)
class ObjectMetadata:
    """Size and last-modified time of a stored object."""

    size: int
    updated_at: datetime


@dataclass(frozen=True)
class FolderEntry:
    """A folder inferred from a key prefix."""

    name: str
    full_path: str

    @property
    def is_folder(self) -> bool:
        return True


@dataclass(frozen=True)
class FileEntry:
    """A stored object shown as a file."""

    name: str
    full_path: str
    size: int
    updated_at: datetime
    content_ref: str

    @property
    def is_folder(self) -> bool:
        return False


Entry = Union[FolderEntry, FileEntry]


@dataclass(frozen=True)
class UploadSource:
    """Bytes to upload under a given file name."""

    name: str
    data: bytes

    @classmethod
    def from_path(cls, path: str | Path, name: str | None = None) -> UploadSource:
        path = Path(path)
        return cls(name=name or path.name, data=path.read_bytes())


class UploadState(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.DONE, UploadState.FAILED)


@dataclass(frozen=True)
class UploadTask:
    """Snapshot of one file upload."""

    id: str
    batch_id: str
    name: str
    key: str
    progress: float = 0.0
    state: UploadState = UploadState.PENDING
    error_message: str | None = None


class Resolution(str, enum.Enum):
    """How the user chose to resolve a name collision."""

    REPLACE = "replace"
    KEEP_BOTH = "keep-both"
    CANCEL = "cancel"


@dataclass(frozen=True)
class UploadConflict:
    """Upload blocked because some file names already exist at the target."""

    files: tuple[UploadSource, ...]
    target_path: str
    conflicting_names: tuple[str, ...]


@dataclass(frozen=True)
class MoveConflict:
    """Move blocked because the item's name exists in the target folder."""

    item: Entry
    target_folder_path: str
    conflicting_names: tuple[str, ...]


@dataclass(frozen=True)
class RenameConflict:
    """Rename blocked because the new name exists beside the item."""

    item: Entry
    new_name: str
    conflicting_names: tuple[str, ...]


PendingConflict = Union[UploadConflict, MoveConflict, RenameConflict]


@dataclass(frozen=True)
class PlanStep:
    """One primitive store operation in a mutation plan."""

    kind: Literal["copy", "delete"]
    source: str
    destination: str | None = None

    def __str__(self) -> str:
        if self.kind == "copy":
            return f"copy {self.source} -> {self.destination}"
        return f"delete {self.source}"


@dataclass(frozen=True)
class MutationPlan:
    """Ordered primitive steps that implement a move, rename or recursive delete.

    All copy steps run before any delete step, so a failed copy phase never
    removes source objects.
    """

    description: str
    steps: tuple[PlanStep, ...] = ()

    @property
    def copies(self) -> tuple[PlanStep, ...]:
        return tuple(s for s in self.steps if s.kind == "copy")

    @property
    def deletes(self) -> tuple[PlanStep, ...]:
        return tuple(s for s in self.steps if s.kind == "delete")


@dataclass(frozen=True)
class StepResult:
    step: PlanStep
    ok: bool
    error: str | None = None
    exception: BaseException | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class PlanReport:
    """Outcome of executing a MutationPlan, step by step."""

    plan: MutationPlan
    results: tuple[StepResult, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed_steps(self) -> tuple[StepResult, ...]:
        return tuple(r for r in self.results if not r.ok)

    @property
    def skipped_steps(self) -> tuple[PlanStep, ...]:
        """Steps of the plan that were never attempted."""
        attempted = {r.step for r in self.results}
        return tuple(s for s in self.plan.steps if s not in attempted)
