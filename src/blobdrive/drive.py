"""Drive: folder and file intents over an object store, with conflict handling."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Union

from blobdrive import paths
from blobdrive.auth import AuthContext, require_authorized
from blobdrive.conflicts import ConflictDetector, ConflictGate, destination_path, resolve
from blobdrive.exceptions import InvalidTargetError
from blobdrive.models import (
    Entry,
    FileEntry,
    FolderEntry,
    MoveConflict,
    PendingConflict,
    PlanReport,
    RenameConflict,
    Resolution,
    UploadConflict,
    UploadSource,
    UploadTask,
)
from blobdrive.mutations import MutationEngine, validate_move_target
from blobdrive.namespace import PLACEHOLDER_NAME, NamespaceResolver
from blobdrive.store import ObjectStore
from blobdrive.uploads import UploadCoordinator

logger = logging.getLogger(__name__)

FileLike = Union[UploadSource, str, Path]


class Drive:
    """Folder view over a flat object store.

    Every intent that creates a name at a destination (upload, move, rename)
    checks for collisions first. On a collision the intent returns a
    PendingConflict instead of touching the store; the caller then passes it
    to ``resolve`` with Replace, KeepBoth or Cancel. Only one conflict can be
    pending at a time.

    Example:
        with Drive(MemoryObjectStore()) as drive:
            drive.create_folder("Photos")
            outcome = drive.upload(["a.txt", "b.txt"], "Photos")
            if isinstance(outcome, UploadConflict):
                outcome = drive.resolve(outcome, Resolution.KEEP_BOTH)
            drive.wait(outcome)
    """

    def __init__(
        self,
        store: ObjectStore,
        auth: AuthContext | None = None,
        *,
        max_workers: int = 8,
        max_uploads: int = 4,
        placeholder: str = PLACEHOLDER_NAME,
        auto_dismiss_after: float | None = None,
        on_uploads_complete: Callable[[str, tuple[UploadTask, ...]], None] | None = None,
    ) -> None:
        self.store = store
        self.auth = auth
        self.resolver = NamespaceResolver(
            store, auth=auth, max_workers=max_workers, placeholder=placeholder
        )
        self.detector = ConflictDetector(self.resolver)
        self.engine = MutationEngine(
            store, auth=auth, max_workers=max_workers, placeholder=placeholder
        )
        self.uploads = UploadCoordinator(
            store,
            auth=auth,
            max_uploads=max_uploads,
            on_batch_complete=on_uploads_complete,
            auto_dismiss_after=auto_dismiss_after,
        )
        self.gate = ConflictGate()
        self.cwd = ""
        self.entries: tuple[Entry, ...] = ()

    def __enter__(self) -> Drive:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Finish running uploads, then close the store if it holds a connection."""
        self.uploads.close()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()

    @property
    def pending_conflict(self) -> PendingConflict | None:
        return self.gate.pending

    # Navigation

    def list(self, path: str | None = None) -> tuple[Entry, ...]:
        """List ``path`` (default: cwd). A listing of cwd also updates ``entries``."""
        path = self.cwd if path is None else paths.normalize(path)
        entries = self.resolver.list(path)
        if path == self.cwd:
            self.entries = entries
        return entries

    def refresh(self) -> tuple[Entry, ...]:
        """Re-list the current folder."""
        return self.list()

    def cd(self, path: str) -> tuple[Entry, ...]:
        self.cwd = paths.normalize(path)
        return self.refresh()

    def up(self) -> tuple[Entry, ...]:
        return self.cd(paths.parent_of(self.cwd))

    def breadcrumbs(self) -> list[tuple[str, str]]:
        return paths.breadcrumbs(self.cwd)

    def find_entry(self, full_path: str) -> Entry | None:
        """Look ``full_path`` up in the current listing, else in its parent's."""
        full_path = paths.normalize(full_path)
        for entry in self.entries:
            if entry.full_path == full_path:
                return entry
        for entry in self.resolver.list(paths.parent_of(full_path)):
            if entry.full_path == full_path:
                return entry
        return None

    def download_url(self, entry: FileEntry) -> str:
        return entry.content_ref or self.store.get_download_url(entry.full_path)

    # Intents

    def create_folder(self, name: str, path: str | None = None) -> FolderEntry:
        """Create a folder. Any existing entry with the same name blocks it."""
        require_authorized(self.auth)
        path = self.cwd if path is None else paths.normalize(path)
        name = paths.validate_name(name)
        if self.detector.find_conflicts(path, [name]):
            raise InvalidTargetError(f"'{name}' already exists in {path or '/'}")
        folder = self.engine.create_folder(path, name)
        self._refresh_if_visible(path)
        return folder

    def delete(self, item: Entry | str) -> PlanReport | None:
        """Delete a file, or a folder with everything below it."""
        if isinstance(item, str):
            item = self._entry_for(item)
        if isinstance(item, FolderEntry):
            report: PlanReport | None = self.engine.delete_folder(item.full_path)
        else:
            self.engine.delete_file(item.full_path)
            report = None
        self._refresh_if_visible(paths.parent_of(item.full_path))
        return report

    def upload(
        self, files: Iterable[FileLike], target_path: str | None = None
    ) -> UploadConflict | str:
        """Upload ``files``; returns the batch id, or a conflict to resolve."""
        require_authorized(self.auth)
        target = self.cwd if target_path is None else paths.normalize(target_path)
        sources = tuple(
            f if isinstance(f, UploadSource) else UploadSource.from_path(f) for f in files
        )
        for source in sources:
            paths.validate_name(source.name)
        conflicting = self.detector.conflicting_in_order(target, [s.name for s in sources])
        if conflicting:
            return self.gate.open(  # type: ignore[return-value]
                UploadConflict(files=sources, target_path=target, conflicting_names=conflicting)
            )
        return self.uploads.submit(sources, target)

    def move(self, item: Entry, target_folder_path: str) -> MoveConflict | PlanReport | None:
        """Move ``item`` into another folder. Moving to its own parent is a no-op."""
        target = validate_move_target(item, target_folder_path)
        if target == paths.parent_of(item.full_path):
            return None
        conflicting = self.detector.conflicting_in_order(target, [item.name])
        if conflicting:
            return self.gate.open(  # type: ignore[return-value]
                MoveConflict(item=item, target_folder_path=target, conflicting_names=conflicting)
            )
        report = self.engine.move_item(item, target)
        self._refresh_after_move(item, target)
        return report

    def rename(self, item: Entry, new_name: str) -> RenameConflict | PlanReport | None:
        """Rename ``item`` in place. An unchanged name is a no-op."""
        if new_name.strip() == item.name:
            return None
        new_name = paths.validate_name(new_name)
        parent = paths.parent_of(item.full_path)
        conflicting = self.detector.conflicting_in_order(parent, [new_name])
        if conflicting:
            return self.gate.open(  # type: ignore[return-value]
                RenameConflict(item=item, new_name=new_name, conflicting_names=conflicting)
            )
        report = self.engine.rename_item(item, new_name)
        self._refresh_if_visible(parent)
        return report

    def resolve(
        self, conflict: PendingConflict, choice: Resolution | str
    ) -> str | PlanReport | None:
        """Carry out ``conflict`` with the chosen resolution.

        Returns the upload batch id, the move/rename PlanReport, or None for
        Cancel.

        Raises:
            StaleConflictError: If ``conflict`` is not the pending conflict
        """
        choice = Resolution(choice)
        self.gate.take(conflict)
        if choice is Resolution.CANCEL:
            logger.info("Conflict resolution cancelled")
            return None

        target = destination_path(conflict)
        mapping = resolve(conflict, choice, self.detector.existing_names(target))
        assert mapping is not None
        replacing = choice is Resolution.REPLACE

        if isinstance(conflict, UploadConflict):
            if replacing:
                for name in conflict.conflicting_names:
                    self.engine.clear_destination(
                        paths.join(target, name), incoming_is_folder=False
                    )
            return self.uploads.submit(conflict.files, target, mapping)

        if isinstance(conflict, MoveConflict):
            item = conflict.item
            report = self.engine.move_item(
                item, target, mapping[item.name], replace=replacing
            )
            self._refresh_after_move(item, target)
            return report

        report = self.engine.rename_item(
            conflict.item, mapping[conflict.new_name], replace=replacing
        )
        self._refresh_if_visible(target)
        return report

    def wait(self, batch_id: str, timeout: float | None = None) -> bool:
        """Wait for an upload batch, then refresh the listing."""
        finished = self.uploads.wait(batch_id, timeout)
        if finished:
            self.refresh()
        return finished

    def cancel_upload(self, task_id: str) -> bool:
        return self.uploads.cancel(task_id)

    def clear_uploads(self) -> int:
        return self.uploads.clear()

    def _entry_for(self, full_path: str) -> Entry:
        entry = self.find_entry(full_path)
        if entry is not None:
            return entry
        # Not listed anywhere: treat as a file so the delete is an idempotent no-op.
        full_path = paths.normalize(full_path)
        return FileEntry(
            name=paths.name_of(full_path),
            full_path=full_path,
            size=0,
            updated_at=datetime.fromtimestamp(0, tz=timezone.utc),
            content_ref="",
        )

    def _refresh_if_visible(self, path: str) -> None:
        if paths.normalize(path) == self.cwd:
            self.refresh()

    def _refresh_after_move(self, item: Entry, target: str) -> None:
        if self.cwd in (paths.parent_of(item.full_path), target):
            self.refresh()
