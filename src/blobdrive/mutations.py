"""Folder creation, delete, move and rename over a flat object store.

The store has no rename or move primitive and no transactions. Move and
rename are built as a plan of per-object copies followed by deletes of the
originals. A failure part way leaves objects at both the source and the
destination; it is reported with PartialFailureError, never rolled back.
Only deletes are safe to retry.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence

from blobdrive import paths
from blobdrive.auth import AuthContext, require_authorized
from blobdrive.exceptions import InvalidTargetError, NotFoundError, PartialFailureError
from blobdrive.models import (
    Entry,
    FolderEntry,
    MutationPlan,
    PlanReport,
    PlanStep,
    StepResult,
)
from blobdrive.namespace import PLACEHOLDER_NAME
from blobdrive.store import ObjectStore, supports_copy

logger = logging.getLogger(__name__)


def plan_delete_folder(keys: Sequence[str], folder_path: str) -> MutationPlan:
    return MutationPlan(
        description=f"delete folder {folder_path}",
        steps=tuple(PlanStep(kind="delete", source=key) for key in keys),
    )


def plan_move(
    keys: Sequence[str], source_path: str, dest_path: str, description: str | None = None
) -> MutationPlan:
    """Copy every key from under ``source_path`` to under ``dest_path``, then delete the originals."""
    copies = tuple(
        PlanStep(kind="copy", source=key, destination=paths.remap(key, source_path, dest_path))
        for key in keys
    )
    deletes = tuple(PlanStep(kind="delete", source=key) for key in keys)
    return MutationPlan(
        description=description or f"move {source_path} -> {dest_path}",
        steps=copies + deletes,
    )


def plan_rename(keys: Sequence[str], source_path: str, new_name: str) -> MutationPlan:
    dest_path = paths.join(paths.parent_of(source_path), new_name)
    return plan_move(keys, source_path, dest_path, f"rename {source_path} -> {new_name}")


def validate_move_target(item: Entry, target_folder_path: str) -> str:
    """Normalize ``target_folder_path`` and refuse moving a folder into itself or below."""
    target = paths.normalize(target_folder_path)
    if isinstance(item, FolderEntry) and paths.is_same_or_descendant(target, item.full_path):
        raise InvalidTargetError(f"Cannot move {item.full_path} into itself or its subfolders")
    return target


class MutationEngine:
    """Runs folder and file mutations as primitive store calls."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        auth: AuthContext | None = None,
        max_workers: int = 8,
        placeholder: str = PLACEHOLDER_NAME,
    ) -> None:
        self.store = store
        self.auth = auth
        self.max_workers = max_workers
        self.placeholder = placeholder

    def create_folder(self, path: str, name: str) -> FolderEntry:
        """Create an empty folder by writing its placeholder object."""
        require_authorized(self.auth)
        name = paths.validate_name(name)
        folder_path = paths.join(path, name)
        self.store.put(paths.join(folder_path, self.placeholder), b"")
        logger.info(f"Created folder: {folder_path}")
        return FolderEntry(name=name, full_path=folder_path)

    def delete_file(self, full_path: str) -> None:
        """Delete one object. An already missing object counts as deleted."""
        require_authorized(self.auth)
        try:
            self.store.delete(full_path)
        except NotFoundError:
            logger.warning(f"Delete of missing object ignored: {full_path}")
            return
        logger.info(f"Deleted file: {full_path}")

    def walk(self, prefix: str) -> list[str]:
        """Every object key below ``prefix``, placeholders included."""
        listing = self.store.list(prefix)
        keys = list(listing.objects)
        for sub_prefix in listing.prefixes:
            keys.extend(self.walk(sub_prefix))
        return keys

    def delete_folder(self, full_path: str) -> PlanReport:
        """Delete every object under ``full_path`` in parallel.

        All deletes are issued before this returns. Objects deleted before a
        failure stay deleted.
        """
        require_authorized(self.auth)
        full_path = paths.normalize(full_path)
        if not full_path:
            raise InvalidTargetError("Cannot delete the root folder")
        plan = plan_delete_folder(self.walk(full_path), full_path)
        report = self.execute(plan)
        logger.info(f"Deleted folder: {full_path} ({len(plan.steps)} objects)")
        return report

    def clear_destination(self, dest_path: str, *, incoming_is_folder: bool) -> None:
        """Remove whatever occupies ``dest_path`` before a replacing write.

        A file replacing a file is left to the store's overwrite-on-put.
        Every other combination deletes the occupant first so a folder and a
        file never share a name.
        """
        listing = self.store.list(paths.parent_of(dest_path))
        if dest_path in listing.prefixes:
            self.delete_folder(dest_path)
        elif dest_path in listing.objects and incoming_is_folder:
            self.delete_file(dest_path)

    def move_item(
        self,
        item: Entry,
        target_folder_path: str,
        dest_name: str | None = None,
        *,
        replace: bool = False,
    ) -> PlanReport | None:
        """Move ``item`` into ``target_folder_path``, optionally under ``dest_name``.

        Returns None when source and destination are the same key.

        Raises:
            InvalidTargetError: If a folder would move into itself or a descendant,
                or a replaced destination folder contains ``item``
            PartialFailureError: If some copies or deletes failed
        """
        target = validate_move_target(item, target_folder_path)
        name = paths.validate_name(dest_name or item.name)
        require_authorized(self.auth)
        dest_path = paths.join(target, name)
        return self._relocate(
            item,
            dest_path,
            lambda keys: plan_move(keys, item.full_path, dest_path),
            replace=replace,
        )

    def rename_item(
        self, item: Entry, new_name: str, *, replace: bool = False
    ) -> PlanReport | None:
        """Rename ``item`` within its parent folder. Unchanged names issue no store call."""
        if new_name.strip() == item.name:
            return None
        name = paths.validate_name(new_name)
        require_authorized(self.auth)
        dest_path = paths.join(paths.parent_of(item.full_path), name)
        return self._relocate(
            item,
            dest_path,
            lambda keys: plan_rename(keys, item.full_path, name),
            replace=replace,
        )

    def _relocate(
        self,
        item: Entry,
        dest_path: str,
        make_plan: Callable[[Sequence[str]], MutationPlan],
        *,
        replace: bool,
    ) -> PlanReport | None:
        if dest_path == item.full_path:
            return None
        if replace:
            if paths.is_same_or_descendant(item.full_path, dest_path):
                raise InvalidTargetError(
                    f"Cannot replace {dest_path}: it contains {item.full_path}"
                )
            self.clear_destination(dest_path, incoming_is_folder=item.is_folder)

        keys = self.walk(item.full_path) if item.is_folder else [item.full_path]
        report = self.execute(make_plan(keys))
        logger.info(f"Moved {item.full_path} -> {dest_path}")
        return report

    def _copy(self, source: str, destination: str) -> None:
        if supports_copy(self.store):
            self.store.copy(source, destination)  # type: ignore[attr-defined]
        else:
            self.store.put(destination, self.store.get(source))

    def _run_step(self, step: PlanStep) -> StepResult:
        try:
            if step.kind == "copy":
                assert step.destination is not None
                self._copy(step.source, step.destination)
            else:
                try:
                    self.store.delete(step.source)
                except NotFoundError:
                    logger.debug(f"Already gone: {step.source}")
        except Exception as e:
            logger.error(f"Step failed: {step}: {e}")
            return StepResult(step=step, ok=False, error=str(e), exception=e)
        logger.debug(f"Step done: {step}")
        return StepResult(step=step, ok=True)

    def _run_phase(self, steps: Sequence[PlanStep]) -> list[StepResult]:
        if not steps:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(steps))) as pool:
            return list(pool.map(self._run_step, steps))

    def execute(self, plan: MutationPlan) -> PlanReport:
        """Run all copies in parallel, then, if every copy succeeded, all deletes.

        Raises:
            PartialFailureError: Carrying the PlanReport, if any step failed
        """
        results = self._run_phase(plan.copies)
        if all(r.ok for r in results):
            results += self._run_phase(plan.deletes)
        report = PlanReport(plan=plan, results=tuple(results))
        if not report.succeeded:
            failed = report.failed_steps
            raise PartialFailureError(
                f"{plan.description}: {len(failed)} of {len(plan.steps)} steps failed",
                failures={r.step.source: r.exception or RuntimeError(r.error) for r in failed},
                completed=tuple(r.step.source for r in report.results if r.ok),
                report=report,
            )
        return report
