"""Command-line interface for blobdrive."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click

from blobdrive import (
    Drive,
    FolderEntry,
    MoveConflict,
    NotAuthorizedError,
    PartialFailureError,
    RenameConflict,
    Resolution,
    UploadConflict,
    UploadState,
)
from blobdrive._internal.firebase_client import FirebaseStorageClient
from blobdrive.auth import UidAuthContext
from blobdrive.config import load_settings
from blobdrive.models import Entry, PendingConflict, PlanReport

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

CONFLICT_CHOICES = ["ask", "replace", "keep-both", "cancel"]


def get_drive() -> Drive:
    """Create a Drive over the configured Firebase Storage bucket."""
    settings = load_settings()
    auth = None
    if settings.uid or settings.allowed_uid:
        auth = UidAuthContext(uid=settings.uid, allowed_uid=settings.allowed_uid)
    store = FirebaseStorageClient(settings.bucket, settings.id_token)
    return Drive(
        store,
        auth,
        max_workers=settings.max_workers,
        max_uploads=settings.max_uploads,
    )


def _require_entry(drive: Drive, path: str) -> Entry:
    entry = drive.find_entry(path)
    if entry is None:
        raise click.ClickException(f"No such file or folder: {path}")
    return entry


def _settle(
    drive: Drive,
    outcome: PendingConflict | PlanReport | str | None,
    on_conflict: str,
) -> PlanReport | str | None:
    """Resolve ``outcome`` if it is a conflict, prompting when asked to."""
    if not isinstance(outcome, (UploadConflict, MoveConflict, RenameConflict)):
        return outcome
    names = ", ".join(outcome.conflicting_names)
    click.echo(click.style(f"Already exists: {names}", fg="yellow"), err=True)
    choice = on_conflict
    if choice == "ask":
        choice = click.prompt(
            "Resolve",
            type=click.Choice(["replace", "keep-both", "cancel"]),
            default="cancel",
        )
    return drive.resolve(outcome, Resolution(choice))


def _report_failure(e: Exception) -> None:
    click.echo(click.style(f"Error: {e}", fg="red"), err=True)
    if isinstance(e, PartialFailureError):
        for path in e.failed_paths:
            click.echo(f"  failed: {path}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(package_name="blobdrive")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
def main(verbose: bool) -> None:
    """Browse and manage folders in a flat object store bucket."""
    level = "DEBUG" if verbose else os.getenv("BLOBDRIVE_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


@main.command("ls")
@click.argument("path", default="")
def list_folder(path: str) -> None:
    """List a folder (default: the root).

    Examples:

        blobdrive ls

        blobdrive ls Photos/2024
    """
    try:
        with get_drive() as drive:
            entries = drive.list(path)
            if not entries:
                click.echo(f"(empty folder: /{path.strip('/')})")
            for entry in entries:
                if isinstance(entry, FolderEntry):
                    click.echo(click.style(f"  {entry.name}/", fg="blue"))
                else:
                    updated = entry.updated_at.strftime("%Y-%m-%d %H:%M")
                    click.echo(f"  {entry.name}  ({_format_size(entry.size)}, {updated})")
    except NotAuthorizedError as e:
        click.echo(click.style(f"Not authorized: {e}", fg="red"), err=True)
        sys.exit(1)
    except Exception as e:
        _report_failure(e)


@main.command()
@click.argument("path")
def mkdir(path: str) -> None:
    """Create an empty folder.

    Examples:

        blobdrive mkdir Photos/2024
    """
    parent, _, name = path.strip("/").rpartition("/")
    try:
        with get_drive() as drive:
            folder = drive.create_folder(name, parent)
            click.echo(click.style(f"Created folder: {folder.full_path}", fg="green"))
    except Exception as e:
        _report_failure(e)


@main.command("rm")
@click.argument("path")
@click.option("--recursive", "-r", is_flag=True, help="Delete a folder and everything in it")
def remove(path: str, recursive: bool) -> None:
    """Delete a file, or a folder with --recursive."""
    try:
        with get_drive() as drive:
            entry = _require_entry(drive, path)
            if isinstance(entry, FolderEntry) and not recursive:
                raise click.ClickException(f"{path} is a folder; use --recursive")
            drive.delete(entry)
            click.echo(click.style(f"Deleted: {entry.full_path}", fg="green"))
    except click.ClickException:
        raise
    except Exception as e:
        _report_failure(e)


@main.command("mv")
@click.argument("source")
@click.argument("target_folder")
@click.option(
    "--on-conflict",
    type=click.Choice(CONFLICT_CHOICES),
    default="ask",
    help="What to do if the name exists in the target folder",
)
def move(source: str, target_folder: str, on_conflict: str) -> None:
    """Move a file or folder into TARGET_FOLDER ("" or / for the root)."""
    try:
        with get_drive() as drive:
            entry = _require_entry(drive, source)
            outcome = _settle(drive, drive.move(entry, target_folder), on_conflict)
            if outcome is None:
                click.echo("Nothing moved.")
            else:
                click.echo(click.style(f"Moved: {entry.full_path} -> /{target_folder.strip('/')}", fg="green"))
    except click.ClickException:
        raise
    except Exception as e:
        _report_failure(e)


@main.command()
@click.argument("path")
@click.argument("new_name")
@click.option(
    "--on-conflict",
    type=click.Choice(CONFLICT_CHOICES),
    default="ask",
    help="What to do if NEW_NAME already exists",
)
def rename(path: str, new_name: str, on_conflict: str) -> None:
    """Rename a file or folder in place."""
    try:
        with get_drive() as drive:
            entry = _require_entry(drive, path)
            outcome = _settle(drive, drive.rename(entry, new_name), on_conflict)
            if outcome is None:
                click.echo("Nothing renamed.")
            else:
                click.echo(click.style(f"Renamed: {entry.full_path}", fg="green"))
    except click.ClickException:
        raise
    except Exception as e:
        _report_failure(e)


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--folder", "-f", default="", help="Target folder (default: the root)")
@click.option(
    "--on-conflict",
    type=click.Choice(CONFLICT_CHOICES),
    default="ask",
    help="What to do with files whose names already exist",
)
def upload(files: tuple[Path, ...], folder: str, on_conflict: str) -> None:
    """Upload files into a folder.

    Examples:

        blobdrive upload notes.txt

        blobdrive upload *.jpg --folder Photos --on-conflict keep-both
    """
    try:
        with get_drive() as drive:
            batch_id = _settle(drive, drive.upload(list(files), folder), on_conflict)
            if batch_id is None:
                click.echo("Upload cancelled.")
                return
            assert isinstance(batch_id, str)
            drive.uploads.wait(batch_id)
            tasks = drive.uploads.batch(batch_id)
    except Exception as e:
        _report_failure(e)
        return

    success_count = 0
    for task in tasks:
        if task.state is UploadState.DONE:
            click.echo(click.style("✓ ", fg="green") + f"{task.name} -> /{task.key}")
            success_count += 1
        else:
            click.echo(click.style("✗ ", fg="red") + f"{task.name}: {task.error_message}", err=True)

    total = len(tasks)
    if success_count == total:
        click.echo(click.style(f"\nAll {total} file(s) uploaded successfully!", fg="green"))
    else:
        click.echo(f"\n{success_count}/{total} file(s) uploaded.", err=True)
        sys.exit(1)


@main.command()
@click.argument("path")
def url(path: str) -> None:
    """Print the download URL of a file."""
    try:
        with get_drive() as drive:
            entry = _require_entry(drive, path)
            if isinstance(entry, FolderEntry):
                raise click.ClickException(f"{path} is a folder")
            click.echo(drive.download_url(entry))
    except click.ClickException:
        raise
    except Exception as e:
        _report_failure(e)


def _format_size(size_bytes: int) -> str:
    """Format file size in human-readable form."""
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


if __name__ == "__main__":
    main()
