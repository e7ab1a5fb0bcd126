"""Derive folder/file listings from flat object keys.

Folders are never stored. A folder exists while at least one key sits under
its prefix; an empty folder is kept listable by a zero-byte placeholder
object, which is filtered out of every listing.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Mapping

from blobdrive import paths
from blobdrive.auth import AuthContext, require_authorized
from blobdrive.models import Entry, FileEntry, FolderEntry, Listing, ObjectMetadata
from blobdrive.store import ObjectStore

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = ".keep"


def visible_objects(listing: Listing, placeholder: str = PLACEHOLDER_NAME) -> list[str]:
    """Object keys of ``listing`` minus folder placeholders."""
    return [key for key in listing.objects if paths.name_of(key) != placeholder]


def project_listing(
    listing: Listing,
    details: Mapping[str, tuple[ObjectMetadata, str]],
    placeholder: str = PLACEHOLDER_NAME,
) -> tuple[Entry, ...]:
    """Turn a raw listing into entries: folders first, then files.

    ``details`` maps each visible object key to its metadata and content
    reference. Store order is kept within each group. Names are unique in the
    result: a repeated prefix is listed once and a file whose name equals a
    folder's is left out.
    """
    folders: dict[str, FolderEntry] = {}
    for prefix in listing.prefixes:
        name = paths.name_of(prefix)
        if name and name not in folders:
            folders[name] = FolderEntry(name=name, full_path=paths.normalize(prefix))

    files: dict[str, FileEntry] = {}
    for key in visible_objects(listing, placeholder):
        name = paths.name_of(key)
        if name in folders or name in files:
            logger.warning(f"Skipping {key}: name already listed at this level")
            continue
        metadata, content_ref = details[key]
        files[name] = FileEntry(
            name=name,
            full_path=key,
            size=metadata.size,
            updated_at=metadata.updated_at,
            content_ref=content_ref,
        )
    return (*folders.values(), *files.values())


class NamespaceResolver:
    """Lists a path of the object store as typed folder and file entries."""

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

    def _details(self, key: str) -> tuple[ObjectMetadata, str]:
        return self.store.get_metadata(key), self.store.get_download_url(key)

    def list(self, path: str = "") -> tuple[Entry, ...]:
        """List ``path`` ("" is the root).

        Metadata for the files is fetched in parallel. The first failing
        fetch fails the whole listing, since a partial listing could hide
        files from the caller.
        """
        require_authorized(self.auth)
        path = paths.normalize(path)
        listing = self.store.list(path)
        keys = visible_objects(listing, self.placeholder)

        details: dict[str, tuple[ObjectMetadata, str]] = {}
        if keys:
            pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys)))
            try:
                futures: dict[Future[tuple[ObjectMetadata, str]], str] = {
                    pool.submit(self._details, key): key for key in keys
                }
                done, _ = wait(futures, return_when=FIRST_EXCEPTION)
                for future in done:
                    error = future.exception()
                    if error is not None:
                        logger.error(f"Listing {path or '/'} failed on {futures[future]}: {error}")
                        raise error
                for future, key in futures.items():
                    details[key] = future.result()
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

        entries = project_listing(listing, details, self.placeholder)
        logger.debug(f"Listed {path or '/'}: {len(entries)} entries")
        return entries

    def occupants(self, path: str = "") -> dict[str, bool]:
        """Map each name at ``path`` to whether it is a folder, without file metadata."""
        require_authorized(self.auth)
        listing = self.store.list(paths.normalize(path))
        occupants = {paths.name_of(prefix): True for prefix in listing.prefixes}
        for key in visible_objects(listing, self.placeholder):
            occupants.setdefault(paths.name_of(key), False)
        occupants.pop("", None)
        return occupants

    def names(self, path: str = "") -> set[str]:
        """Names occupying ``path``."""
        return set(self.occupants(path))
