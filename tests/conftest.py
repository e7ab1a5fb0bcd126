"""Pytest fixtures for blobdrive tests."""

from __future__ import annotations

from typing import Iterator

import pytest
from helpers import FIXED_TIME

from blobdrive import Drive, MemoryObjectStore


@pytest.fixture
def store() -> MemoryObjectStore:
    """An object store holding a small tree.

    docs/.keep, docs/report.pdf, docs/drafts/.keep, docs/drafts/v1.txt,
    empty/.keep, notes.txt
    """
    return MemoryObjectStore(
        {
            "docs/.keep": b"",
            "docs/report.pdf": b"%PDF-1.4 report",
            "docs/drafts/.keep": b"",
            "docs/drafts/v1.txt": b"first draft",
            "empty/.keep": b"",
            "notes.txt": b"hello",
        },
        clock=lambda: FIXED_TIME,
    )


@pytest.fixture
def drive(store: MemoryObjectStore) -> Iterator[Drive]:
    """A Drive over the sample store."""
    with Drive(store, max_workers=4, max_uploads=2) as d:
        yield d
