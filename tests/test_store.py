"""Tests for the in-memory object store and prefix grouping."""

from __future__ import annotations

import pytest
from helpers import NoCopyStore

from blobdrive.exceptions import NotFoundError, TransportError
from blobdrive.store import MemoryObjectStore, ObjectStore, split_listing, supports_copy


def test_split_listing_groups_direct_children() -> None:
    keys = ["a.txt", "docs/.keep", "docs/x/y.txt", "docs/z.txt", "docsx/w.txt"]

    root = split_listing("", keys)
    docs = split_listing("docs", keys)

    assert root.prefixes == ("docs", "docsx")
    assert root.objects == ("a.txt",)
    assert docs.prefixes == ("docs/x",)
    assert docs.objects == ("docs/.keep", "docs/z.txt")


def test_memory_store_satisfies_protocol() -> None:
    assert isinstance(MemoryObjectStore(), ObjectStore)
    assert supports_copy(MemoryObjectStore())
    assert not supports_copy(NoCopyStore())


def test_put_reports_chunks() -> None:
    store = MemoryObjectStore(chunk_size=3)
    reports: list[tuple[int, int]] = []

    store.put("k", b"abcdefg", lambda sent, total: reports.append((sent, total)))

    assert reports == [(3, 7), (6, 7), (7, 7)]
    assert store.get("k") == b"abcdefg"


def test_missing_keys_raise_not_found() -> None:
    store = MemoryObjectStore()

    with pytest.raises(NotFoundError):
        store.delete("missing")
    with pytest.raises(NotFoundError):
        store.get_metadata("missing")


def test_injected_failures() -> None:
    store = MemoryObjectStore({"a": b"1"})
    store.fail_on_put.add("b")
    store.fail_on_delete.add("a")

    with pytest.raises(TransportError):
        store.put("b", b"2")
    with pytest.raises(TransportError):
        store.copy("a", "b")
    with pytest.raises(TransportError):
        store.delete("a")

    assert store.keys() == ["a"]
    assert store.calls_of("put") == ["b"]
