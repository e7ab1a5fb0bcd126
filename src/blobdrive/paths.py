"""Helpers for slash-delimited object keys.

A path never starts or ends with ``/`` and the empty string is the root.
"""

from __future__ import annotations

from blobdrive.exceptions import InvalidTargetError

SEPARATOR = "/"


def normalize(path: str) -> str:
    """Strip surrounding slashes so that ``/a/b/`` becomes ``a/b``."""
    return path.strip(SEPARATOR)


def join(parent: str, name: str) -> str:
    parent = normalize(parent)
    return f"{parent}{SEPARATOR}{name}" if parent else name


def parent_of(path: str) -> str:
    path = normalize(path)
    head, _, _ = path.rpartition(SEPARATOR)
    return head


def name_of(path: str) -> str:
    return normalize(path).rpartition(SEPARATOR)[2]


def validate_name(name: str) -> str:
    """Return ``name`` stripped of surrounding whitespace, or raise InvalidTargetError."""
    name = name.strip()
    if not name:
        raise InvalidTargetError("Name must not be empty")
    if SEPARATOR in name:
        raise InvalidTargetError(f"Name must not contain '{SEPARATOR}': {name}")
    if name in (".", ".."):
        raise InvalidTargetError(f"Reserved name: {name}")
    return name


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    """True if ``path`` equals ``ancestor`` or lies anywhere below it."""
    path = normalize(path)
    ancestor = normalize(ancestor)
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + SEPARATOR)


def remap(key: str, source_prefix: str, dest_prefix: str) -> str:
    """Rewrite the leading ``source_prefix`` of ``key`` to ``dest_prefix``."""
    if key == source_prefix:
        return dest_prefix
    if not key.startswith(source_prefix + SEPARATOR):
        raise ValueError(f"{key} is not under {source_prefix}")
    return dest_prefix + key[len(source_prefix):]


def breadcrumbs(path: str, root_label: str = "Home") -> list[tuple[str, str]]:
    """Return ``(label, path)`` pairs from the root down to ``path``."""
    crumbs = [(root_label, "")]
    current = ""
    for segment in normalize(path).split(SEPARATOR):
        if not segment:
            continue
        current = join(current, segment)
        crumbs.append((segment, current))
    return crumbs
