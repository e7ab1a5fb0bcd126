"""Authorization gate consulted before any store call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from blobdrive.exceptions import NotAuthorizedError


@runtime_checkable
class AuthContext(Protocol):
    @property
    def is_authorized(self) -> bool:
        ...


@dataclass(frozen=True)
class UidAuthContext:
    """Authorizes a signed-in user, optionally restricted to one allowed UID.

    Without ``allowed_uid`` any signed-in user is authorized. With it, a
    signed-in user whose UID differs is refused.
    """

    uid: str | None = None
    allowed_uid: str | None = None

    @property
    def is_authorized(self) -> bool:
        if not self.uid:
            return False
        return not self.allowed_uid or self.uid == self.allowed_uid


def require_authorized(auth: AuthContext | None) -> None:
    """Raise NotAuthorizedError unless ``auth`` is absent or authorized."""
    if auth is not None and not auth.is_authorized:
        raise NotAuthorizedError("Not authorized. Sign in with an allowed account first.")
