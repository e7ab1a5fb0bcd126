"""Exception hierarchy for the blobdrive library."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from blobdrive.models import PlanReport


class BlobDriveError(Exception):
    """Base exception for all blobdrive errors."""

    pass


class ConfigError(BlobDriveError):
    """Raised when configuration is missing or invalid."""

    pass


class NotAuthorizedError(BlobDriveError):
    """Raised when a store call is attempted without an authorized user."""

    pass


class NotFoundError(BlobDriveError):
    """Raised when an object key does not exist in the store."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


class InvalidTargetError(BlobDriveError):
    """Raised for names or destinations that can never be valid."""

    pass


class TransportError(BlobDriveError):
    """Raised when the object store or the network fails a primitive call."""

    pass


class StaleConflictError(BlobDriveError):
    """Raised when resolving a conflict that is no longer the outstanding one."""

    pass


class UploadCancelledError(BlobDriveError):
    """Raised inside a transfer once the caller has cancelled it."""

    pass


class PartialFailureError(BlobDriveError):
    """Raised when a recursive operation failed for some, but not all, keys.

    Objects already deleted, copied or moved stay that way. ``failures`` maps
    each failed key to its error, ``completed`` lists the keys whose step
    succeeded, and ``report`` holds the per-step outcome when the operation
    ran from a plan.
    """

    def __init__(
        self,
        message: str,
        failures: dict[str, BaseException],
        completed: tuple[str, ...] = (),
        report: PlanReport | None = None,
    ) -> None:
        super().__init__(message)
        self.failures = failures
        self.completed = completed
        self.report = report

    @property
    def failed_paths(self) -> list[str]:
        """Keys whose step failed, sorted."""
        return sorted(self.failures)
