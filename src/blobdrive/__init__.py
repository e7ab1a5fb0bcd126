"""blobdrive - folders, moves and uploads on top of a flat object store.

Example usage:
    from blobdrive import Drive, MemoryObjectStore, Resolution, UploadConflict

    with Drive(MemoryObjectStore()) as drive:
        drive.create_folder("Notes")
        outcome = drive.upload(["a.txt", "b.txt"], "Notes")
        if isinstance(outcome, UploadConflict):
            outcome = drive.resolve(outcome, Resolution.KEEP_BOTH)
        drive.wait(outcome)
        for entry in drive.list("Notes"):
            print(entry.name)
"""

from blobdrive.auth import AuthContext, UidAuthContext
from blobdrive.conflicts import ConflictDetector, make_unique
from blobdrive.drive import Drive
from blobdrive.exceptions import (
    BlobDriveError,
    ConfigError,
    InvalidTargetError,
    NotAuthorizedError,
    NotFoundError,
    PartialFailureError,
    StaleConflictError,
    TransportError,
    UploadCancelledError,
)
from blobdrive.models import (
    Entry,
    FileEntry,
    FolderEntry,
    MoveConflict,
    PlanReport,
    RenameConflict,
    Resolution,
    UploadConflict,
    UploadSource,
    UploadState,
    UploadTask,
)
from blobdrive.mutations import MutationEngine
from blobdrive.namespace import NamespaceResolver
from blobdrive.store import MemoryObjectStore, ObjectStore
from blobdrive.uploads import UploadCoordinator

__version__ = "0.1.0"

__all__ = [
    # Facade
    "Drive",
    # Components
    "NamespaceResolver",
    "ConflictDetector",
    "make_unique",
    "MutationEngine",
    "UploadCoordinator",
    # Stores and auth
    "ObjectStore",
    "MemoryObjectStore",
    "AuthContext",
    "UidAuthContext",
    # Models
    "Entry",
    "FileEntry",
    "FolderEntry",
    "UploadSource",
    "UploadState",
    "UploadTask",
    "Resolution",
    "UploadConflict",
    "MoveConflict",
    "RenameConflict",
    "PlanReport",
    # Exceptions
    "BlobDriveError",
    "ConfigError",
    "NotAuthorizedError",
    "NotFoundError",
    "InvalidTargetError",
    "TransportError",
    "PartialFailureError",
    "StaleConflictError",
    "UploadCancelledError",
]
