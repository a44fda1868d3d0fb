"""Evidence file storage."""

from .exceptions import (
    StorageError,
    StoragePermissionError,
    StorageBucketError,
    StorageUploadError,
    StorageDeleteError,
)
from .local_storage import LocalEvidenceStorage, get_evidence_storage
from .protocol import EvidenceStorage

__all__ = [
    "EvidenceStorage",
    "LocalEvidenceStorage",
    "get_evidence_storage",
    "StorageError",
    "StoragePermissionError",
    "StorageBucketError",
    "StorageUploadError",
    "StorageDeleteError",
]
