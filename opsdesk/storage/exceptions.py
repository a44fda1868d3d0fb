"""Storage backend exceptions."""

from typing import Optional


class StorageError(Exception):
    """Base exception for storage backends."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class StoragePermissionError(StorageError):
    """Write or delete refused (filesystem permissions, path outside the bucket)."""
    pass


class StorageBucketError(StorageError):
    """Bucket missing or misconfigured."""
    pass


class StorageUploadError(StorageError):
    """Any other failure while writing an object."""
    pass


class StorageDeleteError(StorageError):
    """Removing an object failed."""
    pass
