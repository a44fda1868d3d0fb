"""Local filesystem evidence storage with path validation and atomic, no-overwrite writes."""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os

from ..models.task import UploadResult
from .exceptions import (
    StorageBucketError,
    StorageDeleteError,
    StoragePermissionError,
    StorageUploadError,
)

logger = logging.getLogger(__name__)


class LocalEvidenceStorage:
    """Stores evidence under <storage_root>/<bucket>/.

    Paths are validated against the bucket directory. Writes go to a temp file
    that is hard-linked into place, so a cancelled or failed upload leaves
    nothing behind and an existing object is never replaced.
    """

    CHUNK_SIZE = 64 * 1024  # 64KB

    def __init__(
        self,
        storage_root: str,
        bucket: str,
        public_base_url: Optional[str] = None,
        create_bucket: bool = True,
    ):
        self.storage_root = Path(storage_root).resolve()
        self.bucket = bucket
        self.bucket_root = self.storage_root / bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        if create_bucket:
            self.bucket_root.mkdir(parents=True, exist_ok=True, mode=0o750)

    def _get_full_path(self, path: str) -> Path:
        """Resolve and validate a path under the bucket. Raises StoragePermissionError on traversal."""
        full_path = (self.bucket_root / path).resolve()
        try:
            full_path.relative_to(self.bucket_root)
        except ValueError as e:
            raise StoragePermissionError(f"Path outside bucket {self.bucket}: {path}", path) from e
        return full_path

    def public_url(self, path: str) -> str:
        relative = f"/storage/{self.bucket}/{path}"
        return f"{self.public_base_url}{relative}" if self.public_base_url else relative

    async def upload(self, path: str, content: bytes, content_type: str, name: str) -> UploadResult:
        if not self.bucket_root.is_dir():
            raise StorageBucketError(f"Storage bucket {self.bucket} does not exist", path)

        target_path = self._get_full_path(path)

        temp_path: Optional[str] = None
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True, mode=0o750)
            temp_fd, temp_path = tempfile.mkstemp(
                dir=target_path.parent, prefix=".tmp_", suffix=target_path.suffix
            )
            os.close(temp_fd)

            async with aiofiles.open(temp_path, "wb") as f:
                for offset in range(0, len(content), self.CHUNK_SIZE):
                    await f.write(content[offset:offset + self.CHUNK_SIZE])

            try:
                os.link(temp_path, target_path)
            except FileExistsError as e:
                raise StorageUploadError(f"Object already exists: {path}", path) from e
        except StorageUploadError:
            raise
        except PermissionError as e:
            raise StoragePermissionError(f"Permission denied writing {path}: {e}", path) from e
        except OSError as e:
            raise StorageUploadError(f"Failed to write {path}: {e}", path) from e
        finally:
            if temp_path and Path(temp_path).exists():
                os.unlink(temp_path)

        logger.info(f"Stored {len(content)} bytes ({content_type}) at {self.bucket}/{path}")
        return UploadResult(url=self.public_url(path), path=path, name=name, size=len(content))

    async def remove(self, paths: List[str]) -> int:
        removed = 0
        for path in paths:
            file_path = self._get_full_path(path)
            if not file_path.exists():
                continue
            try:
                await aiofiles.os.remove(file_path)
                removed += 1
            except PermissionError as e:
                raise StoragePermissionError(f"Permission denied removing {path}: {e}", path) from e
            except OSError as e:
                raise StorageDeleteError(f"Failed to remove {path}: {e}", path) from e
        return removed


def get_evidence_storage() -> LocalEvidenceStorage:
    """Build the configured evidence storage backend."""
    from config import settings

    return LocalEvidenceStorage(
        storage_root=settings.storage_root,
        bucket=settings.storage_bucket,
        public_base_url=settings.storage_public_base_url or None,
    )
