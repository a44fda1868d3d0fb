"""
Evidence file validation and upload.

Files are validated against the declared evidence type before storage is
contacted. Uploads are stored at ``photos/`` or ``evidence/`` +
``{task_id}_{timestamp}_{suffix}.{ext}`` and can be interrupted through an
asyncio.Event. Every storage failure surfaces as EvidenceUploadError with
a message starting "File upload failed:".
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from config import settings
from ..exceptions import EvidenceUploadError, EvidenceValidationError, UploadCancelledError
from ..models.task import EvidenceFile, EvidenceType, UploadResult
from ..storage.exceptions import StorageBucketError, StoragePermissionError
from ..storage.protocol import EvidenceStorage
from ..utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

ALLOWED_FILE_TYPES = {
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
    # Images
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    # Video
    "video/mp4",
    "video/avi",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-ms-wmv",
    "video/webm",
    "video/x-flv",
    "video/x-matroska",
}


def validate_task_file(file: EvidenceFile, evidence_type: Optional[str]) -> None:
    """
    Check a file against size and type rules for its evidence type.

    Raises:
        EvidenceValidationError: With a user-facing message
    """
    max_bytes = settings.max_evidence_file_mb * 1024 * 1024
    if file.size > max_bytes:
        raise EvidenceValidationError(f"File size must be less than {settings.max_evidence_file_mb}MB")

    if evidence_type == EvidenceType.PHOTO.value:
        if not file.content_type.startswith("image/"):
            raise EvidenceValidationError("Please upload an image file (JPG, PNG, GIF, WebP)")
    elif evidence_type == EvidenceType.FILE.value:
        if file.content_type not in ALLOWED_FILE_TYPES:
            raise EvidenceValidationError(
                "Please upload a valid document (PDF, DOC, DOCX, XLS, XLSX, TXT, CSV), image, or video file"
            )


def evidence_folder(evidence_type: Optional[str]) -> str:
    return "photos" if evidence_type == EvidenceType.PHOTO.value else "evidence"


def build_evidence_path(task_id: str, file: EvidenceFile, folder: str, now: Optional[datetime] = None) -> str:
    """``{folder}/{task_id}_{timestamp}_{suffix}.{ext}`` with a filesystem-safe timestamp.

    The random suffix keeps files uploaded in the same millisecond apart.
    """
    now = now or get_local_now()
    timestamp = now.isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
    return f"{folder}/{task_id}_{timestamp}_{uuid.uuid4().hex[:8]}.{file.extension}"


def _upload_error(error: Exception, path: str, bucket: str) -> EvidenceUploadError:
    if isinstance(error, StoragePermissionError):
        return EvidenceUploadError(
            "File upload failed: Storage permissions need to be configured for evidence uploads.",
            kind=EvidenceUploadError.PERMISSION,
            path=path,
        )
    if isinstance(error, StorageBucketError):
        return EvidenceUploadError(
            f"File upload failed: Storage bucket configuration issue. Please check {bucket} bucket settings.",
            kind=EvidenceUploadError.BUCKET,
            path=path,
        )
    return EvidenceUploadError(
        f"File upload failed: {error or 'Unknown upload error'}",
        kind=EvidenceUploadError.GENERIC,
        path=path,
    )


async def upload_task_file(
    storage: EvidenceStorage,
    file: EvidenceFile,
    task_id: str,
    evidence_type: Optional[str],
    cancel_event: Optional[asyncio.Event] = None,
) -> UploadResult:
    """
    Upload one evidence file.

    Raises:
        UploadCancelledError: cancel_event was set before the upload finished
        EvidenceUploadError: Storage refused or failed the write
    """
    path = build_evidence_path(task_id, file, evidence_folder(evidence_type))

    if cancel_event is not None and cancel_event.is_set():
        raise UploadCancelledError(path)

    upload = asyncio.ensure_future(storage.upload(path, file.content, file.content_type, file.name))
    try:
        if cancel_event is None:
            return await upload

        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({upload, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if upload not in done:
            upload.cancel()
            await asyncio.gather(upload, return_exceptions=True)
            logger.info(f"Upload of {file.name} for task {task_id} cancelled")
            raise UploadCancelledError(path)

        return upload.result()

    except EvidenceUploadError:
        raise
    except asyncio.CancelledError:
        upload.cancel()
        raise
    except Exception as e:
        logger.error(f"Evidence upload failed for task {task_id} ({path}): {e}")
        raise _upload_error(e, path, storage.bucket) from e


@dataclass
class BatchUploadOutcome:
    """Per-file result of a batch upload."""
    name: str
    result: Optional[UploadResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


async def upload_evidence_batch(
    storage: EvidenceStorage,
    files: List[EvidenceFile],
    task_id: str,
    evidence_type: Optional[str] = EvidenceType.FILE.value,
    cancel_event: Optional[asyncio.Event] = None,
    concurrency: Optional[int] = None,
) -> List[BatchUploadOutcome]:
    """
    Upload several files with bounded concurrency.

    A failing file does not cancel its siblings. Outcomes are returned in
    the order of ``files``.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.upload_concurrency)

    async def _one(file: EvidenceFile) -> BatchUploadOutcome:
        async with semaphore:
            try:
                validate_task_file(file, evidence_type)
                result = await upload_task_file(storage, file, task_id, evidence_type, cancel_event)
                return BatchUploadOutcome(name=file.name, result=result)
            except EvidenceValidationError as e:
                return BatchUploadOutcome(name=file.name, error=str(e), error_kind="validation")
            except EvidenceUploadError as e:
                return BatchUploadOutcome(name=file.name, error=str(e), error_kind=e.kind)

    outcomes = await asyncio.gather(*[_one(f) for f in files])
    failed = sum(1 for o in outcomes if not o.ok)
    logger.info(f"Batch upload for task {task_id}: {len(outcomes) - failed} stored, {failed} failed")
    return list(outcomes)
