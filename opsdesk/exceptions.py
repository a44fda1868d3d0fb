"""
Domain exceptions for the task lifecycle core.

Validation and authentication errors are raised before any backend call.
Upload errors carry a ``kind`` so callers can tell storage permission
problems from bucket misconfiguration and everything else.
"""

from typing import Optional


class OpsDeskError(Exception):
    """Base exception for task lifecycle errors."""
    pass


class NotAuthenticatedError(OpsDeskError):
    """No resolved user for an operation that requires one."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class NotAuthorizedError(OpsDeskError):
    """The user is known but may not perform this operation."""
    pass


class EvidenceValidationError(OpsDeskError):
    """Evidence file rejected by type/size rules."""
    pass


class EvidenceUploadError(OpsDeskError):
    """Evidence upload failed; no submission row was written."""

    PERMISSION = "permission"
    BUCKET = "bucket"
    GENERIC = "generic"

    def __init__(self, message: str, kind: str = GENERIC, path: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.path = path


class UploadCancelledError(EvidenceUploadError):
    """Upload interrupted by the caller's cancel signal."""

    def __init__(self, path: Optional[str] = None):
        super().__init__("File upload failed: upload cancelled", kind=EvidenceUploadError.GENERIC, path=path)


class DailyTaskIntegrityError(OpsDeskError):
    """Instance creation reported success but no instance exists afterwards."""
    pass


class InvalidBulkActionError(OpsDeskError):
    """Unknown bulk action type."""

    def __init__(self, action_type: str):
        super().__init__(f"Invalid bulk action type: {action_type}")
        self.action_type = action_type


class BulkActionValidationError(OpsDeskError):
    """A bulk action is missing a field its type requires."""
    pass


class TaskCreationError(OpsDeskError):
    """Creating the task for one assignee failed."""

    def __init__(self, user_id: str, reason: str):
        super().__init__(f"Failed to create task for user {user_id}: {reason}")
        self.user_id = user_id
