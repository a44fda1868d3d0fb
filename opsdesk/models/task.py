"""Task lifecycle data models (request/response shapes and enums)."""

from datetime import date, datetime
from enum import Enum
from typing import Optional, List, Literal
from pydantic import BaseModel, Field
import uuid


class TaskType(str, Enum):
    """Task types. Daily tasks recur from a template; one-off tasks don't."""
    DAILY = "daily"
    ONE_OFF = "one_off"


class TaskPriority(str, Enum):
    """Task priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    """Task status states."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED_FOR_REVIEW = "submitted_for_review"  # Waiting on a reviewer
    APPROVED = "approved"
    REJECTED = "rejected"
    DONE_AUTO_APPROVED = "done_auto_approved"      # Daily task completed inside the cutoff


class EvidenceType(str, Enum):
    """Kinds of evidence a submission can carry."""
    NONE = "none"
    PHOTO = "photo"
    FILE = "file"
    LINK = "link"
    CHECKLIST = "checklist"


class SubmissionType(str, Enum):
    """Completion submissions drive status; notes never do."""
    COMPLETION = "completion"
    NOTE = "note"


class ReviewStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ChecklistItem(BaseModel):
    """One checklist line in a submission."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    text: str
    completed: bool = False
    required: bool = False


class EvidenceFile(BaseModel):
    """A file attached to a submission, held in memory until upload."""
    name: str
    content_type: str
    content: bytes = b""

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        if "." not in self.name:
            return "file"
        return self.name.rsplit(".", 1)[-1].lower() or "file"


class SubmissionData(BaseModel):
    """Evidence supplied by the assignee for a task."""
    type: SubmissionType
    evidence_type: Optional[EvidenceType] = None
    file: Optional[EvidenceFile] = None
    url: Optional[str] = None
    notes: Optional[str] = None
    checklist: Optional[List[ChecklistItem]] = None


class UploadResult(BaseModel):
    """Stored object metadata returned by evidence storage."""
    url: str
    path: str
    name: str
    size: int


class AutoApprovalSettings(BaseModel):
    """Effective auto-approval policy for one user."""
    auto_approve_daily: bool = True
    auto_approve_cutoff_hours: float = 2.0
    scope: str = "default"  # user:<id>, global, default


class DateRange(BaseModel):
    start: date
    end: date


class TaskFilters(BaseModel):
    """Task list filters. The value "all" disables a criterion."""
    search: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    reviewer: Optional[str] = None
    date_range: Optional[DateRange] = None
    is_late: Optional[bool] = None
    needs_review: Optional[bool] = None
    tags: Optional[List[str]] = None


SortField = Literal["due_date", "priority", "status", "title", "created_at", "updated_at"]


class TaskSort(BaseModel):
    field: SortField = "due_date"
    direction: Literal["asc", "desc"] = "asc"


class BulkActionData(BaseModel):
    assignee_id: Optional[str] = None
    reviewer_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    notes: Optional[str] = None


class BulkTaskAction(BaseModel):
    """A bulk mutation over several task ids.

    ``type`` stays a plain string so unknown actions reach the dispatcher
    and fail there as invalid actions.
    """
    type: str
    task_ids: List[str]
    data: BulkActionData = Field(default_factory=BulkActionData)


class DailyTaskStatus(BaseModel):
    has_templates: bool
    has_instances: bool
    template_count: int
    instance_count: int
    last_check: datetime


class ReviewStats(BaseModel):
    """A reviewer's decisions over a trailing window."""
    total: int = 0
    approved: int = 0
    rejected: int = 0
    approval_rate: float = 0.0  # percent
    daily_tasks: int = 0
    one_off_tasks: int = 0
