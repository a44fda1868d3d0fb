from .task import (
    TaskType,
    TaskStatus,
    TaskPriority,
    EvidenceType,
    SubmissionType,
    ReviewStatus,
    ChecklistItem,
    EvidenceFile,
    SubmissionData,
    UploadResult,
    AutoApprovalSettings,
    DateRange,
    TaskFilters,
    TaskSort,
    BulkActionData,
    BulkTaskAction,
    DailyTaskStatus,
    ReviewStats,
)

__all__ = [
    "TaskType",
    "TaskStatus",
    "TaskPriority",
    "EvidenceType",
    "SubmissionType",
    "ReviewStatus",
    "ChecklistItem",
    "EvidenceFile",
    "SubmissionData",
    "UploadResult",
    "AutoApprovalSettings",
    "DateRange",
    "TaskFilters",
    "TaskSort",
    "BulkActionData",
    "BulkTaskAction",
    "DailyTaskStatus",
    "ReviewStats",
]
