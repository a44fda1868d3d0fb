"""
SQLAlchemy models for PostgreSQL database.

Schema includes:
- Task templates (recurring definitions per assignee)
- Tasks (one-off tasks and dated daily instances)
- Task submissions (evidence, completions and notes)
- Task reviews (approve/reject decisions)
- Task comments (threaded discussion)
- Task settings (auto-approval policy per scope)
- Attendance records (check-in trigger for daily instances)
"""

from datetime import datetime, date
from typing import Optional, List, Dict, Any
import uuid
import enum

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    Date,
    Float,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
from sqlalchemy.sql import func


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    def to_dict(self) -> Dict[str, Any]:
        """Column values as a plain dict (relationships excluded)."""
        return {column.name: getattr(self, column.key, None) for column in self.__table__.columns}


# ==================== ENUMS ====================

class TaskTypeEnum(str, enum.Enum):
    DAILY = "daily"
    ONE_OFF = "one_off"


class TaskPriorityEnum(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatusEnum(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED_FOR_REVIEW = "submitted_for_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    DONE_AUTO_APPROVED = "done_auto_approved"


class SettingTypeEnum(str, enum.Enum):
    GLOBAL = "global"
    USER = "user"


class AttendanceEventTypeEnum(str, enum.Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"


# ==================== TASK TEMPLATES ====================

class TaskTemplateDB(Base):
    """Recurring task definitions; daily instances are created from these."""
    __tablename__ = "task_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    assignee_id: Mapped[str] = mapped_column(String(36), nullable=False)
    task_type: Mapped[str] = mapped_column(String(20), default="daily")  # daily, one_off
    priority: Mapped[str] = mapped_column(String(20), default="medium")
    evidence_required: Mapped[str] = mapped_column(String(20), default="none")
    due_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)  # 18:00
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    # Control
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    reviewer_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Metadata
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    instances: Mapped[List["TaskDB"]] = relationship("TaskDB", back_populates="template")

    __table_args__ = (
        Index("idx_templates_assignee", "assignee_id"),
        Index("idx_templates_active", "is_active"),
    )


# ==================== TASKS ====================

class TaskDB(Base):
    """Tasks: one-off work items and dated daily instances."""
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    template_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("task_templates.id"), nullable=True
    )

    # Core fields
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification
    task_type: Mapped[str] = mapped_column(String(20), default="one_off")
    status: Mapped[str] = mapped_column(String(30), default="not_started")
    priority: Mapped[str] = mapped_column(String(20), default="medium")
    evidence_required: Mapped[str] = mapped_column(String(20), default="none")

    # Assignment
    assigned_to: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    assigned_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reviewer_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Timing
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    due_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    instance_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_recurring_instance: Mapped[bool] = mapped_column(Boolean, default=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Metadata
    is_late: Mapped[bool] = mapped_column(Boolean, default=False)
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    # Relationships
    template: Mapped[Optional["TaskTemplateDB"]] = relationship("TaskTemplateDB", back_populates="instances")
    submissions: Mapped[List["TaskSubmissionDB"]] = relationship(
        "TaskSubmissionDB", back_populates="task", cascade="all, delete-orphan"
    )
    reviews: Mapped[List["TaskReviewDB"]] = relationship(
        "TaskReviewDB", back_populates="task", cascade="all, delete-orphan"
    )

    __table_args__ = (
        # Backs the idempotent daily instance procedure
        UniqueConstraint("assigned_to", "template_id", "instance_date", name="uq_tasks_daily_instance"),
        Index("idx_tasks_status", "status"),
        Index("idx_tasks_priority", "priority"),
        Index("idx_tasks_assigned_to", "assigned_to"),
        Index("idx_tasks_due_date", "due_date"),
        Index("idx_tasks_instance_date", "instance_date"),
        Index("idx_tasks_type", "task_type"),
    )


# ==================== SUBMISSIONS ====================

class TaskSubmissionDB(Base):
    """Evidence, completion and note submissions against a task."""
    __tablename__ = "task_submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)

    submission_type: Mapped[str] = mapped_column(String(20), nullable=False)  # completion, note
    evidence_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # photo, file, link, checklist

    # Stored file metadata
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    link_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    checklist_data: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)

    submitted_by: Mapped[str] = mapped_column(String(36), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    task: Mapped["TaskDB"] = relationship("TaskDB", back_populates="submissions")

    __table_args__ = (
        Index("idx_submissions_task", "task_id"),
        Index("idx_submissions_submitted_at", "submitted_at"),
    )


# ==================== REVIEWS ====================

class TaskReviewDB(Base):
    """Approve/reject decisions recorded by reviewers."""
    __tablename__ = "task_reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    reviewer_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # approved, rejected
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    task: Mapped["TaskDB"] = relationship("TaskDB", back_populates="reviews")

    __table_args__ = (
        Index("idx_reviews_task", "task_id"),
    )


# ==================== COMMENTS ====================

class TaskCommentDB(Base):
    """Discussion on a task; a reply points at its parent comment."""
    __tablename__ = "task_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    parent_comment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("task_comments.id", ondelete="CASCADE"), nullable=True
    )
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_comments_task", "task_id"),
        Index("idx_comments_created_at", "created_at"),
    )


# ==================== SETTINGS ====================

class TaskSettingsDB(Base):
    """Auto-approval and notification policy, global or per user."""
    __tablename__ = "task_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    setting_type: Mapped[str] = mapped_column(String(20), nullable=False)  # global, user
    target_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    auto_approve_daily: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_approve_cutoff_hours: Mapped[float] = mapped_column(Float, default=2.0)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    due_reminder_hours: Mapped[int] = mapped_column(Integer, default=2)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("setting_type", "target_id", name="uq_task_settings_scope"),
    )


# ==================== ATTENDANCE RECORDS ====================

class AttendanceRecordDB(Base):
    """Check-in/check-out events; a check-in re-runs daily instantiation."""
    __tablename__ = "attendance_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)  # check_in, check_out
    event_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_attendance_user", "user_id"),
        Index("idx_attendance_date", "event_date"),
    )
