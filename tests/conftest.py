"""
Pytest configuration and shared fixtures.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TIMEZONE", "Asia/Kolkata")

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, Mock

from opsdesk.utils.notifications import Notifier


@pytest.fixture
def mock_database():
    """Mock database with session context manager."""
    db = Mock()
    session = AsyncMock()

    # Mock session context manager
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)

    # Mock session methods
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.add = Mock()
    session.add_all = Mock()
    session.delete = AsyncMock()

    db.session = Mock(return_value=session)

    return db, session


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def daily_task():
    """A daily instance due at 18:00 on 2026-03-10."""
    return {
        "id": "task-daily-1",
        "title": "Close the register",
        "description": "Count cash and lock the drawer",
        "task_type": "daily",
        "status": "in_progress",
        "priority": "medium",
        "assigned_to": "user-1",
        "reviewer_id": "lead-1",
        "due_date": date(2026, 3, 10),
        "due_time": "18:00",
        "instance_date": date(2026, 3, 10),
        "is_recurring_instance": True,
        "is_late": False,
        "tags": ["store"],
        "updated_at": datetime(2026, 3, 10, 9, 0),
    }


@pytest.fixture
def one_off_task():
    return {
        "id": "task-one-off-1",
        "title": "Repaint shelf labels",
        "description": None,
        "task_type": "one_off",
        "status": "not_started",
        "priority": "low",
        "assigned_to": "user-1",
        "reviewer_id": None,
        "due_date": date(2026, 3, 12),
        "due_time": None,
        "is_late": False,
        "tags": [],
        "updated_at": datetime(2026, 3, 9, 12, 0),
    }


