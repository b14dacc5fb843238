"""
Clock helpers for the tracker.

Every timestamp the services write (project/task updated_at, due date
comparisons) goes through utc_now so that tests and storage agree on UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_overdue(due_date: Optional[datetime], status: Optional[str]) -> bool:
    """
    A task is overdue when its due date has passed and it is not completed.

    Args:
        due_date: The task's due date, naive values are read as UTC
        status: The task's status value

    Returns:
        False for tasks without a due date or with status "completed"
    """
    if due_date is None or status == "completed":
        return False
    return as_utc(due_date) < utc_now()
