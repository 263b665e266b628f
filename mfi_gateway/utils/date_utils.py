"""Date manipulation utilities"""

from datetime import date, datetime, timezone


def days_between(start: date, end: date) -> int:
    """Whole calendar days from start to end (negative if end is earlier)"""
    return (end - start).days


def format_due_date(value: date) -> str:
    """Render a due date the same way in every message"""
    return value.isoformat()


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)
