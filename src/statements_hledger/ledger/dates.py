"""ISO date helpers (YYYY-MM-DD)."""

from datetime import date, datetime, timedelta


def format_date_iso(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def yesterday(today: date | None = None) -> str:
    return format_date_iso((today or date.today()) - timedelta(days=1))


def next_day(date_str: str) -> str:
    """Day after ``date_str``; hledger's ``-e`` end date is exclusive."""
    parsed = datetime.strptime(date_str, "%Y-%m-%d").date()
    return format_date_iso(parsed + timedelta(days=1))
