"""
week_dates.py — Conversion between week numbers and calendar dates.

Cultivation plans express every milestone as a week number ("S12").
Week 1 is the week containing January 4th, so the Monday of week N is
found by backing up from Jan 4 to its Monday and adding (N - 1) weeks.

Week numbers are not bounds-checked: a shifted plan may ask for week 55
or week 0, which simply rolls into the next or previous year.
"""

from datetime import date, timedelta


def week_to_date(year: int, week: int) -> date:
    """Return the Monday of *week* in *year*.

    Examples:
        >>> week_to_date(2025, 12)
        datetime.date(2025, 3, 17)
        >>> week_to_date(2025, 55)
        datetime.date(2026, 1, 12)
    """
    jan4 = date(year, 1, 4)
    week1_monday = jan4 - timedelta(days=jan4.weekday())
    return week1_monday + timedelta(weeks=week - 1)


def date_to_week(d: date) -> int:
    """ISO week number of a date (Monday-based)."""
    return d.isocalendar()[1]


def format_week(week) -> str:
    """Format a week number for display: 7 -> "S07", None -> "-"."""
    if not week:
        return "-"
    return f"S{week:02d}"
