from __future__ import annotations

from datetime import date, datetime


class InvalidBirthdayError(ValueError):
    pass


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def validate_month_day(month: int, day: int, *, allow_feb_29: bool = True) -> None:
    if month < 1 or month > 12:
        raise InvalidBirthdayError(f"Invalid month: {month}")

    if day < 1 or day > 31:
        raise InvalidBirthdayError(f"Invalid day: {day}")

    year = 2000 if allow_feb_29 else 2001
    try:
        date(year, month, day)
    except ValueError as exc:
        raise InvalidBirthdayError(f"Invalid month/day combination: {month:02d}-{day:02d}") from exc


def occurrence_for_year(month: int, day: int, year: int) -> date:
    """Birthday date in ``year``; Feb 29 falls back to Feb 28 outside leap years."""
    if month == 2 and day == 29 and not is_leap_year(year):
        return date(year, 2, 28)
    return date(year, month, day)


def _as_date(reference: date) -> date:
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def next_occurrence(month: int | None, day: int | None, reference: date) -> date | None:
    """First occurrence on or after ``reference``, or None for missing/impossible dates."""
    if month is None or day is None:
        return None

    today = _as_date(reference)
    try:
        candidate = occurrence_for_year(month, day, today.year)
        if candidate < today:
            candidate = occurrence_for_year(month, day, today.year + 1)
    except ValueError:
        return None
    return candidate


def days_until_next_occurrence(month: int | None, day: int | None, reference: date) -> int | None:
    nxt = next_occurrence(month, day, reference)
    if nxt is None:
        return None
    return (nxt - _as_date(reference)).days


def turning_age(year: int | None, occurrence: date) -> int | None:
    if year is None:
        return None
    return occurrence.year - year


def date_key(value: date) -> str:
    return _as_date(value).isoformat()
