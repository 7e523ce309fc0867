from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from friend_birthdays.date_logic import days_until_next_occurrence, turning_age
from friend_birthdays.models import Friend


@dataclass(frozen=True)
class NotificationTarget:
    friend: Friend
    days_until: int
    days_before: int
    next_date: date


@dataclass(frozen=True)
class UpcomingBirthday:
    friend: Friend
    days_until: int
    next_date: date
    turning_age: int | None


def resolve_days_before(friend: Friend, default_days_before: int) -> int:
    if friend.notify_days_before is not None:
        return friend.notify_days_before
    return default_days_before


def find_targets(
    friends: Iterable[Friend],
    reference: date,
    default_days_before: int,
) -> list[NotificationTarget]:
    """Friends whose next birthday falls within their look-ahead window.

    The eligibility checks run here even if the caller already filtered, so the
    result does not depend on how the store answered.
    """
    targets: list[NotificationTarget] = []

    for friend in friends:
        if not friend.notify_enabled or not friend.has_notification_birthday:
            continue

        days_until = days_until_next_occurrence(friend.month, friend.day, reference)
        if days_until is None:
            continue

        days_before = resolve_days_before(friend, default_days_before)
        if 0 <= days_until <= days_before:
            targets.append(
                NotificationTarget(
                    friend=friend,
                    days_until=days_until,
                    days_before=days_before,
                    next_date=reference + timedelta(days=days_until),
                )
            )

    targets.sort(key=lambda item: (item.days_until, item.friend.name.lower(), item.friend.id))
    return targets


def list_upcoming(
    friends: Iterable[Friend],
    reference: date,
    count: int | None = None,
) -> list[UpcomingBirthday]:
    rows: list[UpcomingBirthday] = []
    for friend in friends:
        days_until = days_until_next_occurrence(friend.month, friend.day, reference)
        if days_until is None:
            continue
        next_date = reference + timedelta(days=days_until)
        rows.append(
            UpcomingBirthday(
                friend=friend,
                days_until=days_until,
                next_date=next_date,
                turning_age=turning_age(friend.year, next_date),
            )
        )

    rows.sort(key=lambda row: (row.days_until, row.friend.name.lower()))
    if count is not None:
        return rows[:count]
    return rows
