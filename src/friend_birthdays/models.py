from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime


MAX_NAME_LENGTH = 200
MAX_MEMO_LENGTH = 5000
MAX_ALIAS_LENGTH = 50
MIN_BIRTH_YEAR = 1900
MAX_BIRTH_YEAR = 2100
MIN_DAYS_BEFORE = 1
MAX_DAYS_BEFORE = 30


@dataclass(frozen=True)
class UseDefault:
    pass


@dataclass(frozen=True)
class Disabled:
    pass


@dataclass(frozen=True)
class Days:
    count: int

    def __post_init__(self) -> None:
        if not MIN_DAYS_BEFORE <= self.count <= MAX_DAYS_BEFORE:
            raise ValueError(
                f"reminder days must be between {MIN_DAYS_BEFORE} and {MAX_DAYS_BEFORE}"
            )


ReminderPreference = UseDefault | Disabled | Days


@dataclass(frozen=True)
class Friend:
    name: str
    month: int | None = None
    day: int | None = None
    year: int | None = None
    memo: str | None = None
    notify_days_before: int | None = None
    notify_enabled: bool = True
    notify_sound: bool | None = None
    aliases: tuple[str, ...] = ()
    id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_notification_birthday(self) -> bool:
        return self.month is not None and self.day is not None

    @property
    def reminder_preference(self) -> ReminderPreference:
        if not self.notify_enabled:
            return Disabled()
        if self.notify_days_before is None:
            return UseDefault()
        return Days(self.notify_days_before)

    def with_reminder_preference(self, preference: ReminderPreference) -> Friend:
        if isinstance(preference, Disabled):
            return replace(self, notify_enabled=False, notify_days_before=None)
        if isinstance(preference, Days):
            return replace(self, notify_enabled=True, notify_days_before=preference.count)
        return replace(self, notify_enabled=True, notify_days_before=None)

    def birthday_display(self) -> str:
        if self.year is not None and self.month is not None and self.day is not None:
            return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
        if self.month is not None and self.day is not None:
            return f"{self.month:02d}-{self.day:02d}"
        parts: list[str] = []
        if self.year is not None:
            parts.append(f"year {self.year}")
        if self.month is not None:
            parts.append(f"month {self.month}")
        if self.day is not None:
            parts.append(f"day {self.day}")
        return ", ".join(parts) if parts else "unset"


@dataclass(frozen=True)
class AppSettings:
    timezone: str = "UTC"
    notification_time: str = "12:00"
    default_notify_days_before: int = 1
    default_notify_sound: bool = True
    language: str = "en-US"
    start_on_login: bool = False
    reminder_window_minutes: int = 30
    check_interval_minutes: int = 60


@dataclass(frozen=True)
class AppConfig:
    settings: AppSettings = field(default_factory=AppSettings)
    friends: list[Friend] = field(default_factory=list)


@dataclass(frozen=True)
class DeliveryRecord:
    friend_id: str
    notification_date: str
    delivered_at: datetime
