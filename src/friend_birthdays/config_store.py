from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
import tomllib
import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from friend_birthdays.date_logic import InvalidBirthdayError, validate_month_day
from friend_birthdays.models import (
    MAX_ALIAS_LENGTH,
    MAX_BIRTH_YEAR,
    MAX_DAYS_BEFORE,
    MAX_MEMO_LENGTH,
    MAX_NAME_LENGTH,
    MIN_BIRTH_YEAR,
    MIN_DAYS_BEFORE,
    AppConfig,
    AppSettings,
    Friend,
)

if TYPE_CHECKING:
    from friend_birthdays.delivery_ledger import DeliveryLedger

LOGGER = logging.getLogger(__name__)

MONTH_DAY_PATTERN = re.compile(r"(\d{1,2})-(\d{1,2}|\*)")


def _toml_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def parse_time_string(value: str) -> tuple[int, int]:
    pieces = value.split(":")
    if len(pieces) != 2:
        raise ValueError("notification_time must be in HH:MM format")

    hour, minute = pieces
    if not hour.isdigit() or not minute.isdigit():
        raise ValueError("notification_time must contain numeric hour/minute")

    hour_i = int(hour)
    minute_i = int(minute)
    if hour_i < 0 or hour_i > 23 or minute_i < 0 or minute_i > 59:
        raise ValueError("notification_time must be a valid 24-hour time")

    return hour_i, minute_i


def _check_range(name: str, value: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < low or value > high:
        raise ValueError(f"{name} must be between {low} and {high}")
    return value


def validate_settings(settings: AppSettings, *, strict: bool = True) -> AppSettings:
    tz_name = settings.timezone.strip()
    if not tz_name:
        raise ValueError("timezone must not be empty")
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tz_name}") from exc

    hour, minute = parse_time_string(settings.notification_time)

    language = settings.language.strip()
    if not language:
        raise ValueError("language must not be empty")

    validated = AppSettings(
        timezone=tz_name,
        notification_time=f"{hour:02d}:{minute:02d}",
        default_notify_days_before=_check_range(
            "default_notify_days_before",
            settings.default_notify_days_before,
            MIN_DAYS_BEFORE,
            MAX_DAYS_BEFORE,
        ),
        default_notify_sound=bool(settings.default_notify_sound),
        language=language,
        start_on_login=bool(settings.start_on_login),
        reminder_window_minutes=_check_range(
            "reminder_window_minutes", settings.reminder_window_minutes, 0, 720
        ),
        check_interval_minutes=_check_range(
            "check_interval_minutes", settings.check_interval_minutes, 1, 1440
        ),
    )

    # Ticks are check_interval_minutes apart, so the band around
    # notification_time must be at least that wide for one to land in it.
    if 2 * validated.reminder_window_minutes < validated.check_interval_minutes:
        message = (
            f"check_interval_minutes ({validated.check_interval_minutes}) must not exceed "
            f"twice reminder_window_minutes ({validated.reminder_window_minutes})"
        )
        if strict:
            raise ValueError(message)
        LOGGER.warning("Reminders may never fire: %s", message)
    return validated


def _validate_aliases(aliases: tuple[str, ...], *, strict: bool = True) -> tuple[str, ...]:
    cleaned: list[str] = []
    seen: set[str] = set()
    for alias in aliases:
        value = alias.strip()
        if not value:
            continue
        if len(value) > MAX_ALIAS_LENGTH:
            _reject(f"alias must be at most {MAX_ALIAS_LENGTH} characters: {value}", strict)
        folded = value.casefold()
        if folded in seen:
            _reject(f"duplicate alias: {value}", strict)
            continue
        seen.add(folded)
        cleaned.append(value)
    return tuple(cleaned)


def _reject(message: str, strict: bool) -> None:
    if strict:
        raise ValueError(message)
    LOGGER.warning("Keeping stored friend with invalid data: %s", message)


def _in_range(value: int, low: int, high: int) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and low <= value <= high


def validate_friend(friend: Friend, *, strict: bool = True) -> Friend:
    """Return a normalised copy of ``friend`` or raise ValueError.

    With ``strict`` off, field problems are logged instead of raised so a
    stored row that no longer passes validation still loads. An unusable
    birthday is kept as-is and is simply never eligible for reminders; an
    out-of-range reminder override falls back to the global default.
    """
    name = friend.name.strip()
    if not name:
        _reject("name must not be empty", strict)
    if len(name) > MAX_NAME_LENGTH:
        _reject(f"name must be at most {MAX_NAME_LENGTH} characters", strict)

    if friend.year is not None and not _in_range(friend.year, MIN_BIRTH_YEAR, MAX_BIRTH_YEAR):
        _reject(f"{name}: year must be between {MIN_BIRTH_YEAR} and {MAX_BIRTH_YEAR}", strict)
    if friend.month is not None and not _in_range(friend.month, 1, 12):
        _reject(f"{name}: month must be between 1 and 12", strict)
    elif friend.day is not None and not _in_range(friend.day, 1, 31):
        _reject(f"{name}: day must be between 1 and 31", strict)
    elif friend.month is not None and friend.day is not None:
        try:
            validate_month_day(friend.month, friend.day, allow_feb_29=True)
            if friend.year is not None:
                date(friend.year, friend.month, friend.day)
        except (InvalidBirthdayError, ValueError) as exc:
            _reject(f"{name}: {exc}", strict)

    memo = friend.memo.strip() if friend.memo is not None else None
    if memo is not None and len(memo) > MAX_MEMO_LENGTH:
        _reject(f"{name}: memo must be at most {MAX_MEMO_LENGTH} characters", strict)

    notify_days_before = friend.notify_days_before
    if notify_days_before is not None and not _in_range(
        notify_days_before, MIN_DAYS_BEFORE, MAX_DAYS_BEFORE
    ):
        _reject(
            f"{name}: notify_days_before must be between {MIN_DAYS_BEFORE} and {MAX_DAYS_BEFORE}",
            strict,
        )
        notify_days_before = None

    return replace(
        friend,
        name=name,
        memo=memo or None,
        notify_days_before=notify_days_before,
        notify_enabled=bool(friend.notify_enabled),
        aliases=_validate_aliases(tuple(friend.aliases), strict=strict),
    )


def validate_config(config: AppConfig, *, strict: bool = True) -> AppConfig:
    settings = validate_settings(config.settings, strict=strict)

    validated_friends: list[Friend] = []
    seen_ids: set[str] = set()
    for friend in config.friends:
        if not friend.id:
            raise ValueError(f"friend {friend.name!r} has no id")
        if friend.id in seen_ids:
            raise ValueError(f"duplicate friend id: {friend.id}")
        seen_ids.add(friend.id)
        validated_friends.append(validate_friend(friend, strict=strict))

    return AppConfig(settings=settings, friends=validated_friends)


def _optional_int(row: dict[str, Any], key: str) -> int | None:
    value = row.get(key)
    return int(value) if value is not None else None


def _optional_datetime(row: dict[str, Any], key: str) -> datetime | None:
    value = row.get(key)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("rb") as file_obj:
        data = tomllib.load(file_obj)

    defaults = AppSettings()
    raw_settings = data.get("settings", {})
    settings = AppSettings(
        timezone=str(raw_settings.get("timezone", defaults.timezone)),
        notification_time=str(raw_settings.get("notification_time", defaults.notification_time)),
        default_notify_days_before=int(
            raw_settings.get("default_notify_days_before", defaults.default_notify_days_before)
        ),
        default_notify_sound=bool(
            raw_settings.get("default_notify_sound", defaults.default_notify_sound)
        ),
        language=str(raw_settings.get("language", defaults.language)),
        start_on_login=bool(raw_settings.get("start_on_login", defaults.start_on_login)),
        reminder_window_minutes=int(
            raw_settings.get("reminder_window_minutes", defaults.reminder_window_minutes)
        ),
        check_interval_minutes=int(
            raw_settings.get("check_interval_minutes", defaults.check_interval_minutes)
        ),
    )

    friends: list[Friend] = []
    for row in data.get("friends", []):
        sound = row.get("notify_sound")
        friends.append(
            Friend(
                id=str(row.get("id", "")),
                name=str(row.get("name", "")),
                year=_optional_int(row, "year"),
                month=_optional_int(row, "month"),
                day=_optional_int(row, "day"),
                memo=str(row["memo"]) if row.get("memo") is not None else None,
                notify_days_before=_optional_int(row, "notify_days_before"),
                notify_enabled=bool(row.get("notify_enabled", True)),
                notify_sound=bool(sound) if sound is not None else None,
                aliases=tuple(str(v) for v in row.get("aliases", [])),
                created_at=_optional_datetime(row, "created_at"),
                updated_at=_optional_datetime(row, "updated_at"),
            )
        )

    return validate_config(AppConfig(settings=settings, friends=friends), strict=False)


def render_config(config: AppConfig) -> str:
    validated = validate_config(config, strict=False)
    settings = validated.settings

    lines: list[str] = [
        "[settings]",
        f'timezone = "{_toml_escape(settings.timezone)}"',
        f'notification_time = "{settings.notification_time}"',
        f"default_notify_days_before = {settings.default_notify_days_before}",
        f"default_notify_sound = {_toml_bool(settings.default_notify_sound)}",
        f'language = "{_toml_escape(settings.language)}"',
        f"start_on_login = {_toml_bool(settings.start_on_login)}",
        f"reminder_window_minutes = {settings.reminder_window_minutes}",
        f"check_interval_minutes = {settings.check_interval_minutes}",
        "",
    ]

    for friend in validated.friends:
        lines.append("[[friends]]")
        lines.append(f'id = "{_toml_escape(friend.id)}"')
        lines.append(f'name = "{_toml_escape(friend.name)}"')
        if friend.year is not None:
            lines.append(f"year = {friend.year}")
        if friend.month is not None:
            lines.append(f"month = {friend.month}")
        if friend.day is not None:
            lines.append(f"day = {friend.day}")
        if friend.memo is not None:
            lines.append(f'memo = "{_toml_escape(friend.memo)}"')
        if friend.notify_days_before is not None:
            lines.append(f"notify_days_before = {friend.notify_days_before}")
        lines.append(f"notify_enabled = {_toml_bool(friend.notify_enabled)}")
        if friend.notify_sound is not None:
            lines.append(f"notify_sound = {_toml_bool(friend.notify_sound)}")
        aliases = ", ".join(f'"{_toml_escape(alias)}"' for alias in friend.aliases)
        lines.append(f"aliases = [{aliases}]")
        if friend.created_at is not None:
            lines.append(f'created_at = "{friend.created_at.isoformat()}"')
        if friend.updated_at is not None:
            lines.append(f'updated_at = "{friend.updated_at.isoformat()}"')
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def save_config_atomic(path: Path, config: AppConfig) -> None:
    rendered = render_config(config)
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        delete=False,
    ) as temp_file:
        temp_file.write(rendered)
        temp_name = temp_file.name

    os.replace(temp_name, path)


def ensure_default_config(path: Path) -> None:
    if path.exists():
        return

    save_config_atomic(path, AppConfig())
    LOGGER.info("Created default config at %s", path)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _name_key(friend: Friend) -> tuple[str, str]:
    return friend.name.lower(), friend.id


def _matches_keyword(friend: Friend, keyword: str) -> bool:
    needle = keyword.casefold()
    if needle in friend.name.casefold():
        return True
    if friend.memo is not None and needle in friend.memo.casefold():
        return True
    return any(needle in alias.casefold() for alias in friend.aliases)


class ConfigStore:
    """Friends and application settings kept in one TOML file.

    Every public method is a single load-modify-save unit guarded by the
    instance lock, so interactive edits and the notification scheduler can
    share a store without holding it for longer than one operation.
    """

    def __init__(self, path: Path, *, ledger: DeliveryLedger | None = None) -> None:
        self._path = path
        self._ledger = ledger
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> AppConfig:
        ensure_default_config(self._path)
        return load_config(self._path)

    def list_all(self) -> list[Friend]:
        with self._lock:
            return sorted(self._load().friends, key=_name_key)

    def get_by_id(self, friend_id: str) -> Friend | None:
        with self._lock:
            for friend in self._load().friends:
                if friend.id == friend_id:
                    return friend
        return None

    def add(self, friend: Friend) -> str:
        now = _utcnow()
        new_friend = validate_friend(
            replace(friend, id=str(uuid.uuid4()), created_at=now, updated_at=now)
        )
        with self._lock:
            config = self._load()
            save_config_atomic(
                self._path,
                AppConfig(settings=config.settings, friends=[*config.friends, new_friend]),
            )
        LOGGER.info("Added friend %s (%s)", new_friend.name, new_friend.id)
        return new_friend.id

    def update(self, friend: Friend) -> Friend:
        with self._lock:
            config = self._load()
            for index, existing in enumerate(config.friends):
                if existing.id == friend.id:
                    break
            else:
                raise KeyError(f"Unknown friend id: {friend.id}")

            updated = validate_friend(
                replace(friend, created_at=existing.created_at, updated_at=_utcnow())
            )
            friends = list(config.friends)
            friends[index] = updated
            save_config_atomic(self._path, AppConfig(settings=config.settings, friends=friends))
        LOGGER.info("Updated friend %s (%s)", updated.name, updated.id)
        return updated

    def delete(self, friend_id: str) -> bool:
        with self._lock:
            config = self._load()
            remaining = [friend for friend in config.friends if friend.id != friend_id]
            if len(remaining) == len(config.friends):
                return False
            save_config_atomic(self._path, AppConfig(settings=config.settings, friends=remaining))

        if self._ledger is not None:
            self._ledger.remove_friend(friend_id)
        LOGGER.info("Deleted friend %s", friend_id)
        return True

    def search(self, keyword: str) -> list[Friend]:
        text = keyword.strip()
        if not text:
            return self.list_all()

        friends = self.list_all()
        structured = MONTH_DAY_PATTERN.fullmatch(text)
        if structured:
            month = int(structured.group(1))
            day = None if structured.group(2) == "*" else int(structured.group(2))
            return [
                friend
                for friend in friends
                if friend.month == month and (day is None or friend.day == day)
            ]

        return [friend for friend in friends if _matches_keyword(friend, text)]

    def list_reminder_eligible(self) -> list[Friend]:
        return [
            friend
            for friend in self.list_all()
            if friend.notify_enabled and friend.has_notification_birthday
        ]

    def get_settings(self) -> AppSettings:
        with self._lock:
            return self._load().settings

    def save_settings(self, settings: AppSettings) -> AppSettings:
        validated = validate_settings(settings)
        with self._lock:
            config = self._load()
            save_config_atomic(self._path, AppConfig(settings=validated, friends=config.friends))
        LOGGER.info("Saved application settings")
        return validated
