from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import CallbackContext, CommandHandler

from friend_birthdays.config_store import ConfigStore
from friend_birthdays.date_logic import validate_month_day
from friend_birthdays.models import Days, Disabled, Friend, ReminderPreference, UseDefault
from friend_birthdays.scheduler import STATUS_BUSY, NotificationScheduler
from friend_birthdays.settings import Settings
from friend_birthdays.targeting import UpcomingBirthday, list_upcoming

LOGGER = logging.getLogger(__name__)

UPCOMING_LIMIT = 20


@dataclass(frozen=True)
class HandlerDependencies:
    settings: Settings
    store: ConfigStore
    scheduler: NotificationScheduler


def is_authorized(update: Update, settings: Settings) -> bool:
    effective_user = update.effective_user
    effective_chat = update.effective_chat
    if effective_user is None or effective_chat is None:
        return False
    return (
        effective_user.id == settings.telegram_allowed_user_id
        and effective_chat.id == settings.telegram_allowed_chat_id
    )


async def _deny_unauthorized(update: Update) -> None:
    if update.effective_message:
        await update.effective_message.reply_text("This bot is restricted to its configured owner.")


def parse_birthday_text(raw_text: str) -> tuple[int | None, int | None, int | None]:
    value = raw_text.strip()
    if not value or value == "-":
        return None, None, None

    full_match = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", value)
    if full_match:
        year = int(full_match.group(1))
        month = int(full_match.group(2))
        day = int(full_match.group(3))
        date(year, month, day)
        return month, day, year

    short_match = re.fullmatch(r"(\d{2})-(\d{2})", value)
    if short_match:
        month = int(short_match.group(1))
        day = int(short_match.group(2))
        validate_month_day(month, day, allow_feb_29=True)
        return month, day, None

    raise ValueError("Birthday must use YYYY-MM-DD or MM-DD")


def parse_reminder_preference_text(raw_text: str) -> ReminderPreference:
    text = raw_text.strip().lower()
    if not text or text in {"default", "skip"}:
        return UseDefault()
    if text in {"off", "disabled", "none"}:
        return Disabled()
    if not text.isdigit():
        raise ValueError("Reminder must be default, off, or a number of days")
    return Days(int(text))


def parse_aliases_text(raw_text: str) -> tuple[str, ...]:
    return tuple(piece.strip() for piece in raw_text.split(",") if piece.strip())


def parse_add_text(raw_text: str) -> Friend:
    """Parse ``Name | birthday | reminder | aliases``; only the name is required."""
    pieces = [piece.strip() for piece in raw_text.split("|")]
    if len(pieces) > 4:
        raise ValueError("Use at most four fields: name | birthday | reminder | aliases")
    pieces += [""] * (4 - len(pieces))

    name, birthday_text, reminder_text, aliases_text = pieces
    if not name:
        raise ValueError("Name must not be empty")

    month, day, year = parse_birthday_text(birthday_text)
    friend = Friend(
        name=name,
        month=month,
        day=day,
        year=year,
        aliases=parse_aliases_text(aliases_text),
    )
    return friend.with_reminder_preference(parse_reminder_preference_text(reminder_text))


def find_friend(friends: list[Friend], query: str) -> Friend:
    needle = query.strip().casefold()
    matches = [
        friend
        for friend in friends
        if friend.id == query.strip()
        or friend.name.casefold() == needle
        or any(alias.casefold() == needle for alias in friend.aliases)
    ]
    if not matches:
        raise KeyError(f"No friend named {query.strip()!r}")
    if len(matches) > 1:
        raise ValueError(f"{query.strip()!r} matches {len(matches)} friends; use the id instead")
    return matches[0]


def _format_preference(preference: ReminderPreference, default_days: int) -> str:
    if isinstance(preference, Disabled):
        return "off"
    if isinstance(preference, Days):
        return f"{preference.count}d before"
    return f"default ({default_days}d before)"


def _render_help() -> str:
    return (
        "Commands:\n"
        "/list - Upcoming birthdays, soonest first\n"
        "/search <keyword> - Search names, memos and aliases (MM-DD or MM-* filters by date)\n"
        "/add Name | YYYY-MM-DD or MM-DD | reminder | alias1, alias2 - Track someone\n"
        "/remind <name> <default|off|days> - Change someone's reminder\n"
        "/delete <name> - Stop tracking someone\n"
        "/check - Run the reminder check now\n"
        "/help - Show this help message\n\n"
        "Reminder values: default, off, or 1-30 days before"
    )


def _render_list_message(rows: list[UpcomingBirthday], default_days: int) -> str:
    lines = [f"Upcoming birthdays ({len(rows)})", "Sorted by soonest:"]

    for index, row in enumerate(rows, start=1):
        lines.append(f"{index}. {row.friend.name}")
        details = [
            f"In {row.days_until}d",
            f"Next {row.next_date.isoformat()}",
        ]
        if row.turning_age is not None:
            details.append(f"Turning {row.turning_age}")
        details.append(
            f"Reminder {_format_preference(row.friend.reminder_preference, default_days)}"
        )
        lines.append(f"   {' | '.join(details)}")
        lines.append("")

    return "\n".join(lines).rstrip()


def _render_search_message(keyword: str, friends: list[Friend]) -> str:
    if not friends:
        return f"No matches for {keyword!r}."
    lines = [f"Matches for {keyword!r} ({len(friends)}):"]
    for friend in friends:
        line = f"- {friend.name} | {friend.birthday_display()}"
        if friend.aliases:
            line += f" | aka {', '.join(friend.aliases)}"
        lines.append(line)
    return "\n".join(lines)


def _today(store: ConfigStore) -> date:
    return datetime.now(ZoneInfo(store.get_settings().timezone)).date()


def _deps(context: CallbackContext) -> HandlerDependencies:
    return context.application.bot_data["handler_deps"]


def _command_text(context: CallbackContext) -> str:
    return " ".join(context.args or [])


async def help_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return
    await update.effective_message.reply_text(_render_help())


async def list_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return

    friends = deps.store.list_all()
    rows = list_upcoming(friends, _today(deps.store), UPCOMING_LIMIT)
    if not rows:
        await update.effective_message.reply_text("No birthdays are currently tracked.")
        return

    default_days = deps.store.get_settings().default_notify_days_before
    await update.effective_message.reply_text(_render_list_message(rows, default_days))


async def search_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return

    keyword = _command_text(context)
    friends = deps.store.search(keyword)
    await update.effective_message.reply_text(_render_search_message(keyword, friends))


async def add_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return

    try:
        friend_id = deps.store.add(parse_add_text(_command_text(context)))
    except ValueError as exc:
        LOGGER.info("Rejected /add input: %s", exc)
        await update.effective_message.reply_text(f"Could not add: {exc}\n\n{_render_help()}")
        return

    saved = deps.store.get_by_id(friend_id)
    await update.effective_message.reply_text(
        f"Saved {saved.name} ({saved.birthday_display()})."
    )


async def remind_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return

    args = list(context.args or [])
    if len(args) < 2:
        await update.effective_message.reply_text("Usage: /remind <name> <default|off|days>")
        return

    try:
        preference = parse_reminder_preference_text(args[-1])
        friend = find_friend(deps.store.list_all(), " ".join(args[:-1]))
        updated = deps.store.update(friend.with_reminder_preference(preference))
    except (KeyError, ValueError) as exc:
        await update.effective_message.reply_text(f"Could not update: {exc}")
        return

    default_days = deps.store.get_settings().default_notify_days_before
    await update.effective_message.reply_text(
        f"{updated.name}: reminder {_format_preference(updated.reminder_preference, default_days)}."
    )


async def delete_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return

    try:
        friend = find_friend(deps.store.list_all(), _command_text(context))
    except (KeyError, ValueError) as exc:
        await update.effective_message.reply_text(f"Could not delete: {exc}")
        return

    deps.store.delete(friend.id)
    await update.effective_message.reply_text(f"Deleted {friend.name}.")


async def check_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_authorized(update, deps.settings):
        await _deny_unauthorized(update)
        return

    report = await deps.scheduler.trigger()
    if report.status == STATUS_BUSY:
        await update.effective_message.reply_text("A reminder check is already running.")
        return
    await update.effective_message.reply_text(
        f"Reminder check {report.status}: {report.dispatched} sent, "
        f"{report.skipped} already sent, {report.failed} failed."
    )


def build_handlers() -> list[CommandHandler]:
    return [
        CommandHandler("start", help_command),
        CommandHandler("help", help_command),
        CommandHandler("list", list_command),
        CommandHandler("search", search_command),
        CommandHandler("add", add_command),
        CommandHandler("remind", remind_command),
        CommandHandler("delete", delete_command),
        CommandHandler("check", check_command),
    ]
