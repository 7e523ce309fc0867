from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from telegram import Bot
from telegram.error import TelegramError

from friend_birthdays.date_logic import turning_age
from friend_birthdays.models import Friend

LOGGER = logging.getLogger(__name__)

TODAY_TEMPLATES = (
    "🎉 Today is {person_name}'s birthday!\nDate: {date}",
    "🎂 {person_name} has a birthday today.\nDate: {date}\nSay hello.",
    "🥳 Birthday today: {person_name}.\nDate: {date}",
    "🎈 It's {person_name}'s day.\nDate: {date}\nDon't let it slip by.",
)

TOMORROW_TEMPLATES = (
    "⏳ {person_name}'s birthday is tomorrow.\nDate: {date}",
    "🎁 One day to go until {person_name}'s birthday.\nDate: {date}",
    "🗓️ Tomorrow: {person_name}'s birthday.\nDate: {date}\nTime to get a card.",
)

IN_DAYS_TEMPLATES = (
    "📆 {person_name}'s birthday is in {days_until} days.\nDate: {date}",
    "⌛ {days_until} days until {person_name}'s birthday.\nDate: {date}",
    "🗓️ Coming up in {days_until} days: {person_name}'s birthday.\nDate: {date}",
)

TODAY_AGE_TEMPLATES = (
    "🎉 {person_name} turns {age} today!\nDate: {date}",
    "🎂 Today {person_name} is {age}.\nDate: {date}",
)

TOMORROW_AGE_TEMPLATES = (
    "⏳ {person_name} turns {age} tomorrow.\nDate: {date}",
    "🎁 Tomorrow {person_name} will be {age}.\nDate: {date}",
)

IN_DAYS_AGE_TEMPLATES = (
    "📆 In {days_until} days, {person_name} turns {age}.\nDate: {date}",
    "⌛ {days_until} days until {person_name} turns {age}.\nDate: {date}",
)


class Notifier(Protocol):
    async def notify(
        self,
        friend: Friend,
        days_until: int,
        *,
        next_date: date,
        play_sound: bool = True,
    ) -> bool:
        ...


@dataclass(frozen=True)
class Reminder:
    friend_id: str
    person_name: str
    next_birthday_date: date
    days_until: int
    turning_age: int | None


def build_reminder(friend: Friend, days_until: int, next_date: date) -> Reminder:
    return Reminder(
        friend_id=friend.id,
        person_name=friend.name,
        next_birthday_date=next_date,
        days_until=days_until,
        turning_age=turning_age(friend.year, next_date),
    )


def format_reminder_message(reminder: Reminder) -> str:
    has_age = reminder.turning_age is not None
    if reminder.days_until == 0:
        templates = TODAY_AGE_TEMPLATES if has_age else TODAY_TEMPLATES
        variant_group = "today-age" if has_age else "today"
    elif reminder.days_until == 1:
        templates = TOMORROW_AGE_TEMPLATES if has_age else TOMORROW_TEMPLATES
        variant_group = "tomorrow-age" if has_age else "tomorrow"
    else:
        templates = IN_DAYS_AGE_TEMPLATES if has_age else IN_DAYS_TEMPLATES
        variant_group = "in-days-age" if has_age else "in-days"

    template = _select_template(reminder, templates, variant_group)
    return template.format(
        person_name=reminder.person_name,
        age=reminder.turning_age,
        days_until=reminder.days_until,
        date=reminder.next_birthday_date.isoformat(),
    )


def _select_template(reminder: Reminder, templates: tuple[str, ...], variant_group: str) -> str:
    # Stable per friend/occurrence so a retried send reads the same.
    seed = "|".join(
        (
            reminder.friend_id,
            reminder.next_birthday_date.isoformat(),
            str(reminder.days_until),
            variant_group,
        )
    )
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    index = int.from_bytes(digest[:4], "big") % len(templates)
    return templates[index]


class TelegramNotifier:
    def __init__(self, *, bot: Bot, chat_id: int) -> None:
        self._bot = bot
        self._chat_id = chat_id

    async def notify(
        self,
        friend: Friend,
        days_until: int,
        *,
        next_date: date,
        play_sound: bool = True,
    ) -> bool:
        message = format_reminder_message(build_reminder(friend, days_until, next_date))
        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=message,
                disable_notification=not play_sound,
            )
        except TelegramError:
            LOGGER.exception("Failed to send reminder for %s", friend.name)
            return False
        return True
