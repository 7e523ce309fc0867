from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date

from telegram.error import NetworkError

from friend_birthdays.models import Friend
from friend_birthdays.notifier import (
    Reminder,
    TelegramNotifier,
    build_reminder,
    format_reminder_message,
)


@dataclass
class FakeBot:
    sent_messages: list[tuple[int, str, bool]] = field(default_factory=list)
    fail: bool = False

    async def send_message(self, chat_id: int, text: str, disable_notification: bool = False) -> None:
        if self.fail:
            raise NetworkError("unreachable")
        self.sent_messages.append((chat_id, text, disable_notification))


def test_format_reminder_message_is_deterministic_for_same_input() -> None:
    reminder = Reminder(
        friend_id="friend-123",
        person_name="Alice",
        next_birthday_date=date(2026, 3, 14),
        days_until=0,
        turning_age=None,
    )

    first = format_reminder_message(reminder)
    second = format_reminder_message(reminder)

    assert first == second
    assert "Alice" in first
    assert "Date: 2026-03-14" in first
    assert "turn" not in first


def test_format_reminder_message_uses_age_templates_when_available() -> None:
    reminder = Reminder(
        friend_id="friend-456",
        person_name="Bob",
        next_birthday_date=date(2026, 7, 20),
        days_until=4,
        turning_age=42,
    )

    message = format_reminder_message(reminder)

    assert "Bob" in message
    assert "42" in message
    assert "Date: 2026-07-20" in message
    assert "4 days" in message


def test_build_reminder_counts_age_at_next_birthday() -> None:
    friend = Friend(id="f", name="Carol", month=1, day=2, year=1990)

    reminder = build_reminder(friend, 3, date(2026, 1, 2))

    assert reminder.days_until == 3
    assert reminder.next_birthday_date == date(2026, 1, 2)
    assert reminder.turning_age == 36


def test_telegram_notifier_sends_silently_when_sound_off() -> None:
    bot = FakeBot()
    notifier = TelegramNotifier(bot=bot, chat_id=100)
    friend = Friend(id="f", name="Alice", month=3, day=14)

    delivered = asyncio.run(
        notifier.notify(friend, 1, next_date=date(2026, 3, 14), play_sound=False)
    )

    assert delivered is True
    assert len(bot.sent_messages) == 1
    chat_id, text, silent = bot.sent_messages[0]
    assert chat_id == 100
    assert "Alice" in text
    assert "Date: 2026-03-14" in text
    assert "tomorrow" in text.lower() or "one day" in text.lower()
    assert silent is True


def test_telegram_notifier_reports_failure() -> None:
    notifier = TelegramNotifier(bot=FakeBot(fail=True), chat_id=100)
    friend = Friend(id="f", name="Alice", month=3, day=14)

    assert asyncio.run(notifier.notify(friend, 1, next_date=date(2026, 3, 14))) is False
