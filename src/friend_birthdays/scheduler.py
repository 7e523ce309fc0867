from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable
from zoneinfo import ZoneInfo

from telegram.ext import CallbackContext, Job, JobQueue

from friend_birthdays.config_store import ConfigStore, parse_time_string
from friend_birthdays.date_logic import date_key
from friend_birthdays.delivery_ledger import DeliveryLedger
from friend_birthdays.models import AppSettings, Friend
from friend_birthdays.notifier import Notifier
from friend_birthdays.targeting import find_targets

LOGGER = logging.getLogger(__name__)

LEDGER_RETENTION_DAYS = 30
STARTUP_DELAY_SECONDS = 5
SECONDS_PER_DAY = 24 * 60 * 60

STATUS_COMPLETED = "completed"
STATUS_OUTSIDE_WINDOW = "outside_window"
STATUS_BUSY = "busy"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


class SchedulerState(Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"


@dataclass(frozen=True)
class CycleReport:
    status: str
    notification_date: str | None = None
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0


def within_reminder_window(now: datetime, notification_time: str, tolerance_minutes: int) -> bool:
    """True when ``now`` is within ``tolerance_minutes`` of the reminder time.

    Distance is measured around the clock face, so the band wraps past midnight.
    """
    hour, minute = parse_time_string(notification_time)
    target_seconds = hour * 3600 + minute * 60
    current_seconds = now.hour * 3600 + now.minute * 60 + now.second
    distance = abs(current_seconds - target_seconds)
    distance = min(distance, SECONDS_PER_DAY - distance)
    return distance <= tolerance_minutes * 60


def seconds_until_next_hour(now: datetime) -> float:
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return (next_hour - now).total_seconds()


def ledger_cutoff(today: date) -> str:
    return date_key(today - timedelta(days=LEDGER_RETENTION_DAYS))


def _default_clock(timezone_name: str) -> datetime:
    return datetime.now(ZoneInfo(timezone_name))


def _play_sound(friend: Friend, settings: AppSettings) -> bool:
    if friend.notify_sound is not None:
        return friend.notify_sound
    return settings.default_notify_sound


class NotificationScheduler:
    """Evaluates due reminders on a timer, one evaluation at a time.

    A tick that arrives while an evaluation is running is dropped rather than
    queued; the next tick picks up anything that was missed because delivery
    is keyed on the calendar date.
    """

    def __init__(
        self,
        *,
        store: ConfigStore,
        ledger: DeliveryLedger,
        notifier: Notifier,
        clock: Callable[[str], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock or _default_clock
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._state = SchedulerState.IDLE
        self._jobs: list[Job] = []

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def jobs(self) -> tuple[Job, ...]:
        return tuple(self._jobs)

    def start(self, job_queue: JobQueue) -> None:
        settings = self._store.get_settings()
        now = self._clock(settings.timezone)
        interval = timedelta(minutes=settings.check_interval_minutes)

        self._stop_event.clear()
        self._jobs = [
            job_queue.run_once(
                self._on_tick,
                when=STARTUP_DELAY_SECONDS,
                name="birthday-reminders-startup",
            ),
            job_queue.run_repeating(
                self._on_tick,
                interval=interval,
                first=seconds_until_next_hour(now),
                name="birthday-reminders",
            ),
        ]
        LOGGER.info(
            "Reminder checks every %s minutes around %s (+/- %s minutes, %s)",
            settings.check_interval_minutes,
            settings.notification_time,
            settings.reminder_window_minutes,
            settings.timezone,
        )

    def stop(self) -> None:
        self._stop_event.set()
        for job in self._jobs:
            job.schedule_removal()
        self._jobs = []
        LOGGER.info("Reminder scheduler stopped")

    async def _on_tick(self, context: CallbackContext) -> None:
        await self.run_cycle()

    async def trigger(self) -> CycleReport:
        return await self.run_cycle(respect_window=False)

    async def run_cycle(
        self,
        now: datetime | None = None,
        *,
        respect_window: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> CycleReport:
        if not self._cycle_lock.acquire(blocking=False):
            LOGGER.info("Reminder evaluation already in progress; dropping tick")
            return CycleReport(status=STATUS_BUSY)

        # stop() cancels the cycle in flight; a fresh cycle runs normally.
        self._stop_event.clear()
        self._state = SchedulerState.EVALUATING
        try:
            return await self._evaluate(now, respect_window, cancel_event)
        finally:
            self._state = SchedulerState.IDLE
            self._cycle_lock.release()

    def _cancelled(self, cancel_event: threading.Event | None) -> bool:
        if self._stop_event.is_set():
            return True
        return cancel_event is not None and cancel_event.is_set()

    async def _evaluate(
        self,
        now: datetime | None,
        respect_window: bool,
        cancel_event: threading.Event | None,
    ) -> CycleReport:
        try:
            settings = self._store.get_settings()
            current = now or self._clock(settings.timezone)
            if respect_window and not within_reminder_window(
                current, settings.notification_time, settings.reminder_window_minutes
            ):
                LOGGER.debug("Outside reminder window at %s", current.isoformat())
                return CycleReport(status=STATUS_OUTSIDE_WINDOW)

            today = current.date()
            targets = find_targets(
                self._store.list_reminder_eligible(),
                today,
                settings.default_notify_days_before,
            )
        except Exception:
            LOGGER.exception("Reminder evaluation aborted; retrying on next tick")
            return CycleReport(status=STATUS_FAILED)

        notification_date = date_key(today)
        LOGGER.info("Found %s reminder targets for %s", len(targets), notification_date)

        status = STATUS_COMPLETED
        dispatched = 0
        skipped = 0
        failed = 0
        for target in targets:
            if self._cancelled(cancel_event):
                LOGGER.info("Reminder evaluation cancelled for %s", notification_date)
                status = STATUS_CANCELLED
                break

            friend = target.friend
            try:
                if self._ledger.is_delivered(friend.id, notification_date):
                    skipped += 1
                    continue

                delivered = await self._notifier.notify(
                    friend,
                    target.days_until,
                    next_date=target.next_date,
                    play_sound=_play_sound(friend, settings),
                )
                if not delivered:
                    LOGGER.warning("Reminder for %s was not delivered; will retry", friend.name)
                    failed += 1
                    continue

                self._ledger.record_delivered(friend.id, notification_date)
                dispatched += 1
            except Exception:
                LOGGER.exception("Reminder for %s failed", friend.name)
                failed += 1

        if status == STATUS_COMPLETED:
            self._prune(today)

        LOGGER.info(
            "Sent %s reminders for %s (%s already sent, %s failed)",
            dispatched,
            notification_date,
            skipped,
            failed,
        )
        return CycleReport(
            status=status,
            notification_date=notification_date,
            dispatched=dispatched,
            skipped=skipped,
            failed=failed,
        )

    def _prune(self, today: date) -> None:
        try:
            self._ledger.prune_older_than(ledger_cutoff(today))
        except Exception:
            LOGGER.exception("Failed to prune delivery ledger")
