from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import date, datetime, timezone
from pathlib import Path

from friend_birthdays.models import DeliveryRecord

LOGGER = logging.getLogger(__name__)

LEDGER_VERSION = 1


def ledger_key(friend_id: str, notification_date: str) -> tuple[str, str]:
    return friend_id, notification_date


def load_records(path: Path) -> dict[tuple[str, str], DeliveryRecord]:
    if not path.exists():
        return {}

    with path.open("r", encoding="utf-8") as file_obj:
        data = json.load(file_obj)

    records: dict[tuple[str, str], DeliveryRecord] = {}
    for row in data.get("deliveries", []):
        try:
            friend_id = str(row["friend_id"])
            notification_date = date.fromisoformat(str(row["notification_date"])).isoformat()
            delivered_at = datetime.fromisoformat(str(row["delivered_at"]))
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Ignoring malformed ledger row: %r", row)
            continue

        key = ledger_key(friend_id, notification_date)
        records.setdefault(
            key,
            DeliveryRecord(
                friend_id=friend_id,
                notification_date=notification_date,
                delivered_at=delivered_at,
            ),
        )
    return records


def save_records_atomic(path: Path, records: dict[tuple[str, str], DeliveryRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "version": LEDGER_VERSION,
        "deliveries": [
            {
                "friend_id": record.friend_id,
                "notification_date": record.notification_date,
                "delivered_at": record.delivered_at.isoformat(),
            }
            for record in sorted(
                records.values(), key=lambda item: (item.notification_date, item.friend_id)
            )
        ],
    }

    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        delete=False,
    ) as temp_file:
        json.dump(payload, temp_file, indent=2)
        temp_file.write("\n")
        temp_name = temp_file.name

    os.replace(temp_name, path)


class DeliveryLedger:
    """Which (friend, date) reminders were already delivered.

    Keyed on the pair, so a second ``record_delivered`` for the same key is a
    no-op and the first writer wins.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def is_delivered(self, friend_id: str, notification_date: str) -> bool:
        with self._lock:
            return ledger_key(friend_id, notification_date) in load_records(self._path)

    def record_delivered(
        self,
        friend_id: str,
        notification_date: str,
        *,
        delivered_at: datetime | None = None,
    ) -> bool:
        key = ledger_key(friend_id, date.fromisoformat(notification_date).isoformat())
        with self._lock:
            records = load_records(self._path)
            if key in records:
                return False
            records[key] = DeliveryRecord(
                friend_id=key[0],
                notification_date=key[1],
                delivered_at=delivered_at or datetime.now(timezone.utc),
            )
            save_records_atomic(self._path, records)
        return True

    def prune_older_than(self, cutoff_date_key: str) -> int:
        cutoff = date.fromisoformat(cutoff_date_key).isoformat()
        with self._lock:
            records = load_records(self._path)
            retained = {
                key: record
                for key, record in records.items()
                if record.notification_date >= cutoff
            }
            removed = len(records) - len(retained)
            if removed:
                save_records_atomic(self._path, retained)

        if removed:
            LOGGER.info("Pruned %s ledger entries older than %s", removed, cutoff)
        return removed

    def remove_friend(self, friend_id: str) -> int:
        with self._lock:
            records = load_records(self._path)
            retained = {key: record for key, record in records.items() if key[0] != friend_id}
            removed = len(records) - len(retained)
            if removed:
                save_records_atomic(self._path, retained)
        return removed

    def records(self) -> list[DeliveryRecord]:
        with self._lock:
            records = load_records(self._path)
        return sorted(records.values(), key=lambda item: (item.notification_date, item.friend_id))
