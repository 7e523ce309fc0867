from dataclasses import replace
from datetime import date
from pathlib import Path

import pytest

from friend_birthdays.config_store import (
    ConfigStore,
    load_config,
    save_config_atomic,
    validate_friend,
)
from friend_birthdays.delivery_ledger import DeliveryLedger
from friend_birthdays.models import AppConfig, AppSettings, Friend
from friend_birthdays.targeting import find_targets


def test_roundtrip_config(tmp_path: Path) -> None:
    path = tmp_path / "birthdays.toml"
    config = AppConfig(
        settings=AppSettings(
            timezone="America/Los_Angeles",
            notification_time="9:05",
            default_notify_days_before=3,
            default_notify_sound=False,
        ),
        friends=[
            Friend(
                id="friend-1",
                name="Alice",
                month=3,
                day=14,
                year=1990,
                memo='Likes "tea"\nand cake',
                notify_days_before=7,
                notify_sound=True,
                aliases=("Ally", "A."),
            )
        ],
    )

    save_config_atomic(path, config)
    loaded = load_config(path)

    assert loaded.settings.timezone == "America/Los_Angeles"
    assert loaded.settings.notification_time == "09:05"
    assert loaded.settings.default_notify_days_before == 3
    assert loaded.settings.default_notify_sound is False
    friend = loaded.friends[0]
    assert friend.name == "Alice"
    assert friend.memo == 'Likes "tea"\nand cake'
    assert friend.notify_days_before == 7
    assert friend.notify_sound is True
    assert friend.aliases == ("Ally", "A.")


def test_load_drops_out_of_range_reminder_override(tmp_path: Path) -> None:
    path = tmp_path / "birthdays.toml"
    path.write_text(
        """
[settings]
timezone = "UTC"

[[friends]]
id = "friend-1"
name = "Alice"
month = 3
day = 14
notify_days_before = 31
""".strip()
        + "\n",
        encoding="utf-8",
    )

    loaded = load_config(path)

    assert loaded.friends[0].notify_days_before is None
    with pytest.raises(ValueError):
        validate_friend(Friend(name="Alice", month=3, day=14, notify_days_before=31))


def test_load_keeps_impossible_birthday(tmp_path: Path) -> None:
    path = tmp_path / "birthdays.toml"
    path.write_text(
        """
[[friends]]
id = "friend-1"
name = "Legacy"
month = 4
day = 31
""".strip()
        + "\n",
        encoding="utf-8",
    )

    loaded = load_config(path)

    assert loaded.friends[0].month == 4
    assert loaded.friends[0].day == 31
    assert loaded.settings == AppSettings()


def test_out_of_range_stored_rows_load_but_are_never_targeted(tmp_path: Path) -> None:
    path = tmp_path / "birthdays.toml"
    path.write_text(
        """
[[friends]]
id = "friend-1"
name = "Alice"
month = 3
day = 14

[[friends]]
id = "friend-2"
name = "Ghost"
month = 13
day = 1

[[friends]]
id = "friend-3"
name = "Shadow"
month = 6
day = 32
aliases = ["Shade", "shade"]
""".strip()
        + "\n",
        encoding="utf-8",
    )
    store = ConfigStore(path)

    assert [f.name for f in store.list_all()] == ["Alice", "Ghost", "Shadow"]
    assert store.get_by_id("friend-2").month == 13
    assert store.get_by_id("friend-3").aliases == ("Shade",)
    targets = find_targets(store.list_reminder_eligible(), date(2026, 3, 13), 30)
    assert [target.friend.id for target in targets] == ["friend-1"]

    store.add(Friend(name="Bob", month=8, day=22))

    assert store.get_by_id("friend-2").month == 13


def test_add_assigns_id_and_timestamps(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")

    friend_id = store.add(Friend(name="  Alice  ", month=3, day=14))
    saved = store.get_by_id(friend_id)

    assert saved is not None
    assert saved.name == "Alice"
    assert saved.created_at is not None
    assert saved.updated_at == saved.created_at
    assert store.get_by_id("missing") is None


def test_add_rejects_invalid_friend(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")

    with pytest.raises(ValueError):
        store.add(Friend(name=""))
    with pytest.raises(ValueError):
        store.add(Friend(name="x" * 201))
    with pytest.raises(ValueError):
        store.add(Friend(name="Bob", month=4, day=31))
    with pytest.raises(ValueError):
        store.add(Friend(name="Bob", month=2, day=29, year=2001))
    with pytest.raises(ValueError):
        store.add(Friend(name="Bob", aliases=("Bobby", "BOBBY")))

    assert store.list_all() == []


def test_update_replaces_selected_friend(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")
    alice_id = store.add(Friend(name="Alice", month=3, day=14, year=1990))
    bob_id = store.add(Friend(name="Bob", month=8, day=22))

    bob = store.get_by_id(bob_id)
    updated = store.update(replace(bob, name="Bobby", day=23, year=2001))

    assert updated.created_at == bob.created_at
    assert store.get_by_id(alice_id).name == "Alice"
    reloaded = store.get_by_id(bob_id)
    assert reloaded.name == "Bobby"
    assert (reloaded.month, reloaded.day, reloaded.year) == (8, 23, 2001)


def test_update_rejects_unknown_id(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")

    with pytest.raises(KeyError):
        store.update(Friend(id="missing", name="Alice"))


def test_delete_cascades_to_ledger(tmp_path: Path) -> None:
    ledger = DeliveryLedger(tmp_path / "ledger.json")
    store = ConfigStore(tmp_path / "birthdays.toml", ledger=ledger)
    alice_id = store.add(Friend(name="Alice", month=3, day=14))
    bob_id = store.add(Friend(name="Bob", month=3, day=15))
    ledger.record_delivered(alice_id, "2026-03-13")
    ledger.record_delivered(bob_id, "2026-03-13")

    assert store.delete(alice_id) is True
    assert store.delete(alice_id) is False

    assert [friend.name for friend in store.list_all()] == ["Bob"]
    assert ledger.is_delivered(alice_id, "2026-03-13") is False
    assert ledger.is_delivered(bob_id, "2026-03-13") is True


def test_search_matches_name_memo_and_alias(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")
    store.add(Friend(name="Alice", month=3, day=14, memo="College roommate"))
    store.add(Friend(name="Bob", month=3, day=20, aliases=("Robert",)))
    store.add(Friend(name="Carol", month=8, day=14))

    assert [f.name for f in store.search("ali")] == ["Alice"]
    assert [f.name for f in store.search("roommate")] == ["Alice"]
    assert [f.name for f in store.search("rob")] == ["Bob"]
    assert [f.name for f in store.search("   ")] == ["Alice", "Bob", "Carol"]


def test_search_structured_month_day(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")
    store.add(Friend(name="Alice", month=3, day=14))
    store.add(Friend(name="Bob", month=3, day=20))
    store.add(Friend(name="Carol", month=8, day=14))

    assert [f.name for f in store.search("03-14")] == ["Alice"]
    assert [f.name for f in store.search("3-*")] == ["Alice", "Bob"]


def test_list_reminder_eligible(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")
    store.add(Friend(name="Alice", month=3, day=14))
    store.add(Friend(name="Bob", month=3))
    store.add(Friend(name="Carol", month=8, day=14, notify_enabled=False))

    assert [f.name for f in store.list_reminder_eligible()] == ["Alice"]


def test_settings_defaults_and_save(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")
    store.add(Friend(name="Alice", month=3, day=14))

    assert store.get_settings() == AppSettings()

    store.save_settings(AppSettings(timezone="Asia/Tokyo", default_notify_days_before=5))

    assert store.get_settings().timezone == "Asia/Tokyo"
    assert store.get_settings().default_notify_days_before == 5
    assert [f.name for f in store.list_all()] == ["Alice"]


def test_save_settings_rejects_out_of_range(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")

    with pytest.raises(ValueError):
        store.save_settings(AppSettings(default_notify_days_before=0))
    with pytest.raises(ValueError):
        store.save_settings(AppSettings(notification_time="25:00"))
    with pytest.raises(ValueError):
        store.save_settings(AppSettings(timezone="Not/AZone"))


def test_save_settings_rejects_interval_wider_than_window(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "birthdays.toml")

    with pytest.raises(ValueError):
        store.save_settings(AppSettings(reminder_window_minutes=10, check_interval_minutes=60))

    saved = store.save_settings(AppSettings(reminder_window_minutes=30, check_interval_minutes=60))
    assert saved.check_interval_minutes == 60


def test_load_tolerates_interval_wider_than_window(tmp_path: Path) -> None:
    path = tmp_path / "birthdays.toml"
    path.write_text(
        "[settings]\nreminder_window_minutes = 10\ncheck_interval_minutes = 60\n",
        encoding="utf-8",
    )

    assert load_config(path).settings.reminder_window_minutes == 10
