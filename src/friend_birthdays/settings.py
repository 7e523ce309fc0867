from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    telegram_allowed_user_id: int
    telegram_allowed_chat_id: int
    birthday_config_path: Path
    delivery_ledger_path: Path


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _required_int_env(name: str) -> int:
    value = _required_env(name)
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def load_settings() -> Settings:
    root = Path.cwd()

    token = _required_env("TELEGRAM_BOT_TOKEN")
    allowed_user_id = _required_int_env("TELEGRAM_ALLOWED_USER_ID")
    allowed_chat_id = _required_int_env("TELEGRAM_ALLOWED_CHAT_ID")

    birthday_config_path = Path(
        os.getenv("BIRTHDAY_CONFIG_PATH", root / "config" / "birthdays.toml")
    )
    delivery_ledger_path = Path(
        os.getenv("DELIVERY_LEDGER_PATH", root / "data" / "delivery_ledger.json")
    )

    return Settings(
        telegram_bot_token=token,
        telegram_allowed_user_id=allowed_user_id,
        telegram_allowed_chat_id=allowed_chat_id,
        birthday_config_path=birthday_config_path,
        delivery_ledger_path=delivery_ledger_path,
    )
