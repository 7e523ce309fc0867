from __future__ import annotations

import logging
from pathlib import Path

from telegram.ext import Application

from friend_birthdays.bot_handlers import HandlerDependencies, build_handlers
from friend_birthdays.config_store import ConfigStore, ensure_default_config
from friend_birthdays.delivery_ledger import DeliveryLedger
from friend_birthdays.notifier import TelegramNotifier
from friend_birthdays.scheduler import NotificationScheduler
from friend_birthdays.settings import load_settings


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def main() -> None:
    configure_logging()

    settings = load_settings()
    _ensure_parent(settings.birthday_config_path)
    _ensure_parent(settings.delivery_ledger_path)
    ensure_default_config(settings.birthday_config_path)

    ledger = DeliveryLedger(settings.delivery_ledger_path)
    store = ConfigStore(settings.birthday_config_path, ledger=ledger)

    application = Application.builder().token(settings.telegram_bot_token).build()

    scheduler = NotificationScheduler(
        store=store,
        ledger=ledger,
        notifier=TelegramNotifier(
            bot=application.bot,
            chat_id=settings.telegram_allowed_chat_id,
        ),
    )
    application.bot_data["handler_deps"] = HandlerDependencies(
        settings=settings,
        store=store,
        scheduler=scheduler,
    )

    for handler in build_handlers():
        application.add_handler(handler)

    scheduler.start(application.job_queue)
    application.run_polling()


if __name__ == "__main__":
    main()
