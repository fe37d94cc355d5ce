from __future__ import annotations

import asyncio

from .adapters.base import Notifier, NullNotifier, RowWriter
from .adapters.pushover import PushoverNotifier
from .adapters.sheets import DisabledRowWriter, SheetsRowWriter, load_credentials
from .bot import VaultyBot
from .commands.register import register_commands
from .config import Settings, load_settings
from .core.storage import GuildConfigStore
from .logging_config import setup_logging
from .onboarding.engine import Timings


def build_writer(settings: Settings) -> RowWriter:
    if not settings.spreadsheet_id:
        return DisabledRowWriter()
    credentials = load_credentials(settings.google_credentials) if settings.google_credentials else None
    return SheetsRowWriter(settings.spreadsheet_id, credentials)


def build_notifier(settings: Settings) -> Notifier:
    if settings.pushover_token and settings.pushover_user:
        return PushoverNotifier(settings.pushover_token, settings.pushover_user)
    return NullNotifier()


def main() -> int:
    settings = load_settings()
    log = setup_logging(settings.log_level)
    if not settings.token:
        log.error(
            "DISCORD_BOT_TOKEN is not set. "
            "Export it in your environment before running."
        )
        return 2
    if not settings.spreadsheet_id:
        log.warning("MASTER_SPREADSHEET_ID is not set; onboarding rows will not be saved")
    store = GuildConfigStore(settings.data_path)
    bot = VaultyBot(
        store,
        build_writer(settings),
        build_notifier(settings),
        timings=Timings(
            reminder_after=settings.reminder_after,
            expire_after=settings.expire_after,
        ),
        sync_per_guild=settings.sync_per_guild,
    )
    register_commands(bot, store)

    async def runner():
        try:
            async with bot:
                await bot.start(settings.token)
        except KeyboardInterrupt:
            log.info("Shutting down...")
        return 0

    return asyncio.run(runner())


if __name__ == "__main__":
    raise SystemExit(main())
