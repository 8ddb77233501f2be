"""Telegram bot application setup and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import signal

from telegram import BotCommand
from telegram.ext import Application, CommandHandler

from bgproc.bot.handlers import (
    bg_handler,
    endsession_handler,
    help_handler,
    history_handler,
    kill_handler,
    ps_handler,
    start_handler,
    task_handler,
)
from bgproc.config import AppConfig
from bgproc.processes.registry import ProcessRegistry
from bgproc.services.notifier import TelegramNotifier
from bgproc.storage.database import close_db, init_db, save_process

logger = logging.getLogger(__name__)

BOT_COMMANDS = [
    BotCommand("bg", "Start a background process"),
    BotCommand("ps", "List background processes"),
    BotCommand("task", "Show process details and output"),
    BotCommand("kill", "Terminate processes"),
    BotCommand("endsession", "Kill and forget this chat's processes"),
    BotCommand("history", "Recently finished processes"),
    BotCommand("help", "Show help message"),
]


def build_application(config: AppConfig) -> Application:
    """Create the bot application and its process registry."""
    app = Application.builder().token(config.bot.token).build()

    app.bot_data["registry"] = ProcessRegistry(
        config.processes,
        TelegramNotifier(app.bot),
        on_finished=save_process,
    )

    app.add_handler(CommandHandler("start", start_handler))
    app.add_handler(CommandHandler("help", help_handler))
    app.add_handler(CommandHandler("bg", bg_handler))
    app.add_handler(CommandHandler("ps", ps_handler))
    app.add_handler(CommandHandler("task", task_handler))
    app.add_handler(CommandHandler("kill", kill_handler))
    app.add_handler(CommandHandler("endsession", endsession_handler))
    app.add_handler(CommandHandler("history", history_handler))
    return app


async def run_bot(config: AppConfig) -> None:
    """Start and run the Telegram bot until SIGINT/SIGTERM."""
    if not config.bot.token:
        raise ValueError("Bot token not configured. Run 'bgproc init' first.")

    await init_db(config.storage.db_path)
    app = build_application(config)

    await app.initialize()
    await app.bot.set_my_commands(BOT_COMMANDS)
    await app.start()
    assert app.updater is not None
    await app.updater.start_polling(drop_pending_updates=True)

    logger.info("Bot started. Waiting for messages...")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    await stop_event.wait()

    # Processes go first so their final state reaches the history db.
    logger.info("Shutting down bot...")
    await app.updater.stop()
    await app.bot_data["registry"].shutdown()
    await app.stop()
    await app.shutdown()
    await close_db()
    logger.info("Bot stopped.")
