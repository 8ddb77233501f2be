"""Best-effort delivery of process notifications to a session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from bgproc.utils.formatting import split_message

if TYPE_CHECKING:
    from telegram import Bot

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def deliver(self, session_id: str, text: str) -> None: ...


class LogNotifier:
    """Writes notifications to the log. Used when no chat transport exists."""

    async def deliver(self, session_id: str, text: str) -> None:
        logger.info("[%s] %s", session_id, text)


class TelegramNotifier:
    """Sends notifications as chat messages; the session id is the chat id."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def deliver(self, session_id: str, text: str) -> None:
        try:
            chat_id = int(session_id)
        except ValueError:
            logger.debug("Not a chat session, dropping notification: %s", session_id)
            return
        try:
            for chunk in split_message(text):
                await self._bot.send_message(chat_id=chat_id, text=chunk)
        except Exception:
            logger.warning("Failed to notify chat %s", chat_id, exc_info=True)
