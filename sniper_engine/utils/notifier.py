"""
Operator notifications.

Notifiers are injected into the components that emit events; nothing here
is a process-wide singleton.
"""

from typing import Any, Optional, Protocol

import aiohttp

from .logger import get_logger

logger = get_logger("notifier")

TELEGRAM_API = "https://api.telegram.org"


class Notifier(Protocol):
    async def notify(self, event: str, message: str, **fields: Any) -> bool:
        ...


class LogNotifier:
    """Writes notifications to the log only."""

    async def notify(self, event: str, message: str, **fields: Any) -> bool:
        logger.info(message, extra={"event": event, **fields})
        return True


class TelegramNotifier:
    """
    Sends notifications through the Telegram Bot API.

    Delivery failures are logged and reported as False; callers never see
    an exception from here.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def notify(self, event: str, message: str, **fields: Any) -> bool:
        if not self.enabled:
            logger.info(f"[Telegram disabled] {message}", extra={"event": event, **fields})
            return False

        text = f"*{event}*\n{message}"
        for key, value in fields.items():
            text += f"\n• {key}: `{value}`"

        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"}

        try:
            session = await self._get_session()
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    logger.warning(f"Telegram returned HTTP {resp.status}")
                    return False
                return True
        except Exception as e:
            logger.warning(f"Failed to send Telegram message: {e}")
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
