"""Telegram notifications – fire-and-forget from the trading pipeline's side.

A failed send is logged and reported as ``False``; it never raises into the
trade that triggered it.
"""
from __future__ import annotations

import asyncio
import html
import logging
from typing import Any, Dict, Optional

import aiohttp

from config import TelegramConfig

_LOGGER = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"

LEVEL_ICONS = {
    "info": "ℹ️",
    "success": "✅",
    "warning": "⚠️",
    "critical": "🚨",
}


def format_alert(title: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> str:
    """HTML message body for Telegram."""
    lines = [f"{LEVEL_ICONS.get(level, '📌')} <b>{html.escape(title)}</b>", "", html.escape(message)]
    if data:
        lines.append("")
        for key, value in data.items():
            lines.append(f"• <code>{html.escape(str(key))}</code>: {html.escape(str(value))}")
    return "\n".join(lines)


class TelegramNotifier:
    def __init__(
        self,
        bot_token: Optional[str],
        channel_id: Optional[str],
        timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
        api_url: str = TELEGRAM_API,
    ):
        self._token = bot_token
        self._channel_id = channel_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._api_url = api_url.rstrip("/")

    @classmethod
    def from_config(cls, config: TelegramConfig, **kwargs) -> "TelegramNotifier":
        return cls(config.bot_token, config.channel_id, **kwargs)

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._channel_id)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def send_message(self, text: str) -> bool:
        if not self.enabled:
            _LOGGER.info("[TELEGRAM] disabled – message not sent: %s", text.splitlines()[0] if text else "")
            return False
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        url = f"{self._api_url}/bot{self._token}/sendMessage"
        payload = {
            "chat_id": self._channel_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with self._session.post(url, json=payload, timeout=self._timeout) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    _LOGGER.error("[TELEGRAM] send failed: HTTP %s %s", resp.status, body[:200])
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _LOGGER.error("[TELEGRAM] send failed: %s", e)
            return False
        return True

    async def alert(self, title: str, message: str, level: str = "info", **data: Any) -> bool:
        return await self.send_message(format_alert(title, message, level, data or None))
