"""Telegram notification adapter.

Formats notifications and delivers them through the Telethon bot client.
"""

from __future__ import annotations

from biostatus.adapters.notification_formatting import format_notification
from biostatus.core.errors import DeliveryError
from biostatus.core.models import ChatId, Notification


class TelegramNotifier:
    """Notifier adapter that sends bot messages to subscribed chats."""

    def __init__(self, client, ss58_format: int) -> None:
        self._client = client
        self._ss58_format = ss58_format

    async def send(self, notification: Notification) -> None:
        """Send the formatted notification to the subscribed chat."""

        message = format_notification(notification, self._ss58_format, mode="html")
        await self.send_text(notification.chat_id, message)

    async def send_text(self, chat_id: ChatId, text: str) -> None:
        try:
            await self._client.send_message(chat_id, text, parse_mode="html", link_preview=False)
        except Exception as exc:
            raise DeliveryError(chat_id, str(exc)) from exc
