"""Ports (interfaces) used by the core orchestrator.

Ports define the minimal contracts for the chain, storage and notification
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Protocol

from biostatus.core.models import (
    BlockSnapshot,
    ChatId,
    Notification,
    Settings,
    SubscriptionRecord,
    ValidatorKey,
)


class BlockFeedPort(Protocol):
    """Finalized block source, yielding snapshots in increasing order."""

    async def next_block(self) -> BlockSnapshot:
        ...


class NotifierPort(Protocol):
    """Delivery operations required by the orchestrator."""

    async def send(self, notification: Notification) -> None:
        ...

    async def send_text(self, chat_id: ChatId, text: str) -> None:
        ...


class SubscriptionStoragePort(Protocol):
    """Durable mirror of subscriptions and settings."""

    def load_subscriptions(self) -> list[SubscriptionRecord]:
        ...

    def save_subscription(self, chat_id: ChatId, key: ValidatorKey, settings: Settings) -> None:
        ...

    def delete_subscription(self, chat_id: ChatId, key: ValidatorKey) -> None:
        ...

    def delete_all_subscriptions(self, chat_id: ChatId) -> None:
        ...

    def load_announcement_subscribers(self) -> set[ChatId]:
        ...

    def set_announcements(self, chat_id: ChatId, enabled: bool) -> None:
        ...
