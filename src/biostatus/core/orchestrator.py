"""Block-driven orchestration of the notification core.

This module is integration-agnostic. It relies on ports for the block feed,
delivery and storage, and owns the only mutable shared state (registry,
settings, announcement subscribers) behind a single mutation lock.

Per block, in order:
1) Acquire the lock
2) Drain failure reports queued by earlier dispatches and reset timing state
3) Run the engine over the block snapshot
4) Release the lock
5) Dispatch every notification as an independent task
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional

from biostatus.core.announcements import AnnouncementSubscribers
from biostatus.core.config import EngineConfig
from biostatus.core.engine import NotificationEngine
from biostatus.core.errors import BlockFeedError
from biostatus.core.feedback import FailureFeedback
from biostatus.core.models import (
    BlockSnapshot,
    ChatId,
    FailedNotification,
    Notification,
    SetAnnouncements,
    Settings,
    Subscribe,
    SubscriptionCommand,
    Unsubscribe,
    UnsubscribeAll,
    UpdateAlertLeadTime,
    UpdateMaxFrequency,
    ValidatorKey,
)
from biostatus.core.ports import BlockFeedPort, NotifierPort, SubscriptionStoragePort
from biostatus.core.registry import SubscriptionRegistry
from biostatus.core.settings_store import SettingsStore

LOGGER = logging.getLogger(__name__)


class Orchestrator:
    """Drives block processing and subscription updates over shared state."""

    def __init__(
        self,
        *,
        registry: SubscriptionRegistry,
        settings: SettingsStore,
        announcements: AnnouncementSubscribers,
        engine: NotificationEngine,
        block_feed: BlockFeedPort,
        notifier: NotifierPort,
        storage: SubscriptionStoragePort,
        config: EngineConfig,
        update_queue_size: int = 0,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._announcements = announcements
        self._engine = engine
        self._block_feed = block_feed
        self._notifier = notifier
        self._storage = storage
        self._config = config
        self._feedback = FailureFeedback(registry)
        self._lock = asyncio.Lock()
        self._failures: asyncio.Queue[FailedNotification] = asyncio.Queue(maxsize=config.failure_queue_size)
        self._updates: asyncio.Queue[SubscriptionCommand] = asyncio.Queue(maxsize=update_queue_size)
        self._dispatches: set[asyncio.Task] = set()

    @classmethod
    def from_storage(
        cls,
        storage: SubscriptionStoragePort,
        *,
        engine: NotificationEngine,
        block_feed: BlockFeedPort,
        notifier: NotifierPort,
        config: EngineConfig,
        update_queue_size: int = 0,
    ) -> "Orchestrator":
        """Seed registry and settings from the persisted snapshot.

        Timing state is not persisted, so every restored pairing starts fresh.
        """

        records = storage.load_subscriptions()
        registry = SubscriptionRegistry()
        settings = SettingsStore(config.default_settings)
        for record in records:
            registry.subscribe(record.key, record.chat_id)
            settings.update(record.chat_id, record.key, record.settings)
        announcements = AnnouncementSubscribers(storage.load_announcement_subscribers())
        LOGGER.info("Restored %s subscriptions from storage", len(records))

        return cls(
            registry=registry,
            settings=settings,
            announcements=announcements,
            engine=engine,
            block_feed=block_feed,
            notifier=notifier,
            storage=storage,
            config=config,
            update_queue_size=update_queue_size,
        )

    async def run(self) -> None:
        """Run the block task and the update task until cancelled."""

        try:
            await asyncio.gather(self.run_blocks(), self.run_updates())
        finally:
            await self.shutdown()

    async def run_blocks(self) -> None:
        while True:
            try:
                snapshot = await self._block_feed.next_block()
            except BlockFeedError:
                # The registry is untouched; a skipped tick only widens the
                # interval between evaluations.
                LOGGER.exception("Block feed error, retrying in %ss", self._config.retry_delay_seconds)
                await asyncio.sleep(self._config.retry_delay_seconds)
                continue
            await self.handle_block(snapshot)

    async def handle_block(self, snapshot: BlockSnapshot) -> list[Notification]:
        """Process one block and schedule delivery of its notifications."""

        async with self._lock:
            failures = self._drain_failures()
            if failures:
                self._feedback.apply(failures)
            notifications = self._engine.process_block(
                snapshot.block_number,
                snapshot.active_map,
                self._settings,
                self._registry,
            )

        if notifications:
            LOGGER.info("Block %s produced %s notifications", snapshot.block_number, len(notifications))
        for notification in notifications:
            self._spawn(self._dispatch(notification))
        return notifications

    async def run_updates(self) -> None:
        while True:
            command = await self._updates.get()
            try:
                await self.apply_command(command)
            except Exception:
                LOGGER.exception("Error while applying %s", command)
            finally:
                self._updates.task_done()

    async def submit(self, command: SubscriptionCommand) -> None:
        """Queue a command for the update task."""

        await self._updates.put(command)

    async def apply_command(self, command: SubscriptionCommand) -> None:
        """Apply one command atomically, then mirror it to storage."""

        async with self._lock:
            settings = self._apply_locked(command)
        self._mirror(command, settings)

    async def subscriptions_for(self, chat_id: ChatId) -> dict[ValidatorKey, Settings]:
        """Return a consistent view of a chat's subscriptions and settings."""

        async with self._lock:
            return {key: self._settings.get(chat_id, key) for key in self._registry.keys_for(chat_id)}

    async def announcements_enabled(self, chat_id: ChatId) -> bool:
        async with self._lock:
            return self._announcements.is_enabled(chat_id)

    async def broadcast(self, text: str) -> set[ChatId]:
        """Send a team announcement to every opted-in chat."""

        async with self._lock:
            recipients = self._announcements.subscribers()

        delivered: set[ChatId] = set()
        for chat_id in sorted(recipients):
            try:
                await self._notifier.send_text(chat_id, text)
            except Exception:
                LOGGER.warning("Announcement to chat %s failed", chat_id, exc_info=True)
                continue
            delivered.add(chat_id)
        LOGGER.info("Announcement delivered to %s of %s chats", len(delivered), len(recipients))
        return delivered

    async def wait_for_dispatches(self) -> None:
        """Wait until every in-flight delivery task has finished."""

        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    async def shutdown(self) -> None:
        """Abandon in-flight deliveries; they are best-effort."""

        pending = list(self._dispatches)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            LOGGER.info("Abandoned %s in-flight deliveries", len(pending))

    def _apply_locked(self, command: SubscriptionCommand) -> Optional[Settings]:
        if isinstance(command, Subscribe):
            created = self._registry.subscribe(command.key, command.chat_id)
            if not self._settings.contains(command.chat_id, command.key):
                self._settings.update(command.chat_id, command.key, self._settings.default)
            LOGGER.info("Chat %s subscribed to %s (new=%s)", command.chat_id, command.key, created)
            return self._settings.get(command.chat_id, command.key)

        if isinstance(command, Unsubscribe):
            self._registry.unsubscribe(command.key, command.chat_id)
            self._settings.remove(command.chat_id, command.key)
            LOGGER.info("Chat %s unsubscribed from %s", command.chat_id, command.key)
            return None

        if isinstance(command, UnsubscribeAll):
            removed = self._registry.unsubscribe_all(command.chat_id)
            self._settings.remove_all(command.chat_id)
            LOGGER.info("Chat %s unsubscribed from all (%s keys)", command.chat_id, removed)
            return None

        if isinstance(command, (UpdateMaxFrequency, UpdateAlertLeadTime)) and not self._registry.is_subscribed(
            command.key, command.chat_id
        ):
            # Settings exist only for subscribed pairings.
            LOGGER.info("Ignoring settings update for chat %s: not subscribed to %s", command.chat_id, command.key)
            return None

        if isinstance(command, UpdateMaxFrequency):
            return self._settings.update_max_frequency(command.chat_id, command.key, command.blocks)

        if isinstance(command, UpdateAlertLeadTime):
            return self._settings.update_alert_lead_time(command.chat_id, command.key, command.mins)

        if isinstance(command, SetAnnouncements):
            self._announcements.set(command.chat_id, command.enabled)
            return None

        raise TypeError(f"Unsupported subscription command: {command!r}")

    def _mirror(self, command: SubscriptionCommand, settings: Optional[Settings]) -> None:
        # In-memory state stays authoritative when a storage write fails.
        try:
            if isinstance(command, (Subscribe, UpdateMaxFrequency, UpdateAlertLeadTime)) and settings:
                self._storage.save_subscription(command.chat_id, command.key, settings)
            elif isinstance(command, Unsubscribe):
                self._storage.delete_subscription(command.chat_id, command.key)
            elif isinstance(command, UnsubscribeAll):
                self._storage.delete_all_subscriptions(command.chat_id)
            elif isinstance(command, SetAnnouncements):
                self._storage.set_announcements(command.chat_id, command.enabled)
        except Exception:
            LOGGER.exception("Failed to persist %s", command)

    def _drain_failures(self) -> list[FailedNotification]:
        failures: list[FailedNotification] = []
        while True:
            try:
                failures.append(self._failures.get_nowait())
            except asyncio.QueueEmpty:
                return failures

    def _report_failure(self, failure: FailedNotification) -> None:
        try:
            self._failures.put_nowait(failure)
        except asyncio.QueueFull:
            LOGGER.error("Failure queue full, dropping report for chat %s", failure.chat_id)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    async def _dispatch(self, notification: Notification) -> None:
        try:
            await self._notifier.send(notification)
        except Exception:
            LOGGER.warning(
                "Delivery of %s to chat %s failed",
                notification.kind.value,
                notification.chat_id,
                exc_info=True,
            )
            self._report_failure(FailedNotification.for_notification(notification))
