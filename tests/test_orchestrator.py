from __future__ import annotations

import asyncio

import pytest

from biostatus.core.config import EngineConfig
from biostatus.core.engine import NotificationEngine
from biostatus.core.errors import BlockFeedError, DeliveryError
from biostatus.core.models import (
    BlockSnapshot,
    Notification,
    NotificationKind,
    SetAnnouncements,
    Settings,
    Subscribe,
    SubscriptionRecord,
    Unsubscribe,
    UnsubscribeAll,
    UpdateAlertLeadTime,
    UpdateMaxFrequency,
    ValidatorKey,
)
from biostatus.core.orchestrator import Orchestrator

NOW = 1_700_000_000.0
NOW_MS = 1_700_000_000_000
KEY_A = ValidatorKey(b"\x0a" * 32)
KEY_B = ValidatorKey(b"\x0b" * 32)


class FeedExhausted(Exception):
    pass


class FakeFeed:
    def __init__(self, items: list) -> None:
        self.items = list(items)
        self.calls = 0

    async def next_block(self) -> BlockSnapshot:
        self.calls += 1
        if not self.items:
            raise FeedExhausted()
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeNotifier:
    def __init__(self, failing_chats: set[int] | None = None) -> None:
        self.failing_chats = set(failing_chats or ())
        self.sent: list[Notification] = []
        self.texts: list[tuple[int, str]] = []
        self.gate: asyncio.Event | None = None

    async def send(self, notification: Notification) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if notification.chat_id in self.failing_chats:
            raise DeliveryError(notification.chat_id, "blocked")
        self.sent.append(notification)

    async def send_text(self, chat_id: int, text: str) -> None:
        if chat_id in self.failing_chats:
            raise DeliveryError(chat_id, "blocked")
        self.texts.append((chat_id, text))


class FakeStorage:
    def __init__(self, records: list[SubscriptionRecord] | None = None, announcements: set[int] | None = None) -> None:
        self.records = list(records or ())
        self.announcements = set(announcements or ())
        self.calls: list[tuple] = []
        self.fail = False

    def load_subscriptions(self) -> list[SubscriptionRecord]:
        return list(self.records)

    def load_announcement_subscribers(self) -> set[int]:
        return set(self.announcements)

    def save_subscription(self, chat_id: int, key: ValidatorKey, settings: Settings) -> None:
        self._record("save", chat_id, key, settings)

    def delete_subscription(self, chat_id: int, key: ValidatorKey) -> None:
        self._record("delete", chat_id, key)

    def delete_all_subscriptions(self, chat_id: int) -> None:
        self._record("delete_all", chat_id)

    def set_announcements(self, chat_id: int, enabled: bool) -> None:
        self._record("announcements", chat_id, enabled)

    def _record(self, *call) -> None:
        if self.fail:
            raise OSError("disk full")
        self.calls.append(call)


def _orchestrator(
    feed: FakeFeed | None = None,
    notifier: FakeNotifier | None = None,
    storage: FakeStorage | None = None,
    config: EngineConfig | None = None,
) -> Orchestrator:
    config = config or EngineConfig(retry_delay_seconds=0)
    return Orchestrator.from_storage(
        storage or FakeStorage(),
        engine=NotificationEngine(config, clock=lambda: NOW),
        block_feed=feed or FakeFeed([]),
        notifier=notifier or FakeNotifier(),
        config=config,
    )


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def test_block_notifications_are_dispatched() -> None:
    notifier = FakeNotifier()

    async def scenario() -> list[Notification]:
        orchestrator = _orchestrator(notifier=notifier)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.apply_command(Subscribe(2, KEY_B))
        produced = await orchestrator.handle_block(BlockSnapshot(1, {KEY_B: NOW_MS}))
        await orchestrator.wait_for_dispatches()
        return produced

    produced = asyncio.run(scenario())

    expected = [
        Notification(NotificationKind.LOST, 1, KEY_A),
        Notification(NotificationKind.SOON_EXPIRED, 2, KEY_B),
    ]
    assert produced == expected
    assert notifier.sent == expected


def test_failed_delivery_is_retried_on_next_block() -> None:
    notifier = FakeNotifier(failing_chats={1})

    async def scenario() -> list[list[Notification]]:
        orchestrator = _orchestrator(notifier=notifier)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.apply_command(Subscribe(2, KEY_A))
        rounds = [await orchestrator.handle_block(BlockSnapshot(1, {}))]
        await orchestrator.wait_for_dispatches()
        rounds.append(await orchestrator.handle_block(BlockSnapshot(2, {})))
        await orchestrator.wait_for_dispatches()
        return rounds

    first, second = asyncio.run(scenario())

    assert len(first) == 2
    # Chat 2 is still throttled; chat 1's failure cleared its throttle.
    assert second == [Notification(NotificationKind.LOST, 1, KEY_A)]
    assert notifier.sent == [Notification(NotificationKind.LOST, 2, KEY_A)]


def test_failed_alert_is_retried_on_next_block() -> None:
    notifier = FakeNotifier(failing_chats={1})

    async def scenario() -> list[Notification]:
        orchestrator = _orchestrator(notifier=notifier)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.handle_block(BlockSnapshot(1, {KEY_A: NOW_MS}))
        await orchestrator.wait_for_dispatches()
        produced = await orchestrator.handle_block(BlockSnapshot(2, {KEY_A: NOW_MS}))
        await orchestrator.wait_for_dispatches()
        return produced

    assert asyncio.run(scenario()) == [Notification(NotificationKind.SOON_EXPIRED, 1, KEY_A)]


def test_slow_delivery_does_not_block_updates() -> None:
    notifier = FakeNotifier()

    async def scenario() -> dict:
        notifier.gate = asyncio.Event()
        orchestrator = _orchestrator(notifier=notifier)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.handle_block(BlockSnapshot(1, {}))
        await asyncio.wait_for(orchestrator.apply_command(Subscribe(1, KEY_B)), timeout=1)
        subscriptions = await orchestrator.subscriptions_for(1)
        notifier.gate.set()
        await orchestrator.wait_for_dispatches()
        return subscriptions

    assert set(asyncio.run(scenario())) == {KEY_A, KEY_B}
    assert notifier.sent == [Notification(NotificationKind.LOST, 1, KEY_A)]


def test_feed_error_is_logged_and_retried(caplog: pytest.LogCaptureFixture) -> None:
    feed = FakeFeed([BlockFeedError("rpc down", 7), BlockSnapshot(7, {})])
    notifier = FakeNotifier()

    async def scenario() -> None:
        orchestrator = _orchestrator(feed=feed, notifier=notifier)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        with pytest.raises(FeedExhausted):
            await orchestrator.run_blocks()
        await orchestrator.wait_for_dispatches()

    asyncio.run(scenario())

    assert feed.calls == 3
    assert notifier.sent == [Notification(NotificationKind.LOST, 1, KEY_A)]
    assert "Block feed error" in caplog.text


def test_commands_update_state_and_storage() -> None:
    storage = FakeStorage()

    async def scenario() -> dict:
        orchestrator = _orchestrator(storage=storage)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.apply_command(UpdateMaxFrequency(1, KEY_A, 3))
        await orchestrator.apply_command(UpdateAlertLeadTime(1, KEY_A, 15))
        await orchestrator.apply_command(Subscribe(1, KEY_B))
        await orchestrator.apply_command(Unsubscribe(1, KEY_B))
        return await orchestrator.subscriptions_for(1)

    assert asyncio.run(scenario()) == {KEY_A: Settings(3, 15)}
    assert storage.calls == [
        ("save", 1, KEY_A, Settings(10, 60)),
        ("save", 1, KEY_A, Settings(3, 60)),
        ("save", 1, KEY_A, Settings(3, 15)),
        ("save", 1, KEY_B, Settings(10, 60)),
        ("delete", 1, KEY_B),
    ]


def test_resubscribe_keeps_settings_and_throttle() -> None:
    async def scenario() -> list[Notification]:
        orchestrator = _orchestrator()
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.apply_command(UpdateMaxFrequency(1, KEY_A, 50))
        await orchestrator.handle_block(BlockSnapshot(1, {}))
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        produced = await orchestrator.handle_block(BlockSnapshot(20, {}))
        assert await orchestrator.subscriptions_for(1) == {KEY_A: Settings(50, 60)}
        await orchestrator.wait_for_dispatches()
        return produced

    assert asyncio.run(scenario()) == []


def test_unsubscribe_all_clears_chat() -> None:
    storage = FakeStorage()

    async def scenario() -> tuple[dict, list[Notification]]:
        orchestrator = _orchestrator(storage=storage)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.apply_command(Subscribe(1, KEY_B))
        await orchestrator.apply_command(Subscribe(2, KEY_A))
        await orchestrator.apply_command(UnsubscribeAll(1))
        produced = await orchestrator.handle_block(BlockSnapshot(1, {}))
        await orchestrator.wait_for_dispatches()
        return await orchestrator.subscriptions_for(1), produced

    remaining, produced = asyncio.run(scenario())

    assert remaining == {}
    assert produced == [Notification(NotificationKind.LOST, 2, KEY_A)]
    assert storage.calls[-1] == ("delete_all", 1)


def test_storage_failure_keeps_memory_state(caplog: pytest.LogCaptureFixture) -> None:
    storage = FakeStorage()
    storage.fail = True

    async def scenario() -> dict:
        orchestrator = _orchestrator(storage=storage)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        return await orchestrator.subscriptions_for(1)

    assert asyncio.run(scenario()) == {KEY_A: Settings()}
    assert "Failed to persist" in caplog.text


def test_restored_subscriptions_notify_on_first_block() -> None:
    storage = FakeStorage(records=[SubscriptionRecord(5, KEY_A, 2, 30)], announcements={5})

    async def scenario() -> tuple[list[Notification], dict, bool]:
        orchestrator = _orchestrator(storage=storage)
        produced = await orchestrator.handle_block(BlockSnapshot(100, {}))
        await orchestrator.wait_for_dispatches()
        return produced, await orchestrator.subscriptions_for(5), await orchestrator.announcements_enabled(5)

    produced, subscriptions, announcements = asyncio.run(scenario())

    assert produced == [Notification(NotificationKind.LOST, 5, KEY_A)]
    assert subscriptions == {KEY_A: Settings(2, 30)}
    assert announcements is True


def test_update_task_applies_submitted_commands() -> None:
    async def scenario() -> dict:
        orchestrator = _orchestrator()
        task = asyncio.ensure_future(orchestrator.run_updates())
        await orchestrator.submit(Subscribe(3, KEY_B))
        await _settle()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return await orchestrator.subscriptions_for(3)

    assert asyncio.run(scenario()) == {KEY_B: Settings()}


def test_broadcast_skips_failed_chats() -> None:
    notifier = FakeNotifier(failing_chats={2})
    storage = FakeStorage()

    async def scenario() -> set[int]:
        orchestrator = _orchestrator(notifier=notifier, storage=storage)
        for chat_id in (1, 2, 3):
            await orchestrator.apply_command(SetAnnouncements(chat_id, True))
        await orchestrator.apply_command(SetAnnouncements(3, False))
        return await orchestrator.broadcast("Runtime upgrade tonight")

    assert asyncio.run(scenario()) == {1}
    assert notifier.texts == [(1, "Runtime upgrade tonight")]
    assert ("announcements", 3, False) in storage.calls


def test_shutdown_abandons_in_flight_deliveries() -> None:
    notifier = FakeNotifier()

    async def scenario() -> list[Notification]:
        notifier.gate = asyncio.Event()
        orchestrator = _orchestrator(notifier=notifier)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        await orchestrator.handle_block(BlockSnapshot(1, {}))
        await orchestrator.shutdown()
        # Cancelled deliveries are not reported as failures.
        return await orchestrator.handle_block(BlockSnapshot(2, {}))

    assert asyncio.run(scenario()) == []
    assert notifier.sent == []


def test_settings_update_queued_behind_unsubscribe_is_dropped() -> None:
    storage = FakeStorage()

    async def scenario() -> dict:
        orchestrator = _orchestrator(storage=storage)
        await orchestrator.apply_command(Subscribe(1, KEY_A))
        task = asyncio.ensure_future(orchestrator.run_updates())
        await orchestrator.submit(Unsubscribe(1, KEY_A))
        await orchestrator.submit(UpdateMaxFrequency(1, KEY_A, 5))
        await orchestrator.submit(UpdateAlertLeadTime(1, KEY_A, 15))
        await _settle()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return await orchestrator.subscriptions_for(1)

    assert asyncio.run(scenario()) == {}
    assert storage.calls == [
        ("save", 1, KEY_A, Settings(10, 60)),
        ("delete", 1, KEY_A),
    ]


def test_settings_update_for_never_subscribed_key_creates_nothing() -> None:
    storage = FakeStorage()

    async def scenario() -> tuple[dict, list[Notification]]:
        orchestrator = _orchestrator(storage=storage)
        await orchestrator.apply_command(UpdateMaxFrequency(1, KEY_B, 5))
        produced = await orchestrator.handle_block(BlockSnapshot(1, {}))
        return await orchestrator.subscriptions_for(1), produced

    assert asyncio.run(scenario()) == ({}, [])
    assert storage.calls == []
