"""Subscription registry (core domain).

Maps each validator key to the chats watching it, together with the
per-pairing notification timing state.
"""

from __future__ import annotations

from typing import Callable, Iterable, Iterator, Optional, Tuple

from biostatus.core.models import ChatId, NotificationState, ValidatorKey

PairingVisitor = Callable[[ValidatorKey, ChatId, NotificationState], None]


class SubscriptionRegistry:
    """Index of validator key -> chat id -> NotificationState.

    A pairing exists iff the chat is subscribed to the key. Keys whose last
    subscriber left stay in place with an empty inner mapping; scanning
    skips them at no cost.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[ValidatorKey, dict[ChatId, NotificationState]] = {}

    @classmethod
    def from_pairings(cls, pairings: Iterable[Tuple[ValidatorKey, ChatId]]) -> "SubscriptionRegistry":
        registry = cls()
        for key, chat_id in pairings:
            registry.subscribe(key, chat_id)
        return registry

    def subscribe(self, key: ValidatorKey, chat_id: ChatId) -> bool:
        """Ensure the pairing exists; return True when it was created.

        Re-subscribing keeps the existing timing state so the watch stays
        continuous.
        """

        chats = self._subscriptions.setdefault(key, {})
        if chat_id in chats:
            return False
        chats[chat_id] = NotificationState()
        return True

    def unsubscribe(self, key: ValidatorKey, chat_id: ChatId) -> bool:
        chats = self._subscriptions.get(key)
        if chats is None or chat_id not in chats:
            return False
        del chats[chat_id]
        return True

    def unsubscribe_all(self, chat_id: ChatId) -> int:
        removed = 0
        for chats in self._subscriptions.values():
            if chats.pop(chat_id, None) is not None:
                removed += 1
        return removed

    def is_subscribed(self, key: ValidatorKey, chat_id: ChatId) -> bool:
        return chat_id in self._subscriptions.get(key, {})

    def state(self, key: ValidatorKey, chat_id: ChatId) -> Optional[NotificationState]:
        return self._subscriptions.get(key, {}).get(chat_id)

    def chats_for(self, key: ValidatorKey) -> set[ChatId]:
        return set(self._subscriptions.get(key, {}))

    def keys_for(self, chat_id: ChatId) -> set[ValidatorKey]:
        return {key for key, chats in self._subscriptions.items() if chat_id in chats}

    def pairings(self) -> Iterator[Tuple[ValidatorKey, ChatId, NotificationState]]:
        for key, chats in self._subscriptions.items():
            for chat_id, state in chats.items():
                yield key, chat_id, state

    def for_each_mut(self, visit: PairingVisitor) -> None:
        """Call ``visit`` once for every pairing, in registry order."""

        for key, chat_id, state in self.pairings():
            visit(key, chat_id, state)

    def __len__(self) -> int:
        return sum(len(chats) for chats in self._subscriptions.values())
