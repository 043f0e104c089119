"""Per-block notification engine (core domain).

For every subscribed (key, chat) pairing the engine decides whether the
current block warrants a "lost" notification (key has no active
authentication) or a "soon expired" alert (active authentication is within
the pairing's lead time of its expiry). Timing state lives in the registry
and is mutated in place.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Optional

from biostatus.core.config import EngineConfig
from biostatus.core.models import (
    ChatId,
    Notification,
    NotificationKind,
    NotificationState,
    Settings,
    ValidatorKey,
)
from biostatus.core.registry import SubscriptionRegistry
from biostatus.core.settings_store import SettingsStore

LOGGER = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60

Clock = Callable[[], float]


class NotificationEngine:
    """Turns one block snapshot into a list of notifications."""

    def __init__(self, config: Optional[EngineConfig] = None, clock: Clock = time.time) -> None:
        self._config = config or EngineConfig()
        self._clock = clock

    @property
    def units_per_second(self) -> int:
        return self._config.timestamp_unit.per_second

    def now(self) -> int:
        """Current wall-clock time in the chain's timestamp unit."""

        return int(self._clock() * self.units_per_second)

    def lead_time(self, settings: Settings) -> int:
        """Alert lead time in the chain's timestamp unit."""

        return settings.alert_before_expiration_in_mins * SECONDS_PER_MINUTE * self.units_per_second

    def process_block(
        self,
        block_number: int,
        active_map: Mapping[ValidatorKey, int],
        settings: SettingsStore,
        registry: SubscriptionRegistry,
    ) -> list[Notification]:
        """Evaluate every pairing once and return the notifications to send."""

        now = self.now()
        notifications: list[Notification] = []

        def visit(key: ValidatorKey, chat_id: ChatId, state: NotificationState) -> None:
            pairing_settings = settings.get(chat_id, key)
            expires_at = active_map.get(key)
            if expires_at is None:
                if self._check_lost(state, block_number, pairing_settings):
                    notifications.append(Notification(NotificationKind.LOST, chat_id, key))
            elif self._check_expiry(state, expires_at, pairing_settings, now):
                notifications.append(Notification(NotificationKind.SOON_EXPIRED, chat_id, key))

        registry.for_each_mut(visit)

        LOGGER.debug(
            "Block %s evaluated: pairings=%s, notifications=%s",
            block_number,
            len(registry),
            len(notifications),
        )
        return notifications

    @staticmethod
    def _check_lost(state: NotificationState, block_number: int, settings: Settings) -> bool:
        # A zero next_block_number_to_notify means no throttle is in effect, so
        # the first observation of an inactive key always notifies.
        if state.next_block_number_to_notify != 0 and block_number < state.next_block_number_to_notify:
            return False

        state.last_block_number_notified = block_number
        state.next_block_number_to_notify = block_number + settings.max_message_frequency_in_blocks
        return True

    def _check_expiry(
        self,
        state: NotificationState,
        expires_at: int,
        settings: Settings,
        now: int,
    ) -> bool:
        alert_at = expires_at - self.lead_time(settings)

        if state.alerted_at is not None:
            if state.alerted_at >= alert_at:
                # One alert per deadline: stay quiet until the expiry moves past the
                # last alert, even though the threshold is still behind now.
                return False
            # The deadline moved past the last alert (re-authentication). Re-arm
            # once the new threshold is due.
            if alert_at <= now:
                state.alerted_at = None

        if alert_at > now:
            return False

        state.alerted_at = now
        return True
