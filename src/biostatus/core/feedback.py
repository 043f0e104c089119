"""Delivery failure feedback (core domain).

The transport reports failures per chat, not per pairing, so a failure
resets timing state for every key the chat watches, including pairings
whose own delivery succeeded.
"""

from __future__ import annotations

import logging
from typing import Iterable

from biostatus.core.models import ChatId, FailedNotification, FailureKind, NotificationState, ValidatorKey
from biostatus.core.registry import SubscriptionRegistry

LOGGER = logging.getLogger(__name__)


class FailureFeedback:
    """Resets registry timing state so failed pairings are retried."""

    def __init__(self, registry: SubscriptionRegistry) -> None:
        self._registry = registry

    def apply(self, failures: Iterable[FailedNotification]) -> None:
        lost_failed: set[ChatId] = set()
        alert_failed: set[ChatId] = set()
        for failure in failures:
            if failure.kind is FailureKind.LOST_FAILED:
                lost_failed.add(failure.chat_id)
            else:
                alert_failed.add(failure.chat_id)

        if not lost_failed and not alert_failed:
            return

        def reset(key: ValidatorKey, chat_id: ChatId, state: NotificationState) -> None:
            if chat_id in lost_failed:
                state.last_block_number_notified = 0
                state.next_block_number_to_notify = 0
            if chat_id in alert_failed:
                state.alerted_at = None

        self._registry.for_each_mut(reset)
        LOGGER.info(
            "Applied delivery failures: lost=%s, alerts=%s",
            sorted(lost_failed),
            sorted(alert_failed),
        )
