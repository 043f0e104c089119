"""Opt-in team announcement subscribers (core domain)."""

from __future__ import annotations

from typing import Iterable

from biostatus.core.models import ChatId


class AnnouncementSubscribers:
    """Chats that opted into announcements from the operator team."""

    def __init__(self, enabled: Iterable[ChatId] = ()) -> None:
        self._enabled: set[ChatId] = set(enabled)

    def is_enabled(self, chat_id: ChatId) -> bool:
        return chat_id in self._enabled

    def set(self, chat_id: ChatId, enabled: bool) -> None:
        if enabled:
            self._enabled.add(chat_id)
        else:
            self._enabled.discard(chat_id)

    def subscribers(self) -> set[ChatId]:
        return set(self._enabled)
