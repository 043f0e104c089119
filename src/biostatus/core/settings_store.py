"""Per-pairing throttling and alert settings (core domain)."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from biostatus.core.models import DEFAULT_SETTINGS, ChatId, Settings, ValidatorKey


class SettingsStore:
    """Settings keyed by (chat, key); lookups never fail.

    Absent pairings resolve to the store's default, so callers can read
    settings for any pairing without checking for existence first.
    """

    def __init__(self, default: Optional[Settings] = None) -> None:
        self._default = default or DEFAULT_SETTINGS
        self._settings: dict[tuple[ChatId, ValidatorKey], Settings] = {}

    @property
    def default(self) -> Settings:
        return self._default

    def get(self, chat_id: ChatId, key: ValidatorKey) -> Settings:
        return self._settings.get((chat_id, key), self._default)

    def contains(self, chat_id: ChatId, key: ValidatorKey) -> bool:
        return (chat_id, key) in self._settings

    def update(self, chat_id: ChatId, key: ValidatorKey, settings: Settings) -> None:
        self._settings[(chat_id, key)] = settings

    def update_alert_lead_time(self, chat_id: ChatId, key: ValidatorKey, mins: int) -> Settings:
        settings = replace(self.get(chat_id, key), alert_before_expiration_in_mins=mins)
        self._settings[(chat_id, key)] = settings
        return settings

    def update_max_frequency(self, chat_id: ChatId, key: ValidatorKey, blocks: int) -> Settings:
        settings = replace(self.get(chat_id, key), max_message_frequency_in_blocks=blocks)
        self._settings[(chat_id, key)] = settings
        return settings

    def remove(self, chat_id: ChatId, key: ValidatorKey) -> None:
        self._settings.pop((chat_id, key), None)

    def remove_all(self, chat_id: ChatId) -> None:
        for pairing in [pairing for pairing in self._settings if pairing[0] == chat_id]:
            del self._settings[pairing]

    def all_keys_for_chat(self, chat_id: ChatId) -> set[ValidatorKey]:
        """Return every key that has a settings record for this chat."""

        return {key for (owner, key) in self._settings if owner == chat_id}
