"""SQLite storage adapter.

Implements the core SubscriptionStoragePort using a simple SQLite database.
Only subscriptions and their settings are stored; notification timing state
is rebuilt from scratch on every start.
"""

from __future__ import annotations

import sqlite3

from biostatus.core.models import ChatId, Settings, SubscriptionRecord, ValidatorKey


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the SubscriptionStoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - validator_subscriptions: one row per (chat, validator key) pairing
        - announcement_subscriptions: per-chat opt-in for team announcements
        """

        with self._connect() as conn:
            # validator_subscriptions mirrors the in-memory registry plus settings.
            # Fields:
            # - chat_id: Telegram chat id of the subscriber
            # - validator_key: raw 32-byte public key
            # - max_message_frequency_in_blocks: throttle window for "lost" messages
            # - alert_before_expiration_in_mins: lead time for "soon expired" alerts
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS validator_subscriptions (
                    chat_id INTEGER NOT NULL,
                    validator_key BLOB NOT NULL,
                    max_message_frequency_in_blocks INTEGER NOT NULL,
                    alert_before_expiration_in_mins INTEGER NOT NULL,
                    PRIMARY KEY (chat_id, validator_key)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS announcement_subscriptions (
                    chat_id INTEGER PRIMARY KEY,
                    enabled INTEGER NOT NULL
                )
                """
            )

    def load_subscriptions(self) -> list[SubscriptionRecord]:
        """Return every stored subscription, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT chat_id, validator_key, max_message_frequency_in_blocks,
                       alert_before_expiration_in_mins
                FROM validator_subscriptions
                ORDER BY rowid
                """
            ).fetchall()
        return [
            SubscriptionRecord(
                chat_id=int(row["chat_id"]),
                key=ValidatorKey(bytes(row["validator_key"])),
                max_message_frequency_in_blocks=int(row["max_message_frequency_in_blocks"]),
                alert_before_expiration_in_mins=int(row["alert_before_expiration_in_mins"]),
            )
            for row in rows
        ]

    def save_subscription(self, chat_id: ChatId, key: ValidatorKey, settings: Settings) -> None:
        """Upsert a subscription together with its settings."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO validator_subscriptions (
                    chat_id,
                    validator_key,
                    max_message_frequency_in_blocks,
                    alert_before_expiration_in_mins
                ) VALUES (?, ?, ?, ?)
                ON CONFLICT(chat_id, validator_key) DO UPDATE SET
                    max_message_frequency_in_blocks = excluded.max_message_frequency_in_blocks,
                    alert_before_expiration_in_mins = excluded.alert_before_expiration_in_mins
                """,
                (
                    chat_id,
                    key.raw,
                    settings.max_message_frequency_in_blocks,
                    settings.alert_before_expiration_in_mins,
                ),
            )

    def delete_subscription(self, chat_id: ChatId, key: ValidatorKey) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM validator_subscriptions WHERE chat_id = ? AND validator_key = ?",
                (chat_id, key.raw),
            )

    def delete_all_subscriptions(self, chat_id: ChatId) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM validator_subscriptions WHERE chat_id = ?",
                (chat_id,),
            )

    def load_announcement_subscribers(self) -> set[ChatId]:
        """Return chat ids that opted into team announcements."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT chat_id FROM announcement_subscriptions WHERE enabled = 1"
            ).fetchall()
        return {int(row["chat_id"]) for row in rows}

    def set_announcements(self, chat_id: ChatId, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO announcement_subscriptions (chat_id, enabled)
                VALUES (?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET enabled = excluded.enabled
                """,
                (chat_id, int(enabled)),
            )
