"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any chain- or Telegram-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from biostatus.core.errors import InvalidValidatorKey

ChatId = int

VALIDATOR_KEY_LENGTH = 32


@dataclass(frozen=True)
class ValidatorKey:
    """Opaque 32-byte validator public key with value semantics."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, (bytes, bytearray)):
            raise InvalidValidatorKey(f"Validator key must be bytes, got {type(self.raw).__name__}")
        if len(self.raw) != VALIDATOR_KEY_LENGTH:
            raise InvalidValidatorKey(
                f"Validator key must be {VALIDATOR_KEY_LENGTH} bytes, got {len(self.raw)}"
            )
        # bytearray input is frozen into bytes so the key stays hashable.
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_hex(cls, value: str) -> "ValidatorKey":
        text = value[2:] if value.startswith("0x") else value
        try:
            return cls(bytes.fromhex(text))
        except ValueError as exc:
            raise InvalidValidatorKey(f"Invalid hex validator key: {value}") from exc

    def hex(self) -> str:
        return "0x" + self.raw.hex()

    def __repr__(self) -> str:
        return f"ValidatorKey({self.hex()})"


@dataclass(frozen=True)
class Settings:
    """Per (chat, key) throttling and alert configuration."""

    max_message_frequency_in_blocks: int = 10
    alert_before_expiration_in_mins: int = 60


DEFAULT_SETTINGS = Settings()


@dataclass
class NotificationState:
    """Mutable timing state for one (key, chat) pairing.

    Zero block numbers mean "never notified" / "no throttle in effect".
    ``alerted_at`` is expressed in the chain's timestamp unit.
    """

    last_block_number_notified: int = 0
    next_block_number_to_notify: int = 0
    alerted_at: Optional[int] = None


class NotificationKind(Enum):
    LOST = "lost"
    SOON_EXPIRED = "soon_expired"


@dataclass(frozen=True)
class Notification:
    """One outbound event produced by the engine for a block."""

    kind: NotificationKind
    chat_id: ChatId
    key: ValidatorKey


class FailureKind(Enum):
    LOST_FAILED = "lost_failed"
    ALERT_FAILED = "alert_failed"


@dataclass(frozen=True)
class FailedNotification:
    """Delivery failure report, keyed by chat rather than by pairing."""

    kind: FailureKind
    chat_id: ChatId

    @classmethod
    def for_notification(cls, notification: Notification) -> "FailedNotification":
        if notification.kind is NotificationKind.LOST:
            return cls(FailureKind.LOST_FAILED, notification.chat_id)
        return cls(FailureKind.ALERT_FAILED, notification.chat_id)


@dataclass(frozen=True)
class BlockSnapshot:
    """A finalized block reduced to what the engine needs."""

    block_number: int
    active_map: dict[ValidatorKey, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SubscriptionRecord:
    """Persisted subscription row used to seed the core at startup."""

    chat_id: ChatId
    key: ValidatorKey
    max_message_frequency_in_blocks: int
    alert_before_expiration_in_mins: int

    @property
    def settings(self) -> Settings:
        return Settings(
            max_message_frequency_in_blocks=self.max_message_frequency_in_blocks,
            alert_before_expiration_in_mins=self.alert_before_expiration_in_mins,
        )


# Subscription-update commands. Each is applied atomically under the
# orchestrator's mutation lock and then mirrored to storage.


@dataclass(frozen=True)
class Subscribe:
    chat_id: ChatId
    key: ValidatorKey


@dataclass(frozen=True)
class Unsubscribe:
    chat_id: ChatId
    key: ValidatorKey


@dataclass(frozen=True)
class UnsubscribeAll:
    chat_id: ChatId


@dataclass(frozen=True)
class UpdateMaxFrequency:
    chat_id: ChatId
    key: ValidatorKey
    blocks: int


@dataclass(frozen=True)
class UpdateAlertLeadTime:
    chat_id: ChatId
    key: ValidatorKey
    mins: int


@dataclass(frozen=True)
class SetAnnouncements:
    chat_id: ChatId
    enabled: bool


SubscriptionCommand = Union[
    Subscribe,
    Unsubscribe,
    UnsubscribeAll,
    UpdateMaxFrequency,
    UpdateAlertLeadTime,
    SetAnnouncements,
]
