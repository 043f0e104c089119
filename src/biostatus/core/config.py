"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from biostatus.core.models import Settings


class TimestampUnit(Enum):
    """Unit of the chain-supplied ``expires_at`` timestamps.

    The value is the number of chain units per wall-clock second.
    """

    SECONDS = 1
    MILLISECONDS = 1000

    @property
    def per_second(self) -> int:
        return self.value

    @classmethod
    def parse(cls, name: str) -> "TimestampUnit":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unsupported timestamp unit: {name}") from None


@dataclass(frozen=True)
class EngineConfig:
    """Settings for the per-block notification engine and its orchestrator."""

    timestamp_unit: TimestampUnit = TimestampUnit.MILLISECONDS
    default_settings: Settings = field(default_factory=Settings)
    failure_queue_size: int = 1000
    retry_delay_seconds: float = 5.0
