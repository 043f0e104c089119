"""Substrate block feed adapter.

Implements the core BlockFeedPort on top of substrate-interface. Finalized
blocks are delivered one by one in increasing order; when the finalized head
jumps ahead, the intermediate blocks are fetched by number so none is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from substrateinterface import SubstrateInterface

from biostatus.adapters.validator_keys import HUMANODE_SS58_FORMAT, validator_key_from_chain
from biostatus.core.errors import BlockFeedError
from biostatus.core.models import BlockSnapshot, ValidatorKey

LOGGER = logging.getLogger(__name__)

BIOAUTH_PALLET = "Bioauth"
ACTIVE_AUTHENTICATIONS = "ActiveAuthentications"


def decode_active_authentications(value: Any) -> dict[ValidatorKey, int]:
    """Convert the decoded ActiveAuthentications storage value into a map.

    Each entry carries ``public_key`` and ``expires_at``; an absent storage
    value means nobody is authenticated.
    """

    active: dict[ValidatorKey, int] = {}
    for entry in value or []:
        key = validator_key_from_chain(entry["public_key"])
        active[key] = int(entry["expires_at"])
    return active


class SubstrateBlockFeed:
    """Finalized block source reading bio-authentication state."""

    def __init__(
        self,
        url: str,
        ss58_format: int = HUMANODE_SS58_FORMAT,
        poll_interval_seconds: float = 3.0,
        interface_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._url = url
        self._ss58_format = ss58_format
        self._poll_interval = poll_interval_seconds
        self._interface_factory = interface_factory or SubstrateInterface
        self._substrate: Any = None
        self._last_number: Optional[int] = None

    @property
    def last_block_number(self) -> Optional[int]:
        return self._last_number

    async def next_block(self) -> BlockSnapshot:
        """Return the block after the last delivered one, waiting if needed."""

        while True:
            head = await self._call(self._finalized_number)
            if self._last_number is None:
                target = head
            elif head > self._last_number:
                target = self._last_number + 1
            else:
                await asyncio.sleep(self._poll_interval)
                continue

            snapshot = await self._call(self._snapshot_at, target)
            # Only advance once the snapshot is complete so a failed block is
            # requested again on the next call.
            self._last_number = target
            LOGGER.debug("New finalized block %s", target)
            return snapshot

    async def fetch_latest(self) -> BlockSnapshot:
        """Return a snapshot of the current finalized head."""

        head = await self._call(self._finalized_number)
        return await self._call(self._snapshot_at, head)

    def close(self) -> None:
        substrate, self._substrate = self._substrate, None
        if substrate is None:
            return
        try:
            substrate.close()
        except Exception:
            LOGGER.warning("Failed to close connection to %s", self._url, exc_info=True)

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        # substrate-interface is blocking; keep it off the event loop.
        try:
            return await asyncio.to_thread(func, *args)
        except BlockFeedError:
            raise
        except Exception as exc:
            # The next attempt starts from a fresh socket.
            self.close()
            raise BlockFeedError(f"{type(exc).__name__}: {exc}") from exc

    def _connect(self) -> Any:
        if self._substrate is None:
            LOGGER.info("Connecting to %s", self._url)
            self._substrate = self._interface_factory(
                url=self._url,
                ss58_format=self._ss58_format,
                auto_reconnect=True,
            )
        return self._substrate

    def _finalized_number(self) -> int:
        substrate = self._connect()
        head_hash = substrate.get_chain_finalised_head()
        return int(substrate.get_block_number(head_hash))

    def _snapshot_at(self, block_number: int) -> BlockSnapshot:
        substrate = self._connect()
        block_hash = substrate.get_block_hash(block_number)
        if block_hash is None:
            raise BlockFeedError("block hash not available", block_number)
        result = substrate.query(BIOAUTH_PALLET, ACTIVE_AUTHENTICATIONS, block_hash=block_hash)
        value = getattr(result, "value", result)
        return BlockSnapshot(block_number=block_number, active_map=decode_active_authentications(value))
