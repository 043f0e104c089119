"""Exception types raised across the core and adapters."""

from __future__ import annotations


class BiostatusError(Exception):
    pass


class InvalidValidatorKey(BiostatusError, ValueError):
    """Raised for malformed key bytes or unparseable validator addresses."""


class BlockFeedError(BiostatusError):
    """Upstream chain failure while producing a block snapshot."""

    def __init__(self, message: str, block_number: "int | None" = None) -> None:
        self.block_number = block_number
        if block_number is not None:
            message = f"Block {block_number}: {message}"
        super().__init__(message)


class DeliveryError(BiostatusError):
    """The transport could not deliver a message to a chat."""

    def __init__(self, chat_id: int, message: str) -> None:
        self.chat_id = chat_id
        super().__init__(f"Delivery to chat {chat_id} failed: {message}")
