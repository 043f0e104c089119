"""Validator address helpers.

Users type SS58 addresses ("hm..." on Humanode); the chain may hand keys back
as SS58 strings or raw hex. Everything is normalized to ValidatorKey here so
the core never sees address formats.
"""

from __future__ import annotations

import re
from typing import Optional

from substrateinterface.utils.ss58 import ss58_decode, ss58_encode

from biostatus.core.errors import InvalidValidatorKey
from biostatus.core.models import ValidatorKey

HUMANODE_SS58_FORMAT = 5234

_HEX_KEY = re.compile(r"^0x[0-9a-fA-F]{64}$")


def parse_validator_address(text: str, ss58_format: Optional[int] = HUMANODE_SS58_FORMAT) -> ValidatorKey:
    """Parse an SS58 address or 0x-prefixed hex public key.

    ``ss58_format=None`` accepts an address of any network prefix.
    """

    value = text.strip()
    if not value:
        raise InvalidValidatorKey("Validator address is empty")
    if _HEX_KEY.match(value):
        return ValidatorKey.from_hex(value)
    try:
        public_key = ss58_decode(value, valid_ss58_format=ss58_format)
    except ValueError as exc:
        raise InvalidValidatorKey(f"Invalid validator address {value}: {exc}") from exc
    return ValidatorKey.from_hex(public_key)


def format_validator_key(key: ValidatorKey, ss58_format: int = HUMANODE_SS58_FORMAT) -> str:
    """Render a key as an SS58 address for messages."""

    return ss58_encode(key.raw, ss58_format=ss58_format)


def validator_key_from_chain(value: object) -> ValidatorKey:
    """Normalize a decoded on-chain public key into a ValidatorKey."""

    if isinstance(value, (bytes, bytearray)):
        return ValidatorKey(bytes(value))
    if isinstance(value, (list, tuple)):
        return ValidatorKey(bytes(value))
    if isinstance(value, str):
        if value.startswith("0x"):
            return ValidatorKey.from_hex(value)
        return parse_validator_address(value, ss58_format=None)
    raise InvalidValidatorKey(f"Unsupported on-chain key representation: {type(value).__name__}")
