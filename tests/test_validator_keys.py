from __future__ import annotations

import pytest

from biostatus.adapters.validator_keys import (
    HUMANODE_SS58_FORMAT,
    format_validator_key,
    parse_validator_address,
    validator_key_from_chain,
)
from biostatus.core.errors import InvalidValidatorKey
from biostatus.core.models import ValidatorKey

KEY = ValidatorKey(bytes(range(32)))


def test_humanode_address_round_trip() -> None:
    address = format_validator_key(KEY)

    assert address.startswith("hm")
    assert parse_validator_address(address) == KEY
    assert parse_validator_address(f"  {address}\n") == KEY


def test_hex_public_key_is_accepted() -> None:
    assert parse_validator_address(KEY.hex()) == KEY


def test_address_from_another_network_is_rejected() -> None:
    polkadot_address = format_validator_key(KEY, ss58_format=0)

    with pytest.raises(InvalidValidatorKey):
        parse_validator_address(polkadot_address, HUMANODE_SS58_FORMAT)
    assert parse_validator_address(polkadot_address, ss58_format=None) == KEY


@pytest.mark.parametrize("text", ["", "   ", "hello", "0x1234", "hm" + "1" * 46])
def test_garbage_is_rejected(text: str) -> None:
    with pytest.raises(InvalidValidatorKey):
        parse_validator_address(text)


def test_chain_representations_normalize_to_same_key() -> None:
    assert validator_key_from_chain(KEY.raw) == KEY
    assert validator_key_from_chain(list(KEY.raw)) == KEY
    assert validator_key_from_chain(KEY.hex()) == KEY
    assert validator_key_from_chain(format_validator_key(KEY, ss58_format=42)) == KEY

    with pytest.raises(InvalidValidatorKey):
        validator_key_from_chain(12345)
