"""Tests for message encoding and slot derivation."""

from dataclasses import replace

import pytest
from eth_abi import encode
from web3 import Web3

from signal_bridge.codec import (
    MESSAGE_ABI_TYPE,
    encode_message,
    hash_message,
    signal_slot,
    status_slot,
)
from signal_bridge.models import Message

from conftest import ALICE, BOB, RECEIVER


@pytest.fixture
def message():
    return Message(
        id=3,
        sender=ALICE,
        src_chain_id=1,
        dest_chain_id=2,
        owner=BOB,
        to=RECEIVER,
        deposit_value=1000,
        call_value=1000,
        processing_fee=1000,
        gas_limit=10_000,
        data=b"\xca\xfe",
        memo="hello",
    )


class TestMessageCodec:

    def test_encoding_is_abi_tuple(self, message):
        expected = encode(
            [MESSAGE_ABI_TYPE],
            [(3, ALICE, 1, 2, BOB, RECEIVER, "0x" + "00" * 20, 1000, 1000, 1000, 10_000, b"\xca\xfe", "hello")],
        )
        assert encode_message(message) == expected

    def test_id_is_first_field(self, message):
        # Dynamic tuple: offset word, then the id
        encoded = encode_message(message)
        assert int.from_bytes(encoded[32:64], "big") == 3

    def test_hash_is_keccak_of_encoding(self, message):
        assert hash_message(message) == bytes(Web3.keccak(encode_message(message)))

    def test_hash_is_deterministic(self, message):
        assert hash_message(message) == hash_message(replace(message))

    @pytest.mark.parametrize("field,value", [
        ("id", 4),
        ("src_chain_id", 5),
        ("gas_limit", 1),
        ("data", b"\xca\xff"),
        ("memo", "hello!"),
    ])
    def test_any_field_changes_hash(self, message, field, value):
        assert hash_message(replace(message, **{field: value})) != hash_message(message)

    def test_address_case_does_not_matter(self, message):
        lowered = replace(message, to=RECEIVER.lower())
        assert hash_message(lowered) == hash_message(message)


class TestMessageModel:

    def test_rejects_negative_values(self):
        with pytest.raises(ValueError, match="deposit_value"):
            Message(deposit_value=-1)

    def test_rejects_invalid_address(self):
        with pytest.raises(ValueError, match="Invalid address"):
            Message(to="0x1234")

    def test_total_value(self, message):
        assert message.total_value == 3000

    def test_to_dict(self, message):
        data = message.to_dict()
        assert data["srcChainId"] == 1
        assert data["data"] == "0xcafe"
        assert data["owner"] == BOB


class TestSlots:

    def test_signal_slot_is_packed_keccak(self):
        signal = bytes(Web3.keccak(text="x"))
        expected = Web3.keccak(bytes.fromhex(ALICE[2:]) + signal)
        assert signal_slot(ALICE, signal) == bytes(expected)

    def test_signal_slot_depends_on_sender(self):
        signal = bytes(Web3.keccak(text="x"))
        assert signal_slot(ALICE, signal) != signal_slot(BOB, signal)

    def test_signal_slot_accepts_hex(self):
        signal = bytes(Web3.keccak(text="x"))
        assert signal_slot(ALICE, Web3.to_hex(signal)) == signal_slot(ALICE, signal)

    def test_signal_must_be_32_bytes(self):
        with pytest.raises(ValueError, match="32 bytes"):
            signal_slot(ALICE, b"\x01" * 31)

    def test_status_slot_differs_from_signal_slot(self):
        signal = bytes(Web3.keccak(text="x"))
        assert status_slot(signal) not in (signal, signal_slot(ALICE, signal))
