"""Tests for storage proof verification."""

from dataclasses import replace

import pytest
import rlp
from web3 import Web3

from signal_bridge.codec import signal_slot
from signal_bridge.errors import InvalidProof
from signal_bridge.models import SignalProof
from signal_bridge.proof import StorageProofVerifier

from conftest import BOB, CAROL


@pytest.fixture
def verifier():
    return StorageProofVerifier()


@pytest.fixture
def proven(harness, signal):
    """A signal sent by BOB, with a proof against a sealed block."""
    harness.source.send_signal(BOB, signal)
    block = harness.network.source_chain.mine()
    return block, harness.proof_at(block, signal, sender=BOB)


def check(verifier, harness, proof, signal, block, **overrides):
    kwargs = dict(
        expected_account=harness.source.address,
        slot_key=signal_slot(BOB, signal),
        expected_value=1,
        trusted_block_hash=block.block_hash,
    )
    kwargs.update(overrides)
    return verifier.verify(proof, **kwargs)


class TestStorageProofVerifier:

    def test_valid_proof(self, verifier, harness, signal, proven):
        block, proof = proven
        assert check(verifier, harness, proof, signal, block) is True

    def test_untrusted_header_returns_false(self, verifier, harness, signal, proven):
        block, proof = proven
        assert check(verifier, harness, proof, signal, block, trusted_block_hash=b"\x01" * 32) is False

    def test_height_mismatch(self, verifier, harness, signal, proven):
        block, proof = proven
        with pytest.raises(InvalidProof, match="proof claims"):
            check(verifier, harness, replace(proof, height=proof.height + 1), signal, block)

    def test_undecodable_header(self, verifier, harness, signal, proven):
        block, proof = proven
        with pytest.raises(InvalidProof, match="undecodable"):
            check(verifier, harness, replace(proof, header=b"\x01\x02"), signal, block)

    def test_wrong_expected_value(self, verifier, harness, signal, proven):
        block, proof = proven
        with pytest.raises(InvalidProof, match="expected 2"):
            check(verifier, harness, proof, signal, block, expected_value=2)

    def test_wrong_slot(self, verifier, harness, signal, proven):
        block, proof = proven
        with pytest.raises(InvalidProof):
            check(verifier, harness, proof, signal, block, slot_key=signal_slot(CAROL, signal))

    def test_account_absent(self, verifier, harness, signal, proven):
        block, proof = proven
        stranger = Web3.to_checksum_address("0x" + "99" * 20)
        with pytest.raises(InvalidProof):
            check(verifier, harness, proof, signal, block, expected_account=stranger)

    def test_tampered_storage_node(self, verifier, harness, signal, proven):
        block, proof = proven
        last = bytearray(proof.storage_proof[-1])
        last[-1] ^= 0x01
        tampered = replace(proof, storage_proof=proof.storage_proof[:-1] + (bytes(last),))
        with pytest.raises(InvalidProof):
            check(verifier, harness, tampered, signal, block)

    def test_tampered_account_node(self, verifier, harness, signal, proven):
        block, proof = proven
        first = bytearray(proof.account_proof[0])
        first[-1] ^= 0x01
        tampered = replace(proof, account_proof=(bytes(first),) + proof.account_proof[1:])
        with pytest.raises(InvalidProof):
            check(verifier, harness, tampered, signal, block)

    def test_missing_nodes(self, verifier, harness, signal, proven):
        block, proof = proven
        with pytest.raises(InvalidProof):
            check(verifier, harness, replace(proof, storage_proof=()), signal, block)

    def test_slot_not_set_at_earlier_block(self, verifier, harness, signal):
        harness.source.send_signal(CAROL, signal)
        earlier = harness.network.source_chain.mine()
        harness.source.send_signal(BOB, signal)
        harness.network.source_chain.mine()

        proof = harness.proof_at(earlier, signal, sender=BOB)
        with pytest.raises(InvalidProof, match="slot holds 0"):
            check(verifier, harness, proof, signal, earlier)

    def test_no_trusted_header_returns_false(self, verifier, harness, signal, proven):
        block, proof = proven
        assert check(verifier, harness, proof, signal, block, trusted_block_hash=None) is False

    @pytest.mark.parametrize("trusted", [None, b"\x00" * 32, b"\x42" * 32])
    def test_unset_slot_is_invalid_under_any_header(self, verifier, harness, signal, trusted):
        harness.source.send_signal(CAROL, signal)
        block = harness.network.source_chain.mine()

        proof = harness.proof_at(block, signal, sender=BOB)
        with pytest.raises(InvalidProof, match="slot holds 0"):
            check(verifier, harness, proof, signal, block, trusted_block_hash=trusted)

    def test_undecodable_storage_node(self, verifier, harness, signal, proven):
        block, proof = proven
        with pytest.raises(InvalidProof, match="storage proof does not verify"):
            check(verifier, harness, replace(proof, storage_proof=(b"\xff",)), signal, block)


class TestSignalProofWire:

    def test_round_trip(self, proven):
        _, proof = proven
        assert SignalProof.from_bytes(proof.to_bytes()) == proof

    @pytest.mark.parametrize("payload", [
        b"",
        b"\xc0",
        rlp.encode([b"header", 1]),
        rlp.encode([b"header", 1, [[b"nested"]], []]),
    ])
    def test_malformed_payload(self, payload):
        with pytest.raises(InvalidProof):
            SignalProof.from_bytes(payload)
