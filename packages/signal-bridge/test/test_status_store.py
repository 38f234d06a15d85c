"""Tests for the MessageStatusStore."""

import pytest
from web3 import Web3

from signal_bridge.errors import AlreadyProcessed, InvalidStatusTransition
from signal_bridge.ledger import ChainState
from signal_bridge.models import MessageStatus
from signal_bridge.status_store import ALLOWED_TRANSITIONS, MessageStatusStore

from conftest import ALICE


@pytest.fixture
def store():
    return MessageStatusStore(ChainState(chain_id=1), ALICE)


@pytest.fixture
def signal():
    return bytes(Web3.keccak(text="message"))


class TestMessageStatusStore:

    def test_unknown_signal_is_new(self, store, signal):
        assert store.get(signal) == MessageStatus.NEW

    def test_transition_returns_old_status(self, store, signal):
        assert store.transition(signal, MessageStatus.RETRIABLE) == MessageStatus.NEW
        assert store.transition(signal, MessageStatus.DONE) == MessageStatus.RETRIABLE
        assert store.get(signal) == MessageStatus.DONE

    @pytest.mark.parametrize("old,new", [
        (MessageStatus.NEW, MessageStatus.FAILED),
        (MessageStatus.NEW, MessageStatus.NEW),
        (MessageStatus.DONE, MessageStatus.RETRIABLE),
        (MessageStatus.FAILED, MessageStatus.DONE),
    ])
    def test_forbidden_transitions(self, store, signal, old, new):
        # Walk to ``old`` through allowed moves first
        if old == MessageStatus.DONE:
            store.transition(signal, MessageStatus.DONE)
        elif old == MessageStatus.FAILED:
            store.transition(signal, MessageStatus.RETRIABLE)
            store.transition(signal, MessageStatus.FAILED)

        with pytest.raises(InvalidStatusTransition, match=f"{old.name} -> {new.name}"):
            store.transition(signal, new)
        assert store.get(signal) == old

    def test_terminal_statuses_have_no_exits(self):
        for status in MessageStatus:
            assert (ALLOWED_TRANSITIONS[status] == frozenset()) == status.is_terminal

    def test_status_rolls_back_with_ledger(self, store, signal):
        with pytest.raises(RuntimeError):
            with store.chain.transaction():
                store.transition(signal, MessageStatus.DONE)
                raise RuntimeError("abort")
        assert store.get(signal) == MessageStatus.NEW

    def test_statuses_are_per_owner(self, store, signal):
        other = MessageStatusStore(store.chain, Web3.to_checksum_address("0x" + "77" * 20))
        store.transition(signal, MessageStatus.DONE)
        assert other.get(signal) == MessageStatus.NEW


class TestInFlight:

    def test_in_flight_marks_signal(self, store, signal):
        with store.in_flight(signal):
            assert store.is_in_flight(signal)
        assert not store.is_in_flight(signal)

    def test_reentry_rejected(self, store, signal):
        with store.in_flight(signal):
            with pytest.raises(AlreadyProcessed):
                with store.in_flight(signal):
                    pass
            # Outer guard still holds
            assert store.is_in_flight(signal)

    def test_cleared_on_error(self, store, signal):
        with pytest.raises(RuntimeError):
            with store.in_flight(signal):
                raise RuntimeError("boom")
        assert not store.is_in_flight(signal)

    def test_other_signals_unaffected(self, store, signal):
        other = bytes(Web3.keccak(text="other"))
        with store.in_flight(signal):
            with store.in_flight(other):
                assert store.is_in_flight(other)
