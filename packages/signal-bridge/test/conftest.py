"""Shared fixtures for the signal bridge tests."""

import pytest
from web3 import Web3

from signal_bridge.codec import signal_slot
from signal_bridge.errors import BridgeError
from signal_bridge.models import CallResult, Message, MessageSent, SignalProof
from signal_bridge.relayer import LocalNetwork, demo_config

SRC_CHAIN_ID = 1
DST_CHAIN_ID = 2

ALICE = Web3.to_checksum_address("0x" + "a1" * 20)
BOB = Web3.to_checksum_address("0x" + "b2" * 20)
CAROL = Web3.to_checksum_address("0x" + "c3" * 20)
RELAYER = Web3.to_checksum_address("0x" + "d4" * 20)
RECEIVER = Web3.to_checksum_address("0x" + "e5" * 20)


class RecordingReceiver:
    """Accepts every call and records what it saw, including the bridge context."""

    def __init__(self, bridge=None, gas_used: int = 5_000) -> None:
        self.bridge = bridge
        self.gas_used = gas_used
        self.calls: list[tuple[bytes, int, int | None]] = []
        self.contexts = []

    def call(self, data: bytes, value: int, gas_bound: int | None) -> CallResult:
        self.calls.append((data, value, gas_bound))
        if self.bridge is not None:
            self.contexts.append(self.bridge.context)
        return CallResult(success=True, gas_used=self.gas_used)


class FlakyReceiver:
    """Rejects calls while ``fail`` is set."""

    def __init__(self, fail: bool = True) -> None:
        self.fail = fail
        self.calls = 0

    def call(self, data: bytes, value: int, gas_bound: int | None) -> CallResult:
        self.calls += 1
        if self.fail:
            return CallResult(success=False, error="rejected")
        return CallResult(success=True, gas_used=1_000)


class RaisingReceiver:
    """Blows up on every call."""

    def call(self, data: bytes, value: int, gas_bound: int | None) -> CallResult:
        raise RuntimeError("callee crashed")


class ReentrantReceiver:
    """Calls back into the bridge while the message is executing."""

    def __init__(self, bridge) -> None:
        self.bridge = bridge
        self.reentry = None
        self.errors: list[BridgeError] = []

    def call(self, data: bytes, value: int, gas_bound: int | None) -> CallResult:
        if self.reentry is not None:
            message, proof, caller = self.reentry
            try:
                self.bridge.process_message(message, proof, caller)
            except BridgeError as e:
                self.errors.append(e)
        return CallResult(success=True, gas_used=1_000)


class BridgeHarness:
    """Two local chains plus helpers to send, sync and prove messages."""

    def __init__(self) -> None:
        self.config = demo_config(SRC_CHAIN_ID, DST_CHAIN_ID)
        self.network = LocalNetwork.create(self.config)
        self.source_events: list = []
        self.target_events: list = []
        self.network.source_bridge.subscribe(self.source_events.append)
        self.network.target_bridge.subscribe(self.target_events.append)

        for account in (ALICE, BOB, CAROL):
            self.network.source_chain.fund(account, 10**18)

    @property
    def source(self):
        return self.network.source_bridge

    @property
    def target(self):
        return self.network.target_bridge

    def new_message(self, **fields) -> Message:
        fields.setdefault("dest_chain_id", DST_CHAIN_ID)
        fields.setdefault("owner", ALICE)
        fields.setdefault("to", RECEIVER)
        fields.setdefault("gas_limit", 10_000)
        return Message(**fields)

    def send(self, caller: str = ALICE, value: int | None = None, **fields) -> tuple[bytes, Message]:
        """Send a message and return its signal with the message as published."""
        message = self.new_message(**fields)
        signal = self.source.send_message(
            message,
            caller=caller,
            value=message.total_value if value is None else value,
        )
        sent = next(
            e.message for e in self.source_events
            if isinstance(e, MessageSent) and e.signal == signal
        )
        return signal, sent

    def sync(self):
        """Seal a source block and trust its header on the target chain."""
        block = self.network.source_chain.mine()
        self.network.header_sync.set_synced_header(SRC_CHAIN_ID, block.block_number, block.block_hash)
        return block

    def proof_at(self, block, signal: bytes, sender: str | None = None) -> SignalProof:
        account = self.source.address
        result = self.network.source_chain.get_proof(
            account,
            [signal_slot(sender or account, signal)],
            block.block_number,
        )
        return SignalProof(
            header=block.encoded,
            height=block.block_number,
            account_proof=tuple(result["accountProof"]),
            storage_proof=tuple(result["storageProof"][0]["proof"]),
        )

    def prove(self, signal: bytes, sender: str | None = None) -> SignalProof:
        """Sync the latest source state and prove ``signal`` against it."""
        return self.proof_at(self.sync(), signal, sender)

    def target_balance(self, address: str) -> int:
        return self.network.target_chain.balance_of(address)


@pytest.fixture
def harness():
    """Fresh two-chain network with funded senders."""
    return BridgeHarness()


@pytest.fixture
def signal():
    """An arbitrary non-zero signal."""
    return bytes(Web3.keccak(text="signal"))
