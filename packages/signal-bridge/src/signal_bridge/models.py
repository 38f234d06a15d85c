"""
Shared data models for the signal bridge.

This module contains the immutable value types exchanged between the bridge,
its collaborators and the relayer tooling.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

import rlp
from rlp.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .errors import InvalidProof

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = b"\x00" * 32


def to_checksum(address: str) -> str:
    """Checksum an address, rejecting anything that is not one."""
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return Web3.to_checksum_address(address)


class MessageStatus(IntEnum):
    """Lifecycle of a message on the destination chain.

    NEW is implicit for every signal that has never been processed.
    DONE and FAILED are terminal.
    """

    NEW = 0
    RETRIABLE = 1
    DONE = 2
    FAILED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.DONE, MessageStatus.FAILED)


@dataclass(frozen=True, slots=True)
class Message:
    """A cross-chain message.

    Fields are declared in wire order; ``codec.encode_message`` relies on it.

    Attributes:
        id: Sequence number assigned by the sending bridge
        sender: Account that called send on the source chain
        src_chain_id: Chain the message was sent from
        dest_chain_id: Chain the message must be processed on
        owner: Account allowed to self-execute zero-gas messages
        to: Call target on the destination chain
        refund_address: Receives the deposit (and refunds on failure)
        deposit_value: Value escrowed for the refund address
        call_value: Value forwarded to ``to``
        processing_fee: Paid to whoever processes the message
        gas_limit: Gas bound for the call, 0 restricts processing to the owner
        data: Call payload
        memo: Free-form note
    """

    id: int = 0
    sender: str = ZERO_ADDRESS
    src_chain_id: int = 0
    dest_chain_id: int = 0
    owner: str = ZERO_ADDRESS
    to: str = ZERO_ADDRESS
    refund_address: str = ZERO_ADDRESS
    deposit_value: int = 0
    call_value: int = 0
    processing_fee: int = 0
    gas_limit: int = 0
    data: bytes = b""
    memo: str = ""

    def __post_init__(self) -> None:
        for name in ("sender", "owner", "to", "refund_address"):
            object.__setattr__(self, name, to_checksum(getattr(self, name)))
        object.__setattr__(self, "data", bytes(HexBytes(self.data)))
        for name in ("id", "deposit_value", "call_value", "processing_fee", "gas_limit"):
            if getattr(self, name) < 0:
                raise ValueError(f"Message.{name} must be non-negative")

    @property
    def total_value(self) -> int:
        """Value the sender must escrow when sending this message."""
        return self.deposit_value + self.call_value + self.processing_fee

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "sender": self.sender,
            "srcChainId": self.src_chain_id,
            "destChainId": self.dest_chain_id,
            "owner": self.owner,
            "to": self.to,
            "refundAddress": self.refund_address,
            "depositValue": self.deposit_value,
            "callValue": self.call_value,
            "processingFee": self.processing_fee,
            "gasLimit": self.gas_limit,
            "data": Web3.to_hex(self.data),
            "memo": self.memo,
        }

    def __str__(self) -> str:
        return (
            f"Message(id={self.id}, "
            f"{self.src_chain_id}->{self.dest_chain_id}, "
            f"to={self.to[:8]}...)"
        )


@dataclass(frozen=True, slots=True)
class SignalProof:
    """Storage proof that a signal slot holds a value at a given block.

    Attributes:
        header: RLP-encoded block header of the source chain
        height: Block number the proof was taken at
        account_proof: RLP-encoded trie nodes from the state root to the account
        storage_proof: RLP-encoded trie nodes from the storage root to the slot
    """

    header: bytes
    height: int
    account_proof: tuple[bytes, ...] = ()
    storage_proof: tuple[bytes, ...] = ()

    def to_bytes(self) -> bytes:
        """Wire form: rlp([header, height, account_proof, storage_proof])."""
        return rlp.encode([
            self.header,
            self.height,
            list(self.account_proof),
            list(self.storage_proof),
        ])

    @classmethod
    def from_bytes(cls, payload: bytes) -> "SignalProof":
        """Decode a wire-form proof.

        Raises:
            InvalidProof: If the payload is not a well-formed proof
        """
        try:
            header, height, account_proof, storage_proof = rlp.decode(bytes(payload))
        except (DecodingError, ValueError, TypeError) as e:
            raise InvalidProof(f"malformed proof payload: {e}") from e

        if not isinstance(header, bytes) or not isinstance(height, bytes):
            raise InvalidProof("malformed proof payload")
        if not all(isinstance(n, bytes) for n in (*account_proof, *storage_proof)):
            raise InvalidProof("proof nodes must be byte strings")

        return cls(
            header=header,
            height=int.from_bytes(height, "big"),
            account_proof=tuple(account_proof),
            storage_proof=tuple(storage_proof),
        )


@dataclass(frozen=True, slots=True)
class BlockHeader:
    """A sealed block of a ledger.

    Attributes:
        chain_id: The chain this block belongs to
        block_number: The block number
        block_hash: keccak of the encoded header
        parent_hash: Hash of the previous block
        state_root: Root of the account trie after this block
        timestamp: Block timestamp (Unix timestamp)
        encoded: RLP-encoded header
    """

    chain_id: int
    block_number: int
    block_hash: bytes
    parent_hash: bytes
    state_root: bytes
    timestamp: int
    encoded: bytes = field(repr=False)

    def __str__(self) -> str:
        return (
            f"BlockHeader(chain={self.chain_id}, "
            f"number={self.block_number}, "
            f"hash={Web3.to_hex(self.block_hash)[:10]}...)"
        )


@dataclass(frozen=True, slots=True)
class SyncedHeader:
    """A source-chain block hash the destination chain trusts."""

    chain_id: int
    height: int
    block_hash: bytes


@dataclass(frozen=True, slots=True)
class CallResult:
    """Outcome of invoking a message target.

    Attributes:
        success: Whether the call completed
        gas_used: Gas consumed by the call
        return_data: Bytes returned by the callee
        error: Failure description, if any
    """

    success: bool
    gas_used: int = 0
    return_data: bytes = b""
    error: str | None = None


@dataclass(frozen=True, slots=True)
class MessageContext:
    """Origin of the message currently being invoked."""

    signal: bytes
    sender: str
    src_chain_id: int


@dataclass(frozen=True, slots=True)
class MessageSent:
    """Notification emitted when a message is sent."""

    signal: bytes
    message: Message


@dataclass(frozen=True, slots=True)
class SignalSent:
    """Notification emitted when an arbitrary signal is sent."""

    sender: str
    signal: bytes


@dataclass(frozen=True, slots=True)
class MessageStatusChanged:
    """Notification emitted on every status transition."""

    signal: bytes
    old_status: MessageStatus
    new_status: MessageStatus


@dataclass(frozen=True, slots=True)
class HeaderSynced:
    """Notification emitted when a source-chain header becomes trusted."""

    chain_id: int
    height: int
    block_hash: bytes


@dataclass(frozen=True, slots=True)
class LogEntry:
    """A notification sealed into a block.

    Attributes:
        block_number: Block the notification was sealed into
        log_index: Position within the block
        emitter: Address of the emitting account
        event: The notification itself
    """

    block_number: int
    log_index: int
    emitter: str
    event: Any

    @property
    def event_name(self) -> str:
        return type(self.event).__name__

    @property
    def unique_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True, slots=True)
class PendingMessage:
    """A sent message waiting for a synced header to be relayed against.

    Attributes:
        signal: Signal of the message
        message: The message as sent
        block_number: Source block the MessageSent notification was sealed into
        log_index: Position of the notification within that block
    """

    signal: bytes
    message: Message
    block_number: int
    log_index: int = 0
