"""
Message codec and signal slot derivation.

Both chains must agree byte-for-byte on everything in this module: the message
encoding and its hash identify a message across chains, and the slot formula
locates the "sent" marker that destination chains prove against.
"""

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from .models import Message

# ABI tuple in Message field order
MESSAGE_ABI_TYPE = (
    "(uint256,address,uint256,uint256,address,address,address,"
    "uint256,uint256,uint256,uint256,bytes,string)"
)

# Storage namespace for per-signal status records
STATUS_SLOT_PREFIX = b"message.status"


def encode_message(message: Message) -> bytes:
    """ABI-encode a message as a single tuple."""
    return encode(
        [MESSAGE_ABI_TYPE],
        [(
            message.id,
            message.sender,
            message.src_chain_id,
            message.dest_chain_id,
            message.owner,
            message.to,
            message.refund_address,
            message.deposit_value,
            message.call_value,
            message.processing_fee,
            message.gas_limit,
            message.data,
            message.memo,
        )],
    )


def hash_message(message: Message) -> bytes:
    """Return the message signal: keccak256 of its encoding."""
    return bytes(Web3.keccak(encode_message(message)))


def signal_slot(sender: str, signal: bytes) -> bytes:
    """
    Derive the storage slot recording that ``sender`` sent ``signal``.

    The slot is keccak256(sender ‖ signal) over the packed 20-byte address and
    32-byte signal.

    Args:
        sender: Address of the account the signal is attributed to
        signal: 32-byte signal

    Returns:
        32-byte slot key
    """
    signal = bytes(HexBytes(signal))
    if len(signal) != 32:
        raise ValueError(f"Signal must be 32 bytes, got {len(signal)}")
    return bytes(Web3.keccak(Web3.to_bytes(hexstr=sender) + signal))


def status_slot(signal: bytes) -> bytes:
    """Slot of the bridge's own storage holding the status of ``signal``."""
    return bytes(Web3.keccak(STATUS_SLOT_PREFIX + bytes(signal)))
