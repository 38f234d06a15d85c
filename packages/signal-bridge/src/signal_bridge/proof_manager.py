"""
Proof generation manager for the signal bridge.

This module builds SignalProofs for signal slots on the source chain, either
from an in-process ledger or from a JSON-RPC node (``eth_getProof``), and
submits them to the destination bridge.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

from web3 import Web3

from .codec import hash_message, signal_slot
from .ledger import ChainState
from .models import Message, SignalProof, to_checksum
from .utils.blockchain_encoder import BlockchainEncoder

if TYPE_CHECKING:
    from .bridge import Bridge

logger = logging.getLogger(__name__)


class ProofManager:
    """Handles proof generation and submission for cross-chain messages."""

    def __init__(self, source_chain: Optional[ChainState] = None, w3_source: Optional[Web3] = None):
        """
        Initialize the ProofManager.

        Args:
            source_chain: In-process source ledger (local mode)
            w3_source: Web3 instance for the source chain (RPC mode)
        """
        if source_chain is None and w3_source is None:
            raise ValueError("ProofManager needs a source ledger or a Web3 connection")
        self.source_chain = source_chain
        self.w3_source = w3_source

    async def generate_signal_proof(self, account: str, sender: str, signal: bytes, block_number: int) -> SignalProof:
        """
        Generate a proof that ``sender`` sent ``signal`` through ``account``.

        Uses the in-process ledger when one is configured, the RPC node otherwise.

        Args:
            account: Source bridge whose storage holds the marker
            sender: Account the signal is attributed to
            signal: The signal
            block_number: Source block the proof is anchored to

        Returns:
            SignalProof for ``signal_slot(sender, signal)``
        """
        slot = signal_slot(sender, signal)
        logger.info(
            f"Generating proof for signal {Web3.to_hex(signal)[:10]}... "
            f"of {to_checksum(sender)[:8]}... at block {block_number}"
        )
        if self.source_chain is not None:
            proof = self._proof_from_ledger(account, slot, block_number)
        else:
            proof = self._proof_from_rpc(account, slot, block_number)
        logger.info(
            f"Proof generated with {len(proof.account_proof)} account nodes "
            f"and {len(proof.storage_proof)} storage nodes"
        )
        return proof

    def _proof_from_ledger(self, account: str, slot: bytes, block_number: int) -> SignalProof:
        block = self.source_chain.get_block(block_number)
        result = self.source_chain.get_proof(account, [slot], block_number)
        return SignalProof(
            header=block.encoded,
            height=block.block_number,
            account_proof=tuple(result["accountProof"]),
            storage_proof=tuple(result["storageProof"][0]["proof"]),
        )

    def _proof_from_rpc(self, account: str, slot: bytes, block_number: int) -> SignalProof:
        """
        Build a proof from ``eth_getProof`` and the re-encoded block header.

        Raises:
            ValueError: If the block is missing or its header does not re-encode
                to its hash
        """
        block = self.w3_source.eth.get_block(block_number)
        if not block:
            raise ValueError(f"Block not found for block number {block_number}")

        encoded_header = BlockchainEncoder.encode_block_header(block)
        calculated_hash = Web3.keccak(encoded_header)
        block_hash = BlockchainEncoder.to_bytes_safe(block['hash'])
        if calculated_hash != block_hash:
            raise ValueError(
                f"Header hash mismatch! Calculated: {Web3.to_hex(calculated_hash)}, "
                f"Block: {Web3.to_hex(block_hash)}"
            )

        result = self.w3_source.eth.get_proof(
            Web3.to_checksum_address(account),
            [int.from_bytes(slot, 'big')],
            block_number,
        )
        storage_entries = result['storageProof']
        if not storage_entries:
            raise ValueError(f"No storage proof returned for slot {Web3.to_hex(slot)}")

        return SignalProof(
            header=encoded_header,
            height=block_number,
            account_proof=tuple(BlockchainEncoder.to_bytes_safe(node) for node in result['accountProof']),
            storage_proof=tuple(BlockchainEncoder.to_bytes_safe(node) for node in storage_entries[0]['proof']),
        )

    async def submit_proof(self, bridge: "Bridge", message: Message, proof: SignalProof, relayer: str) -> None:
        """
        Submit a proven message to the destination bridge.

        Args:
            bridge: Destination bridge
            message: The message as sent
            proof: Proof of the message's sent marker
            relayer: Account processing the message
        """
        logger.info(f"Submitting proof for {message} to bridge at {bridge.address}")
        bridge.process_message(message, proof, caller=relayer)
        logger.info(f"{message} processed, status {bridge.get_message_status(hash_message(message)).name}")

    async def process_message_event(
        self,
        message: Message,
        signal: bytes,
        source_bridge: str,
        block_number: int,
        bridge: "Bridge",
        relayer: str,
    ) -> Any:
        """
        Complete flow: generate and submit the proof for a sent message.

        Args:
            message: The message from the MessageSent notification
            signal: Its signal
            source_bridge: Bridge address on the source chain
            block_number: Synced source block to anchor the proof to
            bridge: Destination bridge
            relayer: Account processing the message
        """
        proof = await self.generate_signal_proof(source_bridge, source_bridge, signal, block_number)
        await self.submit_proof(bridge, message, proof, relayer)
        return proof
