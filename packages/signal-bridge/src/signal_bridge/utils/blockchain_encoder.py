"""
Blockchain encoding utilities for the signal bridge.

This module provides RLP encoding and decoding for the Ethereum data
structures storage proofs are built from: block headers (across hardfork
versions), account records and storage values.
"""

import logging
from typing import Any, Mapping, Union

import rlp
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)

# keccak256(rlp([]))
EMPTY_UNCLE_HASH = bytes(Web3.keccak(rlp.encode([])))
# keccak256(b"")
EMPTY_CODE_HASH = bytes(Web3.keccak(b""))

# Header field positions
HEADER_STATE_ROOT = 3
HEADER_NUMBER = 8
LEGACY_HEADER_FIELDS = 15


class BlockchainEncoder:
    """Utilities for encoding blockchain data structures."""

    @staticmethod
    def to_bytes_safe(value: Union[HexBytes, bytes, str]) -> bytes:
        """
        Safely convert value to bytes, handling HexBytes, bytes, and hex strings.

        Args:
            value: Value to convert (HexBytes, bytes, or hex string)

        Returns:
            Bytes representation
        """
        if isinstance(value, HexBytes):
            return bytes(value)
        elif isinstance(value, bytes):
            return value
        else:
            return Web3.to_bytes(hexstr=value)

    @staticmethod
    def secure_key(key: Union[HexBytes, bytes, str]) -> bytes:
        """Hash a trie key the way Ethereum's secure tries do."""
        return bytes(Web3.keccak(BlockchainEncoder.to_bytes_safe(key)))

    @staticmethod
    def encode_storage_value(value: int) -> bytes:
        """RLP encode a storage word (leading zeros stripped)."""
        return rlp.encode(value)

    @staticmethod
    def decode_storage_value(encoded: bytes) -> int:
        """Inverse of ``encode_storage_value``; empty means zero."""
        if not encoded:
            return 0
        return int.from_bytes(rlp.decode(encoded), "big")

    @staticmethod
    def encode_account(nonce: int, balance: int, storage_root: bytes, code_hash: bytes) -> bytes:
        """RLP encode an account record as stored in the state trie."""
        return rlp.encode([nonce, balance, storage_root, code_hash])

    @staticmethod
    def decode_account(encoded: bytes) -> dict[str, Any]:
        """
        Decode an account record from the state trie.

        Raises:
            ValueError: If the record does not have the four account fields
        """
        fields = rlp.decode(encoded)
        if not isinstance(fields, list) or len(fields) != 4:
            raise ValueError("Account record must have 4 fields")
        nonce, balance, storage_root, code_hash = fields
        return {
            "nonce": int.from_bytes(nonce, "big"),
            "balance": int.from_bytes(balance, "big"),
            "storageRoot": storage_root,
            "codeHash": code_hash,
        }

    @staticmethod
    def encode_block_header_legacy(block: Mapping[str, Any]) -> list:
        """
        Encode legacy block header fields (pre-London).

        Args:
            block: Block data containing header fields

        Returns:
            List of encoded header fields (0-14)
        """
        return [
            BlockchainEncoder.to_bytes_safe(block['parentHash']),      # 0
            BlockchainEncoder.to_bytes_safe(block['sha3Uncles']),      # 1
            BlockchainEncoder.to_bytes_safe(block['miner']),           # 2
            BlockchainEncoder.to_bytes_safe(block['stateRoot']),       # 3
            BlockchainEncoder.to_bytes_safe(block['transactionsRoot']),  # 4
            BlockchainEncoder.to_bytes_safe(block['receiptsRoot']),    # 5
            BlockchainEncoder.to_bytes_safe(block['logsBloom']),       # 6
            block['difficulty'],  # 7 - RLP encoder handles ints
            block['number'],      # 8
            block['gasLimit'],    # 9
            block['gasUsed'],     # 10
            block['timestamp'],   # 11
            BlockchainEncoder.to_bytes_safe(block['extraData']),       # 12
            BlockchainEncoder.to_bytes_safe(block['mixHash']),         # 13
            BlockchainEncoder.to_bytes_safe(block['nonce']),           # 14
        ]

    @staticmethod
    def add_london_fields(header_fields: list, block: Mapping[str, Any]) -> None:
        # Field 15: baseFeePerGas (London, EIP-1559)
        if 'baseFeePerGas' in block and block['baseFeePerGas'] is not None:
            header_fields.append(block['baseFeePerGas'])

    @staticmethod
    def add_shanghai_fields(header_fields: list, block: Mapping[str, Any]) -> None:
        # Field 16: withdrawalsRoot (Shanghai, EIP-4895)
        if 'withdrawalsRoot' in block and block['withdrawalsRoot'] is not None:
            header_fields.append(BlockchainEncoder.to_bytes_safe(block['withdrawalsRoot']))

    @staticmethod
    def add_cancun_fields(header_fields: list, block: Mapping[str, Any]) -> None:
        # Field 17: blobGasUsed (Cancun, EIP-4844)
        if 'blobGasUsed' in block and block['blobGasUsed'] is not None:
            header_fields.append(block['blobGasUsed'])

        # Field 18: excessBlobGas (Cancun, EIP-4844)
        if 'excessBlobGas' in block and block['excessBlobGas'] is not None:
            header_fields.append(block['excessBlobGas'])

        # Field 19: parentBeaconBlockRoot (Cancun, EIP-4788)
        if 'parentBeaconBlockRoot' in block and block['parentBeaconBlockRoot'] is not None:
            header_fields.append(BlockchainEncoder.to_bytes_safe(block['parentBeaconBlockRoot']))

    @staticmethod
    def add_prague_fields(header_fields: list, block: Mapping[str, Any]) -> None:
        # Field 20: requestsHash (Prague, EIP-7685)
        requests_field = block.get('requestsRoot') or block.get('requestsHash')
        if requests_field is not None:
            header_fields.append(BlockchainEncoder.to_bytes_safe(requests_field))

    @staticmethod
    def encode_block_header(block: Mapping[str, Any]) -> bytes:
        """
        Serialize a block header to match Ethereum block encoding.

        Handles all hardfork fields up to Prague (EIP-7685).
        Fields are added conditionally based on their presence in the block data.

        Args:
            block: Block data, either from Web3 or built by a local ledger

        Returns:
            RLP-encoded header
        """
        header_fields = BlockchainEncoder.encode_block_header_legacy(block)

        BlockchainEncoder.add_london_fields(header_fields, block)
        BlockchainEncoder.add_shanghai_fields(header_fields, block)
        BlockchainEncoder.add_cancun_fields(header_fields, block)
        BlockchainEncoder.add_prague_fields(header_fields, block)

        encoded = rlp.encode(header_fields)

        if logger.isEnabledFor(logging.DEBUG) and 'hash' in block:
            BlockchainEncoder._verify_block_hash(encoded, block, header_fields)

        return encoded

    @staticmethod
    def decode_block_header(encoded: bytes) -> dict[str, Any]:
        """
        Extract the fields proof verification needs from an encoded header.

        Raises:
            ValueError: If the payload is not an RLP list of header fields
        """
        fields = rlp.decode(encoded)
        if not isinstance(fields, list) or len(fields) < LEGACY_HEADER_FIELDS:
            raise ValueError("Block header must be an RLP list of at least 15 fields")

        state_root = fields[HEADER_STATE_ROOT]
        number = fields[HEADER_NUMBER]
        if not isinstance(state_root, bytes) or len(state_root) != 32:
            raise ValueError("Block header has no valid stateRoot")
        if not isinstance(number, bytes):
            raise ValueError("Block header has no valid number")

        return {
            "parentHash": fields[0],
            "stateRoot": state_root,
            "number": int.from_bytes(number, "big"),
            "hash": bytes(Web3.keccak(encoded)),
        }

    @staticmethod
    def _verify_block_hash(encoded: bytes, block: Mapping[str, Any], header_fields: list) -> None:
        calculated_hash = Web3.keccak(encoded)
        block_hash_bytes = BlockchainEncoder.to_bytes_safe(block['hash'])

        if calculated_hash != block_hash_bytes:
            logger.warning(f"Header hash mismatch. Calculated: {Web3.to_hex(calculated_hash)}, "
                           f"Expected: {Web3.to_hex(block_hash_bytes)}")
            logger.warning("This may be due to network-specific encoding or missing fields.")
            logger.debug(f"Block fields present: {list(block.keys())}")
            logger.debug(f"Header has {len(header_fields)} fields")
