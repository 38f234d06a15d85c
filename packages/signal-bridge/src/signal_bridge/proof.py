"""
Storage proof verification.

A SignalProof shows that, at a given source-chain block, an account's storage
slot held a given value. Verification walks two Merkle-Patricia proofs: the
account proof from the header's state root to the account record, then the
storage proof from the account's storage root to the slot.
"""

import logging

import rlp
from rlp.exceptions import DecodingError
from hexbytes import HexBytes
from trie import HexaryTrie
from trie.exceptions import BadTrieProof, InvalidNode, ValidationError
from web3 import Web3

from .errors import InvalidProof
from .models import SignalProof, to_checksum
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)


class StorageProofVerifier:
    """Stateless verifier for SignalProofs."""

    def verify(
        self,
        proof: SignalProof,
        expected_account: str,
        slot_key: bytes,
        expected_value: int,
        trusted_block_hash: bytes | None,
    ) -> bool:
        """
        Check that ``slot_key`` of ``expected_account`` held ``expected_value``.

        The Merkle proofs are checked against the header's own state root
        before the header is compared with the trusted hash, so a proof that
        is wrong in itself is reported as invalid whatever header it claims.

        Args:
            proof: The proof bundle
            expected_account: Account whose storage is proven
            slot_key: Storage slot (before secure-trie hashing)
            expected_value: Value the slot must hold
            trusted_block_hash: Hash of the header the destination trusts at
                ``proof.height``, None if it trusts none

        Returns:
            True if the proof proves the value and its header is the trusted
            one; False if it proves the value under an untrusted header

        Raises:
            InvalidProof: If the header or either Merkle proof does not verify
        """
        try:
            header = BlockchainEncoder.decode_block_header(proof.header)
        except (DecodingError, ValueError, TypeError) as e:
            raise InvalidProof(f"undecodable block header: {e}") from e

        if header["number"] != proof.height:
            raise InvalidProof(f"header is block {header['number']}, proof claims {proof.height}")

        account_rlp = self._prove(
            header["stateRoot"],
            BlockchainEncoder.secure_key(to_checksum(expected_account)),
            proof.account_proof,
            "account",
        )
        if not account_rlp:
            raise InvalidProof(f"account {expected_account} does not exist at block {proof.height}")

        try:
            account = BlockchainEncoder.decode_account(account_rlp)
        except (DecodingError, ValueError) as e:
            raise InvalidProof(f"malformed account record: {e}") from e

        value_rlp = self._prove(
            account["storageRoot"],
            BlockchainEncoder.secure_key(slot_key),
            proof.storage_proof,
            "storage",
        )
        try:
            value = BlockchainEncoder.decode_storage_value(value_rlp)
        except (DecodingError, TypeError) as e:
            raise InvalidProof(f"malformed storage value: {e}") from e

        if value != expected_value:
            raise InvalidProof(f"slot holds {value}, expected {expected_value}")

        if trusted_block_hash is None or header["hash"] != bytes(HexBytes(trusted_block_hash)):
            logger.debug(
                f"Header {Web3.to_hex(header['hash'])[:10]}... at height {proof.height} "
                f"is not the trusted one"
            )
            return False

        return True

    @staticmethod
    def _prove(root_hash: bytes, key: bytes, nodes: tuple[bytes, ...], kind: str) -> bytes:
        try:
            decoded = [rlp.decode(node) for node in nodes]
            return HexaryTrie.get_from_proof(root_hash, key, decoded)
        except (BadTrieProof, InvalidNode, ValidationError, DecodingError) as e:
            raise InvalidProof(f"{kind} proof does not verify: {e}") from e
