"""
Reference implementations of the bridge collaborators.

These back the interfaces in ``interfaces.py`` with in-process state so two
chains can be wired together locally: a header store fed by a header oracle,
an address registry, an escrow vault on the ledger, and the default policy for
declaring messages failed.
"""

import logging
from hexbytes import HexBytes
from web3 import Web3

from .errors import UnresolvedAddress
from .ledger import ChainState
from .models import ZERO_ADDRESS, HeaderSynced, Message, SyncedHeader, to_checksum

logger = logging.getLogger(__name__)


class InMemoryHeaderSync:
    """Trusted source-chain block hashes, keyed by chain id and height.

    When deployed on a destination ledger, every newly trusted header is also
    announced there as a HeaderSynced notification.
    """

    MAX_HEADERS_PER_CHAIN: int = 10_000

    def __init__(self, chain: ChainState | None = None, address: str | None = None) -> None:
        """
        Initialize the header store.

        Args:
            chain: Destination ledger to announce synced headers on
            address: Account the announcements are emitted from
        """
        if (chain is None) != (address is None):
            raise ValueError("chain and address must be given together")
        self.chain = chain
        self.address = to_checksum(address) if address else None
        # Lowest heights are evicted first once a chain is at capacity
        self._headers: dict[int, dict[int, bytes]] = {}
        self._latest: dict[int, int] = {}

    def set_synced_header(self, chain_id: int, height: int, block_hash: bytes) -> None:
        """Record ``block_hash`` as the trusted header of ``chain_id`` at ``height``."""
        block_hash = bytes(HexBytes(block_hash))
        if len(block_hash) != 32:
            raise ValueError(f"Block hash must be 32 bytes, got {len(block_hash)}")

        headers = self._headers.setdefault(chain_id, {})
        headers[height] = block_hash
        if len(headers) > self.MAX_HEADERS_PER_CHAIN:
            del headers[min(headers)]
        self._latest[chain_id] = max(headers)

        logger.info(f"Header synced - chain {chain_id} block {height}: {Web3.to_hex(block_hash)[:10]}...")

        if self.chain is not None:
            with self.chain.transaction():
                self.chain.emit(self.address, HeaderSynced(chain_id=chain_id, height=height, block_hash=block_hash))

    def get_synced_header(self, chain_id: int, height: int | None = None) -> SyncedHeader | None:
        if height is None:
            height = self._latest.get(chain_id)
            if height is None:
                return None

        block_hash = self._headers.get(chain_id, {}).get(height)
        if block_hash is None:
            return None
        return SyncedHeader(chain_id=chain_id, height=height, block_hash=block_hash)


class AddressManager:
    """Registry of named addresses, ``"{chain_id}.{role}" -> address``."""

    def __init__(self) -> None:
        self._addresses: dict[str, str] = {}

    @staticmethod
    def _name(chain_id: int, role: str) -> str:
        return f"{chain_id}.{role}"

    def set_address(self, chain_id: int, role: str, address: str) -> None:
        name = self._name(chain_id, role)
        self._addresses[name] = to_checksum(address)
        logger.info(f"AddressManager: {name} -> {self._addresses[name]}")

    def get_address(self, chain_id: int, role: str) -> str:
        """Return the registered address, or the zero address."""
        return self._addresses.get(self._name(chain_id, role), ZERO_ADDRESS)

    def resolve(self, chain_id: int, role: str) -> str:
        address = self.get_address(chain_id, role)
        if address == ZERO_ADDRESS:
            raise UnresolvedAddress(f"nothing registered for {self._name(chain_id, role)}")
        return address


class EtherVault:
    """Escrow account on a ledger holding the value of in-transit messages."""

    def __init__(self, chain: ChainState, address: str) -> None:
        self.chain = chain
        self.address = to_checksum(address)

    def escrow(self, payer: str, amount: int) -> None:
        self.chain.transfer(payer, self.address, amount)

    def release(self, to: str, amount: int) -> None:
        self.chain.transfer(self.address, to, amount)

    @property
    def balance(self) -> int:
        return self.chain.balance_of(self.address)


class OwnerFailurePolicy:
    """Only the message owner may declare it permanently failed."""

    def may_declare_failed(self, message: Message, caller: str) -> bool:
        return to_checksum(caller) == message.owner
