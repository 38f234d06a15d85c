"""
In-process deterministic ledger.

ChainState models the parts of an Ethereum-style chain the bridge runs on:
account balances, per-account storage tries, contract code, notifications and
sealed blocks whose state roots can be proven against later. Every operation
that changes state runs inside ``transaction()``, which restores the previous
state when the block of code it guards raises.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import rlp
from trie import HexaryTrie
from trie.constants import BLANK_NODE_HASH
from web3 import Web3

from .errors import InsufficientBalance
from .interfaces import Invokable
from .models import ZERO_ADDRESS, ZERO_HASH, BlockHeader, CallResult, LogEntry, to_checksum
from .utils.blockchain_encoder import EMPTY_CODE_HASH, EMPTY_UNCLE_HASH, BlockchainEncoder

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], None]


class CallFailure(Exception):
    """A message target rejected the call or ran out of gas."""

    def __init__(self, result: CallResult) -> None:
        super().__init__(result.error or "call failed")
        self.result = result


@dataclass(frozen=True, slots=True)
class _Snapshot:
    balances: dict[str, int]
    storage_roots: dict[str, bytes]
    log_count: int


class ChainState:
    """World state of one chain."""

    BLOCK_TIME: int = 12  # seconds
    BLOCK_GAS_LIMIT: int = 30_000_000

    def __init__(self, chain_id: int, genesis_timestamp: int = 1_700_000_000) -> None:
        """
        Initialize an empty chain with a sealed genesis block.

        Args:
            chain_id: Identifier of this chain
            genesis_timestamp: Timestamp of block 0
        """
        self.chain_id = chain_id
        self.genesis_timestamp = genesis_timestamp

        # Trie nodes are never pruned so every sealed state root stays provable
        self._db: dict[bytes, bytes] = {}
        self._balances: dict[str, int] = {}
        self._storage_roots: dict[str, bytes] = {}
        self._code: dict[str, Invokable] = {}

        self._pending_logs: list[tuple[str, Any]] = []
        self._logs: list[LogEntry] = []
        self._blocks: list[BlockHeader] = []
        self._subscribers: list[Subscriber] = []

        self._lock = threading.RLock()
        self._depth = 0

        self._seal_block()
        logger.info(f"ChainState initialized for chain {chain_id}")

    # Accounts

    def balance_of(self, address: str) -> int:
        return self._balances.get(to_checksum(address), 0)

    def fund(self, address: str, amount: int) -> None:
        """Credit an account out of thin air (genesis allocation)."""
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        address = to_checksum(address)
        with self.transaction():
            self._balances[address] = self._balances.get(address, 0) + amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """
        Move value between two accounts.

        Raises:
            InsufficientBalance: If ``sender`` cannot cover ``amount``
        """
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        if amount == 0:
            return
        sender = to_checksum(sender)
        recipient = to_checksum(recipient)
        with self.transaction():
            available = self._balances.get(sender, 0)
            if available < amount:
                raise InsufficientBalance(f"{sender} has {available}, needs {amount}")
            self._balances[sender] = available - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount

    def deploy(self, address: str, code: Invokable) -> None:
        """Install code at ``address``; calls to it are dispatched to ``code``."""
        self._code[to_checksum(address)] = code

    def code_at(self, address: str) -> Optional[Invokable]:
        return self._code.get(to_checksum(address))

    # Storage

    def _storage_trie(self, address: str, root_hash: bytes | None = None) -> HexaryTrie:
        if root_hash is None:
            root_hash = self._storage_roots.get(address, BLANK_NODE_HASH)
        return HexaryTrie(self._db, root_hash=root_hash)

    def get_storage(self, address: str, slot: bytes) -> int:
        """Read the word stored at ``slot`` of ``address`` (0 when unset)."""
        trie = self._storage_trie(to_checksum(address))
        return BlockchainEncoder.decode_storage_value(trie.get(BlockchainEncoder.secure_key(slot)))

    def set_storage(self, address: str, slot: bytes, value: int) -> None:
        """Write a storage word; zero deletes the slot."""
        if value < 0:
            raise ValueError("Storage values are unsigned")
        address = to_checksum(address)
        key = BlockchainEncoder.secure_key(slot)
        with self.transaction():
            trie = self._storage_trie(address)
            if value:
                trie[key] = BlockchainEncoder.encode_storage_value(value)
            elif trie.get(key):
                del trie[key]
            self._storage_roots[address] = trie.root_hash

    # Calls

    def invoke(self, target: str, data: bytes, value: int, gas_bound: int | None) -> CallResult:
        """
        Run the code at ``target``.

        Accounts without code accept any call. The caller is expected to wrap
        this in a ``transaction()`` so a failed call leaves no effects.

        Raises:
            CallFailure: If the callee reports failure or exceeds ``gas_bound``
        """
        code = self.code_at(target)
        if code is None:
            return CallResult(success=True)

        try:
            result = code.call(data, value, gas_bound)
        except Exception as e:
            # Whatever the callee raises is its own failure, not the caller's
            raise CallFailure(CallResult(success=False, error=f"{type(e).__name__}: {e}")) from e
        if not result.success:
            raise CallFailure(result)
        if gas_bound is not None and result.gas_used > gas_bound:
            raise CallFailure(CallResult(
                success=False,
                gas_used=gas_bound,
                error=f"out of gas: used {result.gas_used}, bound {gas_bound}",
            ))
        return result

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator["ChainState"]:
        """
        Apply everything done inside the block atomically.

        Transactions nest; only the outermost one publishes notifications to
        subscribers, and only when it commits.
        """
        with self._lock:
            snapshot = _Snapshot(
                balances=dict(self._balances),
                storage_roots=dict(self._storage_roots),
                log_count=len(self._pending_logs),
            )
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._balances = snapshot.balances
                self._storage_roots = snapshot.storage_roots
                del self._pending_logs[snapshot.log_count:]
                raise
            finally:
                self._depth -= 1

            if self._depth == 0:
                self._publish(self._pending_logs[snapshot.log_count:])

    def emit(self, emitter: str, event: Any) -> None:
        """Queue a notification for the next block."""
        self._pending_logs.append((to_checksum(emitter), event))

    def subscribe(self, callback: Subscriber) -> None:
        """Call ``callback(emitter, event)`` for each committed notification."""
        self._subscribers.append(callback)

    def _publish(self, committed: list[tuple[str, Any]]) -> None:
        for emitter, event in committed:
            for callback in list(self._subscribers):
                try:
                    callback(emitter, event)
                except Exception as e:
                    logger.error(f"Subscriber failed on {type(event).__name__}: {e}", exc_info=True)

    # Blocks

    @property
    def block_number(self) -> int:
        return self._blocks[-1].block_number

    def get_block(self, block_number: int | None = None) -> BlockHeader:
        if block_number is None:
            return self._blocks[-1]
        if not 0 <= block_number < len(self._blocks):
            raise ValueError(f"Block {block_number} not found on chain {self.chain_id}")
        return self._blocks[block_number]

    def mine(self) -> BlockHeader:
        """Seal pending state and notifications into a new block."""
        with self._lock:
            block = self._seal_block()
        logger.debug(f"Mined {block} with {len(self.get_logs(block.block_number, block.block_number))} logs")
        return block

    def _state_root(self) -> bytes:
        state = HexaryTrie(self._db)
        accounts = set(self._balances) | set(self._storage_roots) | set(self._code)
        for address in accounts:
            code_hash = (
                bytes(Web3.keccak(text=f"{type(self._code[address]).__name__}@{address}"))
                if address in self._code else EMPTY_CODE_HASH
            )
            state[BlockchainEncoder.secure_key(address)] = BlockchainEncoder.encode_account(
                nonce=0,
                balance=self._balances.get(address, 0),
                storage_root=self._storage_roots.get(address, BLANK_NODE_HASH),
                code_hash=code_hash,
            )
        return state.root_hash

    def _seal_block(self) -> BlockHeader:
        number = len(self._blocks)
        parent_hash = self._blocks[-1].block_hash if self._blocks else ZERO_HASH
        timestamp = self.genesis_timestamp + number * self.BLOCK_TIME
        state_root = self._state_root()

        encoded = BlockchainEncoder.encode_block_header({
            'parentHash': parent_hash,
            'sha3Uncles': EMPTY_UNCLE_HASH,
            'miner': ZERO_ADDRESS,
            'stateRoot': state_root,
            'transactionsRoot': BLANK_NODE_HASH,
            'receiptsRoot': BLANK_NODE_HASH,
            'logsBloom': b'\x00' * 256,
            'difficulty': 0,
            'number': number,
            'gasLimit': self.BLOCK_GAS_LIMIT,
            'gasUsed': 0,
            'timestamp': timestamp,
            'extraData': self.chain_id.to_bytes(8, 'big'),
            'mixHash': ZERO_HASH,
            'nonce': b'\x00' * 8,
            'baseFeePerGas': 0,
        })
        block = BlockHeader(
            chain_id=self.chain_id,
            block_number=number,
            block_hash=bytes(Web3.keccak(encoded)),
            parent_hash=parent_hash,
            state_root=state_root,
            timestamp=timestamp,
            encoded=encoded,
        )

        for index, (emitter, event) in enumerate(self._pending_logs):
            self._logs.append(LogEntry(
                block_number=number,
                log_index=index,
                emitter=emitter,
                event=event,
            ))
        self._pending_logs = []
        self._blocks.append(block)
        return block

    def get_logs(
        self,
        from_block: int,
        to_block: int | None = None,
        event_name: str | None = None,
        emitter: str | None = None,
    ) -> list[LogEntry]:
        """Return sealed notifications in ``[from_block, to_block]``."""
        to_block = self.block_number if to_block is None else to_block
        emitter = to_checksum(emitter) if emitter else None
        return [
            log for log in self._logs
            if from_block <= log.block_number <= to_block
            and (event_name is None or log.event_name == event_name)
            and (emitter is None or log.emitter == emitter)
        ]

    # Proofs

    def get_proof(self, address: str, slots: list[bytes], block_number: int | None = None) -> dict[str, Any]:
        """
        Build account and storage proofs at a sealed block (``eth_getProof`` shape).

        Args:
            address: Account to prove
            slots: Storage slots to prove
            block_number: Block whose state root anchors the proof (latest when None)

        Returns:
            Dictionary with ``accountProof`` and ``storageProof`` node lists
        """
        address = to_checksum(address)
        block = self.get_block(block_number)

        state = HexaryTrie(self._db, root_hash=block.state_root)
        account_key = BlockchainEncoder.secure_key(address)
        account_rlp = state.get(account_key)
        account_proof = _encode_nodes(state.get_proof(account_key))

        if account_rlp:
            account = BlockchainEncoder.decode_account(account_rlp)
        else:
            account = {"nonce": 0, "balance": 0, "storageRoot": BLANK_NODE_HASH, "codeHash": EMPTY_CODE_HASH}

        storage = self._storage_trie(address, root_hash=account["storageRoot"])
        storage_proof = []
        for slot in slots:
            key = BlockchainEncoder.secure_key(slot)
            storage_proof.append({
                "key": slot,
                "value": BlockchainEncoder.decode_storage_value(storage.get(key)),
                "proof": _encode_nodes(storage.get_proof(key)),
            })

        return {
            "address": address,
            "balance": account["balance"],
            "nonce": account["nonce"],
            "codeHash": account["codeHash"],
            "storageHash": account["storageRoot"],
            "accountProof": account_proof,
            "storageProof": storage_proof,
        }


def _encode_nodes(nodes: Any) -> list[bytes]:
    return [rlp.encode(node) for node in nodes]
