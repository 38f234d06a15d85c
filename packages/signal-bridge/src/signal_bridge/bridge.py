"""
Bridge orchestrator.

One Bridge instance runs on each chain. On the source chain it escrows value
and records a "sent" marker for every message; on the destination chain it
checks a storage proof of that marker against a header supplied by the
header-sync collaborator and executes the message exactly once.
"""

import logging
from dataclasses import replace
from typing import Callable

from hexbytes import HexBytes
from web3 import Web3

from .codec import hash_message, signal_slot
from .collaborators import EtherVault, OwnerFailurePolicy
from .config import BridgeConfig
from .errors import (
    AlreadyProcessed,
    DestinationDisabled,
    Forbidden,
    IncorrectValue,
    InvalidOwner,
    InvalidSender,
    InvalidSignal,
    NoActiveContext,
    NotReceived,
    NotRetriable,
    SameChain,
    UnresolvedAddress,
    WrongDestination,
)
from .interfaces import FailurePolicy, HeaderSync, Resolver, Vault
from .ledger import CallFailure, ChainState
from .models import (
    ZERO_ADDRESS,
    ZERO_HASH,
    Message,
    MessageContext,
    MessageSent,
    MessageStatus,
    MessageStatusChanged,
    SignalProof,
    SignalSent,
    to_checksum,
)
from .proof import StorageProofVerifier
from .status_store import MessageStatusStore

logger = logging.getLogger(__name__)

# Storage slot of the next message id
NONCE_SLOT = bytes(Web3.keccak(b"message.nonce"))


class Bridge:
    """Send, process and retry cross-chain messages on one chain."""

    PEER_ROLE = "bridge"

    def __init__(
        self,
        config: BridgeConfig,
        chain: ChainState,
        resolver: Resolver,
        header_sync: HeaderSync,
        vault: Vault | None = None,
        verifier: StorageProofVerifier | None = None,
        failure_policy: FailurePolicy | None = None,
    ) -> None:
        """
        Initialize the bridge.

        Args:
            config: Deployment configuration
            chain: Ledger the bridge runs on
            resolver: Address registry used to find peer bridges
            header_sync: Source of trusted source-chain headers
            vault: Escrow for message value (EtherVault at config.vault_address by default)
            verifier: Storage proof verifier
            failure_policy: Who may declare a message permanently failed
        """
        if chain.chain_id != config.chain_id:
            raise ValueError(
                f"Bridge configured for chain {config.chain_id} "
                f"but ledger is chain {chain.chain_id}"
            )

        self.config = config
        self.chain = chain
        self.address = config.bridge_address
        self.resolver = resolver
        self.header_sync = header_sync
        self.vault = vault or EtherVault(chain, config.vault_address)
        self.verifier = verifier or StorageProofVerifier()
        self.failure_policy = failure_policy or OwnerFailurePolicy()
        self.status_store = MessageStatusStore(chain, self.address)

        self._contexts: list[MessageContext] = []
        self._subscribers: list[Callable[[object], None]] = []
        chain.subscribe(self._dispatch)

        logger.info(f"Bridge initialized on chain {self.chain_id} at {self.address}")

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    # Sending

    def send_message(self, message: Message, caller: str, value: int) -> bytes:
        """
        Send a message to another chain.

        The bridge assigns ``id``, ``sender`` and ``src_chain_id``; the values
        the caller put there are ignored. The final message is published in
        the MessageSent notification.

        Args:
            message: Message to send
            caller: Account sending the message and paying ``value``
            value: Value attached, must equal ``message.total_value``

        Returns:
            The message signal
        """
        caller = to_checksum(caller)

        if message.owner == ZERO_ADDRESS:
            raise InvalidOwner("message owner must be set")
        if message.dest_chain_id == self.chain_id:
            raise DestinationDisabled("cannot send a message to the sending chain")
        try:
            self.resolver.resolve(message.dest_chain_id, self.PEER_ROLE)
        except UnresolvedAddress:
            raise DestinationDisabled(f"no bridge for chain {message.dest_chain_id}") from None
        if value != message.total_value:
            raise IncorrectValue(f"expected {message.total_value}, got {value}")

        with self.chain.transaction():
            message_id = self.chain.get_storage(self.address, NONCE_SLOT)
            self.chain.set_storage(self.address, NONCE_SLOT, message_id + 1)

            message = replace(message, id=message_id, sender=caller, src_chain_id=self.chain_id)
            signal = hash_message(message)

            self.vault.escrow(caller, value)
            self.chain.set_storage(self.address, signal_slot(self.address, signal), 1)
            self.chain.emit(self.address, MessageSent(signal=signal, message=message))

        logger.info(f"Message sent - {message} signal {Web3.to_hex(signal)[:10]}...")
        return signal

    def send_signal(self, caller: str, signal: bytes) -> bytes:
        """Record that ``caller`` sent ``signal`` so other chains can prove it."""
        caller = to_checksum(caller)
        signal = self._validate_signal(signal)
        if caller == ZERO_ADDRESS:
            raise InvalidSender("sender must be set")

        with self.chain.transaction():
            self.chain.set_storage(self.address, signal_slot(caller, signal), 1)
            self.chain.emit(self.address, SignalSent(sender=caller, signal=signal))

        logger.info(f"Signal sent by {caller}: {Web3.to_hex(signal)[:10]}...")
        return signal

    # Processing

    def process_message(self, message: Message, proof: SignalProof | bytes, caller: str) -> None:
        """
        Execute a message sent from another chain.

        Args:
            message: The message exactly as sent
            proof: Storage proof of the sent marker on the source chain
            caller: Account processing the message, paid the processing fee

        Raises:
            Forbidden: Zero-gas message processed by someone other than its owner
            WrongDestination: The message is for another chain
            AlreadyProcessed: The message is done, failed or executing
            InvalidProof: The proof does not verify
            NotReceived: The proof is not anchored to a synced header
        """
        caller = to_checksum(caller)

        if message.gas_limit == 0 and caller != message.owner:
            raise Forbidden("only the owner may process a zero-gas message")
        if message.dest_chain_id != self.chain_id:
            raise WrongDestination(f"message is for chain {message.dest_chain_id}")

        signal = hash_message(message)
        with self.chain.transaction():
            status = self._processable_status(signal)
            if status not in (MessageStatus.NEW, MessageStatus.RETRIABLE):
                raise AlreadyProcessed(f"message is {status.name}")

            if not self.is_message_received(signal, message.src_chain_id, proof):
                raise NotReceived(
                    f"signal {Web3.to_hex(signal)[:10]}... not proven on chain {message.src_chain_id}"
                )

            logger.info(f"Processing {message} for {caller}")
            self._execute(message, signal, caller)

    def retry_message(self, message: Message, caller: str, is_last_attempt: bool = False) -> None:
        """
        Re-execute a message whose earlier execution failed.

        On the last attempt a further failure marks the message FAILED and
        refunds everything escrowed for it.

        Raises:
            Forbidden: The caller may not retry this message this way
            AlreadyProcessed: The message is done, failed or executing
            NotRetriable: The message was never processed
        """
        caller = to_checksum(caller)

        if message.gas_limit == 0 and caller != message.owner:
            raise Forbidden("only the owner may retry a zero-gas message")
        if is_last_attempt and not self.failure_policy.may_declare_failed(message, caller):
            raise Forbidden("caller may not make the last attempt")

        signal = hash_message(message)
        with self.chain.transaction():
            status = self._processable_status(signal)
            if status == MessageStatus.NEW:
                raise NotRetriable("message has not been processed")
            if status != MessageStatus.RETRIABLE:
                raise AlreadyProcessed(f"message is {status.name}")

            logger.info(f"Retrying {message} for {caller}{' (last attempt)' if is_last_attempt else ''}")
            self._execute(message, signal, caller, is_last_attempt=is_last_attempt)

    def _processable_status(self, signal: bytes) -> MessageStatus:
        if self.status_store.is_in_flight(signal):
            raise AlreadyProcessed("message is being executed")
        return self.status_store.get(signal)

    def _execute(self, message: Message, signal: bytes, caller: str, is_last_attempt: bool = False) -> None:
        refund_to = message.refund_address if message.refund_address != ZERO_ADDRESS else message.owner

        with self.status_store.in_flight(signal):
            succeeded = self._invoke(message, signal)

        if succeeded:
            self._transition(signal, MessageStatus.DONE)
            self.vault.release(caller, message.processing_fee)
            self.vault.release(refund_to, message.deposit_value)
        elif is_last_attempt:
            self._transition(signal, MessageStatus.FAILED)
            self.vault.release(refund_to, message.total_value)
        else:
            # Funds stay escrowed until a retry settles them
            self._transition(signal, MessageStatus.RETRIABLE)

    def _invoke(self, message: Message, signal: bytes) -> bool:
        gas_bound = message.gas_limit or None
        self._contexts.append(MessageContext(
            signal=signal,
            sender=message.sender,
            src_chain_id=message.src_chain_id,
        ))
        try:
            with self.chain.transaction():
                self.vault.release(message.to, message.call_value)
                self.chain.invoke(message.to, message.data, message.call_value, gas_bound)
        except CallFailure as e:
            logger.warning(f"Invocation of {message} failed: {e}")
            return False
        finally:
            self._contexts.pop()
        return True

    def _transition(self, signal: bytes, new_status: MessageStatus) -> None:
        old_status = self.status_store.transition(signal, new_status)
        self.chain.emit(self.address, MessageStatusChanged(
            signal=signal,
            old_status=old_status,
            new_status=new_status,
        ))
        logger.info(f"Message {Web3.to_hex(signal)[:10]}... status {old_status.name} -> {new_status.name}")

    @property
    def context(self) -> MessageContext:
        """Origin of the message being executed right now."""
        if not self._contexts:
            raise NoActiveContext("no message is being executed")
        return self._contexts[-1]

    # Queries

    def get_message_status(self, signal: bytes) -> MessageStatus:
        return self.status_store.get(bytes(HexBytes(signal)))

    def is_message_sent(self, signal: bytes) -> bool:
        return self.is_signal_sent(self.address, signal)

    def is_signal_sent(self, sender: str, signal: bytes) -> bool:
        return self.chain.get_storage(self.address, signal_slot(sender, bytes(HexBytes(signal)))) == 1

    def is_message_received(self, signal: bytes, src_chain_id: int, proof: SignalProof | bytes) -> bool:
        """Whether the peer bridge on ``src_chain_id`` provably sent ``signal``."""
        self._validate_source(src_chain_id)
        src_bridge = self.resolver.resolve(src_chain_id, self.PEER_ROLE)
        return self.is_signal_received(signal, src_chain_id, src_bridge, proof)

    def is_signal_received(
        self,
        signal: bytes,
        src_chain_id: int,
        sender: str,
        proof: SignalProof | bytes,
    ) -> bool:
        """
        Whether ``sender`` provably sent ``signal`` through the bridge on ``src_chain_id``.

        The proof must show the slot ``signal_slot(sender, signal)`` of the
        source bridge holding 1 under the header trusted for the proof's height.

        Raises:
            InvalidSender: ``sender`` is the zero address
            InvalidSignal: ``signal`` is zero
            SameChain: ``src_chain_id`` is this chain
            InvalidProof: The proof does not verify
        """
        sender = to_checksum(sender)
        if sender == ZERO_ADDRESS:
            raise InvalidSender("sender must be set")
        signal = self._validate_signal(signal)
        self._validate_source(src_chain_id)

        if not isinstance(proof, SignalProof):
            proof = SignalProof.from_bytes(proof)

        src_bridge = self.resolver.resolve(src_chain_id, self.PEER_ROLE)

        synced = self.header_sync.get_synced_header(src_chain_id, proof.height)
        if synced is None:
            logger.debug(f"No synced header for chain {src_chain_id} at {proof.height}")

        return self.verifier.verify(
            proof,
            expected_account=src_bridge,
            slot_key=signal_slot(sender, signal),
            expected_value=1,
            trusted_block_hash=synced.block_hash if synced else None,
        )

    def _validate_source(self, src_chain_id: int) -> None:
        if src_chain_id == self.chain_id:
            raise SameChain("cannot prove a signal against the local chain")

    @staticmethod
    def _validate_signal(signal: bytes) -> bytes:
        signal = bytes(HexBytes(signal))
        if len(signal) != 32:
            raise InvalidSignal(f"signal must be 32 bytes, got {len(signal)}")
        if signal == ZERO_HASH:
            raise InvalidSignal("signal must be non-zero")
        return signal

    # Notifications

    def subscribe(self, callback: Callable[[object], None]) -> None:
        """Call ``callback(event)`` for each committed notification of this bridge."""
        self._subscribers.append(callback)

    def _dispatch(self, emitter: str, event: object) -> None:
        if emitter != self.address:
            return
        for callback in list(self._subscribers):
            callback(event)
