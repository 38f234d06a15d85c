"""
Event processor for handling bridge notifications.

This module contains the logic for processing MessageSent and HeaderSynced
notifications, keeping the processing logic separate from the relay
orchestration.
"""

import logging
from collections import OrderedDict, deque
from typing import TYPE_CHECKING, Optional

from web3 import Web3

from .errors import AlreadyProcessed, BridgeError, NotReceived
from .models import HeaderSynced, LogEntry, MessageSent, PendingMessage
from .proof_manager import ProofManager

if TYPE_CHECKING:
    from .bridge import Bridge

logger = logging.getLogger(__name__)


class EventProcessor:
    """Matches sent messages with synced source headers and relays them."""

    MAX_PROCESSED_SIGNALS: int = 10_000
    MAX_PENDING_MESSAGES: int = 10_000
    MAX_STORED_HASHES: int = 10_000  # Prevent memory leak

    def __init__(
        self,
        proof_manager: ProofManager | None = None,
        target_bridge: Optional["Bridge"] = None,
        source_bridge_address: str | None = None,
        relayer_address: str | None = None,
        retry_count: int = 3,
        batch_size: int = 10,
    ) -> None:
        """Initialize the event processor.

        Args:
            proof_manager: ProofManager instance for generating and submitting proofs
            target_bridge: Bridge the messages are processed on
            source_bridge_address: Bridge account the messages are sent from
            relayer_address: Account credited with processing fees
            retry_count: Submission attempts per message before it is dropped
            batch_size: Maximum messages relayed per synced header
        """
        # State tracking with bounded collections
        # OrderedDict provides O(1) lookups and maintains insertion order for LRU
        self.processed_signals: OrderedDict[bytes, None] = OrderedDict()

        # Primary structure: dict for O(1) lookup by block_number
        self.pending_messages: dict[int, list[PendingMessage]] = {}
        # Secondary structure: deque for O(1) FIFO removal of oldest messages
        self.pending_order: deque[PendingMessage] = deque()

        self.stored_hashes: OrderedDict[int, bytes] = OrderedDict()
        self.attempts: dict[bytes, int] = {}

        self.proof_manager = proof_manager
        self.target_bridge = target_bridge
        self.source_bridge_address = source_bridge_address
        self.relayer_address = relayer_address
        self.retry_count = retry_count
        self.batch_size = batch_size

        self.messages_relayed = 0
        self.messages_dropped = 0
        self.relay_errors = 0

    async def process_message_sent(self, log: LogEntry) -> PendingMessage | None:
        """
        Process a MessageSent notification from the source bridge.

        Args:
            log: The sealed notification

        Returns:
            PendingMessage if queued, None if skipped or error
        """
        try:
            match log.event:
                case MessageSent(signal=signal, message=message):
                    pass
                case _:
                    logger.warning(f"Unexpected notification {log.event_name} at {log.unique_key}")
                    return None

            # Skip if already seen
            if signal in self.processed_signals:
                return None
            self._track_processed_signal(signal)

            pending = PendingMessage(
                signal=signal,
                message=message,
                block_number=log.block_number,
                log_index=log.log_index,
            )
            logger.info(
                f"MessageSent detected - {message} block={log.block_number} "
                f"signal={Web3.to_hex(signal)[:10]}..."
            )

            # Check capacity and remove oldest if needed
            if len(self.pending_order) >= self.MAX_PENDING_MESSAGES:
                oldest = self.pending_order.popleft()
                self._remove_from_block(oldest)
                logger.debug(f"Removed oldest message {Web3.to_hex(oldest.signal)[:10]}... due to capacity")

            self.pending_messages.setdefault(log.block_number, []).append(pending)
            self.pending_order.append(pending)

            # A header at or past this block may already be trusted
            if self.stored_hashes:
                latest = max(self.stored_hashes)
                if latest >= log.block_number:
                    await self.relay_up_to(latest)

            return pending

        except Exception as e:
            logger.error(f"Error processing MessageSent notification: {e}", exc_info=True)
            return None

    async def process_header_synced(self, log: LogEntry) -> tuple[int, bytes] | None:
        """
        Process a HeaderSynced notification from the destination chain.

        Args:
            log: The sealed notification

        Returns:
            Tuple of (height, block_hash) if it concerns the source chain, None otherwise
        """
        try:
            match log.event:
                case HeaderSynced(chain_id=chain_id, height=height, block_hash=block_hash):
                    pass
                case _:
                    logger.warning(f"Unexpected notification {log.event_name} at {log.unique_key}")
                    return None

            if self.target_bridge is not None and chain_id == self.target_bridge.chain_id:
                logger.debug(f"Ignoring header of the destination chain itself at {height}")
                return None

            # Store the hash with automatic eviction to prevent memory leak
            if len(self.stored_hashes) >= self.MAX_STORED_HASHES:
                self.stored_hashes.popitem(last=False)
            self.stored_hashes[height] = block_hash

            logger.info(f"Header synced - chain {chain_id} block {height}: {Web3.to_hex(block_hash)[:10]}...")
            await self.relay_up_to(height)
            return (height, block_hash)

        except Exception as e:
            logger.error(f"Error processing HeaderSynced notification: {e}", exc_info=True)
            return None

    async def relay_up_to(self, height: int) -> int:
        """
        Relay pending messages sent at or before ``height``, oldest first.

        Every proof is anchored to the synced header at ``height``.

        Returns:
            Number of messages relayed
        """
        if not self.proof_manager or not self.target_bridge or not self.source_bridge_address:
            logger.warning("ProofManager or bridge not initialized, skipping relay")
            return 0

        ready = [p for p in self.pending_order if p.block_number <= height][:self.batch_size]
        if ready:
            logger.info(f"Found {len(ready)} messages ready for block {height}")

        relayed = 0
        for pending in ready:
            if await self.process_matched_message(pending, height):
                relayed += 1
        return relayed

    async def process_matched_message(self, pending: PendingMessage, height: int) -> bool:
        """
        Prove and process one message against the header at ``height``.

        Returns:
            True if the message left the pending queue as relayed
        """
        signal_hex = Web3.to_hex(pending.signal)[:10]
        try:
            await self.proof_manager.process_message_event(
                pending.message,
                pending.signal,
                self.source_bridge_address,
                height,
                self.target_bridge,
                self.relayer_address,
            )
        except AlreadyProcessed:
            logger.info(f"Message {signal_hex}... already processed, dropping")
            self._forget(pending)
            return False
        except NotReceived:
            # Header not trusted on the destination yet
            logger.info(f"Message {signal_hex}... not provable at {height} yet")
            return False
        except BridgeError as e:
            self.relay_errors += 1
            if e.is_permanent or self._record_attempt(pending) >= self.retry_count:
                logger.error(f"Dropping message {signal_hex}...: {e}")
                self.messages_dropped += 1
                self._forget(pending)
            else:
                logger.warning(f"Relay of {signal_hex}... failed, will retry: {e}")
            return False
        except Exception as e:
            self.relay_errors += 1
            logger.error(f"Failed to relay message {signal_hex}...: {e}", exc_info=True)
            if self._record_attempt(pending) >= self.retry_count:
                self.messages_dropped += 1
                self._forget(pending)
            return False

        self.messages_relayed += 1
        self._forget(pending)
        return True

    def _record_attempt(self, pending: PendingMessage) -> int:
        self.attempts[pending.signal] = self.attempts.get(pending.signal, 0) + 1
        return self.attempts[pending.signal]

    def _remove_from_block(self, pending: PendingMessage) -> None:
        block_messages = self.pending_messages.get(pending.block_number, [])
        if pending in block_messages:
            block_messages.remove(pending)
            if not block_messages:
                del self.pending_messages[pending.block_number]

    def _forget(self, pending: PendingMessage) -> None:
        self._remove_from_block(pending)
        try:
            self.pending_order.remove(pending)
        except ValueError:
            pass
        self.attempts.pop(pending.signal, None)

    def _track_processed_signal(self, signal: bytes) -> None:
        """
        Track a seen signal with automatic LRU eviction.

        Args:
            signal: Signal to track
        """
        if signal in self.processed_signals:
            self.processed_signals.move_to_end(signal)
        else:
            if len(self.processed_signals) >= self.MAX_PROCESSED_SIGNALS:
                self.processed_signals.popitem(last=False)
            self.processed_signals[signal] = None

    def get_stats(self) -> dict:
        """
        Get current processor statistics.

        Returns:
            Dictionary with current state metrics
        """
        return {
            'processed_signals': len(self.processed_signals),
            'pending_messages': len(self.pending_order),
            'stored_hashes': len(self.stored_hashes),
            'messages_relayed': self.messages_relayed,
            'messages_dropped': self.messages_dropped,
            'relay_errors': self.relay_errors,
        }
