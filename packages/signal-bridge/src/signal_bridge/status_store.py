"""
Per-signal message status tracking.

Statuses live in the owning bridge's storage on the ledger, so a rolled-back
operation also rolls back any status it wrote. Besides the persisted status
the store tracks which signals are being executed right now; a signal that is
in flight cannot be processed or retried again until its execution returns.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from web3 import Web3

from .codec import status_slot
from .errors import AlreadyProcessed, InvalidStatusTransition
from .ledger import ChainState
from .models import MessageStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.NEW: frozenset({MessageStatus.RETRIABLE, MessageStatus.DONE}),
    MessageStatus.RETRIABLE: frozenset({
        MessageStatus.RETRIABLE,
        MessageStatus.DONE,
        MessageStatus.FAILED,
    }),
    MessageStatus.DONE: frozenset(),
    MessageStatus.FAILED: frozenset(),
}


class MessageStatusStore:
    """Mapping of signal to MessageStatus, backed by ledger storage."""

    def __init__(self, chain: ChainState, owner: str) -> None:
        """
        Initialize the store.

        Args:
            chain: Ledger holding the status records
            owner: Address of the bridge account whose storage is used
        """
        self.chain = chain
        self.owner = owner
        self._in_flight: set[bytes] = set()
        self._lock = threading.RLock()

    def get(self, signal: bytes) -> MessageStatus:
        """Return the status of ``signal``; unknown signals are NEW."""
        return MessageStatus(self.chain.get_storage(self.owner, status_slot(signal)))

    def transition(self, signal: bytes, new_status: MessageStatus) -> MessageStatus:
        """
        Move ``signal`` to ``new_status``.

        Returns:
            The status before the transition

        Raises:
            InvalidStatusTransition: If the transition table forbids the move
        """
        with self._lock:
            old_status = self.get(signal)
            if new_status not in ALLOWED_TRANSITIONS[old_status]:
                raise InvalidStatusTransition(f"{old_status.name} -> {new_status.name}")
            self.chain.set_storage(self.owner, status_slot(signal), int(new_status))

        logger.debug(f"Signal {Web3.to_hex(signal)[:10]}... {old_status.name} -> {new_status.name}")
        return old_status

    def is_in_flight(self, signal: bytes) -> bool:
        return signal in self._in_flight

    @contextmanager
    def in_flight(self, signal: bytes) -> Iterator[None]:
        """
        Mark ``signal`` as executing for the duration of the block.

        Raises:
            AlreadyProcessed: If the signal is already executing
        """
        with self._lock:
            if signal in self._in_flight:
                raise AlreadyProcessed("message is being executed")
            self._in_flight.add(signal)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(signal)
