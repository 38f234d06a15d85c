"""
Polling-based event listener utility for ledger notification monitoring.

"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from web3 import Web3

from ..ledger import ChainState
from ..models import LogEntry


class PollingEventListener:
    """
    Utility for polling sealed notifications of one emitter on a ledger.

    """

    def __init__(
        self,
        chain: ChainState,
        emitter: str,
        event_name: str,
        lookback_blocks: int = 100
    ):
        """
        Initialize the polling event listener.

        Args:
            chain: Ledger to poll
            emitter: Address of the account to monitor
            event_name: Name of the notification to listen for
            lookback_blocks: Number of blocks to look back on startup
        """
        self.chain = chain
        self.emitter = Web3.to_checksum_address(emitter)
        self.event_name = event_name
        self.lookback_blocks = lookback_blocks

        # State tracking
        self.last_processed_block: Optional[int] = None
        self.is_running = False

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _get_logs(self, from_block: int, to_block: int) -> list[LogEntry]:
        return self.chain.get_logs(
            from_block=from_block,
            to_block=to_block,
            event_name=self.event_name,
            emitter=self.emitter,
        )

    async def initial_sync(self, callback: Callable[[LogEntry], Awaitable[Any]]) -> None:
        """
        Perform initial sync to catch up on recent notifications.

        Args:
            callback: Async function to call for each notification found
        """
        try:
            current_block = self.chain.block_number
            from_block = max(0, current_block - self.lookback_blocks)

            self.logger.info(
                f"Initial sync for {self.event_name} events "
                f"from block {from_block} to {current_block}"
            )

            events = self._get_logs(from_block, current_block)

            if events:
                self.logger.info(f"Found {len(events)} historical {self.event_name} events")
                for event in events:
                    await callback(event)
            else:
                self.logger.info(f"No historical {self.event_name} events found")

            self.last_processed_block = current_block

        except Exception as e:
            self.logger.error(f"Error during initial sync: {e}")
            raise

    async def poll_for_events(self, callback: Callable[[LogEntry], Awaitable[Any]]) -> None:
        """
        Poll for new notifications since last processed block.

        Args:
            callback: Async function to call for each new notification
        """
        try:
            current_block = self.chain.block_number

            # Skip if no new blocks
            if self.last_processed_block is not None and current_block <= self.last_processed_block:
                return

            from_block = (
                self.last_processed_block + 1
                if self.last_processed_block is not None
                else current_block
            )

            events = self._get_logs(from_block, current_block)

            if events:
                self.logger.info(
                    f"Found {len(events)} new {self.event_name} events "
                    f"in blocks {from_block}-{current_block}"
                )
                for event in events:
                    await callback(event)

            self.last_processed_block = current_block

        except Exception as e:
            self.logger.error(f"Error polling for events: {e}")
            # Don't update last_processed_block on error

    async def start_polling(
        self,
        callback: Callable[[LogEntry], Awaitable[Any]],
        interval: float = 30
    ) -> None:
        """
        Start polling for notifications at the specified interval.

        Args:
            callback: Async function to call when notifications are received
            interval: Polling interval in seconds
        """
        if self.is_running:
            self.logger.warning("Polling already running")
            return

        self.is_running = True
        self.logger.info(
            f"Starting polling for {self.event_name} events "
            f"on {self.emitter} every {interval} seconds"
        )

        await self.initial_sync(callback)

        while self.is_running:
            try:
                await asyncio.sleep(interval)
                await self.poll_for_events(callback)
            except asyncio.CancelledError:
                self.logger.info("Polling cancelled")
                break
            except Exception as e:
                self.logger.error(f"Error in polling loop: {e}")
                # Continue polling despite errors
                await asyncio.sleep(interval)

    async def stop(self) -> None:
        """Stop the polling loop."""
        self.logger.info(f"Stopping polling for {self.event_name} events")
        self.is_running = False

    def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the polling listener.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "last_processed_block": self.last_processed_block,
            "emitter": self.emitter,
            "event_name": self.event_name,
            "chain_id": self.chain.chain_id,
        }
