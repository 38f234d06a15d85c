"""
Header oracle feeding source-chain block hashes to a destination header store.

The oracle watches the source ledger's sealed blocks and submits each new
block hash to the HeaderSync the destination bridge trusts.
"""

import asyncio
import logging
from collections import OrderedDict

from web3 import Web3

from .collaborators import InMemoryHeaderSync
from .ledger import ChainState
from .models import BlockHeader

# Get logger for this module
logger = logging.getLogger(__name__)


class HeaderOracle:
    """
    Header Oracle that reads block headers from a source chain
    and submits them to the destination chain's header store.
    """

    def __init__(
        self,
        source_chain: ChainState,
        header_sync: InMemoryHeaderSync,
        dedupe_window: int = 1000,
    ) -> None:
        """
        Initialize the HeaderOracle.

        Args:
            source_chain: Ledger whose headers are synced
            header_sync: Destination header store
            dedupe_window: Maximum number of submitted heights to remember
        """
        self.source_chain = source_chain
        self.header_sync = header_sync
        self.dedupe_window = dedupe_window

        # Deduplication cache using OrderedDict for O(1) lookups
        self.submitted: OrderedDict[int, None] = OrderedDict()

        # Metrics tracking
        self.headers_submitted = 0
        self.headers_duplicated = 0
        self.submission_errors = 0

        self.is_running = False

        logger.info(
            f"HeaderOracle initialized for chain {source_chain.chain_id} "
            f"with dedupe window of {dedupe_window} headers"
        )

    async def submit_block_header(self, block: BlockHeader) -> bool:
        """
        Submit one block header to the destination header store.

        Args:
            block: The source block to trust

        Returns:
            True if submission was successful, False otherwise
        """
        if block.block_number in self.submitted:
            self.headers_duplicated += 1
            logger.debug(f"Header {block.block_number} already submitted")
            return False

        try:
            logger.info(
                f"Submitting block header for block {block.block_number}, "
                f"hash: {Web3.to_hex(block.block_hash)}"
            )
            self.header_sync.set_synced_header(
                self.source_chain.chain_id,
                block.block_number,
                block.block_hash,
            )
        except Exception as e:
            self.submission_errors += 1
            logger.error(f"Error submitting block header: {e}", exc_info=True)
            return False

        if len(self.submitted) >= self.dedupe_window:
            self.submitted.popitem(last=False)
        self.submitted[block.block_number] = None
        self.headers_submitted += 1

        # Periodically log metrics
        if self.headers_submitted % 10 == 0:
            self.log_metrics()
        return True

    async def sync_block(self, block_number: int) -> bool:
        """Fetch a source block by number and submit its header."""
        try:
            block = self.source_chain.get_block(block_number)
        except ValueError as e:
            logger.error(f"Error fetching block {block_number}: {e}")
            return False
        return await self.submit_block_header(block)

    async def sync_latest(self) -> bool:
        """Submit the header of the latest sealed source block."""
        return await self.submit_block_header(self.source_chain.get_block())

    async def run(self, interval: float) -> None:
        """Sync the latest source header every ``interval`` seconds until stopped."""
        self.is_running = True
        logger.info(f"Starting HeaderOracle for chain {self.source_chain.chain_id} every {interval}s")
        try:
            while self.is_running:
                await self.sync_latest()
                await asyncio.sleep(interval)
        finally:
            self.is_running = False
            logger.info("HeaderOracle stopped")

    async def stop(self) -> None:
        """Gracefully stop the oracle loop."""
        logger.info("Shutting down HeaderOracle...")
        self.is_running = False

    def get_metrics(self) -> dict[str, int]:
        return {
            "headers_submitted": self.headers_submitted,
            "headers_duplicated": self.headers_duplicated,
            "submission_errors": self.submission_errors,
            "dedupe_cache_size": len(self.submitted),
        }

    def log_metrics(self) -> None:
        metrics = self.get_metrics()
        logger.info(
            f"HeaderOracle metrics - submitted: {metrics['headers_submitted']}, "
            f"duplicated: {metrics['headers_duplicated']}, "
            f"errors: {metrics['submission_errors']}"
        )
