"""
Signal bridge relayer implementation.

This module contains the relayer service that orchestrates notification
monitoring on both chains, keeps the destination's header store in sync and
coordinates with the event processor for relaying messages.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from .bridge import Bridge
from .collaborators import AddressManager, EtherVault, InMemoryHeaderSync
from .config import BridgeConfig, MonitoringConfig, RelayerConfig
from .event_processor import EventProcessor
from .header_oracle import HeaderOracle
from .ledger import ChainState
from .proof_manager import ProofManager
from .utils.polling_event_listener import PollingEventListener

logger = logging.getLogger(__name__)

HEADER_SYNC_ROLE = "header_sync"


def derive_address(label: str) -> str:
    """Deterministic account address for a well-known local role."""
    return Web3.to_checksum_address(Web3.keccak(text=label)[-20:])


@dataclass
class LocalNetwork:
    """Two in-process chains with a bridge deployed on each.

    Attributes:
        source_chain: Ledger messages are sent from
        target_chain: Ledger messages are processed on
        source_bridge: Bridge on the source chain
        target_bridge: Bridge on the target chain
        header_sync: Store of trusted source headers on the target chain
        resolver: Registry both bridges resolve their peers through
    """

    source_chain: ChainState
    target_chain: ChainState
    source_bridge: Bridge
    target_bridge: Bridge
    header_sync: InMemoryHeaderSync
    resolver: AddressManager

    @classmethod
    def create(cls, config: RelayerConfig, vault_liquidity: int = 10**24) -> "LocalNetwork":
        """Build both ledgers and deploy a bridge, vault and header store on each.

        Each vault starts with ``vault_liquidity`` so it can pay out messages
        arriving from the other chain.
        """
        resolver = AddressManager()
        chains: dict[int, ChainState] = {}
        bridges: dict[int, Bridge] = {}
        header_syncs: dict[int, InMemoryHeaderSync] = {}

        for bridge_config in (config.source_chain, config.target_chain):
            chain_id = bridge_config.chain_id
            chain = ChainState(chain_id)
            chain.fund(bridge_config.vault_address, vault_liquidity)
            header_sync = InMemoryHeaderSync(chain, derive_address(f"{chain_id}.{HEADER_SYNC_ROLE}"))
            resolver.set_address(chain_id, Bridge.PEER_ROLE, bridge_config.bridge_address)
            resolver.set_address(chain_id, HEADER_SYNC_ROLE, header_sync.address)

            chains[chain_id] = chain
            header_syncs[chain_id] = header_sync
            bridges[chain_id] = Bridge(
                config=bridge_config,
                chain=chain,
                resolver=resolver,
                header_sync=header_sync,
                vault=EtherVault(chain, bridge_config.vault_address),
            )

        source_id = config.source_chain.chain_id
        target_id = config.target_chain.chain_id
        logger.info(f"Local network created: chain {source_id} -> chain {target_id}")
        return cls(
            source_chain=chains[source_id],
            target_chain=chains[target_id],
            source_bridge=bridges[source_id],
            target_bridge=bridges[target_id],
            header_sync=header_syncs[target_id],
            resolver=resolver,
        )

    def mine(self) -> None:
        """Seal a block on both chains."""
        self.source_chain.mine()
        self.target_chain.mine()


class BridgeRelayer:
    """
    Relayer service that orchestrates notification monitoring and processing.

    This class focuses on coordination and lifecycle management, delegating
    relay logic to the EventProcessor and header syncing to the HeaderOracle.
    """

    STATUS_LOG_INTERVAL = 30  # seconds

    def __init__(
        self,
        config: RelayerConfig,
        network: LocalNetwork,
        relayer_address: str | None = None,
        auto_mine: bool = True,
    ):
        """
        Initialize the relayer.

        Args:
            config: Relayer configuration
            network: The chains and bridges to relay between
            relayer_address: Account credited with processing fees
            auto_mine: Seal a block on both chains every polling interval
        """
        self.config = config
        self.network = network
        self.relayer_address = Web3.to_checksum_address(relayer_address or derive_address("relayer"))
        self.auto_mine = auto_mine
        self.running = False

        self.proof_manager = ProofManager(source_chain=network.source_chain)
        self.header_oracle = HeaderOracle(network.source_chain, network.header_sync)
        self.event_processor = EventProcessor(
            proof_manager=self.proof_manager,
            target_bridge=network.target_bridge,
            source_bridge_address=network.source_bridge.address,
            relayer_address=self.relayer_address,
            retry_count=config.monitoring.retry_count,
            batch_size=config.monitoring.process_batch_size,
        )
        self.message_listener: Optional[PollingEventListener] = None
        self.header_listener: Optional[PollingEventListener] = None

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_env(cls) -> "BridgeRelayer":
        """
        Create a BridgeRelayer over a fresh local network from environment variables.

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayerConfig.from_env()
        config.log_config()
        return cls(config, LocalNetwork.create(config))

    def init_event_monitoring(self) -> None:
        """Initialize polling listeners for both chains."""
        logger.info("Initializing event monitoring...")
        lookback = self.config.monitoring.lookback_blocks

        self.message_listener = PollingEventListener(
            chain=self.network.source_chain,
            emitter=self.network.source_bridge.address,
            event_name="MessageSent",
            lookback_blocks=lookback,
        )
        header_sync_address = self.network.resolver.resolve(
            self.network.target_bridge.chain_id, HEADER_SYNC_ROLE
        )
        self.header_listener = PollingEventListener(
            chain=self.network.target_chain,
            emitter=header_sync_address,
            event_name="HeaderSynced",
            lookback_blocks=lookback,
        )

        logger.info(f"MessageSent listener: {self.network.source_bridge.address}")
        logger.info(f"HeaderSynced listener: {header_sync_address}")

    async def _produce_blocks(self) -> None:
        """Seal blocks on both chains at the polling interval."""
        while self.running:
            self.network.mine()
            await asyncio.sleep(self.config.monitoring.polling_interval)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            stats = self.event_processor.get_stats()
            if stats['pending_messages'] > 0:
                logger.info(
                    f"Status: {stats['pending_messages']} messages pending, "
                    f"{stats['messages_relayed']} relayed, "
                    f"{stats['stored_hashes']} hashes stored"
                )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":  # status task can end normally
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Clean up all tasks and listeners."""
        if self.message_listener:
            await self.message_listener.stop()
        if self.header_listener:
            await self.header_listener.stop()
        await self.header_oracle.stop()

        for task in tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

    async def run(self) -> None:
        """Main event loop for the relayer service."""
        self.running = True
        interval = self.config.monitoring.polling_interval
        logger.info("Signal bridge relayer starting...")
        logger.info(f"Polling interval: {interval}s")
        logger.info(f"Lookback blocks: {self.config.monitoring.lookback_blocks}")

        tasks: dict[str, asyncio.Task] = {}
        try:
            self.init_event_monitoring()

            if not self.message_listener or not self.header_listener:
                raise RuntimeError("Event listeners not properly initialized")

            tasks = {
                "messages": asyncio.create_task(
                    self.message_listener.start_polling(
                        callback=self.event_processor.process_message_sent,
                        interval=interval,
                    )
                ),
                "headers": asyncio.create_task(
                    self.header_listener.start_polling(
                        callback=self.event_processor.process_header_synced,
                        interval=interval,
                    )
                ),
                "oracle": asyncio.create_task(self.header_oracle.run(interval)),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }
            if self.auto_mine:
                tasks["blocks"] = asyncio.create_task(self._produce_blocks())

            logger.info("Event monitoring started, waiting for messages...")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            logger.info("Signal bridge relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()


def demo_config(
    source_chain_id: int = 1,
    target_chain_id: int = 2,
    polling_interval: float = 1,
) -> RelayerConfig:
    """Relayer configuration for a local network with derived addresses."""
    return RelayerConfig(
        source_chain=BridgeConfig(
            chain_id=source_chain_id,
            bridge_address=derive_address(f"{source_chain_id}.bridge"),
            vault_address=derive_address(f"{source_chain_id}.vault"),
        ),
        target_chain=BridgeConfig(
            chain_id=target_chain_id,
            bridge_address=derive_address(f"{target_chain_id}.bridge"),
            vault_address=derive_address(f"{target_chain_id}.vault"),
        ),
        monitoring=MonitoringConfig(polling_interval=polling_interval),
    )
