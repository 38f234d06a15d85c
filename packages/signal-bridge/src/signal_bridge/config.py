#!/usr/bin/env python3
"""Configuration management for the signal bridge.

This module provides type-safe configuration dataclasses with validation for
bridge deployments and for the relayer that connects them. Configuration is
loaded from environment variables with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


def _checksummed(value: str, what: str) -> str:
    if not value:
        raise ValueError(f"{what} is required")
    if not Web3.is_address(value):
        raise ValueError(f"Invalid {what}: {value}")
    return Web3.to_checksum_address(value)


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Configuration of one bridge deployment.

    Attributes:
        chain_id: Identifier of the chain the bridge runs on
        bridge_address: Address of the bridge account
        vault_address: Address of the escrow vault account
    """

    chain_id: int
    bridge_address: str
    vault_address: str

    def __post_init__(self) -> None:
        """Validate bridge configuration."""
        if self.chain_id <= 0:
            raise ValueError(f"Chain ID must be positive, got {self.chain_id}")

        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(self, 'bridge_address', _checksummed(self.bridge_address, "bridge address"))
        object.__setattr__(self, 'vault_address', _checksummed(self.vault_address, "vault address"))

        if self.bridge_address == self.vault_address:
            raise ValueError("Bridge and vault must be distinct accounts")

    @classmethod
    def from_env(cls, prefix: str) -> "BridgeConfig":
        """Load a bridge configuration from ``{prefix}_*`` environment variables.

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        chain_id = os.environ.get(f"{prefix}_CHAIN_ID", "")
        if not chain_id:
            raise ValueError(f"{prefix}_CHAIN_ID environment variable is required")
        try:
            chain_id_value = int(chain_id, 0)
        except ValueError:
            raise ValueError(f"{prefix}_CHAIN_ID must be an integer, got {chain_id}") from None

        bridge_address = os.environ.get(f"{prefix}_BRIDGE_ADDRESS", "")
        if not bridge_address:
            raise ValueError(
                f"{prefix}_BRIDGE_ADDRESS environment variable is required. "
                "This is the address of the bridge account on that chain"
            )

        vault_address = os.environ.get(f"{prefix}_VAULT_ADDRESS", "")
        if not vault_address:
            raise ValueError(
                f"{prefix}_VAULT_ADDRESS environment variable is required. "
                "This is the address of the escrow vault on that chain"
            )

        return cls(
            chain_id=chain_id_value,
            bridge_address=bridge_address,
            vault_address=vault_address,
        )


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for event monitoring and processing."""
    polling_interval: float = 12  # seconds between event polls
    lookback_blocks: int = 100  # blocks to look back on startup
    retry_count: int = 3  # proof submission attempts per message
    process_batch_size: int = 10  # max messages to relay per synced header

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        if self.lookback_blocks <= 0:
            raise ValueError(f"Lookback blocks must be positive, got {self.lookback_blocks}")
        if self.lookback_blocks > 1000:
            raise ValueError(f"Lookback blocks too high (max 1000), got {self.lookback_blocks}")

        if self.retry_count < 0:
            raise ValueError(f"Retry count must be non-negative, got {self.retry_count}")
        if self.retry_count > 10:
            raise ValueError(f"Retry count too high (max 10), got {self.retry_count}")

        if self.process_batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {self.process_batch_size}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the relayer.

    Attributes:
        source_chain: Bridge deployment messages are sent from
        target_chain: Bridge deployment messages are processed on
        monitoring: Configuration for monitoring and event processing
    """

    source_chain: BridgeConfig
    target_chain: BridgeConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def __post_init__(self) -> None:
        if self.source_chain.chain_id == self.target_chain.chain_id:
            raise ValueError(
                f"Source and target chain must differ, both are {self.source_chain.chain_id}"
            )

    @classmethod
    def from_env(cls) -> "RelayerConfig":
        """Load configuration from environment variables.

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        source_chain = BridgeConfig.from_env("SOURCE")
        target_chain = BridgeConfig.from_env("TARGET")

        monitoring = MonitoringConfig(
            polling_interval=float(os.environ.get("POLLING_INTERVAL", "12")),
            lookback_blocks=int(os.environ.get("LOOKBACK_BLOCKS", "100")),
            retry_count=int(os.environ.get("RETRY_COUNT", "3")),
            process_batch_size=int(os.environ.get("PROCESS_BATCH_SIZE", "10")),
        )

        return cls(
            source_chain=source_chain,
            target_chain=target_chain,
            monitoring=monitoring,
        )

    def log_config(self) -> None:
        """Log configuration settings."""
        logger.info("=== Signal Bridge Relayer Configuration ===")
        for label, chain in (("Source", self.source_chain), ("Target", self.target_chain)):
            logger.info(f"[{label} Chain] id={chain.chain_id}")
            logger.info(f"  Bridge: {chain.bridge_address}")
            logger.info(f"  Vault: {chain.vault_address}")
        logger.info(f"[Monitoring] interval={self.monitoring.polling_interval}s "
                    f"lookback={self.monitoring.lookback_blocks} "
                    f"retries={self.monitoring.retry_count} "
                    f"batch={self.monitoring.process_batch_size}")
