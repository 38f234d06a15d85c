"""
Signal Bridge package.

Cross-chain message passing between ledgers, proven with storage proofs
against synced block headers, plus the relayer that carries messages across.
"""

from .bridge import Bridge
from .codec import encode_message, hash_message, signal_slot
from .collaborators import AddressManager, EtherVault, InMemoryHeaderSync, OwnerFailurePolicy
from .config import BridgeConfig, MonitoringConfig, RelayerConfig
from .errors import BridgeError
from .event_processor import EventProcessor
from .ledger import ChainState
from .models import Message, MessageStatus, SignalProof
from .proof import StorageProofVerifier
from .relayer import BridgeRelayer, LocalNetwork

__all__ = [
    "AddressManager",
    "Bridge",
    "BridgeConfig",
    "BridgeError",
    "BridgeRelayer",
    "ChainState",
    "EtherVault",
    "EventProcessor",
    "InMemoryHeaderSync",
    "LocalNetwork",
    "Message",
    "MessageStatus",
    "MonitoringConfig",
    "OwnerFailurePolicy",
    "RelayerConfig",
    "SignalProof",
    "StorageProofVerifier",
    "encode_message",
    "hash_message",
    "signal_slot",
]
__version__ = "0.1.0"
