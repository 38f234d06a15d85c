"""Tests for the reference collaborators."""

import pytest
from web3 import Web3

from signal_bridge.collaborators import AddressManager, EtherVault, InMemoryHeaderSync, OwnerFailurePolicy
from signal_bridge.errors import InsufficientBalance, UnresolvedAddress
from signal_bridge.interfaces import FailurePolicy, HeaderSync, Resolver, Vault
from signal_bridge.ledger import ChainState
from signal_bridge.models import ZERO_ADDRESS, HeaderSynced, Message, SyncedHeader

from conftest import ALICE, BOB, CAROL

HASH_A = b"\xaa" * 32
HASH_B = b"\xbb" * 32


class TestInMemoryHeaderSync:

    def test_implements_interface(self):
        assert isinstance(InMemoryHeaderSync(), HeaderSync)

    def test_get_by_height_and_latest(self):
        sync = InMemoryHeaderSync()
        sync.set_synced_header(1, 10, HASH_A)
        sync.set_synced_header(1, 12, HASH_B)

        assert sync.get_synced_header(1, 10) == SyncedHeader(chain_id=1, height=10, block_hash=HASH_A)
        assert sync.get_synced_header(1) == SyncedHeader(chain_id=1, height=12, block_hash=HASH_B)
        assert sync.get_synced_header(1, 11) is None
        assert sync.get_synced_header(2) is None

    def test_latest_not_lowered_by_older_header(self):
        sync = InMemoryHeaderSync()
        sync.set_synced_header(1, 12, HASH_B)
        sync.set_synced_header(1, 10, HASH_A)
        assert sync.get_synced_header(1).height == 12

    def test_accepts_hex_hash(self):
        sync = InMemoryHeaderSync()
        sync.set_synced_header(1, 1, Web3.to_hex(HASH_A))
        assert sync.get_synced_header(1, 1).block_hash == HASH_A

    def test_rejects_short_hash(self):
        with pytest.raises(ValueError, match="32 bytes"):
            InMemoryHeaderSync().set_synced_header(1, 1, b"\x01")

    def test_evicts_oldest(self):
        sync = InMemoryHeaderSync()
        sync.MAX_HEADERS_PER_CHAIN = 2
        for height in (1, 2, 3):
            sync.set_synced_header(1, height, HASH_A)
        assert sync.get_synced_header(1, 1) is None
        assert sync.get_synced_header(1, 3) is not None

    def test_evicts_lowest_height(self):
        sync = InMemoryHeaderSync()
        sync.MAX_HEADERS_PER_CHAIN = 2
        for height in (5, 9, 3):
            sync.set_synced_header(1, height, HASH_A)

        assert sync.get_synced_header(1, 3) is None
        assert sync.get_synced_header(1, 5) is not None
        assert sync.get_synced_header(1).height == 9

    def test_latest_resolves_after_eviction(self):
        sync = InMemoryHeaderSync()
        sync.MAX_HEADERS_PER_CHAIN = 2
        sync.set_synced_header(1, 9, HASH_B)
        sync.set_synced_header(1, 3, HASH_A)
        sync.set_synced_header(1, 5, HASH_A)

        assert sync.get_synced_header(1) == SyncedHeader(chain_id=1, height=9, block_hash=HASH_B)
        assert sync.get_synced_header(1, 3) is None

    def test_announces_on_chain(self):
        chain = ChainState(chain_id=2)
        announcer = Web3.to_checksum_address("0x" + "55" * 20)
        sync = InMemoryHeaderSync(chain, announcer)

        sync.set_synced_header(1, 7, HASH_A)
        chain.mine()

        logs = chain.get_logs(0, event_name="HeaderSynced", emitter=announcer)
        assert [log.event for log in logs] == [HeaderSynced(chain_id=1, height=7, block_hash=HASH_A)]

    def test_chain_requires_address(self):
        with pytest.raises(ValueError, match="together"):
            InMemoryHeaderSync(ChainState(chain_id=2))


class TestAddressManager:

    def test_implements_interface(self):
        assert isinstance(AddressManager(), Resolver)

    def test_resolve(self):
        manager = AddressManager()
        manager.set_address(1, "bridge", ALICE.lower())
        assert manager.resolve(1, "bridge") == ALICE
        assert manager.get_address(2, "bridge") == ZERO_ADDRESS

    def test_unresolved(self):
        with pytest.raises(UnresolvedAddress, match="1.bridge"):
            AddressManager().resolve(1, "bridge")


class TestEtherVault:

    def test_escrow_and_release(self):
        chain = ChainState(chain_id=1)
        chain.fund(ALICE, 100)
        vault = EtherVault(chain, CAROL)
        assert isinstance(vault, Vault)

        vault.escrow(ALICE, 60)
        vault.release(BOB, 25)

        assert vault.balance == 35
        assert chain.balance_of(ALICE) == 40
        assert chain.balance_of(BOB) == 25

    def test_release_beyond_balance(self):
        vault = EtherVault(ChainState(chain_id=1), CAROL)
        with pytest.raises(InsufficientBalance):
            vault.release(BOB, 1)


class TestOwnerFailurePolicy:

    def test_only_owner(self):
        policy = OwnerFailurePolicy()
        message = Message(owner=ALICE)
        assert isinstance(policy, FailurePolicy)
        assert policy.may_declare_failed(message, ALICE.lower())
        assert not policy.may_declare_failed(message, BOB)
