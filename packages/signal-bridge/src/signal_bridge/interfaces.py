"""
Collaborator interfaces the bridge depends on.

The bridge never owns these: header sync, address resolution, custody of
funds and the callee capability are all injected at construction time.
"""

from typing import Protocol, runtime_checkable

from .models import CallResult, Message, SyncedHeader


@runtime_checkable
class HeaderSync(Protocol):
    """Read-only source of trusted source-chain block hashes."""

    def get_synced_header(self, chain_id: int, height: int | None = None) -> SyncedHeader | None:
        """Return the trusted header for ``height`` (latest when None), if any."""
        ...


@runtime_checkable
class Resolver(Protocol):
    """Address registry lookup."""

    def resolve(self, chain_id: int, role: str) -> str:
        """Return the address registered for ``role`` on ``chain_id``.

        Raises:
            UnresolvedAddress: If nothing is registered
        """
        ...


@runtime_checkable
class Vault(Protocol):
    """Custody of escrowed message value."""

    def escrow(self, payer: str, amount: int) -> None:
        ...

    def release(self, to: str, amount: int) -> None:
        ...


@runtime_checkable
class Invokable(Protocol):
    """Code living at a message target.

    This is the only path through which arbitrary message payloads execute.
    """

    def call(self, data: bytes, value: int, gas_bound: int | None) -> CallResult:
        ...


@runtime_checkable
class FailurePolicy(Protocol):
    """Decides who may declare a retriable message permanently failed."""

    def may_declare_failed(self, message: Message, caller: str) -> bool:
        ...
