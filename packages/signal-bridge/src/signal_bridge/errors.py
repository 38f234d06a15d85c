"""
Error taxonomy for the signal bridge.

Every bridge operation either applies all of its effects or none of them; a
rejected call surfaces as one of the exceptions below. Each carries a short
``reason`` code so callers (and logs) can tell rejections apart without
matching on message text.
"""


class BridgeError(Exception):
    """Base class for every rejected bridge operation."""

    reason: str = "B:error"
    # Rejections that cannot change for the same input must not be retried
    is_permanent: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)

    def __str__(self) -> str:
        detail = super().__str__()
        if detail == self.reason:
            return self.reason
        return f"{self.reason}: {detail}"


class Forbidden(BridgeError):
    """A zero-gas message was processed by someone other than its owner."""

    reason = "B:forbidden"
    is_permanent = True


class WrongDestination(BridgeError):
    """The message targets another chain."""

    reason = "B:destChainId"


class AlreadyProcessed(BridgeError):
    """The message status no longer allows processing."""

    reason = "B:status"
    is_permanent = True


class NotRetriable(BridgeError):
    """Retry was requested for a message that never failed."""

    reason = "B:notRetriable"


class InvalidProof(BridgeError):
    """The proof does not verify against the header's state root."""

    reason = "LTP:invalid storage proof"


class NotReceived(BridgeError):
    """The proof is not anchored to a header the destination trusts."""

    reason = "B:notReceived"


class InvalidSender(BridgeError):
    reason = "B:sender"


class InvalidSignal(BridgeError):
    reason = "B:signal"


class SameChain(BridgeError):
    """A chain cannot prove a signal against itself."""

    reason = "B:srcBridge"
    is_permanent = True


class InvalidOwner(BridgeError):
    reason = "B:owner"


class DestinationDisabled(BridgeError):
    """No peer bridge is registered for the destination chain."""

    reason = "B:destChainId"


class IncorrectValue(BridgeError):
    reason = "B:value"


class InvalidStatusTransition(BridgeError):
    reason = "B:transition"


class InsufficientBalance(BridgeError):
    reason = "L:balance"


class UnresolvedAddress(BridgeError):
    reason = "AM:zeroAddr"


class NoActiveContext(BridgeError):
    reason = "B:noContext"
