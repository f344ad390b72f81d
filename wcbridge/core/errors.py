"""
Bridge error taxonomy.

Every failure the bridge can surface maps to one of these classes. They are
caught at operation boundaries and converted into bus events or JSON-RPC
error responses; only NotReadyError and InitializationError reach callers
directly.
"""

from typing import Optional


class BridgeError(Exception):
    """Base exception for bridge errors."""
    pass


class InitializationError(BridgeError):
    """Transport could not be initialized. Fatal for the manager instance."""
    pass


class NotReadyError(BridgeError):
    """An operation was called before the manager reached READY."""
    pass


class PairingError(BridgeError):
    """Pairing handshake failed. The user may retry with a new or the same URI."""
    pass


class ProposalHandlingError(BridgeError):
    """A proposal could not be approved; it is resolved by rejecting it."""

    def __init__(
        self,
        message: str,
        proposal_id: Optional[int] = None,
        reason_key: str = "USER_REJECTED",
    ):
        super().__init__(message)
        self.proposal_id = proposal_id
        self.reason_key = reason_key


class TransactionSubmissionError(BridgeError):
    """The owner wallet declined or failed to submit the execute call."""
    pass


class ConfirmationError(BridgeError):
    """A submitted transaction reverted or its receipt could not be fetched."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, reverted: bool = False):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.reverted = reverted


class StaleResponseDiscarded(BridgeError):
    """A response or confirmation no longer belongs to the tracked request. Logged only."""

    def __init__(self, message: str, request_id: Optional[int] = None):
        super().__init__(message)
        self.request_id = request_id


class InvalidTransitionError(BridgeError):
    """A request tried to move between states the lifecycle does not allow."""

    def __init__(self, from_state: str, to_state: str):
        super().__init__(f"Invalid transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state


class TransportError(BridgeError):
    """The transport could not carry out an outbound call."""
    pass
