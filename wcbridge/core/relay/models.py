"""
Request relay models.

One PendingRequest is tracked at a time. A TransactionAttempt is bound to
the request that created it and only acts while that request is live.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from ..errors import InvalidTransitionError
from ..jsonrpc import JsonRpcResponse
from ..session.models import SessionRequest


class RequestState(str, Enum):
    """Lifecycle of a relayed request."""
    RECEIVED = "received"
    AWAITING_USER_APPROVAL = "awaiting_user_approval"
    REJECTED = "rejected"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    RESOLVED_SUCCESS = "resolved_success"
    RESOLVED_REVERT = "resolved_revert"
    RESOLVED_SUBMIT_ERROR = "resolved_submit_error"
    RESOLVED_CONFIRM_ERROR = "resolved_confirm_error"
    ABANDONED = "abandoned"          # Superseded or its session went away


TERMINAL_STATES: FrozenSet[RequestState] = frozenset({
    RequestState.REJECTED,
    RequestState.RESOLVED_SUCCESS,
    RequestState.RESOLVED_REVERT,
    RequestState.RESOLVED_SUBMIT_ERROR,
    RequestState.RESOLVED_CONFIRM_ERROR,
    RequestState.ABANDONED,
})

TRANSITIONS: Dict[RequestState, FrozenSet[RequestState]] = {
    RequestState.RECEIVED: frozenset({
        RequestState.AWAITING_USER_APPROVAL,
        RequestState.ABANDONED,
    }),
    RequestState.AWAITING_USER_APPROVAL: frozenset({
        RequestState.REJECTED,
        RequestState.SUBMITTING,
        RequestState.ABANDONED,
    }),
    # Validation failures resolve before anything reaches the signer
    RequestState.SUBMITTING: frozenset({
        RequestState.SUBMITTED,
        RequestState.RESOLVED_SUBMIT_ERROR,
        RequestState.ABANDONED,
    }),
    RequestState.SUBMITTED: frozenset({
        RequestState.CONFIRMING,
        RequestState.ABANDONED,
    }),
    RequestState.CONFIRMING: frozenset({
        RequestState.RESOLVED_SUCCESS,
        RequestState.RESOLVED_REVERT,
        RequestState.RESOLVED_CONFIRM_ERROR,
        RequestState.ABANDONED,
    }),
}


class ConfirmationState(str, Enum):
    SUBMITTED = "submitted"
    CONFIRMED_SUCCESS = "confirmed_success"
    CONFIRMED_REVERT = "confirmed_revert"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TransactionAttempt:
    """An on-chain submission made on behalf of one request."""
    request_id: int
    submitted_hash: Optional[str] = None
    confirmation_state: ConfirmationState = ConfirmationState.SUBMITTED
    submitted_at: datetime = field(default_factory=_utcnow)


@dataclass
class PendingRequest:
    """The single request the relay is currently answering."""
    request: SessionRequest
    state: RequestState = RequestState.RECEIVED
    attempt: Optional[TransactionAttempt] = None
    # Held until the transport accepts it, so a failed send can be retried
    response: Optional[JsonRpcResponse] = None
    received_at: datetime = field(default_factory=_utcnow)

    @property
    def id(self) -> int:
        return self.request.id

    @property
    def topic(self) -> str:
        return self.request.topic

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: RequestState) -> None:
        """Move to ``new_state`` or raise InvalidTransitionError."""
        if new_state not in TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransitionError(self.state.value, new_state.value)
        self.state = new_state
