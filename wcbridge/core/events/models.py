"""
Bridge Event Models

The closed set of events published on the EventBus. Subscribers key on the
event class, so payload shapes are checked by pydantic at publish time.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field

from ..jsonrpc import JsonRpcResponse
from ..session.models import PairingStatus, Session, SessionProposal, SessionRequest


class BridgeEvent(BaseModel):
    """Base class for everything published on the bus."""

    model_config = ConfigDict(frozen=True)

    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Initialized(BridgeEvent):
    success: bool


class PairingStatusChanged(BridgeEvent):
    status: PairingStatus
    message: Optional[str] = None


class PairingChanged(BridgeEvent):
    is_pairing: bool


class SessionProposalReceived(BridgeEvent):
    proposal: SessionProposal


class SessionEstablished(BridgeEvent):
    session: Session


class SessionRemoved(BridgeEvent):
    topic: str
    remote: bool = False


class SessionsUpdated(BridgeEvent):
    sessions: Dict[str, Session]


class RequestReceived(BridgeEvent):
    request: SessionRequest


class RequestResolved(BridgeEvent):
    request_id: int
    topic: str
    response: JsonRpcResponse


class RequestAbandoned(BridgeEvent):
    request_id: int
    topic: str
    reason: str
    notified: bool = False  # True when the peer got a best-effort error


class ErrorRaised(BridgeEvent):
    message: str
    kind: str = "BridgeError"


class LoadingChanged(BridgeEvent):
    is_loading: bool


class BusyChanged(BridgeEvent):
    is_busy: bool


BusEvent = Union[
    Initialized,
    PairingStatusChanged,
    PairingChanged,
    SessionProposalReceived,
    SessionEstablished,
    SessionRemoved,
    SessionsUpdated,
    RequestReceived,
    RequestResolved,
    RequestAbandoned,
    ErrorRaised,
    LoadingChanged,
    BusyChanged,
]

EVENT_TYPES = get_args(BusEvent)
