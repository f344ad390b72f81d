"""
Event Notification Bus

Decouples the session manager and request relay from UI consumers:
- EventBus: synchronous typed publish/subscribe
- Event models: the closed set of bridge events

Usage:
    from wcbridge.core.events import EventBus, SessionEstablished

    bus = EventBus()
    subscription = bus.subscribe(SessionEstablished, on_session)
    ...
    subscription.unsubscribe()
"""

from .models import (
    BridgeEvent,
    BusEvent,
    EVENT_TYPES,
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
)

from .bus import (
    EventBus,
    Subscription,
)

__all__ = [
    # Models
    "BridgeEvent",
    "BusEvent",
    "EVENT_TYPES",
    "Initialized",
    "PairingStatusChanged",
    "PairingChanged",
    "SessionProposalReceived",
    "SessionEstablished",
    "SessionRemoved",
    "SessionsUpdated",
    "RequestReceived",
    "RequestResolved",
    "RequestAbandoned",
    "ErrorRaised",
    "LoadingChanged",
    "BusyChanged",
    # Bus
    "EventBus",
    "Subscription",
]
