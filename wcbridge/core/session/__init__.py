"""
Session Lifecycle

Models and namespace negotiation for WalletConnect sessions:
- Models: proposals, sessions, inbound requests
- Namespaces: the grant built for the managed account

The manager lives in ``wcbridge.core.session.manager``; it depends on the
event bus, whose models depend on this package, so it is not re-exported
here.

Usage:
    from wcbridge.core.session import build_approved_namespaces
    from wcbridge.core.session.manager import SessionLifecycleManager
"""

from .models import (
    ManagerState,
    PairingStatus,
    PeerMetadata,
    SessionProposal,
    Namespace,
    Session,
    SessionRequest,
)

from .namespaces import (
    EIP155,
    SUPPORTED_METHODS,
    SUPPORTED_EVENTS,
    format_account,
    build_approved_namespaces,
)

__all__ = [
    # Models
    "ManagerState",
    "PairingStatus",
    "PeerMetadata",
    "SessionProposal",
    "Namespace",
    "Session",
    "SessionRequest",
    # Namespaces
    "EIP155",
    "SUPPORTED_METHODS",
    "SUPPORTED_EVENTS",
    "format_account",
    "build_approved_namespaces",
]
