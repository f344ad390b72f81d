"""
Session lifecycle models.

Proposals, granted namespaces, sessions and the inbound requests that
arrive on them. All of these are produced by the transport adapter and
owned by the SessionLifecycleManager.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ManagerState(str, Enum):
    """Lifecycle of a SessionLifecycleManager instance."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    INIT_FAILED = "init_failed"  # Terminal, recreate the manager


class PairingStatus(str, Enum):
    PAIRING = "pairing"
    PAIRED = "paired"
    ERROR = "error"


class PeerMetadata(BaseModel):
    """Application metadata advertised by the remote peer."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unknown dApp"
    description: str = ""
    url: str = ""
    icons: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PeerMetadata":
        data = data or {}
        icons = data.get("icons") or ()
        return cls(
            name=data.get("name") or "Unknown dApp",
            description=data.get("description") or "",
            url=data.get("url") or "",
            icons=tuple(str(icon) for icon in icons),
        )

    @property
    def icon(self) -> Optional[str]:
        """First icon resolved against the peer's origin, if usable."""
        if not self.icons:
            return None
        icon = self.icons[0]
        if icon.startswith(("http://", "https://")):
            return icon
        if icon.startswith("/") and self.url.startswith(("http://", "https://")):
            scheme, _, rest = self.url.partition("://")
            return f"{scheme}://{rest.split('/', 1)[0]}{icon}"
        return None


class SessionProposal(BaseModel):
    """A remote application's request to open a session. Consumed exactly once."""

    model_config = ConfigDict(frozen=True)

    id: int
    requested_chains: Tuple[str, ...] = ()
    requested_methods: Tuple[str, ...] = ()
    requested_events: Tuple[str, ...] = ()
    proposer: PeerMetadata = Field(default_factory=PeerMetadata)
    pairing_topic: Optional[str] = None


class Namespace(BaseModel):
    """Capabilities granted under one CAIP-2 namespace (e.g. ``eip155``)."""

    chains: List[str] = Field(default_factory=list)
    methods: List[str] = Field(default_factory=list)
    events: List[str] = Field(default_factory=list)
    accounts: List[str] = Field(default_factory=list)


class Session(BaseModel):
    """An established, capability-scoped channel keyed by topic."""

    topic: str
    peer: PeerMetadata = Field(default_factory=PeerMetadata)
    namespaces: Dict[str, Namespace] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def granted_accounts(self) -> List[str]:
        return [account for ns in self.namespaces.values() for account in ns.accounts]

    @property
    def granted_methods(self) -> List[str]:
        return [method for ns in self.namespaces.values() for method in ns.methods]

    @property
    def granted_events(self) -> List[str]:
        return [event for ns in self.namespaces.values() for event in ns.events]

    @property
    def granted_chains(self) -> List[str]:
        return [chain for ns in self.namespaces.values() for chain in ns.chains]


class SessionRequest(BaseModel):
    """An inbound JSON-RPC request delivered on a session topic."""

    model_config = ConfigDict(frozen=True)

    id: int
    topic: str
    chain_id: str  # CAIP-2, e.g. "eip155:232"
    method: str
    params: List[Any] = Field(default_factory=list)
    origin: Optional[str] = None
