from abc import ABC, abstractmethod
import logging
from typing import Any, Awaitable, Callable, Dict, List

from wcbridge.core.jsonrpc import JsonRpcError, JsonRpcResponse
from wcbridge.core.session.models import Namespace, Session, SessionProposal, SessionRequest


logger = logging.getLogger(__name__)

ProposalHandler = Callable[[SessionProposal], Awaitable[None]]
SessionHandler = Callable[[Session], Awaitable[None]]
TopicHandler = Callable[[str], Awaitable[None]]
RequestHandler = Callable[[SessionRequest], Awaitable[None]]


class TransportAdapter(ABC):
    """
    Boundary to the WalletConnect client library.

    Owns the cryptographic session transport. Inbound events are delivered to
    registered async handlers one at a time, in arrival order.
    """

    name: str
    timeout_s: int = 30

    def __init__(self):
        self._proposal_handlers: List[ProposalHandler] = []
        self._connect_handlers: List[SessionHandler] = []
        self._delete_handlers: List[TopicHandler] = []
        self._request_handlers: List[RequestHandler] = []

    # ------------------------------------------------------------------
    # Inbound event subscription
    # ------------------------------------------------------------------

    def on_proposal(self, handler: ProposalHandler) -> None:
        self._proposal_handlers.append(handler)

    def on_session_connect(self, handler: SessionHandler) -> None:
        self._connect_handlers.append(handler)

    def on_session_delete(self, handler: TopicHandler) -> None:
        self._delete_handlers.append(handler)

    def on_request(self, handler: RequestHandler) -> None:
        self._request_handlers.append(handler)

    def clear_handlers(self) -> None:
        self._proposal_handlers.clear()
        self._connect_handlers.clear()
        self._delete_handlers.clear()
        self._request_handlers.clear()

    async def _dispatch(self, handlers: List[Callable[[Any], Awaitable[None]]], payload: Any, kind: str) -> None:
        for handler in list(handlers):
            try:
                await handler(payload)
            except Exception as e:
                logger.error(f"{self.name}: {kind} handler failed: {e}", exc_info=True)

    async def emit_proposal(self, proposal: SessionProposal) -> None:
        logger.info(f"{self.name}: session_proposal {proposal.id}")
        await self._dispatch(self._proposal_handlers, proposal, "session_proposal")

    async def emit_session_connect(self, session: Session) -> None:
        logger.info(f"{self.name}: session_connect {session.topic}")
        await self._dispatch(self._connect_handlers, session, "session_connect")

    async def emit_session_delete(self, topic: str) -> None:
        logger.info(f"{self.name}: session_delete {topic}")
        await self._dispatch(self._delete_handlers, topic, "session_delete")

    async def emit_request(self, request: SessionRequest) -> None:
        logger.info(f"{self.name}: session_request {request.id} ({request.method}) on {request.topic}")
        await self._dispatch(self._request_handlers, request, "session_request")

    # ------------------------------------------------------------------
    # Outbound operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def init(self) -> None:
        """Initialize the underlying client. Raises InitializationError."""
        pass

    @abstractmethod
    async def pair(self, uri: str) -> None:
        """Run the pairing handshake for a ``wc:`` URI. Raises PairingError."""
        pass

    @abstractmethod
    async def approve_session(self, proposal_id: int, namespaces: Dict[str, Namespace]) -> Session:
        """Settle a proposal with the granted namespaces."""
        pass

    @abstractmethod
    async def reject_session(self, proposal_id: int, reason: JsonRpcError) -> None:
        pass

    @abstractmethod
    async def disconnect_session(self, topic: str, reason: JsonRpcError) -> None:
        pass

    @abstractmethod
    async def respond(self, topic: str, response: JsonRpcResponse) -> None:
        """Send a JSON-RPC response for a request received on ``topic``."""
        pass

    @abstractmethod
    def get_active_sessions(self) -> Dict[str, Session]:
        pass

    async def close(self) -> None:
        """Tear down every session and background task."""
        pass
