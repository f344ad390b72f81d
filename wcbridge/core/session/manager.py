"""
Session Lifecycle Manager.

Owns initialization of the transport, pending proposals and the active
session set. Every state change is published on the EventBus; callers only
observe pairing outcomes through the bus.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Optional, Set

from ..errors import (
    InitializationError,
    NotReadyError,
    PairingError,
    ProposalHandlingError,
)
from ..events import (
    ErrorRaised,
    EventBus,
    Initialized,
    LoadingChanged,
    PairingChanged,
    PairingStatusChanged,
    SessionEstablished,
    SessionProposalReceived,
    SessionRemoved,
    SessionsUpdated,
)
from ..jsonrpc import INTERNAL_ERROR, JsonRpcError, format_error, get_sdk_error
from .models import ManagerState, PairingStatus, Session, SessionProposal, SessionRequest
from .namespaces import SUPPORTED_EVENTS, SUPPORTED_METHODS, build_approved_namespaces


logger = logging.getLogger(__name__)

MAX_CLOSED_TOPICS = 256

AccountProvider = Callable[[], Optional[str]]
RequestHandler = Callable[[SessionRequest], Awaitable[None]]


class SessionLifecycleManager:
    """
    State machine for transport initialization, pairings and sessions.

    States: UNINITIALIZED -> INITIALIZING -> READY, or INIT_FAILED, which is
    terminal. A failed manager has to be recreated.

    Usage:
        manager = SessionLifecycleManager(transport, bus, chain_id=232,
                                          account_provider=lambda: address)
        await manager.initialize()
        await manager.pair("wc:...")
        # proposal arrives on the bus as SessionProposalReceived
        await manager.approve_session(proposal, address)
    """

    def __init__(
        self,
        transport,
        bus: EventBus,
        chain_id: int,
        account_provider: Optional[AccountProvider] = None,
        owner_provider: Optional[AccountProvider] = None,
        auto_approve: bool = False,
        supported_methods=SUPPORTED_METHODS,
        supported_events=SUPPORTED_EVENTS,
    ):
        self._transport = transport
        self._bus = bus
        self.chain_id = chain_id
        self._account_provider = account_provider
        self._owner_provider = owner_provider
        self.auto_approve = auto_approve
        self.supported_methods = tuple(supported_methods)
        self.supported_events = tuple(supported_events)

        self._state = ManagerState.UNINITIALIZED
        self._init_task: Optional[asyncio.Task] = None
        self._pairing_tasks: Set[asyncio.Task] = set()
        self._proposals: Dict[int, SessionProposal] = {}
        self._sessions: Dict[str, Session] = {}
        # topic -> loop time of the delete, checked before acting on connects
        self._closed_topics: "OrderedDict[str, float]" = OrderedDict()
        self._request_handler: Optional[RequestHandler] = None
        self._disposed = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ManagerState.READY and not self._disposed

    @property
    def sessions(self) -> Dict[str, Session]:
        """Snapshot of the active sessions keyed by topic."""
        return dict(self._sessions)

    @property
    def pending_proposals(self) -> Dict[int, SessionProposal]:
        return dict(self._proposals)

    def get_session(self, topic: str) -> Optional[Session]:
        return self._sessions.get(topic)

    def set_request_handler(self, handler: Optional[RequestHandler]) -> None:
        """Route inbound requests on known topics to ``handler``."""
        self._request_handler = handler

    def _require_ready(self, operation: str) -> None:
        if self._disposed:
            raise NotReadyError(f"Cannot {operation}: manager has been disposed")
        if self._state != ManagerState.READY:
            raise NotReadyError(f"Cannot {operation}: manager is {self._state.value}")

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Initialize the transport once.

        Concurrent callers share the same in-flight task. Once the manager is
        INIT_FAILED every call re-raises the original InitializationError.
        """
        if self._disposed:
            raise NotReadyError("Cannot initialize: manager has been disposed")
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize(), name="wcbridge-init")
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        self._state = ManagerState.INITIALIZING
        self._bus.publish(LoadingChanged(is_loading=True))
        try:
            await self._transport.init()
        except Exception as e:
            self._state = ManagerState.INIT_FAILED
            error = e if isinstance(e, InitializationError) else InitializationError(
                f"Transport initialization failed: {e}"
            )
            logger.error(f"Session manager initialization failed: {error}")
            self._bus.publish(Initialized(success=False))
            self._bus.publish(ErrorRaised(message=str(error), kind="InitializationError"))
            if error is e:
                raise
            raise error from e
        finally:
            self._bus.publish(LoadingChanged(is_loading=False))

        self._transport.on_proposal(self._handle_proposal)
        self._transport.on_session_connect(self._handle_session_connect)
        self._transport.on_session_delete(self._handle_session_delete)
        self._transport.on_request(self._handle_request)

        self._sessions.update(self._transport.get_active_sessions())
        self._state = ManagerState.READY
        logger.info(f"Session manager ready on eip155:{self.chain_id}")
        self._bus.publish(Initialized(success=True))
        self._bus.publish(SessionsUpdated(sessions=self.sessions))

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    async def pair(self, uri: str) -> asyncio.Task:
        """
        Start pairing with a ``wc:`` URI.

        Returns the background task running the handshake. Its outcome is
        published on the bus; the task itself never raises.

        Raises:
            NotReadyError: If the manager is not READY
            PairingError: If the URI is not a WalletConnect URI
        """
        self._require_ready("pair")
        if not uri or not uri.strip().startswith("wc:"):
            message = "Invalid WalletConnect URI"
            self._bus.publish(PairingStatusChanged(status=PairingStatus.ERROR, message=message))
            self._bus.publish(ErrorRaised(message=message, kind="PairingError"))
            raise PairingError(message)

        self._bus.publish(PairingChanged(is_pairing=True))
        self._bus.publish(PairingStatusChanged(status=PairingStatus.PAIRING))

        task = asyncio.create_task(self._run_pairing(uri.strip()), name="wcbridge-pair")
        self._pairing_tasks.add(task)
        task.add_done_callback(self._pairing_tasks.discard)
        return task

    async def _run_pairing(self, uri: str) -> None:
        try:
            await self._transport.pair(uri)
        except asyncio.CancelledError:
            self._bus.publish(PairingChanged(is_pairing=False))
            raise
        except Exception as e:
            message = f"Pairing failed: {e}"
            logger.warning(message)
            self._bus.publish(PairingStatusChanged(status=PairingStatus.ERROR, message=message))
            self._bus.publish(PairingChanged(is_pairing=False))
            self._bus.publish(ErrorRaised(message=message, kind="PairingError"))

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def _handle_proposal(self, proposal: SessionProposal) -> None:
        if self._disposed:
            return
        self._proposals[proposal.id] = proposal
        self._bus.publish(PairingStatusChanged(status=PairingStatus.PAIRED))
        self._bus.publish(PairingChanged(is_pairing=False))
        self._bus.publish(SessionProposalReceived(proposal=proposal))

        # A subscriber may already have consumed it
        if proposal.id not in self._proposals:
            return

        address = self._account_provider() if self._account_provider else None
        if not address:
            message = "Cannot approve session: managed account address missing"
            logger.warning(f"{message} (proposal {proposal.id})")
            self._bus.publish(ErrorRaised(message=message, kind="ProposalHandlingError"))
            await self.reject_session(proposal, get_sdk_error("USER_REJECTED"))
            return

        if self.auto_approve:
            await self.approve_session(proposal, address)

    async def approve_session(self, proposal: SessionProposal, managed_account_address: str) -> Optional[Session]:
        """
        Approve a pending proposal for the managed account.

        Args:
            proposal: A proposal previously published as SessionProposalReceived
            managed_account_address: The account dApps will see (never the owner)

        Returns:
            The established Session, or None if the proposal ended up rejected
        """
        self._require_ready("approve session")
        if proposal.id not in self._proposals:
            message = f"Proposal {proposal.id} is no longer pending"
            logger.warning(message)
            self._bus.publish(ErrorRaised(message=message, kind="ProposalHandlingError"))
            return None

        loop = asyncio.get_running_loop()
        started_at = loop.time()
        self._bus.publish(LoadingChanged(is_loading=True))
        try:
            try:
                namespaces = build_approved_namespaces(
                    proposal,
                    self.chain_id,
                    managed_account_address,
                    supported_methods=self.supported_methods,
                    supported_events=self.supported_events,
                    owner_address=self._owner_provider() if self._owner_provider else None,
                )
            except ProposalHandlingError as e:
                logger.warning(f"Rejecting proposal {proposal.id}: {e}")
                self._bus.publish(ErrorRaised(message=str(e), kind="ProposalHandlingError"))
                await self._reject(proposal, get_sdk_error(e.reason_key))
                return None

            try:
                session = await self._transport.approve_session(proposal.id, namespaces)
            except Exception as e:
                message = f"Failed to approve session: {e}"
                logger.error(message)
                self._bus.publish(ErrorRaised(message=message, kind="ProposalHandlingError"))
                await self._reject(proposal, get_sdk_error("USER_REJECTED"))
                return None

            self._proposals.pop(proposal.id, None)
            closed_at = self._closed_topics.get(session.topic)
            if closed_at is not None and closed_at >= started_at:
                logger.warning(f"Session {session.topic} was deleted while being approved; dropping it")
                return None
            self._closed_topics.pop(session.topic, None)

            self._sessions[session.topic] = session
            logger.info(
                f"Session {session.topic} established with {session.peer.name} "
                f"for {', '.join(session.granted_accounts)}"
            )
            self._bus.publish(SessionEstablished(session=session))
            self._bus.publish(SessionsUpdated(sessions=self.sessions))
            return session
        finally:
            self._bus.publish(LoadingChanged(is_loading=False))

    async def reject_session(self, proposal: SessionProposal, reason: Optional[JsonRpcError] = None) -> bool:
        """Reject a pending proposal. Returns False if it was not pending or the transport failed."""
        self._require_ready("reject session")
        if proposal.id not in self._proposals:
            logger.info(f"Proposal {proposal.id} is not pending; nothing to reject")
            return False
        self._bus.publish(LoadingChanged(is_loading=True))
        try:
            return await self._reject(proposal, reason or get_sdk_error("USER_REJECTED"))
        finally:
            self._bus.publish(LoadingChanged(is_loading=False))

    async def _reject(self, proposal: SessionProposal, reason: JsonRpcError) -> bool:
        try:
            await self._transport.reject_session(proposal.id, reason)
        except Exception as e:
            message = f"Failed to reject session: {e}"
            logger.error(message)
            self._bus.publish(ErrorRaised(message=message, kind="ProposalHandlingError"))
            return False
        self._proposals.pop(proposal.id, None)
        logger.info(f"Proposal {proposal.id} rejected with {reason.code} ({reason.message})")
        return True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def disconnect_session(self, topic: str, reason: Optional[JsonRpcError] = None) -> bool:
        """
        Disconnect a session.

        Returns True if the session was removed. Disconnecting a topic that
        is not active is a no-op returning False.
        """
        self._require_ready("disconnect session")
        if topic not in self._sessions:
            logger.info(f"Session {topic} not active; nothing to disconnect")
            return False

        self._bus.publish(LoadingChanged(is_loading=True))
        try:
            await self._transport.disconnect_session(topic, reason or get_sdk_error("USER_DISCONNECTED"))
        except Exception as e:
            message = f"Failed to disconnect session: {e}"
            logger.error(message)
            self._bus.publish(ErrorRaised(message=message, kind="TransportError"))
            return False
        finally:
            self._bus.publish(LoadingChanged(is_loading=False))

        self._remove_session(topic, remote=False)
        return True

    def _remove_session(self, topic: str, remote: bool) -> None:
        self._closed_topics[topic] = asyncio.get_running_loop().time()
        self._closed_topics.move_to_end(topic)
        while len(self._closed_topics) > MAX_CLOSED_TOPICS:
            self._closed_topics.popitem(last=False)
        if self._sessions.pop(topic, None) is None:
            return
        logger.info(f"Session {topic} removed ({'remote' if remote else 'local'})")
        self._bus.publish(SessionRemoved(topic=topic, remote=remote))
        self._bus.publish(SessionsUpdated(sessions=self.sessions))

    async def _handle_session_connect(self, session: Session) -> None:
        if self._disposed:
            return
        if session.topic in self._closed_topics:
            logger.info(f"Ignoring connect for deleted session {session.topic}")
            return
        if session.topic in self._sessions:
            self._sessions[session.topic] = session
            return
        self._sessions[session.topic] = session
        self._bus.publish(SessionEstablished(session=session))
        self._bus.publish(SessionsUpdated(sessions=self.sessions))

    async def _handle_session_delete(self, topic: str) -> None:
        if self._disposed:
            return
        self._remove_session(topic, remote=True)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _handle_request(self, request: SessionRequest) -> None:
        if self._disposed:
            return
        if request.topic not in self._sessions:
            logger.warning(f"Request {request.id} on unknown session {request.topic}; answering with an error")
            await self._answer_unrouted(request, "Unknown session")
            return
        if self._request_handler is None:
            logger.warning(f"No request handler registered; answering request {request.id} with an error")
            await self._answer_unrouted(request, "Wallet is not accepting requests")
            return
        await self._request_handler(request)

    async def _answer_unrouted(self, request: SessionRequest, message: str) -> None:
        try:
            await self._transport.respond(request.topic, format_error(request.id, INTERNAL_ERROR, message))
        except Exception as e:
            logger.warning(f"Could not answer request {request.id}: {e}")

    async def respond(self, topic: str, response) -> None:
        """Send a JSON-RPC response through the transport."""
        await self._transport.respond(topic, response)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def dispose(self) -> None:
        """Cancel pairing tasks and close the transport. The manager is unusable afterwards."""
        if self._disposed:
            return
        self._disposed = True
        for task in list(self._pairing_tasks):
            task.cancel()
        if self._pairing_tasks:
            await asyncio.gather(*self._pairing_tasks, return_exceptions=True)
        self._pairing_tasks.clear()
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
            await asyncio.gather(self._init_task, return_exceptions=True)
        await self._transport.close()
        self._proposals.clear()
        self._sessions.clear()
        logger.info("Session manager disposed")
