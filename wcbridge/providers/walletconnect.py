"""
WalletConnect transport backed by pywalletconnect.

pywalletconnect is a blocking, wallet-side client: one WCClient per pairing,
``open_session()`` waits for the proposal, and inbound requests are pulled
with ``get_message()``. Blocking calls run in worker threads via
``asyncio.to_thread``; every state change happens back on the event loop.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from pywalletconnect import WCClient, WCClientException, WCClientInvalidOption

from wcbridge.core.errors import InitializationError, PairingError, TransportError
from wcbridge.core.jsonrpc import JsonRpcError, JsonRpcResponse
from wcbridge.core.session.models import (
    Namespace,
    PeerMetadata,
    Session,
    SessionProposal,
    SessionRequest,
)

from .transport import TransportAdapter


logger = logging.getLogger(__name__)

# Used when the client does not record the proposal's methods and events
DEFAULT_REQUESTED_METHODS = (
    "eth_sendTransaction",
    "personal_sign",
    "eth_signTypedData",
    "eth_signTypedData_v4",
)
DEFAULT_REQUESTED_EVENTS = ("chainChanged", "accountsChanged")

SESSION_DELETE_METHODS = {"wc_sessionDelete"}


def parse_pairing_topic(uri: str) -> str:
    """Extract the topic from ``wc:<topic>@<version>?...``."""
    if not uri or not uri.startswith("wc:"):
        raise PairingError("Invalid WalletConnect URI: expected 'wc:' scheme")
    body = uri[3:]
    topic = body.split("@", 1)[0]
    if not topic:
        raise PairingError("Invalid WalletConnect URI: missing topic")
    return topic


def normalize_chain_ids(chain_ids: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    """Turn ``[1, "232", "eip155:10"]`` into CAIP-2 strings."""
    normalized: List[str] = []
    for chain in chain_ids or ():
        value = str(chain)
        if ":" not in value:
            value = f"eip155:{value}"
        if value not in normalized:
            normalized.append(value)
    return tuple(normalized)


def split_account(account: str) -> Tuple[int, str]:
    """``eip155:232:0xabc`` -> ``(232, "0xabc")``."""
    namespace, chain, address = account.split(":", 2)
    return int(chain), address


def _proposed(client: Any, attribute: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Methods or events the dApp asked for, as recorded by ``open_session``."""
    values = getattr(client, attribute, None)
    if values is None:
        return default
    return tuple(str(value) for value in values)


@dataclass
class _Pairing:
    client: Any
    message_id: Any
    pairing_topic: str
    peer: PeerMetadata


@dataclass
class _Connection:
    client: Any
    session: Session
    poll_task: Optional[asyncio.Task] = None
    default_chain: str = ""
    closed: bool = field(default=False)


class WalletConnectTransport(TransportAdapter):
    """
    TransportAdapter over pywalletconnect.

    Usage:
        transport = WalletConnectTransport(project_id, metadata, chain_id=232)
        transport.on_proposal(handle_proposal)
        transport.on_request(handle_request)
        await transport.init()
        await transport.pair("wc:...@2?relay-protocol=irn&symKey=...")
    """

    name = "walletconnect"

    def __init__(
        self,
        project_id: str,
        metadata: Dict[str, Any],
        chain_id: int,
        origin: Optional[str] = None,
        poll_interval: float = 2.0,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        super().__init__()
        self.project_id = project_id
        self.metadata = dict(metadata)
        self.chain_id = chain_id
        self.origin = origin or self._origin_from_url(self.metadata.get("url", ""))
        self.poll_interval = poll_interval
        self._client_factory = client_factory or WCClient.from_wc_uri
        self._initialized = False
        self._proposal_ids = itertools.count(1)
        self._pairings: Dict[int, _Pairing] = {}
        self._connections: Dict[str, _Connection] = {}

    @staticmethod
    def _origin_from_url(url: str) -> str:
        parts = urlsplit(url)
        return parts.netloc or url

    async def init(self) -> None:
        if self._initialized:
            return
        if not self.project_id:
            raise InitializationError("WalletConnect project id is required")
        try:
            WCClient.set_project_id(self.project_id)
            WCClient.set_wallet_metadata(self.metadata)
            WCClient.set_origin(self.origin)
        except Exception as e:
            raise InitializationError(f"WalletConnect client rejected configuration: {e}") from e
        self._initialized = True
        logger.info(f"WalletConnect transport initialized for origin {self.origin}")

    async def pair(self, uri: str) -> None:
        if not self._initialized:
            raise PairingError("Transport not initialized")
        pairing_topic = parse_pairing_topic(uri)

        try:
            client = await asyncio.to_thread(self._client_factory, uri)
        except WCClientInvalidOption as e:
            raise PairingError(f"Invalid WalletConnect URI: {e}") from e
        except Exception as e:
            raise PairingError(f"Could not open relay connection: {e}") from e

        try:
            message_id, chain_ids, peer_meta = await asyncio.to_thread(client.open_session)
        except Exception as e:
            await self._close_client(client)
            raise PairingError(f"No session proposal received: {e}") from e

        proposal_id = self._proposal_id_for(message_id)
        peer = PeerMetadata.from_dict(peer_meta if isinstance(peer_meta, dict) else None)
        self._pairings[proposal_id] = _Pairing(
            client=client,
            message_id=message_id,
            pairing_topic=pairing_topic,
            peer=peer,
        )

        proposal = SessionProposal(
            id=proposal_id,
            requested_chains=normalize_chain_ids(chain_ids),
            requested_methods=_proposed(client, "proposed_methods", DEFAULT_REQUESTED_METHODS),
            requested_events=_proposed(client, "proposed_events", DEFAULT_REQUESTED_EVENTS),
            proposer=peer,
            pairing_topic=pairing_topic,
        )
        await self.emit_proposal(proposal)

    def _proposal_id_for(self, message_id: Any) -> int:
        try:
            proposal_id = int(message_id)
        except (TypeError, ValueError):
            proposal_id = next(self._proposal_ids)
        while proposal_id in self._pairings:
            proposal_id = next(self._proposal_ids)
        return proposal_id

    async def approve_session(self, proposal_id: int, namespaces: Dict[str, Namespace]) -> Session:
        pairing = self._pairings.get(proposal_id)
        if pairing is None:
            raise TransportError(f"Unknown proposal {proposal_id}")

        accounts = [account for ns in namespaces.values() for account in ns.accounts]
        if len(accounts) != 1:
            raise TransportError(f"Expected exactly one granted account, got {len(accounts)}")
        chain_id, address = split_account(accounts[0])

        await asyncio.to_thread(pairing.client.reply_session_request, pairing.message_id, chain_id, address)
        del self._pairings[proposal_id]

        session = Session(topic=pairing.pairing_topic, peer=pairing.peer, namespaces=namespaces)
        connection = _Connection(client=pairing.client, session=session, default_chain=f"eip155:{chain_id}")
        self._connections[session.topic] = connection
        connection.poll_task = asyncio.create_task(
            self._poll_messages(connection),
            name=f"wc-poll-{session.topic[:8]}",
        )
        logger.info(f"Session settled with {pairing.peer.name} on {session.topic}")
        return session

    async def reject_session(self, proposal_id: int, reason: JsonRpcError) -> None:
        pairing = self._pairings.pop(proposal_id, None)
        if pairing is None:
            raise TransportError(f"Unknown proposal {proposal_id}")
        try:
            await asyncio.to_thread(pairing.client.reject_session_request, pairing.message_id)
        finally:
            await self._close_client(pairing.client)
        logger.info(f"Proposal {proposal_id} rejected ({reason.message})")

    async def disconnect_session(self, topic: str, reason: JsonRpcError) -> None:
        connection = self._connections.get(topic)
        if connection is None:
            raise TransportError(f"No session for topic {topic}")
        await self._teardown(connection)
        self._connections.pop(topic, None)
        logger.info(f"Session {topic} disconnected ({reason.message})")

    async def respond(self, topic: str, response: JsonRpcResponse) -> None:
        connection = self._connections.get(topic)
        if connection is None or connection.closed:
            raise TransportError(f"No open session for topic {topic}")
        if response.error is not None:
            await asyncio.to_thread(
                connection.client.reply_error,
                response.id,
                response.error.message,
                response.error.code,
            )
        else:
            await asyncio.to_thread(connection.client.reply, response.id, response.result)

    def get_active_sessions(self) -> Dict[str, Session]:
        return {
            topic: connection.session
            for topic, connection in self._connections.items()
            if not connection.closed
        }

    async def close(self) -> None:
        for connection in list(self._connections.values()):
            await self._teardown(connection)
        self._connections.clear()
        for pairing in list(self._pairings.values()):
            await self._close_client(pairing.client)
        self._pairings.clear()
        self.clear_handlers()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _teardown(self, connection: _Connection) -> None:
        connection.closed = True
        task = connection.poll_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_client(connection.client)

    async def _close_client(self, client: Any) -> None:
        try:
            await asyncio.to_thread(client.close)
        except Exception as e:
            logger.warning(f"Error closing WalletConnect client: {e}")

    async def _poll_messages(self, connection: _Connection) -> None:
        """Pull relay messages for one session until it closes."""
        topic = connection.session.topic
        while not connection.closed:
            try:
                message_id, method, params = await asyncio.to_thread(connection.client.get_message)
            except WCClientException as e:
                logger.warning(f"Relay read failed for {topic}: {e}")
                await asyncio.sleep(self.poll_interval)
                continue
            except Exception as e:
                logger.error(f"Unexpected relay error for {topic}: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)
                continue

            if message_id is None:
                await asyncio.sleep(self.poll_interval)
                continue

            if method in SESSION_DELETE_METHODS:
                connection.closed = True
                self._connections.pop(topic, None)
                await self._close_client(connection.client)
                await self.emit_session_delete(topic)
                return

            request = self._to_request(message_id, method, params, connection)
            await self.emit_request(request)

    def _to_request(self, message_id: Any, method: str, params: Any, connection: _Connection) -> SessionRequest:
        chain = connection.default_chain
        # Some relay versions hand back the wc_sessionRequest envelope
        if method == "wc_sessionRequest" and isinstance(params, dict) and "request" in params:
            chain = params.get("chainId") or chain
            inner = params["request"]
            method = inner.get("method", "")
            params = inner.get("params", [])
        if not isinstance(params, list):
            params = [params]
        return SessionRequest(
            id=int(message_id),
            topic=connection.session.topic,
            chain_id=chain,
            method=method,
            params=params,
            origin=connection.session.peer.url or None,
        )
