"""
Composition root.

WalletBridge builds one instance of each component and wires them
together: transport -> session manager -> request relay, all publishing on a
shared EventBus. The owning application holds the WalletBridge and talks to
it (and the bus) only.
"""

import logging
from typing import Optional

from eth_utils import is_address

from wcbridge.config import Settings
from wcbridge.core.events import EventBus
from wcbridge.core.execution import OwnerWallet, TransactionExecutor
from wcbridge.core.jsonrpc import JsonRpcError
from wcbridge.core.relay import TransactionBridge
from wcbridge.core.session import Session, SessionProposal
from wcbridge.core.session.manager import SessionLifecycleManager
from wcbridge.providers.transport import TransportAdapter
from wcbridge.providers.walletconnect import WalletConnectTransport
from wcbridge.services import AccountService


logger = logging.getLogger(__name__)


class WalletBridge:
    """
    Owns the transport, session manager, relay and event bus.

    Usage:
        bridge = WalletBridge(settings)
        bridge.bus.subscribe(SessionProposalReceived, on_proposal)
        await bridge.initialize()
        await bridge.pair("wc:...")
        ...
        await bridge.dispose()
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[TransportAdapter] = None,
        owner_wallet: Optional[OwnerWallet] = None,
        executor: Optional[TransactionExecutor] = None,
        bus: Optional[EventBus] = None,
    ):
        self.settings = settings
        self.bus = bus or EventBus()

        self._owns_executor = executor is None
        self.executor = executor or TransactionExecutor(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            signer_url=settings.owner_signer_url,
            timeout=settings.http_timeout_seconds,
            poll_interval=settings.receipt_poll_interval_seconds,
        )
        self.owner = owner_wallet or OwnerWallet(self.executor, address=settings.owner_address)
        self.accounts = AccountService(self.executor, settings.global_namespace_address)

        self.transport = transport or WalletConnectTransport(
            project_id=settings.walletconnect_project_id,
            metadata=settings.app_metadata,
            chain_id=settings.chain_id,
            poll_interval=settings.message_poll_interval_seconds,
        )

        self._account_address: Optional[str] = settings.managed_account_address

        self.manager = SessionLifecycleManager(
            self.transport,
            self.bus,
            chain_id=settings.chain_id,
            account_provider=self.get_account,
            owner_provider=self.get_owner_address,
            auto_approve=settings.auto_approve_sessions,
        )
        self.relay = TransactionBridge(
            self.owner,
            self.manager.respond,
            self.bus,
            chain_id=settings.chain_id,
            account_provider=self.get_account,
            chain_name=settings.chain_name,
            notify_superseded=settings.notify_superseded_requests,
            confirmation_timeout=settings.confirmation_timeout_seconds,
            required_confirmations=settings.required_confirmations,
        )
        self.manager.set_request_handler(self.relay.handle_request)

    # ------------------------------------------------------------------
    # Managed account
    # ------------------------------------------------------------------

    def get_account(self) -> Optional[str]:
        return self._account_address

    def get_owner_address(self) -> Optional[str]:
        """The owner wallet's address, if known yet."""
        return getattr(self.owner, "address", None) or self.settings.owner_address

    def set_account(self, address: Optional[str]) -> None:
        """Select the managed account new sessions are granted for."""
        if address is not None and not is_address(address):
            raise ValueError(f"Invalid managed account address: {address}")
        owner = self.get_owner_address()
        if address is not None and owner and address.lower() == owner.lower():
            raise ValueError("The owner wallet cannot be used as the managed account")
        self._account_address = address
        logger.info(f"Managed account set to {address}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        await self.manager.initialize()

    async def dispose(self) -> None:
        await self.relay.dispose()
        await self.manager.dispose()
        if self._owns_executor:
            await self.executor.close()
        self.bus.clear()

    async def __aenter__(self) -> "WalletBridge":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def pair(self, uri: str):
        return await self.manager.pair(uri)

    async def approve_session(self, proposal: SessionProposal, account_address: Optional[str] = None) -> Optional[Session]:
        address = account_address or self.get_account()
        return await self.manager.approve_session(proposal, address or "")

    async def reject_session(self, proposal: SessionProposal, reason: Optional[JsonRpcError] = None) -> bool:
        return await self.manager.reject_session(proposal, reason)

    async def disconnect_session(self, topic: str, reason: Optional[JsonRpcError] = None) -> bool:
        return await self.manager.disconnect_session(topic, reason)

    async def approve_request(self, request_id: Optional[int] = None) -> Optional[str]:
        return await self.relay.approve(request_id)

    async def reject_request(self, request_id: Optional[int] = None) -> bool:
        return await self.relay.reject(request_id)


def build_bridge(settings: Optional[Settings] = None) -> WalletBridge:
    """Build a WalletBridge from the environment."""
    if settings is None:
        from wcbridge.config import settings as env_settings
        settings = env_settings
    return WalletBridge(settings)
