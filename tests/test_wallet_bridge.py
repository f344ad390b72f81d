"""
End-to-end tests for the WalletBridge composition root.

The transport and owner wallet are fakes; everything between them is real.
"""

import asyncio

import pytest

from wcbridge.bridge import WalletBridge
from wcbridge.config import Settings
from wcbridge.core.events import RequestResolved, SessionEstablished
from wcbridge.core.execution.models import TransactionResult, TransactionStatus
from wcbridge.core.session import PeerMetadata, Session, SessionProposal, SessionRequest
from wcbridge.providers.transport import TransportAdapter


MANAGED = "0xDEF" + "0" * 37
OWNER = "0x" + "1" * 40
TARGET = "0xAAA" + "0" * 37
TX_HASH = "0x" + "ab" * 32


class FakeTransport(TransportAdapter):
    name = "fake"

    def __init__(self):
        super().__init__()
        self.responses = []
        self.rejected = []
        self.closed = False

    async def init(self):
        pass

    async def pair(self, uri):
        pass

    async def approve_session(self, proposal_id, namespaces):
        return Session(topic="topic-1", peer=PeerMetadata(name="Test dApp"), namespaces=namespaces)

    async def reject_session(self, proposal_id, reason):
        self.rejected.append((proposal_id, reason.code))

    async def disconnect_session(self, topic, reason):
        pass

    async def respond(self, topic, response):
        self.responses.append((topic, response))

    def get_active_sessions(self):
        return {}

    async def close(self):
        self.closed = True


class FakeOwnerWallet:
    def __init__(self):
        self.executed = []

    async def chain_id(self):
        return 232

    async def execute(self, account, target, value, data):
        self.executed.append((account, target, value, data))
        return TX_HASH

    async def wait_for_receipt(self, tx_hash, timeout_seconds=300, required_confirmations=1):
        return TransactionResult(tx_hash=tx_hash, chain_id=232, status=TransactionStatus.CONFIRMED)


def _settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        walletconnect_project_id="project-123",
        managed_account_address=MANAGED,
        auto_approve_sessions=True,
    )
    values.update(overrides)
    return Settings(**values)


def _proposal() -> SessionProposal:
    return SessionProposal(
        id=1,
        requested_chains=("eip155:232",),
        requested_methods=("eth_sendTransaction", "personal_sign"),
        requested_events=("chainChanged",),
    )


class TestWalletBridge:
    @pytest.mark.asyncio
    async def test_proposal_to_confirmed_transaction(self):
        transport = FakeTransport()
        owner = FakeOwnerWallet()
        bridge = WalletBridge(_settings(), transport=transport, owner_wallet=owner)
        established = []
        resolved = []
        bridge.bus.subscribe(SessionEstablished, established.append)
        bridge.bus.subscribe(RequestResolved, resolved.append)

        await bridge.initialize()
        await transport.emit_proposal(_proposal())
        await transport.emit_request(SessionRequest(
            id=100,
            topic="topic-1",
            chain_id="eip155:232",
            method="eth_sendTransaction",
            params=[{"to": TARGET, "value": "0x0", "data": "0x"}],
        ))

        assert established[0].session.granted_accounts == [f"eip155:232:{MANAGED}"]
        assert bridge.relay.current_request.id == 100

        assert await bridge.approve_request() == TX_HASH
        for _ in range(20):
            await asyncio.sleep(0)

        assert owner.executed == [(MANAGED, TARGET, 0, b"")]
        assert [(t, r.id, r.result) for t, r in transport.responses] == [("topic-1", 100, TX_HASH)]
        assert resolved[0].request_id == 100

        await bridge.dispose()
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_unsupported_method_through_the_stack(self):
        transport = FakeTransport()
        bridge = WalletBridge(_settings(), transport=transport, owner_wallet=FakeOwnerWallet())
        await bridge.initialize()
        await transport.emit_proposal(_proposal())

        await transport.emit_request(SessionRequest(
            id=101, topic="topic-1", chain_id="eip155:232", method="personal_sign", params=[],
        ))

        [(_, response)] = transport.responses
        assert response.error.code == 4200
        assert bridge.relay.pending is None
        await bridge.dispose()

    @pytest.mark.asyncio
    async def test_disconnect_abandons_the_pending_request(self):
        transport = FakeTransport()
        bridge = WalletBridge(_settings(), transport=transport, owner_wallet=FakeOwnerWallet())
        await bridge.initialize()
        await transport.emit_proposal(_proposal())
        await transport.emit_request(SessionRequest(
            id=102, topic="topic-1", chain_id="eip155:232", method="eth_sendTransaction",
            params=[{"to": TARGET}],
        ))

        assert await bridge.disconnect_session("topic-1") is True

        assert bridge.relay.pending is None
        assert transport.responses == []
        await bridge.dispose()

    @pytest.mark.asyncio
    async def test_owner_wallet_is_never_granted(self):
        transport = FakeTransport()
        bridge = WalletBridge(
            _settings(owner_address=OWNER, auto_approve_sessions=False),
            transport=transport,
            owner_wallet=FakeOwnerWallet(),
        )
        await bridge.initialize()
        proposal = _proposal()
        await transport.emit_proposal(proposal)

        assert await bridge.approve_session(proposal, OWNER) is None

        assert transport.rejected == [(1, 5103)]
        assert bridge.manager.sessions == {}
        await bridge.dispose()

    @pytest.mark.asyncio
    async def test_approving_a_replaced_request_by_id_does_nothing(self):
        transport = FakeTransport()
        owner = FakeOwnerWallet()
        bridge = WalletBridge(_settings(), transport=transport, owner_wallet=owner)
        await bridge.initialize()
        await transport.emit_proposal(_proposal())
        for request_id in (200, 201):
            await transport.emit_request(SessionRequest(
                id=request_id, topic="topic-1", chain_id="eip155:232", method="eth_sendTransaction",
                params=[{"to": TARGET}],
            ))

        assert await bridge.approve_request(200) is None

        assert owner.executed == []
        assert bridge.relay.current_request.id == 201
        await bridge.dispose()

    def test_owner_cannot_be_the_managed_account(self):
        bridge = WalletBridge(
            _settings(owner_address=OWNER),
            transport=FakeTransport(),
            owner_wallet=FakeOwnerWallet(),
        )

        with pytest.raises(ValueError):
            bridge.set_account(OWNER)

    def test_set_account_validates(self):
        bridge = WalletBridge(_settings(), transport=FakeTransport(), owner_wallet=FakeOwnerWallet())

        with pytest.raises(ValueError):
            bridge.set_account("0x1234")

        bridge.set_account(TARGET)
        assert bridge.get_account() == TARGET
