"""
Tests for the request relay / transaction bridge.

FakeOwnerWallet hands out deterministic hashes and lets each test decide
when (and how) a receipt arrives.
"""

import asyncio

import pytest

from wcbridge.core.events import (
    BusyChanged,
    ErrorRaised,
    EventBus,
    RequestAbandoned,
    RequestReceived,
    RequestResolved,
    SessionRemoved,
)
from wcbridge.core.execution import ExecutionError, TransactionRevertError, TransactionSubmitError
from wcbridge.core.execution.models import TransactionResult, TransactionStatus
from wcbridge.core.jsonrpc import format_result
from wcbridge.core.relay import ConfirmationState, RequestState, TransactionBridge, parse_transaction_params
from wcbridge.core.session import SessionRequest


MANAGED = "0xDEF" + "0" * 37
TARGET = "0xAAA" + "0" * 37
TOPIC = "topic-1"


class FakeOwnerWallet:
    def __init__(self, chain=232):
        self.chain = chain
        self.execute_error = None
        self.executed = []
        self.receipts = {}

    async def chain_id(self):
        return self.chain

    async def execute(self, account, target, value, data):
        if self.execute_error:
            raise self.execute_error
        tx_hash = "0x" + format(len(self.executed) + 1, "064x")
        self.executed.append((account, target, value, data))
        self.receipts[tx_hash] = asyncio.get_running_loop().create_future()
        return tx_hash

    async def wait_for_receipt(self, tx_hash, timeout_seconds=300, required_confirmations=1):
        return await self.receipts[tx_hash]

    def _settle_receipt(self, tx_hash):
        # A cancelled watch cancels the receipt future with it
        future = self.receipts[tx_hash]
        return None if future.done() else future

    def confirm(self, tx_hash):
        future = self._settle_receipt(tx_hash)
        if future:
            future.set_result(
                TransactionResult(tx_hash=tx_hash, chain_id=self.chain, status=TransactionStatus.CONFIRMED)
            )

    def revert(self, tx_hash):
        future = self._settle_receipt(tx_hash)
        if future:
            future.set_exception(TransactionRevertError("Transaction reverted", tx_hash=tx_hash))

    def fail(self, tx_hash):
        future = self._settle_receipt(tx_hash)
        if future:
            future.set_exception(ExecutionError("receipt lookup failed"))


class FakeResponder:
    def __init__(self):
        self.sent = []
        self.failures = 0

    async def __call__(self, topic, response):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("relay socket closed")
        self.sent.append((topic, response))

    def for_id(self, request_id):
        return [response for _, response in self.sent if response.id == request_id]


def _request(request_id, method="eth_sendTransaction", params=None, topic=TOPIC):
    if params is None:
        params = [{"to": TARGET, "value": "0x0", "data": "0x"}]
    return SessionRequest(id=request_id, topic=topic, chain_id="eip155:232", method=method, params=params)


def _relay(notify_superseded=True, confirmation_timeout=300, owner=None, account=MANAGED):
    bus = EventBus()
    owner = owner or FakeOwnerWallet()
    responder = FakeResponder()
    relay = TransactionBridge(
        owner,
        responder,
        bus,
        chain_id=232,
        account_provider=lambda: account,
        chain_name="Lens Chain",
        notify_superseded=notify_superseded,
        confirmation_timeout=confirmation_timeout,
    )
    return relay, owner, responder, bus


def _collect(bus, event_type):
    received = []
    bus.subscribe(event_type, received.append)
    return received


async def _settle():
    for _ in range(20):
        await asyncio.sleep(0)


# =============================================================================
# Inbound requests
# =============================================================================

class TestHandleRequest:
    @pytest.mark.asyncio
    async def test_unsupported_method_is_answered_4200_without_an_attempt(self):
        relay, owner, responder, bus = _relay()
        received = _collect(bus, RequestReceived)

        await relay.handle_request(_request(7, method="personal_sign", params=["0x68656c6c6f", MANAGED]))

        [response] = responder.for_id(7)
        assert response.error.code == 4200
        assert relay.pending is None
        assert owner.executed == []
        assert received == []

    @pytest.mark.asyncio
    async def test_unsupported_method_leaves_the_slot_untouched(self):
        relay, _, _, _ = _relay()
        await relay.handle_request(_request(1))

        await relay.handle_request(_request(2, method="eth_sign", params=[]))

        assert relay.pending.id == 1
        assert relay.pending.state == RequestState.AWAITING_USER_APPROVAL

    @pytest.mark.asyncio
    async def test_tracks_request_and_publishes(self):
        relay, _, _, bus = _relay()
        received = _collect(bus, RequestReceived)

        await relay.handle_request(_request(1))

        assert relay.current_request.id == 1
        assert received[0].request.id == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_ignored(self):
        relay, _, responder, bus = _relay()
        received = _collect(bus, RequestReceived)

        await relay.handle_request(_request(1))
        await relay.handle_request(_request(1))

        assert len(received) == 1
        assert responder.sent == []


# =============================================================================
# Approval and confirmation
# =============================================================================

class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_approve_submit_confirm_answers_once(self):
        relay, owner, responder, bus = _relay()
        resolved = _collect(bus, RequestResolved)
        busy = _collect(bus, BusyChanged)
        await relay.handle_request(_request(1))

        tx_hash = await relay.approve()

        assert owner.executed == [(MANAGED, TARGET, 0, b"")]
        assert relay.bound_hash == tx_hash
        assert relay.pending.state == RequestState.CONFIRMING

        owner.confirm(tx_hash)
        await _settle()

        assert responder.sent == [(TOPIC, format_result(1, tx_hash))]
        assert relay.pending is None
        assert relay.outcome(1) == RequestState.RESOLVED_SUCCESS
        assert [e.request_id for e in resolved] == [1]
        assert [e.is_busy for e in busy] == [True, False]

    @pytest.mark.asyncio
    async def test_value_and_data_are_forwarded(self):
        relay, owner, _, _ = _relay()
        await relay.handle_request(_request(1, params=[{"to": TARGET, "value": "0xde0b6b3a7640000", "data": "0xa9059cbb"}]))

        await relay.approve()

        assert owner.executed == [(MANAGED, TARGET, 10**18, bytes.fromhex("a9059cbb"))]

    @pytest.mark.asyncio
    async def test_revert_is_answered_with_internal_error(self):
        relay, owner, responder, bus = _relay()
        await relay.handle_request(_request(1))
        tx_hash = await relay.approve()

        owner.revert(tx_hash)
        await _settle()

        [response] = responder.for_id(1)
        assert response.error.code == -32000
        assert response.error.message == "Transaction reverted"
        assert relay.outcome(1) == RequestState.RESOLVED_REVERT

    @pytest.mark.asyncio
    async def test_receipt_failure_is_answered_with_internal_error(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))
        tx_hash = await relay.approve()

        owner.fail(tx_hash)
        await _settle()

        [response] = responder.for_id(1)
        assert response.error.code == -32000
        assert response.error.message == "Transaction failed on chain"
        assert relay.outcome(1) == RequestState.RESOLVED_CONFIRM_ERROR

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self):
        relay, _, responder, _ = _relay(confirmation_timeout=0.01)
        await relay.handle_request(_request(1))
        await relay.approve()

        await asyncio.sleep(0.1)

        [response] = responder.for_id(1)
        assert response.error.message == "Transaction failed on chain"


class TestApproveValidation:
    @pytest.mark.asyncio
    async def test_missing_to_is_invalid_params_and_never_submitted(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1, params=[{"value": "0x0", "data": "0x"}]))

        assert await relay.approve() is None

        [response] = responder.for_id(1)
        assert response.error.code == -32602
        assert owner.executed == []
        assert relay.outcome(1) == RequestState.RESOLVED_SUBMIT_ERROR

    @pytest.mark.asyncio
    async def test_malformed_data_is_invalid_params(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1, params=[{"to": TARGET, "data": "0xabc"}]))

        await relay.approve()

        assert responder.for_id(1)[0].error.code == -32602
        assert owner.executed == []

    @pytest.mark.asyncio
    async def test_wrong_owner_chain_names_expected_chain(self):
        relay, owner, responder, _ = _relay(owner=FakeOwnerWallet(chain=1))
        await relay.handle_request(_request(1))

        await relay.approve()

        [response] = responder.for_id(1)
        assert response.error.code == -32000
        assert "232" in response.error.message
        assert owner.executed == []

    @pytest.mark.asyncio
    async def test_signer_failure_is_user_rejected(self):
        owner = FakeOwnerWallet()
        owner.execute_error = TransactionSubmitError("User denied transaction signature")
        relay, _, responder, bus = _relay(owner=owner)
        errors = _collect(bus, ErrorRaised)
        await relay.handle_request(_request(1))

        assert await relay.approve() is None

        [response] = responder.for_id(1)
        assert response.error.code == 5000
        assert errors[0].kind == "TransactionSubmissionError"

    @pytest.mark.asyncio
    async def test_missing_account_is_an_error(self):
        relay, owner, responder, _ = _relay(account=None)
        await relay.handle_request(_request(1))

        await relay.approve()

        assert responder.for_id(1)[0].error.code == -32000
        assert owner.executed == []


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_answers_user_rejected(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))

        assert await relay.reject() is True
        assert await relay.reject() is False

        [response] = responder.for_id(1)
        assert response.error.code == 5000
        assert response.error.message == "User rejected."
        assert owner.executed == []
        assert relay.outcome(1) == RequestState.REJECTED

    @pytest.mark.asyncio
    async def test_approve_after_reject_does_nothing(self):
        relay, owner, _, _ = _relay()
        await relay.handle_request(_request(1))
        await relay.reject()

        assert await relay.approve() is None
        assert owner.executed == []


# =============================================================================
# Superseding
# =============================================================================

class TestSupersede:
    @pytest.mark.asyncio
    async def test_late_confirmation_never_answers_the_newer_request(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))
        hash_a = await relay.approve()

        await relay.handle_request(_request(2))
        owner.confirm(hash_a)
        await _settle()

        assert await relay.on_confirmation(1, hash_a, ConfirmationState.CONFIRMED_SUCCESS) is False
        assert await relay.on_confirmation(2, hash_a, ConfirmationState.CONFIRMED_SUCCESS) is False

        assert responder.for_id(2) == []
        assert relay.pending.id == 2
        assert relay.pending.state == RequestState.AWAITING_USER_APPROVAL
        assert relay.pending.attempt is None
        assert relay.bound_hash is None

    @pytest.mark.asyncio
    async def test_superseded_request_gets_one_error(self):
        relay, _, responder, bus = _relay()
        abandoned = _collect(bus, RequestAbandoned)
        await relay.handle_request(_request(1))
        await relay.approve()

        await relay.handle_request(_request(2))

        [response] = responder.for_id(1)
        assert response.error.code == -32000
        assert "superseded" in response.error.message
        assert abandoned[0].request_id == 1
        assert abandoned[0].notified is True
        assert relay.outcome(1) == RequestState.ABANDONED

    @pytest.mark.asyncio
    async def test_superseded_request_is_only_abandoned_when_notices_are_off(self):
        relay, _, responder, bus = _relay(notify_superseded=False)
        abandoned = _collect(bus, RequestAbandoned)
        await relay.handle_request(_request(1))

        await relay.handle_request(_request(2))

        assert responder.for_id(1) == []
        assert abandoned[0].notified is False
        assert relay.outcome(1) == RequestState.ABANDONED

    @pytest.mark.asyncio
    async def test_newer_request_resolves_cleanly_after_supersede(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))
        hash_a = await relay.approve()
        await relay.handle_request(_request(2))

        hash_b = await relay.approve()
        owner.confirm(hash_a)
        owner.confirm(hash_b)
        await _settle()

        assert responder.for_id(2) == [format_result(2, hash_b)]
        assert len(responder.for_id(1)) == 1

    @pytest.mark.asyncio
    async def test_request_arriving_during_submission_is_not_bound_to_its_hash(self):
        relay, owner, responder, _ = _relay()
        gate = asyncio.Event()
        original_execute = owner.execute

        async def slow_execute(*args):
            await gate.wait()
            return await original_execute(*args)

        owner.execute = slow_execute
        await relay.handle_request(_request(1))
        approve = asyncio.create_task(relay.approve())
        await _settle()

        await relay.handle_request(_request(2))
        gate.set()

        assert await approve is None
        assert relay.pending.id == 2
        assert relay.bound_hash is None

    @pytest.mark.asyncio
    async def test_approval_for_a_replaced_request_submits_nothing(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))
        # The user is still looking at request 1 when request 2 replaces it
        await relay.handle_request(_request(2))

        assert await relay.approve(1) is None

        assert owner.executed == []
        assert relay.pending.id == 2
        assert relay.pending.state == RequestState.AWAITING_USER_APPROVAL
        assert responder.for_id(2) == []

    @pytest.mark.asyncio
    async def test_rejection_for_a_replaced_request_leaves_the_new_one(self):
        relay, _, responder, _ = _relay()
        await relay.handle_request(_request(1))
        await relay.handle_request(_request(2))

        assert await relay.reject(1) is False

        assert relay.pending.id == 2
        assert responder.for_id(2) == []

    @pytest.mark.asyncio
    async def test_decision_with_the_tracked_id_goes_through(self):
        relay, owner, _, _ = _relay()
        await relay.handle_request(_request(1))
        await relay.handle_request(_request(2))

        assert await relay.approve(2) == "0x" + format(1, "064x")
        assert owner.executed[0][1] == TARGET


# =============================================================================
# Responding
# =============================================================================

class TestRespond:
    @pytest.mark.asyncio
    async def test_response_for_another_id_is_discarded(self):
        relay, _, responder, _ = _relay()
        await relay.handle_request(_request(1))

        assert await relay.respond(format_result(99, "0x")) is False

        assert responder.sent == []
        assert relay.pending.id == 1

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_the_slot_for_retry(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))
        tx_hash = await relay.approve()
        responder.failures = 1

        owner.confirm(tx_hash)
        await _settle()

        assert responder.sent == []
        assert relay.pending.id == 1
        assert relay.pending.response == format_result(1, tx_hash)

        assert await relay.retry_response() is True
        assert responder.sent == [(TOPIC, format_result(1, tx_hash))]
        assert relay.pending is None


# =============================================================================
# Session removal and teardown
# =============================================================================

class TestSessionRemoval:
    @pytest.mark.asyncio
    async def test_removing_the_session_abandons_its_request(self):
        relay, owner, responder, bus = _relay()
        abandoned = _collect(bus, RequestAbandoned)
        await relay.handle_request(_request(1))
        tx_hash = await relay.approve()

        bus.publish(SessionRemoved(topic=TOPIC, remote=True))
        owner.confirm(tx_hash)
        await _settle()

        assert relay.pending is None
        assert responder.sent == []
        assert abandoned[0].reason == "Session removed"
        assert relay.is_busy is False

    @pytest.mark.asyncio
    async def test_other_topics_do_not_affect_the_request(self):
        relay, _, _, bus = _relay()
        await relay.handle_request(_request(1))

        bus.publish(SessionRemoved(topic="other"))

        assert relay.pending.id == 1

    @pytest.mark.asyncio
    async def test_dispose_cancels_the_watch(self):
        relay, owner, responder, _ = _relay()
        await relay.handle_request(_request(1))
        tx_hash = await relay.approve()

        await relay.dispose()
        owner.confirm(tx_hash)
        await _settle()
        await relay.handle_request(_request(2))

        assert responder.sent == []
        assert relay.pending is None

    @pytest.mark.asyncio
    async def test_dispose_abandons_the_tracked_request(self):
        relay, _, responder, bus = _relay()
        abandoned = _collect(bus, RequestAbandoned)
        busy = _collect(bus, BusyChanged)
        await relay.handle_request(_request(1))
        await relay.approve()

        await relay.dispose()

        assert [(e.request_id, e.reason, e.notified) for e in abandoned] == [(1, "Bridge disposed", False)]
        assert relay.outcome(1) == RequestState.ABANDONED
        assert relay.is_busy is False
        assert busy[-1].is_busy is False
        assert responder.sent == []

    @pytest.mark.asyncio
    async def test_dispose_without_a_request_publishes_nothing(self):
        relay, _, _, bus = _relay()
        abandoned = _collect(bus, RequestAbandoned)

        await relay.dispose()

        assert abandoned == []


# =============================================================================
# Params
# =============================================================================

class TestParseTransactionParams:
    def test_defaults(self):
        assert parse_transaction_params([{"to": TARGET}]) == (TARGET, 0, b"")

    @pytest.mark.parametrize("value,expected", [("0x10", 16), ("42", 42), (7, 7), (None, 0)])
    def test_value_forms(self, value, expected):
        assert parse_transaction_params([{"to": TARGET, "value": value}])[1] == expected

    @pytest.mark.parametrize("value", ["0xzz", "-1", True, 1.5])
    def test_invalid_value(self, value):
        with pytest.raises(ValueError):
            parse_transaction_params([{"to": TARGET, "value": value}])

    def test_input_is_accepted_for_data(self):
        assert parse_transaction_params([{"to": TARGET, "input": "0x01"}])[2] == b"\x01"

    @pytest.mark.parametrize("params", [[], ["0x"], [{"to": "0x1234"}], [{"to": None}]])
    def test_missing_or_invalid_to(self, params):
        with pytest.raises(ValueError):
            parse_transaction_params(params)
