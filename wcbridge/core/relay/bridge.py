"""
Request Relay / Transaction Bridge.

Turns ``eth_sendTransaction`` requests from a connected dApp into
``executeTransaction`` calls on the managed account, signed by the owner,
and answers each request id exactly once.

One request is tracked at a time. A newer request resets tracking before
anything else happens, so a confirmation that arrives late for an older
request can never answer the newer one.
"""

import asyncio
from collections import OrderedDict
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import structlog
from eth_utils import is_address

from ..errors import ConfirmationError, StaleResponseDiscarded, TransactionSubmissionError
from ..events import (
    BusyChanged,
    ErrorRaised,
    EventBus,
    RequestAbandoned,
    RequestReceived,
    RequestResolved,
    SessionRemoved,
)
from ..execution import TransactionRevertError, parse_hex_data
from ..jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_SUPPORTED,
    JsonRpcResponse,
    format_error,
    format_result,
    format_sdk_error,
)
from ..session.models import SessionRequest
from .models import ConfirmationState, PendingRequest, RequestState, TransactionAttempt


logger = structlog.stdlib.get_logger(__name__)

SEND_TRANSACTION = "eth_sendTransaction"
MAX_RECORDED_OUTCOMES = 256

Responder = Callable[[str, JsonRpcResponse], Awaitable[None]]
AccountProvider = Callable[[], Optional[str]]


def parse_transaction_params(params: List[Any]) -> Tuple[str, int, bytes]:
    """
    Extract ``(to, value, data)`` from ``eth_sendTransaction`` params.

    Raises:
        ValueError: If the transaction object is missing or malformed
    """
    if not params or not isinstance(params[0], dict):
        raise ValueError("Missing transaction object")
    tx = params[0]

    to = tx.get("to")
    if not to or not isinstance(to, str) or not is_address(to):
        raise ValueError(f"Missing or invalid 'to' address: {to!r}")

    raw_value = tx.get("value")
    if raw_value is None or raw_value == "":
        value = 0
    elif isinstance(raw_value, bool):
        raise ValueError(f"Invalid value: {raw_value!r}")
    elif isinstance(raw_value, int):
        value = raw_value
    elif isinstance(raw_value, str):
        try:
            value = int(raw_value, 16) if raw_value.startswith(("0x", "0X")) else int(raw_value)
        except ValueError:
            raise ValueError(f"Invalid value: {raw_value!r}") from None
    else:
        raise ValueError(f"Invalid value: {raw_value!r}")
    if value < 0:
        raise ValueError(f"Invalid value: {raw_value!r}")

    raw_data = tx.get("data")
    if raw_data is None:
        raw_data = tx.get("input")
    try:
        data = parse_hex_data(raw_data if raw_data is not None else "0x")
    except ValueError as e:
        raise ValueError(f"Invalid data: {e}") from None

    return to, value, data


class TransactionBridge:
    """
    Single-slot relay between a session's requests and the owner wallet.

    Usage:
        relay = TransactionBridge(owner_wallet, manager.respond, bus,
                                  chain_id=232, account_provider=lambda: account)
        manager.set_request_handler(relay.handle_request)
        # RequestReceived arrives on the bus
        await relay.approve(request_id)   # or: await relay.reject(request_id)
    """

    def __init__(
        self,
        owner_wallet,
        responder: Responder,
        bus: EventBus,
        chain_id: int,
        account_provider: AccountProvider,
        chain_name: str = "",
        notify_superseded: bool = True,
        confirmation_timeout: float = 300,
        required_confirmations: int = 1,
    ):
        self._owner = owner_wallet
        self._responder = responder
        self._bus = bus
        self.chain_id = chain_id
        self.chain_name = chain_name or f"chain {chain_id}"
        self._account_provider = account_provider
        self.notify_superseded = notify_superseded
        self.confirmation_timeout = confirmation_timeout
        self.required_confirmations = required_confirmations

        self._current: Optional[PendingRequest] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._busy = False
        self._disposed = False
        self._outcomes: "OrderedDict[int, RequestState]" = OrderedDict()
        self._subscription = bus.subscribe(SessionRemoved, self._on_session_removed)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pending(self) -> Optional[PendingRequest]:
        return self._current

    @property
    def current_request(self) -> Optional[SessionRequest]:
        return self._current.request if self._current else None

    @property
    def bound_hash(self) -> Optional[str]:
        if self._current is None or self._current.attempt is None:
            return None
        return self._current.attempt.submitted_hash

    @property
    def is_busy(self) -> bool:
        return self._busy

    def outcome(self, request_id: int) -> Optional[RequestState]:
        """Final state recorded for a request id that is no longer tracked."""
        return self._outcomes.get(request_id)

    def _record_outcome(self, request_id: int, state: RequestState) -> None:
        self._outcomes[request_id] = state
        self._outcomes.move_to_end(request_id)
        while len(self._outcomes) > MAX_RECORDED_OUTCOMES:
            self._outcomes.popitem(last=False)

    def _set_busy(self, busy: bool) -> None:
        if self._busy != busy:
            self._busy = busy
            self._bus.publish(BusyChanged(is_busy=busy))

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _cancel_watch(self) -> None:
        task = self._watch_task
        self._watch_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _reset(self) -> Optional[PendingRequest]:
        """Drop the tracked request, unbind its hash and stop watching it."""
        previous = self._current
        self._cancel_watch()
        self._current = None
        self._set_busy(False)
        return previous

    def _abandon(self, pending: PendingRequest, reason: str, notified: bool) -> None:
        if not pending.is_terminal:
            pending.transition(RequestState.ABANDONED)
        self._record_outcome(pending.id, RequestState.ABANDONED)
        logger.info("request_abandoned", request_id=pending.id, topic=pending.topic, reason=reason, notified=notified)
        self._bus.publish(RequestAbandoned(
            request_id=pending.id,
            topic=pending.topic,
            reason=reason,
            notified=notified,
        ))

    async def _notify_superseded(self, pending: PendingRequest, reason: str) -> None:
        notified = False
        if self.notify_superseded:
            try:
                await self._responder(pending.topic, format_error(pending.id, INTERNAL_ERROR, reason))
                notified = True
            except Exception as e:
                logger.warning("superseded_notice_failed", request_id=pending.id, topic=pending.topic, error=str(e))
        self._abandon(pending, reason, notified=notified)

    def _on_session_removed(self, event: SessionRemoved) -> None:
        pending = self._current
        if self._disposed or pending is None or pending.topic != event.topic:
            return
        self._reset()
        self._abandon(pending, "Session removed", notified=False)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_request(self, request: SessionRequest) -> None:
        """Entry point for every request on an established session."""
        if self._disposed:
            return
        log = logger.bind(request_id=request.id, topic=request.topic)

        if request.method != SEND_TRANSACTION:
            log.info("method_not_supported", method=request.method)
            response = format_error(request.id, METHOD_NOT_SUPPORTED, f"Method not supported: {request.method}")
            try:
                await self._responder(request.topic, response)
            except Exception as e:
                log.warning("response_delivery_failed", error=str(e))
                return
            self._bus.publish(RequestResolved(request_id=request.id, topic=request.topic, response=response))
            return

        current = self._current
        if (current is not None and current.id == request.id) or request.id in self._outcomes:
            log.debug("duplicate_request_ignored")
            return

        # Reset before tracking the new request so nothing in flight can bind to it
        previous = self._reset()
        pending = PendingRequest(request=request)
        pending.transition(RequestState.AWAITING_USER_APPROVAL)
        self._current = pending
        log.info("request_received", method=request.method, chain_id=request.chain_id)
        self._bus.publish(RequestReceived(request=request))

        if previous is not None:
            await self._notify_superseded(previous, f"Request superseded by request {request.id}")

    # ------------------------------------------------------------------
    # User decisions
    # ------------------------------------------------------------------

    def _decision_target(self, request_id: Optional[int]) -> Optional[PendingRequest]:
        """The tracked request if it awaits a decision and matches ``request_id``."""
        pending = self._current
        if pending is None or pending.state != RequestState.AWAITING_USER_APPROVAL:
            return None
        if request_id is not None and pending.id != request_id:
            return None
        return pending

    async def reject(self, request_id: Optional[int] = None) -> bool:
        """
        Reject the tracked request with USER_REJECTED.

        When ``request_id`` is given, nothing happens unless it is the id of
        the tracked request.
        """
        pending = self._decision_target(request_id)
        if pending is None:
            logger.info("reject_ignored", request_id=request_id, tracked=self._current.id if self._current else None)
            return False
        pending.transition(RequestState.REJECTED)
        return await self._resolve(pending, format_sdk_error(pending.id, "USER_REJECTED"))

    async def approve(self, request_id: Optional[int] = None) -> Optional[str]:
        """
        Submit the tracked request through the managed account.

        Args:
            request_id: Id of the request the user reviewed. If another
                request has replaced it, nothing is submitted.

        Returns:
            The bound transaction hash, or None if the request was resolved
            with an error (or superseded) before submission completed
        """
        pending = self._decision_target(request_id)
        if pending is None:
            logger.info("approve_ignored", request_id=request_id, tracked=self._current.id if self._current else None)
            return None
        log = logger.bind(request_id=pending.id, topic=pending.topic)
        pending.transition(RequestState.SUBMITTING)
        self._set_busy(True)

        expected_chain = f"eip155:{self.chain_id}"
        if pending.request.chain_id and pending.request.chain_id != expected_chain:
            await self._fail_submission(pending, format_error(
                pending.id, INTERNAL_ERROR,
                f"Unsupported chain {pending.request.chain_id}; expected {expected_chain}",
            ))
            return None

        try:
            to, value, data = parse_transaction_params(pending.request.params)
        except ValueError as e:
            log.info("invalid_params", error=str(e))
            await self._fail_submission(pending, format_error(pending.id, INVALID_PARAMS, str(e)))
            return None

        account = self._account_provider()
        if not account:
            await self._fail_submission(pending, format_error(
                pending.id, INTERNAL_ERROR, "Managed account address missing",
            ))
            return None

        try:
            owner_chain = await self._owner.chain_id()
        except Exception as e:
            log.warning("owner_chain_unavailable", error=str(e))
            if self._current is pending:
                await self._fail_submission(pending, format_sdk_error(pending.id, "USER_REJECTED"), str(e))
            return None
        if self._current is not pending:
            log.info("superseded_before_submission")
            return None
        if owner_chain != self.chain_id:
            await self._fail_submission(pending, format_error(
                pending.id, INTERNAL_ERROR,
                f"Owner wallet is on chain {owner_chain}; switch to {self.chain_name} ({self.chain_id})",
            ))
            return None

        try:
            tx_hash = await self._owner.execute(account, to, value, data)
        except Exception as e:
            error = TransactionSubmissionError(f"Transaction submission failed: {e}")
            log.warning("submission_failed", error=str(error))
            if self._current is pending:
                await self._fail_submission(pending, format_sdk_error(pending.id, "USER_REJECTED"), str(error))
            return None

        if self._current is not pending:
            # The hash is never bound, so its confirmation cannot act
            log.info("submission_for_superseded_request", tx_hash=tx_hash)
            return None

        pending.attempt = TransactionAttempt(request_id=pending.id, submitted_hash=tx_hash)
        pending.transition(RequestState.SUBMITTED)
        pending.transition(RequestState.CONFIRMING)
        log.info("transaction_submitted", tx_hash=tx_hash)
        self._watch_task = asyncio.create_task(
            self._watch(pending.id, tx_hash),
            name=f"wcbridge-watch-{pending.id}",
        )
        return tx_hash

    async def _fail_submission(
        self,
        pending: PendingRequest,
        response: JsonRpcResponse,
        error_message: Optional[str] = None,
    ) -> None:
        pending.transition(RequestState.RESOLVED_SUBMIT_ERROR)
        self._bus.publish(ErrorRaised(
            message=error_message or response.error.message,
            kind="TransactionSubmissionError",
        ))
        await self._resolve(pending, response)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def _watch(self, request_id: int, tx_hash: str) -> None:
        try:
            await asyncio.wait_for(
                self._owner.wait_for_receipt(
                    tx_hash,
                    timeout_seconds=self.confirmation_timeout,
                    required_confirmations=self.required_confirmations,
                ),
                timeout=self.confirmation_timeout,
            )
        except TransactionRevertError:
            outcome = ConfirmationState.CONFIRMED_REVERT
        except Exception as e:
            logger.warning("receipt_failed", request_id=request_id, tx_hash=tx_hash, error=repr(e))
            outcome = ConfirmationState.FAILED
        else:
            outcome = ConfirmationState.CONFIRMED_SUCCESS
        await self.on_confirmation(request_id, tx_hash, outcome)

    async def on_confirmation(self, request_id: int, tx_hash: str, outcome: ConfirmationState) -> bool:
        """
        Apply a confirmation outcome.

        Acts only when ``request_id`` is the tracked request and ``tx_hash``
        is the hash bound to it. Anything else is ignored.
        """
        pending = self._current
        if (
            pending is None
            or pending.id != request_id
            or pending.attempt is None
            or pending.attempt.submitted_hash is None
            or pending.attempt.submitted_hash != tx_hash
            or pending.state != RequestState.CONFIRMING
        ):
            logger.info("stale_confirmation_ignored", request_id=request_id, tx_hash=tx_hash)
            return False

        pending.attempt.confirmation_state = outcome
        if self._watch_task is asyncio.current_task():
            self._watch_task = None

        if outcome == ConfirmationState.CONFIRMED_SUCCESS:
            pending.transition(RequestState.RESOLVED_SUCCESS)
            response = format_result(pending.id, tx_hash)
        elif outcome == ConfirmationState.CONFIRMED_REVERT:
            pending.transition(RequestState.RESOLVED_REVERT)
            response = format_error(pending.id, INTERNAL_ERROR, "Transaction reverted")
            self._publish_confirmation_error(ConfirmationError(f"Transaction {tx_hash} reverted", tx_hash, reverted=True))
        else:
            pending.transition(RequestState.RESOLVED_CONFIRM_ERROR)
            response = format_error(pending.id, INTERNAL_ERROR, "Transaction failed on chain")
            self._publish_confirmation_error(ConfirmationError(f"Transaction {tx_hash} failed on chain", tx_hash))

        return await self._resolve(pending, response)

    def _publish_confirmation_error(self, error: ConfirmationError) -> None:
        logger.warning("confirmation_failed", tx_hash=error.tx_hash, reverted=error.reverted)
        self._bus.publish(ErrorRaised(message=str(error), kind=type(error).__name__))

    # ------------------------------------------------------------------
    # Responding
    # ------------------------------------------------------------------

    async def _resolve(self, pending: PendingRequest, response: JsonRpcResponse) -> bool:
        pending.response = response
        self._set_busy(False)
        return await self.respond(response)

    async def respond(self, response: JsonRpcResponse) -> bool:
        """
        Send ``response`` for the tracked request.

        Responses for any other id are discarded. Tracking is cleared only
        after the transport accepts the response; on failure the response is
        kept so ``retry_response`` can send it again.
        """
        pending = self._current
        if pending is None or pending.id != response.id:
            discarded = StaleResponseDiscarded(
                f"Discarding response for {response.id}; tracked request is "
                f"{pending.id if pending else None}",
                request_id=response.id,
            )
            logger.warning("stale_response_discarded", request_id=response.id, detail=str(discarded))
            return False

        if pending.response is None:
            pending.response = response

        log = logger.bind(request_id=pending.id, topic=pending.topic)
        try:
            await self._responder(pending.topic, response)
        except Exception as e:
            log.error("response_delivery_failed", error=str(e))
            self._bus.publish(ErrorRaised(message=f"Failed to send response: {e}", kind="TransportError"))
            return False

        if self._current is pending:
            self._reset()
        self._record_outcome(pending.id, pending.state)
        log.info("request_resolved", state=pending.state.value, is_error=response.is_error)
        self._bus.publish(RequestResolved(request_id=pending.id, topic=pending.topic, response=response))
        return True

    async def retry_response(self) -> bool:
        """Resend a response whose delivery failed."""
        pending = self._current
        if pending is None or pending.response is None:
            return False
        return await self.respond(pending.response)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._subscription.unsubscribe()
        pending = self._current
        task = self._watch_task
        self._watch_task = None
        self._current = None
        self._set_busy(False)
        if pending is not None:
            self._abandon(pending, "Bridge disposed", notified=False)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("relay_disposed")
