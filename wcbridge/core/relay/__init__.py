"""
Request Relay

Bridges dApp requests to the managed account:
- TransactionBridge: single-slot request tracking, submission, confirmation
- Models: request states, transaction attempts

Usage:
    from wcbridge.core.relay import TransactionBridge

    relay = TransactionBridge(owner_wallet, manager.respond, bus,
                              chain_id=232, account_provider=lambda: account)
    manager.set_request_handler(relay.handle_request)
"""

from .models import (
    RequestState,
    ConfirmationState,
    TERMINAL_STATES,
    TRANSITIONS,
    PendingRequest,
    TransactionAttempt,
)

from .bridge import (
    TransactionBridge,
    parse_transaction_params,
)

__all__ = [
    # Models
    "RequestState",
    "ConfirmationState",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "PendingRequest",
    "TransactionAttempt",
    # Bridge
    "TransactionBridge",
    "parse_transaction_params",
]
