"""
Namespace negotiation.

Grants are the intersection of what a proposal requests and what the bridge
supports, always pinned to one managed account on one chain.
"""

from typing import Dict, Iterable, List, Optional

from eth_utils import is_address

from ..errors import ProposalHandlingError
from .models import Namespace, SessionProposal


EIP155 = "eip155"

SUPPORTED_METHODS = (
    "eth_sendTransaction",
    "personal_sign",
    "eth_signTypedData",
    "eth_signTypedData_v4",
)
SUPPORTED_EVENTS = ("chainChanged", "accountsChanged")


def format_account(chain_id: int, address: str) -> str:
    """CAIP-10 account id, e.g. ``eip155:232:0xDEF...``."""
    return f"{EIP155}:{chain_id}:{address}"


def _intersect(requested: Iterable[str], supported: Iterable[str]) -> List[str]:
    supported_set = set(supported)
    result: List[str] = []
    for item in requested:
        if item in supported_set and item not in result:
            result.append(item)
    return result


def build_approved_namespaces(
    proposal: SessionProposal,
    chain_id: int,
    account_address: str,
    supported_methods: Iterable[str] = SUPPORTED_METHODS,
    supported_events: Iterable[str] = SUPPORTED_EVENTS,
    owner_address: Optional[str] = None,
) -> Dict[str, Namespace]:
    """
    Build the namespace grant for a proposal.

    Args:
        proposal: The inbound session proposal
        chain_id: The single chain the bridge operates on
        account_address: The managed account (never the owner)
        supported_methods: Methods the bridge is willing to expose
        supported_events: Events the bridge is willing to emit
        owner_address: The owner wallet, which must never be granted

    Returns:
        ``{"eip155": Namespace}`` with exactly one account

    Raises:
        ProposalHandlingError: If the account is invalid or is the owner, or
            the proposal does not include the supported chain
    """
    if not account_address or not is_address(account_address):
        raise ProposalHandlingError(
            f"Invalid managed account address: {account_address!r}",
            proposal_id=proposal.id,
            reason_key="UNSUPPORTED_ACCOUNTS",
        )
    if owner_address and account_address.lower() == owner_address.lower():
        raise ProposalHandlingError(
            "Refusing to grant the owner wallet; sessions expose the managed account only",
            proposal_id=proposal.id,
            reason_key="UNSUPPORTED_ACCOUNTS",
        )

    chain = f"{EIP155}:{chain_id}"
    # An empty chain list means the dApp accepts whatever the wallet offers
    if proposal.requested_chains and chain not in proposal.requested_chains:
        raise ProposalHandlingError(
            f"Proposal {proposal.id} does not include {chain} "
            f"(requested: {', '.join(proposal.requested_chains)})",
            proposal_id=proposal.id,
            reason_key="UNSUPPORTED_CHAINS",
        )

    return {
        EIP155: Namespace(
            chains=[chain],
            methods=_intersect(proposal.requested_methods, supported_methods),
            events=_intersect(proposal.requested_events, supported_events),
            accounts=[format_account(chain_id, account_address)],
        )
    }
