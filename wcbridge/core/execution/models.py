"""
Transaction execution models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class TransactionStatus(str, Enum):
    """Transaction lifecycle status."""
    PENDING = "pending"          # Built, not yet handed to the signer
    SUBMITTED = "submitted"      # Signer returned a hash
    CONFIRMING = "confirming"    # Mined, waiting for confirmations
    CONFIRMED = "confirmed"      # Successfully confirmed
    FAILED = "failed"            # Submission or receipt lookup failed
    REVERTED = "reverted"        # On-chain revert
    TIMEOUT = "timeout"          # Confirmation timeout


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PreparedTransaction:
    """A transaction ready to be signed and broadcast by the owner's signer."""
    tx_id: str                                  # Internal tracking ID
    chain_id: int
    from_address: str                           # Owner (the signer)
    to_address: str                             # Managed account contract
    data: str                                   # Encoded calldata (hex)
    value: int = 0                              # Wei sent to the account itself

    # Metadata
    description: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an ``eth_sendTransaction`` parameter object."""
        return {
            "from": self.from_address,
            "to": self.to_address,
            "data": self.data,
            "value": hex(self.value),
            "chainId": hex(self.chain_id),
        }


@dataclass
class TransactionResult:
    """Result of waiting on a submitted transaction."""
    tx_hash: str
    chain_id: int
    status: TransactionStatus = TransactionStatus.SUBMITTED

    # Confirmation details
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None
    confirmations: int = 0

    confirmed_at: Optional[datetime] = None

    # Error info
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED

    @property
    def is_final(self) -> bool:
        return self.status in {
            TransactionStatus.CONFIRMED,
            TransactionStatus.FAILED,
            TransactionStatus.REVERTED,
            TransactionStatus.TIMEOUT,
        }
