"""
Transaction Execution Layer

Provides the infrastructure for managed-account execution:
- TransactionExecutor: JSON-RPC chain client, submission and receipt polling
- TransactionBuilder: executeTransaction / owner / namespace calldata
- OwnerWallet: the owner key acting through the managed account

Usage:
    from wcbridge.core.execution import (
        OwnerWallet,
        TransactionExecutor,
    )

    executor = TransactionExecutor(
        rpc_url="https://rpc.lens.xyz",
        chain_id=232,
        signer_url="http://127.0.0.1:8550",
    )
    wallet = OwnerWallet(executor)

    tx_hash = await wallet.execute(account, target="0x...", value=0, data=b"")
    result = await wallet.wait_for_receipt(tx_hash)
"""

from .models import (
    TransactionStatus,
    PreparedTransaction,
    TransactionResult,
)

from .tx_builder import (
    TransactionBuilder,
    ZERO_ADDRESS,
    decode_address,
    decode_string,
    parse_hex_data,
)

from .executor import (
    TransactionExecutor,
    ExecutionError,
    RpcError,
    TransactionSubmitError,
    TransactionRevertError,
    TransactionTimeoutError,
)

from .owner import (
    OwnerWallet,
)

__all__ = [
    # Models
    "TransactionStatus",
    "PreparedTransaction",
    "TransactionResult",
    # Transaction Builder
    "TransactionBuilder",
    "ZERO_ADDRESS",
    "decode_address",
    "decode_string",
    "parse_hex_data",
    # Executor
    "TransactionExecutor",
    "ExecutionError",
    "RpcError",
    "TransactionSubmitError",
    "TransactionRevertError",
    "TransactionTimeoutError",
    # Owner
    "OwnerWallet",
]
