"""
Chain client for on-chain execution.

Handles the JSON-RPC side of a managed-account call:
- Read calls (eth_call, eth_chainId)
- Submission through the owner's signer (eth_sendTransaction)
- Receipt polling until confirmation, revert or timeout
"""

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .models import PreparedTransaction, TransactionResult, TransactionStatus


logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Base exception for execution errors."""
    pass


class RpcError(ExecutionError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class TransactionSubmitError(ExecutionError):
    """Transaction submission failed."""
    pass


class TransactionRevertError(ExecutionError):
    """Transaction reverted on-chain."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, revert_reason: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


class TransactionTimeoutError(ExecutionError):
    """Transaction confirmation timed out."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class TransactionExecutor:
    """
    Talks JSON-RPC to one EVM chain.

    Reads go to ``rpc_url``. Anything that needs the owner's key goes to
    ``signer_url``, an endpoint that holds the key and answers
    ``eth_sendTransaction`` (a local node, Frame, a remote signer).
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        signer_url: Optional[str] = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        max_receipt_errors: int = 5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.signer_url = signer_url or rpc_url
        self.poll_interval = poll_interval
        self.max_receipt_errors = max_receipt_errors
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _rpc_call(
        self,
        method: str,
        params: List[Any],
        url: Optional[str] = None,
    ) -> Any:
        """Make an RPC call to the chain (or the signer when ``url`` is given)."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        response = await self._client.post(url or self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if "error" in result and result["error"] is not None:
            error = result["error"]
            if isinstance(error, dict):
                raise RpcError(
                    f"RPC error: {error.get('message', error)}",
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcError(f"RPC error: {error}")

        return result.get("result")

    async def get_chain_id(self) -> int:
        """Chain id reported by the read endpoint."""
        return int(await self._rpc_call("eth_chainId", []), 16)

    async def get_signer_chain_id(self) -> int:
        """Chain id the owner's signer is currently on."""
        return int(await self._rpc_call("eth_chainId", [], url=self.signer_url), 16)

    async def get_signer_accounts(self) -> List[str]:
        return await self._rpc_call("eth_accounts", [], url=self.signer_url) or []

    async def call(self, to: str, data: str, block: str = "latest") -> str:
        """Run a read-only ``eth_call`` and return the raw hex result."""
        return await self._rpc_call("eth_call", [{"to": to, "data": data}, block])

    async def send_transaction(self, tx: PreparedTransaction) -> str:
        """
        Hand a prepared transaction to the signer.

        Returns:
            The transaction hash

        Raises:
            TransactionSubmitError: If the signer refused or failed
        """
        try:
            tx_hash = await self._rpc_call("eth_sendTransaction", [tx.to_dict()], url=self.signer_url)
        except (ExecutionError, httpx.HTTPError) as e:
            logger.error(f"Transaction submission failed: {e}")
            raise TransactionSubmitError(f"Failed to submit transaction: {e}") from e

        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
            raise TransactionSubmitError(f"Signer returned an invalid transaction hash: {tx_hash!r}")

        logger.info(f"Transaction submitted: {tx_hash}")
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: float = 300,
        required_confirmations: int = 1,
    ) -> TransactionResult:
        """
        Poll until the transaction is confirmed.

        Args:
            tx_hash: The transaction hash to monitor
            timeout_seconds: Maximum time to wait
            required_confirmations: Number of confirmations needed

        Returns:
            TransactionResult with CONFIRMED status

        Raises:
            TransactionRevertError: Receipt status is 0
            TransactionTimeoutError: No confirmation within ``timeout_seconds``
            ExecutionError: The receipt could not be fetched repeatedly
        """
        result = TransactionResult(tx_hash=tx_hash, chain_id=self.chain_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        consecutive_errors = 0

        while True:
            try:
                receipt = await self.get_receipt(tx_hash)
                consecutive_errors = 0

                if receipt:
                    result.block_number = int(receipt["blockNumber"], 16)
                    result.block_hash = receipt.get("blockHash")
                    result.gas_used = int(receipt.get("gasUsed", "0x0"), 16)
                    result.effective_gas_price = int(receipt.get("effectiveGasPrice", "0x0"), 16)

                    # Check status (0x1 = success, 0x0 = revert)
                    status = int(receipt.get("status", "0x1"), 16)
                    if status == 0:
                        result.status = TransactionStatus.REVERTED
                        result.error = "Transaction reverted"
                        raise TransactionRevertError("Transaction reverted", tx_hash=tx_hash)

                    # Check confirmations
                    current_block = int(await self._rpc_call("eth_blockNumber", []), 16)
                    result.confirmations = current_block - result.block_number + 1

                    if result.confirmations >= required_confirmations:
                        result.status = TransactionStatus.CONFIRMED
                        result.confirmed_at = datetime.now(timezone.utc)
                        logger.info(
                            f"Transaction confirmed: {tx_hash} "
                            f"(block {result.block_number}, {result.confirmations} confirmations)"
                        )
                        return result

                    result.status = TransactionStatus.CONFIRMING

            except TransactionRevertError:
                raise
            except (ExecutionError, httpx.HTTPError, KeyError, ValueError) as e:
                consecutive_errors += 1
                logger.warning(f"Error checking transaction status ({consecutive_errors}): {e}")
                if consecutive_errors >= self.max_receipt_errors:
                    raise ExecutionError(f"Could not fetch receipt for {tx_hash}: {e}") from e

            if loop.time() + self.poll_interval > deadline:
                raise TransactionTimeoutError(
                    f"Confirmation timeout after {timeout_seconds}s",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
