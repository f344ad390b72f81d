"""
Owner wallet.

The owner key is the only authority over the managed account. It never
signs a dApp's transaction directly; it signs ``executeTransaction`` calls
on the account instead.
"""

import logging
from typing import Optional

from .executor import TransactionExecutor, TransactionSubmitError
from .models import TransactionResult
from .tx_builder import TransactionBuilder


logger = logging.getLogger(__name__)


class OwnerWallet:
    """
    Submits managed-account calls through the owner's signer.

    Usage:
        wallet = OwnerWallet(executor, address="0xOwner...")
        tx_hash = await wallet.execute(account, target, value, data)
        result = await wallet.wait_for_receipt(tx_hash)
    """

    def __init__(self, executor: TransactionExecutor, address: Optional[str] = None):
        self.executor = executor
        self._address = address

    @property
    def address(self) -> Optional[str]:
        return self._address

    async def get_address(self) -> str:
        """The owner address, discovered from the signer when not configured."""
        if self._address:
            return self._address
        accounts = await self.executor.get_signer_accounts()
        if not accounts:
            raise TransactionSubmitError("Owner signer exposes no accounts")
        self._address = accounts[0]
        logger.info(f"Using owner account {self._address} from signer")
        return self._address

    async def chain_id(self) -> int:
        return await self.executor.get_signer_chain_id()

    async def execute(self, account: str, target: str, value: int, data: bytes) -> str:
        """
        Call ``executeTransaction(target, value, data)`` on ``account``.

        Returns:
            The submitted transaction hash
        """
        owner = await self.get_address()
        tx = TransactionBuilder.build_execute_transaction(
            chain_id=self.executor.chain_id,
            owner_address=owner,
            account_address=account,
            target=target,
            value=value,
            data=data,
        )
        logger.info(f"Submitting {tx.tx_id}: {tx.description}")
        return await self.executor.send_transaction(tx)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: float = 300,
        required_confirmations: int = 1,
    ) -> TransactionResult:
        return await self.executor.wait_for_receipt(
            tx_hash,
            timeout_seconds=timeout_seconds,
            required_confirmations=required_confirmations,
        )
