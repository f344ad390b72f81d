"""
Account discovery service.

Reads from the managed account and the global namespace contract:
- owner() on a managed account
- accountOf(username) -> managed account address
- usernameOf(address) -> primary username
"""

from __future__ import annotations

import logging
from typing import Optional

from eth_utils import is_address, to_checksum_address

from ..core.execution import (
    TransactionBuilder,
    TransactionExecutor,
    ZERO_ADDRESS,
    decode_address,
    decode_string,
)

logger = logging.getLogger(__name__)


class AccountNotFoundError(Exception):
    """No managed account is registered under the username."""

    def __init__(self, username: str):
        super().__init__(f"No account found for username '{username}'")
        self.username = username


class AccountService:
    """
    Read-only lookups used before a session is approved.

    Usage:
        accounts = AccountService(executor, namespace_address)
        account = await accounts.resolve_username("alice")
        owner = await accounts.get_owner(account)
    """

    def __init__(self, executor: TransactionExecutor, namespace_address: str):
        self.executor = executor
        self.namespace_address = namespace_address

    async def get_owner(self, account_address: str) -> str:
        """Owner of a managed account."""
        if not is_address(account_address):
            raise ValueError(f"Invalid account address: {account_address}")
        result = await self.executor.call(account_address, TransactionBuilder.encode_owner())
        return decode_address(result)

    async def verify_owner(self, account_address: str, owner_address: str) -> bool:
        """True when ``owner_address`` controls ``account_address``."""
        if not is_address(owner_address):
            return False
        owner = await self.get_owner(account_address)
        matches = owner.lower() == owner_address.lower()
        if not matches:
            logger.info(f"{owner_address} is not the owner of {account_address} (owner is {owner})")
        return matches

    async def resolve_username(self, username: str) -> str:
        """
        Resolve a username to its managed account.

        Raises:
            AccountNotFoundError: If the namespace returns the zero address
        """
        name = username.strip().lstrip("@")
        if not name:
            raise ValueError("Username is required")
        result = await self.executor.call(self.namespace_address, TransactionBuilder.encode_account_of(name))
        address = decode_address(result)
        if address.lower() == ZERO_ADDRESS:
            raise AccountNotFoundError(name)
        logger.debug(f"Resolved {name} -> {address}")
        return address

    async def username_of(self, account_address: str) -> Optional[str]:
        """Primary username of an account, or None if it has none."""
        if not is_address(account_address):
            raise ValueError(f"Invalid account address: {account_address}")
        result = await self.executor.call(
            self.namespace_address,
            TransactionBuilder.encode_username_of(to_checksum_address(account_address)),
        )
        username = decode_string(result)
        return username or None
