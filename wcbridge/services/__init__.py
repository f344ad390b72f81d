"""Service layer helpers"""

from .account import AccountNotFoundError, AccountService

__all__ = [
    "AccountNotFoundError",
    "AccountService",
]
