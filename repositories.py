from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Optional
import asyncio
from collections import Counter
from contextlib import asynccontextmanager

from models import Account
from storage import build_demo_accounts
from config import get_settings


class AccountRepository(ABC):
    @abstractmethod
    async def get_account(self, user: str) -> Optional[Account]:
        """Get account by user. Returns None if account doesn't exist."""
        pass

    @abstractmethod
    async def add_account(self, account: Account) -> None:
        """Store a new account under its user."""
        pass

    @abstractmethod
    async def delete_account(self, user: str) -> None:
        """Remove an account and every transaction it holds."""
        pass

    @abstractmethod
    async def account_exists(self, user: str) -> bool:
        """Check if account exists."""
        pass

    @abstractmethod
    async def get_accounts_count(self) -> int:
        """Get total number of accounts."""
        pass

    @abstractmethod
    async def get_transactions_count(self) -> int:
        """Get total number of transactions across all accounts."""
        pass

    @abstractmethod
    def account_lock(self, user: str):
        """Async context manager serializing mutations of one account."""
        pass


class InMemoryAccountRepository(AccountRepository):
    def __init__(self, accounts: Optional[Dict[str, Account]] = None):
        self.accounts: Dict[str, Account] = dict(accounts or {})
        self.locks: Dict[str, asyncio.Lock] = {}
        # Tasks holding or waiting on each lock
        self.lock_users: Counter = Counter()

    async def get_account(self, user: str) -> Optional[Account]:
        return self.accounts.get(user)

    async def add_account(self, account: Account) -> None:
        if account.user in self.accounts:
            raise ValueError(f"Account {account.user} already exists")
        self.accounts[account.user] = account

    async def delete_account(self, user: str) -> None:
        if user not in self.accounts:
            raise ValueError(f"Account {user} does not exist")
        del self.accounts[user]

    async def account_exists(self, user: str) -> bool:
        return user in self.accounts

    async def get_accounts_count(self) -> int:
        return len(self.accounts)

    async def get_transactions_count(self) -> int:
        return sum(len(account.transactions) for account in self.accounts.values())

    @asynccontextmanager
    async def account_lock(self, user: str) -> AsyncIterator[None]:
        """Hold the lock of one account.

        The lock is created on first use and discarded once no task holds or
        waits on it, so requests for unknown users leave nothing behind.
        """
        lock = self.locks.setdefault(user, asyncio.Lock())
        self.lock_users[user] += 1
        try:
            async with lock:
                yield
        finally:
            self.lock_users[user] -= 1
            if not self.lock_users[user]:
                del self.lock_users[user]
                del self.locks[user]


def create_account_repository() -> InMemoryAccountRepository:
    if get_settings().seed_demo_data:
        return InMemoryAccountRepository(build_demo_accounts())
    return InMemoryAccountRepository()


_account_repo = create_account_repository()


def get_account_repository() -> AccountRepository:
    return _account_repo


def reset_repositories():
    """Replace the store with a fresh instance (for testing only)."""
    global _account_repo
    _account_repo = create_account_repository()
