"""
In-memory account repository.
"""

from typing import Optional

from schemas.account import Account


class InMemoryAccountRepository:
    """Repository for account snapshots, keyed by id with an email index."""

    def __init__(self) -> None:
        self._by_id: dict[str, Account] = {}
        self._email_index: dict[str, str] = {}

    async def find_by_identity(self, identity: str) -> Optional[Account]:
        """Get an account by email (case-insensitive) or by id."""
        account_id = self._email_index.get(identity.strip().lower(), identity)
        return self._by_id.get(account_id)

    async def create(self, account: Account) -> Account:
        """Create a new account. Raises ValueError on a duplicate email."""
        email = account.email.lower()
        if email in self._email_index:
            raise ValueError("email already registered")
        self._by_id[account.id] = account
        self._email_index[email] = account.id
        return account

    async def save(self, account: Account) -> Account:
        """Replace the stored snapshot."""
        if account.id not in self._by_id:
            raise KeyError(account.id)
        self._by_id[account.id] = account
        return account
