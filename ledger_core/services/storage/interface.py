"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for every table the
ledger touches. This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The remote store offers row-level operations only. No server-side
transactions are assumed; the orchestrator orders its writes so that a
failure leaves the ledger in a recoverable state.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from ledger_core.models.finance import (
    Budget,
    Transaction,
    TransactionType,
    Wallet,
    WalletDelta,
)
from ledger_core.models.prediction import PredictionCacheEntry


class WalletRepository(ABC):
    """
    Wallet rows.

    `batch_apply_deltas` is the only way balances change; it is called
    exclusively by the ledger orchestrator.
    """

    @abstractmethod
    async def get(self, wallet_id: UUID) -> Optional[Wallet]:
        """Retrieve a wallet by ID, or None."""
        pass

    async def get_many(self, wallet_ids: Iterable[UUID]) -> dict[UUID, Wallet]:
        """Retrieve several wallets; missing IDs are absent from the result."""
        found = {}
        for wallet_id in wallet_ids:
            wallet = await self.get(wallet_id)
            if wallet is not None:
                found[wallet_id] = wallet
        return found

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[Wallet]:
        """All wallets belonging to an owner."""
        pass

    @abstractmethod
    async def insert(self, wallet: Wallet) -> Wallet:
        """
        Insert a new wallet.

        Raises:
            DuplicateError: If the ID already exists
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def batch_apply_deltas(self, deltas: list[WalletDelta]) -> list[Wallet]:
        """
        Add each delta to its wallet's balance in a single write.

        All target wallets are resolved before anything is written, so a
        missing wallet fails the whole batch with no partial effect.

        Returns:
            The updated wallets, in delta order

        Raises:
            NotFoundError: If any target wallet does not exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, wallet_id: UUID) -> bool:
        """Delete a wallet row. Returns False if it did not exist."""
        pass


class TransactionRepository(ABC):
    """Transaction rows."""

    @abstractmethod
    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction by ID, or None."""
        pass

    @abstractmethod
    async def insert(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Raises:
            DuplicateError: If the ID already exists
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> Transaction:
        """
        Replace an existing transaction row.

        Raises:
            NotFoundError: If the transaction doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, transaction_id: UUID) -> bool:
        """Delete a transaction row. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: Optional[str] = None,
        wallet_id: Optional[UUID] = None,
        category_id: Optional[int] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters, in store order.

        Args:
            owner_id: Filter by owner
            wallet_id: Match transactions where this wallet is the source
                       OR the transfer destination
            category_id: Filter by category
            transaction_type: Filter by type
            date_from: occurred_at on or after this date
            date_to: occurred_at on or before this date
        """
        pass


class BudgetRepository(ABC):
    """Budget rows."""

    @abstractmethod
    async def get(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_for_owner(
        self,
        owner_id: str,
        category_ids: Optional[Iterable[int]] = None,
    ) -> list[Budget]:
        """Budgets of an owner, optionally restricted to some categories."""
        pass

    @abstractmethod
    async def insert(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def update_spent(self, budget_id: UUID, spent: Decimal) -> Budget:
        """
        Overwrite the cached `spent` figure.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, budget_id: UUID) -> bool:
        pass


class PredictionCacheStorage(ABC):
    """
    Persistent store for cached forecast runs.

    Deletes are idempotent so cleanup can run concurrently with reads.
    """

    @abstractmethod
    async def get_entry(
        self,
        owner_id: str,
        cache_key: str,
    ) -> Optional[PredictionCacheEntry]:
        """Most recent entry for the key, or None."""
        pass

    @abstractmethod
    async def put_entry(self, entry: PredictionCacheEntry) -> None:
        """Insert or overwrite the entry for `entry.cache_key`."""
        pass

    @abstractmethod
    async def delete_older_than(self, owner_id: str, cutoff: datetime) -> int:
        """Delete the owner's entries generated before `cutoff`. Returns the count."""
        pass


class TransferDeletionProcedure(ABC):
    """
    Optional server-side procedure that reverses a transfer and deletes
    its row as one atomic unit.

    When available it replaces the client-side reverse-then-delete
    sequence for transfers, closing the partial-failure window.
    """

    @abstractmethod
    async def delete_transfer(
        self,
        transaction_id: UUID,
        source_wallet_id: UUID,
        destination_wallet_id: UUID,
        amount: Decimal,
        fee: Decimal,
    ) -> None:
        """
        Credit the source with amount + fee, debit the destination by
        amount, and delete the transaction, atomically.

        Raises:
            PersistenceError: If the procedure fails (nothing was changed)
        """
        pass


class PersistenceError(Exception):
    """
    Remote store failure. Retryable by the caller.

    `requires_reconciliation` is set when a compensating write also
    failed, so a wallet balance may disagree with its history until it is
    reconciled.
    """

    def __init__(self, message: str, requires_reconciliation: bool = False):
        super().__init__(message)
        self.requires_reconciliation = requires_reconciliation


class NotFoundError(PersistenceError):
    """Entity not found in storage."""
    pass


class DuplicateError(PersistenceError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(PersistenceError):
    """Could not connect to storage backend."""
    pass
