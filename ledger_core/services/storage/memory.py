"""
In-Memory Storage Implementation

Dict-backed implementations of every storage interface. Used by the test
suite and as the offline fallback when no remote store is configured.

Each operation completes without awaiting anything, so on a single event
loop a delta batch is applied as one indivisible step.
"""

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
from ledger_core.services.storage.interface import (
    BudgetRepository,
    DuplicateError,
    NotFoundError,
    PredictionCacheStorage,
    TransactionRepository,
    WalletRepository,
)


class InMemoryDatabase:
    """Shared tables for the in-memory repositories (insertion ordered)."""

    def __init__(self):
        self.wallets: dict[UUID, Wallet] = {}
        self.transactions: dict[UUID, Transaction] = {}
        self.budgets: dict[UUID, Budget] = {}
        self.predictions: dict[tuple[str, str], PredictionCacheEntry] = {}


class InMemoryWalletRepository(WalletRepository):

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def get(self, wallet_id: UUID) -> Optional[Wallet]:
        wallet = self._db.wallets.get(wallet_id)
        return wallet.model_copy() if wallet else None

    async def list_for_owner(self, owner_id: str) -> list[Wallet]:
        return [
            wallet.model_copy()
            for wallet in self._db.wallets.values()
            if wallet.owner_id == owner_id
        ]

    async def insert(self, wallet: Wallet) -> Wallet:
        if wallet.id in self._db.wallets:
            raise DuplicateError(f"Wallet already exists: {wallet.id}")
        self._db.wallets[wallet.id] = wallet.model_copy()
        return wallet.model_copy()

    async def batch_apply_deltas(self, deltas: list[WalletDelta]) -> list[Wallet]:
        missing = [d.wallet_id for d in deltas if d.wallet_id not in self._db.wallets]
        if missing:
            raise NotFoundError(f"Wallet not found: {missing[0]}")

        updated = []
        for delta in deltas:
            current = self._db.wallets[delta.wallet_id]
            new_wallet = current.model_copy(update={"balance": current.balance + delta.delta})
            self._db.wallets[delta.wallet_id] = new_wallet
            updated.append(new_wallet.model_copy())
        return updated

    async def delete(self, wallet_id: UUID) -> bool:
        return self._db.wallets.pop(wallet_id, None) is not None


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        transaction = self._db.transactions.get(transaction_id)
        return transaction.model_copy() if transaction else None

    async def insert(self, transaction: Transaction) -> Transaction:
        if transaction.id in self._db.transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._db.transactions[transaction.id] = transaction.model_copy()
        return transaction.model_copy()

    async def update(self, transaction: Transaction) -> Transaction:
        if transaction.id not in self._db.transactions:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._db.transactions[transaction.id] = transaction.model_copy()
        return transaction.model_copy()

    async def delete(self, transaction_id: UUID) -> bool:
        return self._db.transactions.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        owner_id: Optional[str] = None,
        wallet_id: Optional[UUID] = None,
        category_id: Optional[int] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        results = []
        for transaction in self._db.transactions.values():
            if owner_id is not None and transaction.owner_id != owner_id:
                continue
            if wallet_id is not None and wallet_id not in transaction.wallet_ids:
                continue
            if category_id is not None and transaction.category_id != category_id:
                continue
            if transaction_type is not None and transaction.type != transaction_type:
                continue
            if date_from and transaction.occurred_at < date_from:
                continue
            if date_to and transaction.occurred_at > date_to:
                continue
            results.append(transaction.model_copy())
        return results


class InMemoryBudgetRepository(BudgetRepository):

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def get(self, budget_id: UUID) -> Optional[Budget]:
        budget = self._db.budgets.get(budget_id)
        return budget.model_copy() if budget else None

    async def list_for_owner(
        self,
        owner_id: str,
        category_ids: Optional[Iterable[int]] = None,
    ) -> list[Budget]:
        wanted = set(category_ids) if category_ids is not None else None
        return [
            budget.model_copy()
            for budget in self._db.budgets.values()
            if budget.owner_id == owner_id
            and (wanted is None or budget.category_id in wanted)
        ]

    async def insert(self, budget: Budget) -> Budget:
        if budget.id in self._db.budgets:
            raise DuplicateError(f"Budget already exists: {budget.id}")
        self._db.budgets[budget.id] = budget.model_copy()
        return budget.model_copy()

    async def update_spent(self, budget_id: UUID, spent: Decimal) -> Budget:
        budget = self._db.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        updated = budget.model_copy(update={"spent": spent})
        self._db.budgets[budget_id] = updated
        return updated.model_copy()

    async def delete(self, budget_id: UUID) -> bool:
        return self._db.budgets.pop(budget_id, None) is not None


class InMemoryPredictionCacheStorage(PredictionCacheStorage):

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or InMemoryDatabase()

    async def get_entry(
        self,
        owner_id: str,
        cache_key: str,
    ) -> Optional[PredictionCacheEntry]:
        entry = self._db.predictions.get((owner_id, cache_key))
        return entry.model_copy(deep=True) if entry else None

    async def put_entry(self, entry: PredictionCacheEntry) -> None:
        self._db.predictions[(entry.owner_id, entry.cache_key)] = entry.model_copy(deep=True)

    async def delete_older_than(self, owner_id: str, cutoff: datetime) -> int:
        stale = [
            key
            for key, entry in self._db.predictions.items()
            if entry.owner_id == owner_id and entry.generated_at < cutoff
        ]
        for key in stale:
            self._db.predictions.pop(key, None)
        return len(stale)
