"""
Storage Services Package

Provides abstract repository interfaces and concrete implementations.
Google Sheets is the remote backend; the in-memory implementation backs
tests and offline use.
"""

from ledger_core.services.storage.interface import (
    BudgetRepository,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
    PredictionCacheStorage,
    TransactionRepository,
    TransferDeletionProcedure,
    WalletRepository,
)
from ledger_core.services.storage.google_sheets import (
    GoogleSheetsBudgetRepository,
    GoogleSheetsClient,
    GoogleSheetsPredictionCacheStorage,
    GoogleSheetsTransactionRepository,
    GoogleSheetsWalletRepository,
)
from ledger_core.services.storage.memory import (
    InMemoryBudgetRepository,
    InMemoryDatabase,
    InMemoryPredictionCacheStorage,
    InMemoryTransactionRepository,
    InMemoryWalletRepository,
)

__all__ = [
    # Interfaces
    "BudgetRepository",
    "PredictionCacheStorage",
    "TransactionRepository",
    "TransferDeletionProcedure",
    "WalletRepository",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    # Google Sheets implementation
    "GoogleSheetsBudgetRepository",
    "GoogleSheetsClient",
    "GoogleSheetsPredictionCacheStorage",
    "GoogleSheetsTransactionRepository",
    "GoogleSheetsWalletRepository",
    # In-memory implementation
    "InMemoryBudgetRepository",
    "InMemoryDatabase",
    "InMemoryPredictionCacheStorage",
    "InMemoryTransactionRepository",
    "InMemoryWalletRepository",
]
