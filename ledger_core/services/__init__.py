"""Services package."""

from ledger_core.services.forecast import (
    ForecasterInterface,
    GeminiForecaster,
)
from ledger_core.services.storage import (
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

__all__ = [
    # Forecast services
    "ForecasterInterface",
    "GeminiForecaster",
    # Storage services
    "BudgetRepository",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    "PredictionCacheStorage",
    "TransactionRepository",
    "TransferDeletionProcedure",
    "WalletRepository",
]
