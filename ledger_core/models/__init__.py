"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from ledger_core.models.finance import (
    Budget,
    BudgetAlert,
    BudgetInput,
    BudgetPeriod,
    BudgetStatus,
    BudgetSummary,
    DateRange,
    Transaction,
    TransactionInput,
    TransactionPatch,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    Wallet,
    WalletDelta,
    WalletInput,
    WalletReconciliation,
    WalletType,
    utc_now,
)
from ledger_core.models.prediction import (
    BudgetForecastInput,
    BudgetPrediction,
    CategoryForecast,
    ForecastRequest,
    ForecastResponse,
    PredictionCacheEntry,
    PredictionResult,
    RiskLevel,
    highest_risk,
)

__all__ = [
    # Ledger models
    "Budget",
    "BudgetAlert",
    "BudgetInput",
    "BudgetPeriod",
    "BudgetStatus",
    "BudgetSummary",
    "DateRange",
    "Transaction",
    "TransactionInput",
    "TransactionPatch",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    "Wallet",
    "WalletDelta",
    "WalletInput",
    "WalletReconciliation",
    "WalletType",
    "utc_now",
    # Prediction models
    "BudgetForecastInput",
    "BudgetPrediction",
    "CategoryForecast",
    "ForecastRequest",
    "ForecastResponse",
    "PredictionCacheEntry",
    "PredictionResult",
    "RiskLevel",
    "highest_risk",
]
