"""Cached budget predictions."""

from ledger_core.predictions.errors import (
    PredictionError,
    PredictionErrorCode,
    is_retryable,
    message_for,
)
from ledger_core.predictions.cache import (
    PredictionCacheService,
    budget_signature,
    cache_key,
    cached_summary,
)

__all__ = [
    "PredictionCacheService",
    "PredictionError",
    "PredictionErrorCode",
    "budget_signature",
    "cache_key",
    "cached_summary",
    "is_retryable",
    "message_for",
]
