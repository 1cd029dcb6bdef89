"""
Prediction Cache Service

A TTL-bounded cache in front of the external budget forecaster.

FLOW:
1. Key the request by owner, budget signature and language
2. Serve the stored entry if it is younger than the TTL
3. Otherwise forecast (with retry), store, and return

DESIGN DECISION: The cache is best effort in both directions. A failed
store read falls back to the last entry this process saw for the key;
a failed store write is logged and the fresh forecast is still returned.
Forecaster failures, on the other hand, always reach the caller as a
typed PredictionError.
"""

import hashlib
import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from ledger_core.categories import CategoryResolver
from ledger_core.ledger.periods import local_today, period_window
from ledger_core.logging_config import get_logger
from ledger_core.models.finance import Budget, BudgetPeriod, Transaction, utc_now
from ledger_core.models.prediction import (
    BudgetForecastInput,
    BudgetPrediction,
    ForecastRequest,
    ForecastResponse,
    PredictionCacheEntry,
    PredictionResult,
    RiskLevel,
    highest_risk,
)
from ledger_core.predictions.errors import (
    PredictionError,
    PredictionErrorCode,
    is_retryable,
)
from ledger_core.retry import RetryPolicy
from ledger_core.services.forecast.interface import ForecasterInterface
from ledger_core.services.storage.interface import PersistenceError, PredictionCacheStorage

logger = get_logger(__name__)


def _normalized(amount: Decimal) -> str:
    """100, 100.0 and 100.00 produce the same signature."""
    return format(amount.normalize(), "f")


def budget_signature(budgets: Iterable[Budget]) -> list[tuple[int, str, str]]:
    """Sorted (category_id, limit, period) triples."""
    return sorted(
        (budget.category_id, _normalized(budget.amount), budget.period.value)
        for budget in budgets
    )


def cache_key(owner_id: str, budgets: Iterable[Budget], language: str) -> str:
    """sha256 of (owner, budget signature, language)."""
    payload = json.dumps([owner_id, budget_signature(budgets), language])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def cached_summary(predictions: list[BudgetPrediction], language: str) -> str:
    """Summary shown when predictions are served from the cache."""
    high = sum(1 for p in predictions if p.risk == RiskLevel.HIGH)
    medium = sum(1 for p in predictions if p.risk == RiskLevel.MEDIUM)
    if language == "en":
        return f"Budget predictions (cached): {high} high risk, {medium} medium risk categories."
    return (
        f"Prediksi budget (dari cache): {high} kategori risiko tinggi, "
        f"{medium} kategori risiko sedang."
    )


class PredictionCacheService:
    """
    Serves budget predictions, regenerating them at most once per TTL.

    Args:
        storage: Persistent cache store
        forecaster: External forecasting backend
        categories: Resolves category names sent to the forecaster
        retry_policy: Retry for forecaster calls (AUTH_ERROR and
                      NO_BUDGETS are never retried)
        clock: Returns "now" (timezone-aware)
        ttl: Age below which a stored entry is served
        cleanup_age: Age above which `cleanup` removes entries
        default_language: Used when a call passes no language
        timezone_name: Timezone of the forecast's "current date"
    """

    def __init__(
        self,
        storage: PredictionCacheStorage,
        forecaster: ForecasterInterface,
        categories: Optional[CategoryResolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        ttl: timedelta = timedelta(hours=6),
        cleanup_age: timedelta = timedelta(hours=24),
        default_language: str = "id",
        timezone_name: Optional[str] = None,
    ):
        self._storage = storage
        self._forecaster = forecaster
        self._categories = categories or CategoryResolver()
        self._retry = retry_policy or RetryPolicy(max_retries=2, retryable=is_retryable)
        self._clock = clock or utc_now
        self._ttl = ttl
        self._cleanup_age = cleanup_age
        self._default_language = default_language
        self._timezone_name = timezone_name
        # Last entry seen per cache key, served when the store is unreadable
        self._memo: dict[str, PredictionCacheEntry] = {}

    def is_fresh(self, entry: PredictionCacheEntry, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        return now - entry.generated_at < self._ttl

    async def get_or_generate(
        self,
        owner_id: str,
        budgets: list[Budget],
        transactions: list[Transaction],
        language: Optional[str] = None,
    ) -> PredictionResult:
        """
        Return cached predictions when fresh, otherwise forecast and store.

        Raises:
            PredictionError: If a forecast was needed and failed
        """
        language = language or self._default_language
        key = cache_key(owner_id, budgets, language)
        now = self._clock()

        entry = await self._read(owner_id, key)
        if entry is not None and self.is_fresh(entry, now):
            logger.info(
                "prediction_cache_hit",
                owner_id=owner_id,
                age_seconds=(now - entry.generated_at).total_seconds(),
            )
            served = entry.model_copy(update={
                "overall_risk": highest_risk([p.risk for p in entry.predictions]),
                "summary": cached_summary(entry.predictions, language),
            })
            return PredictionResult(entry=served, from_cache=True)

        logger.info("prediction_cache_miss", owner_id=owner_id, stale=entry is not None)
        return await self._generate(owner_id, key, budgets, transactions, language)

    async def refresh(
        self,
        owner_id: str,
        budgets: list[Budget],
        transactions: list[Transaction],
        language: Optional[str] = None,
    ) -> PredictionResult:
        """Always forecast and overwrite the entry, ignoring its age."""
        language = language or self._default_language
        key = cache_key(owner_id, budgets, language)
        logger.info("prediction_refresh_requested", owner_id=owner_id)
        return await self._generate(owner_id, key, budgets, transactions, language)

    async def cleanup(self, owner_id: str) -> int:
        """
        Delete the owner's entries older than the cleanup age.

        Idempotent. Returns the number of stored entries removed.
        """
        cutoff = self._clock() - self._cleanup_age
        removed = await self._storage.delete_older_than(owner_id, cutoff)

        for key, entry in list(self._memo.items()):
            if entry.owner_id == owner_id and entry.generated_at < cutoff:
                del self._memo[key]

        logger.info("prediction_cache_cleaned", owner_id=owner_id, removed=removed)
        return removed

    async def _read(self, owner_id: str, key: str) -> Optional[PredictionCacheEntry]:
        try:
            entry = await self._storage.get_entry(owner_id, key)
        except PersistenceError as e:
            logger.warning("prediction_cache_read_failed", owner_id=owner_id, error=str(e))
            return self._memo.get(key)

        if entry is not None:
            self._memo[key] = entry
        return entry

    async def _generate(
        self,
        owner_id: str,
        key: str,
        budgets: list[Budget],
        transactions: list[Transaction],
        language: str,
    ) -> PredictionResult:
        if not budgets:
            raise PredictionError.from_code(PredictionErrorCode.NO_BUDGETS, language)

        now = self._clock()
        today = local_today(now, self._timezone_name)
        request = ForecastRequest(
            budgets=[
                BudgetForecastInput(
                    category_id=budget.category_id,
                    category_name=self._categories.name_for(budget.category_id, language),
                    limit=budget.amount,
                    period=budget.period,
                )
                for budget in budgets
            ],
            transactions=[t.model_dump(mode="json") for t in transactions],
            current_date=today,
            language=language,
        )

        response = await self._retry.call(self._call_forecaster, request, language)

        window = period_window(BudgetPeriod.MONTHLY, today)
        entry = self._build_entry(owner_id, key, language, now, window, budgets, response)

        try:
            await self._storage.put_entry(entry)
        except PersistenceError as e:
            logger.warning("prediction_cache_write_failed", owner_id=owner_id, error=str(e))
        self._memo[key] = entry

        logger.info(
            "predictions_generated",
            owner_id=owner_id,
            categories=len(entry.predictions),
            overall_risk=entry.overall_risk.value,
        )
        return PredictionResult(entry=entry, from_cache=False)

    async def _call_forecaster(self, request: ForecastRequest, language: str) -> ForecastResponse:
        try:
            return await self._forecaster.forecast(request)
        except PredictionError as e:
            logger.warning("forecast_failed", code=e.code.value, retryable=e.retryable)
            raise
        except Exception as e:
            logger.warning("forecast_failed", code=PredictionErrorCode.UNKNOWN_ERROR.value, error=str(e))
            raise PredictionError.from_code(
                PredictionErrorCode.UNKNOWN_ERROR,
                language,
                e,
            ) from e

    @staticmethod
    def _build_entry(
        owner_id: str,
        key: str,
        language: str,
        now: datetime,
        window,
        budgets: list[Budget],
        response: ForecastResponse,
    ) -> PredictionCacheEntry:
        limits: dict[int, Decimal] = {}
        for budget in budgets:
            limits.setdefault(budget.category_id, budget.amount)

        predictions = [
            BudgetPrediction(
                category_id=forecast.category_id,
                limit=limits[forecast.category_id],
                projected_spend=forecast.projected_spend,
                risk=forecast.risk,
                period_start=window.start,
                period_end=window.end,
                generated_at=now,
                current_spend=forecast.current_spend,
                confidence=forecast.confidence,
                insight=forecast.insight,
            )
            for forecast in response.predictions
            if forecast.category_id in limits
        ]

        return PredictionCacheEntry(
            cache_key=key,
            owner_id=owner_id,
            language=language,
            generated_at=now,
            period_start=window.start,
            period_end=window.end,
            predictions=predictions,
            overall_risk=highest_risk([p.risk for p in predictions]),
            summary=response.summary,
        )
