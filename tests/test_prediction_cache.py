"""
Tests for the prediction cache service.

The forecaster is a scripted fake; storage is in memory unless a test
needs it to fail.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import OWNER, RecordingSleep
from ledger_core.models import (
    Budget,
    BudgetPeriod,
    CategoryForecast,
    ForecastResponse,
    RiskLevel,
)
from ledger_core.predictions import (
    PredictionCacheService,
    PredictionError,
    PredictionErrorCode,
    cache_key,
    is_retryable,
)
from ledger_core.retry import RetryPolicy
from ledger_core.services.forecast import ForecasterInterface
from ledger_core.services.storage import InMemoryPredictionCacheStorage, PersistenceError


class FakeForecaster(ForecasterInterface):
    """Returns a canned response, or raises the queued errors first."""

    def __init__(self, errors=None):
        self.calls = []
        self.errors = list(errors or [])

    async def forecast(self, request):
        self.calls.append(request)
        if self.errors:
            raise self.errors.pop(0)
        return ForecastResponse(
            predictions=[
                CategoryForecast(
                    category_id=budget.category_id,
                    projected_spend=budget.limit * Decimal("1.2"),
                    risk=RiskLevel.HIGH if budget.category_id == 1 else RiskLevel.LOW,
                )
                for budget in request.budgets
            ],
            overall_risk=RiskLevel.MEDIUM,
            summary="fresh summary",
        )


class FlakyStorage(InMemoryPredictionCacheStorage):

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    async def get_entry(self, owner_id, cache_key):
        if self.fail_reads:
            raise PersistenceError("simulated read failure")
        return await super().get_entry(owner_id, cache_key)

    async def put_entry(self, entry):
        if self.fail_writes:
            raise PersistenceError("simulated write failure")
        await super().put_entry(entry)


BUDGETS = [
    Budget(owner_id=OWNER, category_id=1, amount=Decimal("1000")),
    Budget(owner_id=OWNER, category_id=2, amount=Decimal("500")),
]


@pytest.fixture
def forecaster():
    return FakeForecaster()


@pytest.fixture
def storage():
    return FlakyStorage()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def service(storage, forecaster, clock, sleep):
    return PredictionCacheService(
        storage,
        forecaster,
        retry_policy=RetryPolicy(max_retries=2, retryable=is_retryable, sleep=sleep),
        clock=clock,
    )


class TestCaching:
    """TTL behaviour of get_or_generate."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, service, forecaster):
        first = await service.get_or_generate(OWNER, BUDGETS, [])
        second = await service.get_or_generate(OWNER, BUDGETS, [])

        assert not first.from_cache
        assert second.from_cache
        assert len(forecaster.calls) == 1
        assert [p.category_id for p in second.predictions] == [1, 2]

    @pytest.mark.asyncio
    async def test_fresh_result_has_monthly_period(self, service):
        result = await service.get_or_generate(OWNER, BUDGETS, [])

        prediction = result.predictions[0]
        assert prediction.limit == Decimal("1000")
        assert prediction.projected_spend == Decimal("1200.0")
        assert (str(prediction.period_start), str(prediction.period_end)) == ("2025-03-01", "2025-03-31")
        assert result.overall_risk == RiskLevel.HIGH
        assert result.summary == "fresh summary"

    @pytest.mark.asyncio
    async def test_hit_within_ttl_and_miss_after(self, service, forecaster, clock):
        await service.get_or_generate(OWNER, BUDGETS, [])

        clock.advance(hours=5, minutes=59)
        assert (await service.get_or_generate(OWNER, BUDGETS, [])).from_cache

        clock.advance(minutes=1)
        assert not (await service.get_or_generate(OWNER, BUDGETS, [])).from_cache
        assert len(forecaster.calls) == 2

    @pytest.mark.asyncio
    async def test_refresh_bypasses_fresh_entry(self, service, forecaster):
        await service.get_or_generate(OWNER, BUDGETS, [])
        refreshed = await service.refresh(OWNER, BUDGETS, [])

        assert not refreshed.from_cache
        assert len(forecaster.calls) == 2

    @pytest.mark.asyncio
    async def test_language_and_budgets_change_the_key(self, service, forecaster):
        await service.get_or_generate(OWNER, BUDGETS, [], language="id")
        await service.get_or_generate(OWNER, BUDGETS, [], language="en")
        await service.get_or_generate(OWNER, BUDGETS[:1], [], language="en")

        assert len(forecaster.calls) == 3
        assert forecaster.calls[1].language == "en"

    @pytest.mark.asyncio
    async def test_cached_summary_is_localized(self, service):
        await service.get_or_generate(OWNER, BUDGETS, [], language="en")
        await service.get_or_generate(OWNER, BUDGETS, [], language="id")

        english = await service.get_or_generate(OWNER, BUDGETS, [], language="en")
        indonesian = await service.get_or_generate(OWNER, BUDGETS, [], language="id")

        assert english.summary == "Budget predictions (cached): 1 high risk, 0 medium risk categories."
        assert indonesian.summary.startswith("Prediksi budget (dari cache): 1 kategori risiko tinggi")
        assert english.overall_risk == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_category_names_follow_language(self, service, forecaster):
        await service.get_or_generate(OWNER, BUDGETS, [], language="en")
        assert forecaster.calls[0].budgets[0].category_name == "Food & Drinks"


class TestCacheKey:

    def test_ignores_budget_order_and_decimal_formatting(self):
        reordered = [
            Budget(owner_id=OWNER, category_id=2, amount=Decimal("500.00")),
            Budget(owner_id=OWNER, category_id=1, amount=Decimal("1000.0")),
        ]
        assert cache_key(OWNER, BUDGETS, "id") == cache_key(OWNER, reordered, "id")

    def test_depends_on_owner_period_and_language(self):
        weekly = [b.model_copy(update={"period": BudgetPeriod.WEEKLY}) for b in BUDGETS]
        base = cache_key(OWNER, BUDGETS, "id")
        assert base != cache_key("user-2", BUDGETS, "id")
        assert base != cache_key(OWNER, BUDGETS, "en")
        assert base != cache_key(OWNER, weekly, "id")


class TestCleanup:

    @pytest.mark.asyncio
    async def test_removes_entries_older_than_a_day(self, service, storage, clock):
        await service.get_or_generate(OWNER, BUDGETS, [])
        await service.get_or_generate("user-2", BUDGETS, [])

        clock.advance(hours=23)
        assert await service.cleanup(OWNER) == 0

        clock.advance(hours=2)
        assert await service.cleanup(OWNER) == 1
        assert await service.cleanup(OWNER) == 0
        assert len(storage._db.predictions) == 1


class TestRetry:
    """Forecaster failures, retries and error codes."""

    @pytest.mark.asyncio
    async def test_no_budgets_never_calls_forecaster(self, service, forecaster):
        with pytest.raises(PredictionError) as exc_info:
            await service.get_or_generate(OWNER, [], [], language="en")

        assert exc_info.value.code == PredictionErrorCode.NO_BUDGETS
        assert str(exc_info.value) == "No budgets provided for prediction"
        assert forecaster.calls == []

    @pytest.mark.asyncio
    async def test_auth_error_is_not_retried(self, service, forecaster, sleep):
        forecaster.errors = [PredictionError.from_code(PredictionErrorCode.AUTH_ERROR)]

        with pytest.raises(PredictionError) as exc_info:
            await service.get_or_generate(OWNER, BUDGETS, [])

        assert exc_info.value.code == PredictionErrorCode.AUTH_ERROR
        assert len(forecaster.calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried_with_backoff(self, service, forecaster, sleep):
        forecaster.errors = [
            PredictionError.from_code(PredictionErrorCode.FORECASTER_ERROR),
            PredictionError.from_code(PredictionErrorCode.INVALID_RESPONSE),
        ]

        result = await service.get_or_generate(OWNER, BUDGETS, [])

        assert not result.from_cache
        assert len(forecaster.calls) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, service, forecaster):
        forecaster.errors = [
            PredictionError.from_code(PredictionErrorCode.FORECASTER_ERROR) for _ in range(3)
        ]

        with pytest.raises(PredictionError) as exc_info:
            await service.get_or_generate(OWNER, BUDGETS, [])

        assert exc_info.value.code == PredictionErrorCode.FORECASTER_ERROR
        assert len(forecaster.calls) == 3

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_unknown_error(self, service, forecaster):
        forecaster.errors = [RuntimeError("boom")] * 3

        with pytest.raises(PredictionError) as exc_info:
            await service.get_or_generate(OWNER, BUDGETS, [])

        assert exc_info.value.code == PredictionErrorCode.UNKNOWN_ERROR
        assert isinstance(exc_info.value.original_error, RuntimeError)


class TestStoreFailures:
    """The cache store is best effort."""

    @pytest.mark.asyncio
    async def test_write_failure_still_returns_predictions(self, service, storage):
        storage.fail_writes = True

        result = await service.get_or_generate(OWNER, BUDGETS, [])

        assert not result.from_cache
        assert len(result.predictions) == 2
        assert storage._db.predictions == {}

    @pytest.mark.asyncio
    async def test_read_failure_serves_last_seen_entry(self, service, storage, forecaster):
        await service.get_or_generate(OWNER, BUDGETS, [])
        storage.fail_reads = True

        result = await service.get_or_generate(OWNER, BUDGETS, [])

        assert result.from_cache
        assert len(forecaster.calls) == 1

    @pytest.mark.asyncio
    async def test_read_failure_without_memo_regenerates(self, storage, forecaster, clock):
        service = PredictionCacheService(storage, forecaster, clock=clock)
        storage.fail_reads = True

        result = await service.get_or_generate(OWNER, BUDGETS, [])

        assert not result.from_cache
        assert len(forecaster.calls) == 1

    @pytest.mark.asyncio
    async def test_ttl_is_configurable(self, storage, forecaster, clock):
        service = PredictionCacheService(storage, forecaster, clock=clock, ttl=timedelta(minutes=5))
        await service.get_or_generate(OWNER, BUDGETS, [])
        clock.advance(minutes=5)

        assert not (await service.get_or_generate(OWNER, BUDGETS, [])).from_cache
