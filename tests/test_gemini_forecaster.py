"""Tests for the Gemini forecaster (model mocked, no API calls)."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from ledger_core.config import GeminiSettings
from ledger_core.models import BudgetForecastInput, BudgetPeriod, ForecastRequest, RiskLevel
from ledger_core.predictions import PredictionError, PredictionErrorCode
from ledger_core.services.forecast import GeminiForecaster


GOOD_JSON = (
    '{"predictions": [{"category_id": 1, "projected_spend": 1250, "risk": "high", '
    '"confidence": 0.7, "insight": "Eating out a lot"}], '
    '"overall_risk": "high", "summary": "Food is over budget"}'
)


def _request(language="en", categories=(1,)):
    return ForecastRequest(
        budgets=[
            BudgetForecastInput(
                category_id=category_id,
                category_name=f"Category {category_id}",
                limit=Decimal("1000"),
                period=BudgetPeriod.MONTHLY,
            )
            for category_id in categories
        ],
        transactions=[{"amount": "40.00", "category_id": 1, "occurred_at": "2025-03-14"}],
        current_date=date(2025, 3, 15),
        language=language,
    )


def _forecaster(text=None, side_effect=None):
    model = MagicMock()
    model.generate_content_async = AsyncMock(
        return_value=MagicMock(text=text),
        side_effect=side_effect,
    )
    return GeminiForecaster(settings=GeminiSettings(api_key="test-key"), model=model), model


class TestPrompt:

    def test_prompt_includes_budgets_date_and_language(self):
        forecaster, _ = _forecaster()
        prompt = forecaster.build_prompt(_request(language="id"))

        assert "2025-03-15" in prompt
        assert '"category_name": "Category 1"' in prompt
        assert "Bahasa Indonesia" in prompt
        assert '"overall_risk"' in prompt


class TestParseResponse:

    def test_ignores_text_around_json(self):
        forecaster, _ = _forecaster()
        response = forecaster.parse_response(
            f"Here you go:\n```json\n{GOOD_JSON}\n```", _request()
        )

        assert response.overall_risk == RiskLevel.HIGH
        assert response.predictions[0].projected_spend == Decimal("1250")
        assert response.predictions[0].insight == "Eating out a lot"

    @pytest.mark.parametrize("text", [
        "no json here",
        "{not valid json}",
        '{"predictions": [{"category_id": 1}], "overall_risk": "high"}',
        '{"predictions": [], "overall_risk": "catastrophic"}',
    ])
    def test_invalid_bodies(self, text):
        forecaster, _ = _forecaster()
        with pytest.raises(PredictionError) as exc_info:
            forecaster.parse_response(text, _request())
        assert exc_info.value.code == PredictionErrorCode.INVALID_RESPONSE
        assert exc_info.value.retryable

    def test_drops_categories_that_were_not_requested(self):
        forecaster, _ = _forecaster()
        text = (
            '{"predictions": ['
            '{"category_id": 1, "projected_spend": 10, "risk": "low"},'
            '{"category_id": 99, "projected_spend": 10, "risk": "high"}'
            '], "overall_risk": "high"}'
        )
        response = forecaster.parse_response(text, _request())
        assert [p.category_id for p in response.predictions] == [1]


class TestForecast:

    @pytest.mark.asyncio
    async def test_returns_parsed_response(self):
        forecaster, model = _forecaster(text=GOOD_JSON)
        response = await forecaster.forecast(_request())

        assert response.summary == "Food is over budget"
        model.generate_content_async.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_budgets(self):
        forecaster, model = _forecaster(text=GOOD_JSON)
        with pytest.raises(PredictionError) as exc_info:
            await forecaster.forecast(_request(categories=()))

        assert exc_info.value.code == PredictionErrorCode.NO_BUDGETS
        model.generate_content_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_permission_denied_is_auth_error(self):
        forecaster, _ = _forecaster(side_effect=google_exceptions.PermissionDenied("bad key"))
        with pytest.raises(PredictionError) as exc_info:
            await forecaster.forecast(_request(language="id"))

        assert exc_info.value.code == PredictionErrorCode.AUTH_ERROR
        assert not exc_info.value.retryable
        assert str(exc_info.value) == "Tidak diizinkan meminta prediksi"

    @pytest.mark.asyncio
    async def test_other_failures_are_forecaster_errors(self):
        forecaster, _ = _forecaster(side_effect=google_exceptions.ServiceUnavailable("down"))
        with pytest.raises(PredictionError) as exc_info:
            await forecaster.forecast(_request())

        assert exc_info.value.code == PredictionErrorCode.FORECASTER_ERROR
        assert isinstance(exc_info.value.original_error, google_exceptions.ServiceUnavailable)
