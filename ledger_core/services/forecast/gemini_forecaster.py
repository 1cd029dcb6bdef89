"""
Gemini Budget Forecaster

DESIGN DECISION: The LLM only ESTIMATES. It receives the real budgets and
transactions and answers with projected spend and a risk level per
category. It never sees or changes ledger state, and its answer is only
ever cached, never written back to budgets.

The model is asked for a bare JSON object. Anything outside the first
'{' and the last '}' is ignored; a body that still doesn't match the
response schema is an INVALID_RESPONSE.
"""

import json
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError as SchemaError

from ledger_core.config import GeminiSettings, get_settings
from ledger_core.logging_config import get_logger
from ledger_core.models.prediction import ForecastRequest, ForecastResponse
from ledger_core.predictions.errors import PredictionError, PredictionErrorCode
from ledger_core.services.forecast.interface import ForecasterInterface

logger = get_logger(__name__)


PROMPT_INTRO = {
    "en": (
        "You are a budgeting assistant for a personal finance app. "
        "Estimate how much will be spent in each budget category by the end "
        "of its period, based on the spending so far."
    ),
    "id": (
        "Anda adalah asisten anggaran untuk aplikasi keuangan pribadi. "
        "Perkirakan berapa pengeluaran di setiap kategori budget sampai akhir "
        "periodenya, berdasarkan pengeluaran sejauh ini."
    ),
}

RESPONSE_FORMAT = """Respond with ONLY a JSON object in this exact format:
{"predictions": [{"category_id": 1, "projected_spend": 0, "risk": "low|medium|high", "current_spend": 0, "confidence": 0.8, "insight": "one sentence"}], "overall_risk": "low|medium|high", "summary": "one or two sentences"}"""


class GeminiForecaster(ForecasterInterface):
    """
    Forecaster backed by Google Gemini.

    Args:
        settings: Gemini settings (loaded from the environment if omitted)
        model: Pre-built generative model; when given, genai is not configured
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[genai.GenerativeModel] = None,
    ):
        self._settings = settings or get_settings().gemini
        self._model = model or self._configure_genai()

    def _configure_genai(self) -> genai.GenerativeModel:
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            },
        )

    def build_prompt(self, request: ForecastRequest) -> str:
        budgets = [
            {
                "category_id": budget.category_id,
                "category_name": budget.category_name,
                "limit": str(budget.limit),
                "period": budget.period.value,
            }
            for budget in request.budgets
        ]
        language_note = (
            "Write insight and summary in English."
            if request.language == "en"
            else "Tulis insight dan summary dalam Bahasa Indonesia."
        )

        return f"""{PROMPT_INTRO.get(request.language, PROMPT_INTRO["id"])}

Today: {request.current_date.isoformat()}

Budgets:
{json.dumps(budgets, ensure_ascii=False)}

Transactions:
{json.dumps(request.transactions, ensure_ascii=False, default=str)}

{language_note}

{RESPONSE_FORMAT}"""

    def parse_response(self, text: str, request: ForecastRequest) -> ForecastResponse:
        """Extract and validate the JSON answer."""
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise PredictionError.from_code(PredictionErrorCode.INVALID_RESPONSE, request.language)

        try:
            data = json.loads(text[start:end])
            response = ForecastResponse.model_validate(data)
        except (json.JSONDecodeError, SchemaError) as e:
            raise PredictionError.from_code(
                PredictionErrorCode.INVALID_RESPONSE,
                request.language,
                e,
            ) from e

        known = {budget.category_id for budget in request.budgets}
        unknown = [p.category_id for p in response.predictions if p.category_id not in known]
        if unknown:
            logger.warning("forecast_unknown_categories_dropped", category_ids=unknown)
            response = response.model_copy(update={
                "predictions": [p for p in response.predictions if p.category_id in known],
            })
        return response

    async def forecast(self, request: ForecastRequest) -> ForecastResponse:
        if not request.budgets:
            raise PredictionError.from_code(PredictionErrorCode.NO_BUDGETS, request.language)

        try:
            result = await self._model.generate_content_async(self.build_prompt(request))
            text = result.text.strip()
        except (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated) as e:
            logger.error("forecaster_auth_failed", error=str(e))
            raise PredictionError.from_code(
                PredictionErrorCode.AUTH_ERROR,
                request.language,
                e,
            ) from e
        except Exception as e:
            logger.error("forecaster_call_failed", error=str(e), error_type=type(e).__name__)
            raise PredictionError.from_code(
                PredictionErrorCode.FORECASTER_ERROR,
                request.language,
                e,
            ) from e

        return self.parse_response(text, request)
