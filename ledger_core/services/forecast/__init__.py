"""Budget forecasting backends."""

from ledger_core.services.forecast.interface import ForecasterInterface
from ledger_core.services.forecast.gemini_forecaster import GeminiForecaster

__all__ = [
    "ForecasterInterface",
    "GeminiForecaster",
]
