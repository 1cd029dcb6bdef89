"""
Abstract Forecaster Interface

The forecaster is an external function that estimates where each budget's
spending will end up. The prediction cache service only depends on this
interface, so the Gemini implementation can be replaced or faked.
"""

from abc import ABC, abstractmethod

from ledger_core.models.prediction import ForecastRequest, ForecastResponse


class ForecasterInterface(ABC):
    """Interface for budget forecasting backends."""

    @abstractmethod
    async def forecast(self, request: ForecastRequest) -> ForecastResponse:
        """
        Forecast end-of-period spending for every budget in the request.

        Raises:
            PredictionError: With a code describing the failure
        """
        pass
