"""Typed prediction failures."""

from enum import Enum
from typing import Optional


class PredictionErrorCode(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    NO_BUDGETS = "NO_BUDGETS"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    FORECASTER_ERROR = "FORECASTER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Retrying cannot fix these
NON_RETRYABLE_CODES = frozenset({
    PredictionErrorCode.AUTH_ERROR,
    PredictionErrorCode.NO_BUDGETS,
})


MESSAGES = {
    PredictionErrorCode.AUTH_ERROR: {
        "en": "Not authorized to request predictions",
        "id": "Tidak diizinkan meminta prediksi",
    },
    PredictionErrorCode.NO_BUDGETS: {
        "en": "No budgets provided for prediction",
        "id": "Tidak ada budget untuk diprediksi",
    },
    PredictionErrorCode.INVALID_RESPONSE: {
        "en": "Invalid response from prediction service",
        "id": "Respons tidak valid dari layanan prediksi",
    },
    PredictionErrorCode.FORECASTER_ERROR: {
        "en": "Failed to generate predictions",
        "id": "Gagal membuat prediksi",
    },
    PredictionErrorCode.UNKNOWN_ERROR: {
        "en": "Unexpected error during prediction",
        "id": "Terjadi kesalahan saat membuat prediksi",
    },
}


def message_for(code: PredictionErrorCode, language: str = "id") -> str:
    """User-facing message for a code (Indonesian unless language is 'en')."""
    return MESSAGES[code]["en" if language == "en" else "id"]


class PredictionError(Exception):
    """
    A forecast could not be produced.

    `code` classifies the failure; `retryable` tells the retry policy
    whether another attempt could succeed.
    """

    def __init__(
        self,
        message: str,
        code: PredictionErrorCode = PredictionErrorCode.UNKNOWN_ERROR,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.original_error = original_error

    @classmethod
    def from_code(
        cls,
        code: PredictionErrorCode,
        language: str = "id",
        original_error: Optional[BaseException] = None,
    ) -> "PredictionError":
        return cls(message_for(code, language), code, original_error)

    @property
    def retryable(self) -> bool:
        return self.code not in NON_RETRYABLE_CODES


def is_retryable(exc: BaseException) -> bool:
    """Retry predicate for forecaster calls."""
    return isinstance(exc, PredictionError) and exc.retryable
