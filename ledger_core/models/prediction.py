"""
Prediction Models

Budget predictions are forward-looking estimates produced by an external
forecaster. They are cached for a few hours and regenerated on demand.

CRITICAL: A prediction is never a source of truth for spending. The
budget aggregator owns `spent`; predictions only estimate where it will end up.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ledger_core.models.finance import BudgetPeriod, utc_now


class RiskLevel(str, Enum):
    """Likelihood that a budget will be exceeded."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


RISK_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def highest_risk(levels: list[RiskLevel]) -> RiskLevel:
    """Overall risk is the worst per-category risk (LOW when empty)."""
    if not levels:
        return RiskLevel.LOW
    return max(levels, key=lambda level: RISK_ORDER[level])


# =============================================================================
# FORECASTER WIRE MODELS
# =============================================================================

class BudgetForecastInput(BaseModel):
    """One budget as sent to the forecaster."""

    category_id: int
    category_name: str
    limit: Decimal
    period: BudgetPeriod


class ForecastRequest(BaseModel):
    """Request body for the external forecasting function."""

    budgets: list[BudgetForecastInput]
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    current_date: date
    language: str = Field(default="id", pattern="^(en|id)$")


class CategoryForecast(BaseModel):
    """Forecaster output for one category."""

    category_id: int
    projected_spend: Decimal = Field(..., ge=0)
    risk: RiskLevel
    current_spend: Optional[Decimal] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    insight: Optional[str] = None


class ForecastResponse(BaseModel):
    """Response body from the external forecasting function."""

    predictions: list[CategoryForecast]
    overall_risk: RiskLevel
    summary: str = ""


# =============================================================================
# CACHED PREDICTIONS
# =============================================================================

class BudgetPrediction(BaseModel):
    """A cached forecast for one budget category."""

    category_id: int
    limit: Decimal
    projected_spend: Decimal
    risk: RiskLevel
    period_start: date
    period_end: date
    generated_at: datetime = Field(default_factory=utc_now)
    current_spend: Optional[Decimal] = None
    confidence: Optional[float] = None
    insight: Optional[str] = None

    @property
    def projected_utilization(self) -> Decimal:
        """Projected spend as a fraction of the limit (0 when there is no limit)."""
        if self.limit == 0:
            return Decimal("0")
        return self.projected_spend / self.limit


class PredictionCacheEntry(BaseModel):
    """
    One cached forecast run for an owner's budget set.

    Keyed by a signature of (owner, budgets, language); see the
    prediction cache service.
    """

    cache_key: str
    owner_id: str
    language: str
    generated_at: datetime
    period_start: date
    period_end: date
    predictions: list[BudgetPrediction] = Field(default_factory=list)
    overall_risk: RiskLevel = RiskLevel.LOW
    summary: str = ""


class PredictionResult(BaseModel):
    """What callers of the prediction cache service get back."""

    entry: PredictionCacheEntry
    from_cache: bool

    @property
    def predictions(self) -> list[BudgetPrediction]:
        return self.entry.predictions

    @property
    def overall_risk(self) -> RiskLevel:
        return self.entry.overall_risk

    @property
    def summary(self) -> str:
        return self.entry.summary
