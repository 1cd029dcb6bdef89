"""Budget spending aggregation, status and alerts."""

from ledger_core.budgets.aggregator import BudgetAggregator

__all__ = ["BudgetAggregator"]
