"""Balance arithmetic and period windows."""

from ledger_core.ledger.balance import (
    BalanceDirection,
    apply_deltas,
    combine_deltas,
    compute_deltas,
    expected_balance,
    negate_deltas,
)
from ledger_core.ledger.periods import local_today, period_window

__all__ = [
    "BalanceDirection",
    "apply_deltas",
    "combine_deltas",
    "compute_deltas",
    "expected_balance",
    "local_today",
    "negate_deltas",
    "period_window",
]
