"""Transaction validation."""

from ledger_core.validation.validator import (
    TransactionValidator,
    ValidationError,
    describe_issues,
)

__all__ = [
    "TransactionValidator",
    "ValidationError",
    "describe_issues",
]
