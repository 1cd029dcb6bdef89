"""
Core Ledger Models

These models define the strict schemas for wallets, transactions and
budgets. They are designed to:
1. Enforce ledger invariants at construction time
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Money is always Decimal. Floats never enter the ledger,
so a reversal restores a balance to the exact cent it started from.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class WalletType(str, Enum):
    """Kinds of money containers."""
    CASH = "cash"
    BANK = "bank"
    E_WALLET = "e-wallet"
    INVESTMENT = "investment"


class TransactionType(str, Enum):
    """
    Transaction types.

    A transfer touches two wallets; income and expense touch one.
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class BudgetPeriod(str, Enum):
    """Budget window length."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetStatus(str, Enum):
    """How close a budget is to its limit."""
    ON_TRACK = "on_track"
    WARNING = "warning"
    EXCEEDED = "exceeded"


# =============================================================================
# WALLETS
# =============================================================================

class WalletInput(BaseModel):
    """Fields a user supplies when creating a wallet."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Wallet display name"
    )
    type: WalletType = WalletType.CASH
    opening_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance the wallet starts with"
    )
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)


class Wallet(BaseModel):
    """
    A named money container.

    CRITICAL: `balance` is the source of truth and is only ever changed by
    the ledger orchestrator. `opening_balance` is written once so the
    balance can always be reconciled against transaction history.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    balance: Decimal
    opening_balance: Decimal = Decimal("0")
    type: WalletType = WalletType.CASH
    color: Optional[str] = None
    icon: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class WalletDelta(BaseModel):
    """A signed balance adjustment for one wallet."""
    model_config = ConfigDict(frozen=True)

    wallet_id: UUID
    delta: Decimal


class WalletReconciliation(BaseModel):
    """Recorded balance compared with the balance implied by history."""

    wallet_id: UUID
    recorded_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.expected_balance

    @property
    def is_consistent(self) -> bool:
        return self.difference == 0


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionInput(BaseModel):
    """
    Transaction fields as supplied by the caller.

    This is PROPOSED data: it is deliberately permissive so the validator
    can report every problem at once instead of failing on the first one.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Decimal
    fee: Decimal = Decimal("0")
    category_id: Optional[int] = None
    wallet_id: UUID
    destination_wallet_id: Optional[UUID] = None
    description: str = Field(default="", max_length=500)
    occurred_at: date


class TransactionPatch(BaseModel):
    """
    Partial update for a transaction.

    Only fields explicitly set are applied (see `model_dump(exclude_unset=True)`).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = None
    fee: Optional[Decimal] = None
    category_id: Optional[int] = None
    wallet_id: Optional[UUID] = None
    destination_wallet_id: Optional[UUID] = None
    description: Optional[str] = Field(default=None, max_length=500)
    occurred_at: Optional[date] = None


class Transaction(BaseModel):
    """
    A persisted income, expense or transfer.

    CRITICAL: Only the ledger orchestrator creates, changes or deletes
    these, so that wallet effects stay synchronized.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    fee: Decimal = Field(default=Decimal("0"), ge=0)
    category_id: Optional[int] = None
    wallet_id: UUID
    destination_wallet_id: Optional[UUID] = None
    description: str = Field(default="", max_length=500)
    occurred_at: date
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_shape(self) -> 'Transaction':
        """Enforce the per-type field rules."""
        if self.type == TransactionType.TRANSFER:
            if self.destination_wallet_id is None:
                raise ValueError("Transfer requires a destination wallet")
            if self.destination_wallet_id == self.wallet_id:
                raise ValueError("Transfer source and destination must differ")
            if self.category_id is not None:
                raise ValueError("Transfers do not carry a category")
        else:
            if self.category_id is None:
                raise ValueError(f"{self.type.value.capitalize()} requires a category")
            if self.destination_wallet_id is not None:
                raise ValueError("Only transfers have a destination wallet")
            if self.fee != 0:
                raise ValueError("Only transfers carry a fee")
        return self

    @property
    def wallet_ids(self) -> list[UUID]:
        """Wallets this transaction touches, source first."""
        if self.destination_wallet_id is not None:
            return [self.wallet_id, self.destination_wallet_id]
        return [self.wallet_id]


class DateRange(BaseModel):
    """Inclusive date range."""

    start: date
    end: date

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetInput(BaseModel):
    """Fields a user supplies when creating a budget."""

    category_id: int
    amount: Decimal = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY


class Budget(BaseModel):
    """
    A spending limit for a category and period.

    `spent` is a cached aggregate. It is recomputed from transactions by
    the budget aggregator and is never authoritative.
    """

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    category_id: int
    amount: Decimal = Field(..., gt=0)
    spent: Decimal = Field(default=Decimal("0"), ge=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY


class BudgetSummary(BaseModel):
    """Totals across a set of budgets."""

    total_budgeted: Decimal
    total_spent: Decimal
    overall_progress: Decimal = Field(
        ...,
        description="total_spent / total_budgeted, 0 when nothing is budgeted"
    )
    remaining_budget: Decimal = Field(
        ...,
        description="May be negative, signalling an overrun"
    )


class BudgetAlert(BaseModel):
    """A budget that is over, or close to, its limit."""

    budget: Budget
    status: BudgetStatus
    utilization: Decimal
    message: str


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'not_found')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Field validation (amounts, required fields, wallet pairing)
    Stage 2: Reference validation (wallets exist and belong to the owner)
    """

    validated_at: datetime = Field(default_factory=utc_now)

    fields_valid: bool
    references_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.fields_valid and self.references_valid and not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
