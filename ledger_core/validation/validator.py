"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - FIELD VALIDATION:
- Amount and fee ranges
- Required fields per transaction type
- Transfer wallet pairing
- Runs without storage access

STAGE 2 - REFERENCE VALIDATION:
- Referenced wallets exist
- Referenced wallets belong to the owner
- Optional sufficient-balance check against the combined delta batch

Stage 2 only runs when stage 1 passes; it needs storage reads.

IMPORTANT: Validation NEVER silently fixes issues and never writes.
Every problem found is reported at once.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from ledger_core.ledger.balance import BalanceDirection, combine_deltas, compute_deltas
from ledger_core.logging_config import get_logger
from ledger_core.models.finance import (
    Transaction,
    TransactionInput,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    Wallet,
    WalletDelta,
    utc_now,
)
from ledger_core.services.storage.interface import WalletRepository

logger = get_logger(__name__)


class ValidationError(Exception):
    """
    Proposed transaction is invalid. Not retryable; nothing was written.

    Carries every error-level issue found plus a user-facing message.
    """

    def __init__(self, issues: list[ValidationIssue], message: Optional[str] = None):
        self.issues = issues
        super().__init__(message or describe_issues(issues))


def describe_issues(issues: Iterable[ValidationIssue]) -> str:
    """Join error-level messages into one user-facing sentence."""
    messages = [issue.message for issue in issues if issue.severity == "error"]
    if not messages:
        return "Transaction is invalid"
    return "; ".join(messages)


def _error(field: str, issue_type: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, issue_type=issue_type, message=message, severity="error")


class TransactionValidator:
    """
    Validates proposed transactions before the orchestrator writes anything.

    Args:
        wallets: Repository used for reference checks
        enforce_sufficient_balance: Reject batches that would take a
            wallet below zero
        clock: Returns "now"; used for the future-date warning
    """

    def __init__(
        self,
        wallets: WalletRepository,
        enforce_sufficient_balance: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._wallets = wallets
        self._enforce_sufficient_balance = enforce_sufficient_balance
        self._clock = clock or utc_now

    def validate_fields(self, data: TransactionInput) -> list[ValidationIssue]:
        """
        Stage 1: Field validation.

        Returns: list of issues (empty when the fields are valid)
        """
        issues = []

        if data.amount <= 0:
            issues.append(_error("amount", "invalid_value", "Amount must be greater than zero"))

        if data.fee < 0:
            issues.append(_error("fee", "invalid_value", "Fee cannot be negative"))

        if data.type == TransactionType.TRANSFER:
            if data.destination_wallet_id is None:
                issues.append(_error(
                    "destination_wallet_id",
                    "missing",
                    "Transfer requires a destination wallet",
                ))
            elif data.destination_wallet_id == data.wallet_id:
                issues.append(_error(
                    "destination_wallet_id",
                    "invalid_value",
                    "Source and destination wallets must be different",
                ))
            if data.category_id is not None:
                issues.append(_error(
                    "category_id",
                    "invalid_value",
                    "Transfers do not carry a category",
                ))
        else:
            if data.category_id is None:
                issues.append(_error(
                    "category_id",
                    "missing",
                    f"Category is required for {data.type.value}",
                ))
            if data.destination_wallet_id is not None:
                issues.append(_error(
                    "destination_wallet_id",
                    "invalid_value",
                    "Only transfers have a destination wallet",
                ))
            if data.fee != 0:
                issues.append(_error("fee", "invalid_value", "Only transfers carry a fee"))

        # Future dates are allowed (scheduled entries) but flagged
        if data.occurred_at > self._clock().date():
            issues.append(ValidationIssue(
                field="occurred_at",
                issue_type="future_date",
                message=f"Transaction date ({data.occurred_at}) is in the future",
                severity="warning",
            ))

        return issues

    def check_references(
        self,
        owner_id: str,
        wallet_ids: Iterable,
        wallets: dict,
    ) -> list[ValidationIssue]:
        """Stage 2a: every referenced wallet exists and belongs to the owner."""
        issues = []
        for field, wallet_id in wallet_ids:
            wallet = wallets.get(wallet_id)
            if wallet is None:
                issues.append(_error(field, "not_found", f"Wallet not found: {wallet_id}"))
            elif wallet.owner_id != owner_id:
                issues.append(_error(
                    field,
                    "forbidden",
                    f"Wallet {wallet_id} does not belong to this user",
                ))
        return issues

    def check_sufficient_balance(
        self,
        wallets: dict,
        deltas: list[WalletDelta],
    ) -> list[ValidationIssue]:
        """
        Stage 2b: no wallet may go below zero after the batch.

        Only wallets whose net delta is negative are checked, so an update
        that shrinks an expense never fails this check.
        """
        issues = []
        for delta in deltas:
            wallet: Optional[Wallet] = wallets.get(delta.wallet_id)
            if wallet is None or delta.delta >= 0:
                continue
            if wallet.balance + delta.delta < 0:
                issues.append(_error(
                    "amount",
                    "insufficient_balance",
                    f"Insufficient balance in {wallet.name}: "
                    f"{wallet.balance} available, {-delta.delta} required",
                ))
        return issues

    async def validate(
        self,
        owner_id: str,
        data: TransactionInput,
        previous: Optional[Transaction] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation.

        Args:
            owner_id: Owner the transaction will belong to
            data: Proposed transaction fields
            previous: Current version when validating an update; its
                      reversal is folded into the balance check

        Returns:
            ValidationResult with all issues found
        """
        issues = self.validate_fields(data)
        fields_valid = not any(issue.severity == "error" for issue in issues)

        references_valid = False
        if fields_valid:
            referenced = [("wallet_id", data.wallet_id)]
            if data.destination_wallet_id is not None:
                referenced.append(("destination_wallet_id", data.destination_wallet_id))

            wallets = await self._wallets.get_many(wallet_id for _, wallet_id in referenced)
            reference_issues = self.check_references(owner_id, referenced, wallets)
            issues.extend(reference_issues)
            references_valid = not reference_issues

            if references_valid and self._enforce_sufficient_balance:
                candidate = Transaction(owner_id=owner_id, **data.model_dump())
                groups = [compute_deltas(candidate)]
                if previous is not None:
                    groups.insert(0, compute_deltas(previous, BalanceDirection.REVERSE))
                    extra = [w for w in previous.wallet_ids if w not in wallets]
                    wallets.update(await self._wallets.get_many(extra))
                issues.extend(self.check_sufficient_balance(wallets, combine_deltas(*groups)))

        return ValidationResult(
            fields_valid=fields_valid,
            references_valid=references_valid,
            issues=issues,
        )

    async def ensure_valid(
        self,
        owner_id: str,
        data: TransactionInput,
        previous: Optional[Transaction] = None,
    ) -> ValidationResult:
        """Validate and raise ValidationError on any error-level issue."""
        result = await self.validate(owner_id, data, previous)
        if result.has_errors:
            errors = [issue for issue in result.issues if issue.severity == "error"]
            logger.info(
                "transaction_rejected",
                owner_id=owner_id,
                error_count=result.error_count,
                fields=[issue.field for issue in errors],
            )
            raise ValidationError(errors)
        return result
