"""
Ledger Orchestrator

This module ties together the repositories, validator and budget
aggregator, and defines the only flows that change ledger state:
1. Create transaction (validate → insert record → apply deltas → refresh budgets)
2. Update transaction (validate → reverse old + apply new → update record)
3. Delete transaction (reverse deltas → delete record)

DESIGN DECISION: The remote store has no transactions, so each flow
writes in a fixed order chosen to fail safe:
- Validation never writes
- Every wallet change for one operation goes out as ONE batch
- If a later write fails, the earlier one is compensated and the
  failure is raised; if the compensation fails too, the raised
  PersistenceError is marked `requires_reconciliation`
- A wallet write failure is never logged and swallowed

Everything after validation (writes, compensation, budget refresh) runs
as one flow under asyncio.shield, so a cancelled caller cannot abandon a
half-applied operation or skip its budget refresh.

Budget `spent` is derived data: a failed budget refresh is logged and
retried later, and does not fail the ledger operation.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from ledger_core.budgets.aggregator import BudgetAggregator
from ledger_core.categories import CategoryResolver
from ledger_core.config import get_settings
from ledger_core.ledger.balance import (
    BalanceDirection,
    combine_deltas,
    compute_deltas,
    expected_balance,
    negate_deltas,
)
from ledger_core.logging_config import get_logger
from ledger_core.models.finance import (
    BudgetPeriod,
    DateRange,
    Transaction,
    TransactionInput,
    TransactionPatch,
    TransactionType,
    ValidationIssue,
    Wallet,
    WalletInput,
    WalletReconciliation,
    utc_now,
)
from ledger_core.predictions.cache import PredictionCacheService
from ledger_core.predictions.errors import is_retryable
from ledger_core.retry import RetryPolicy
from ledger_core.services.forecast.gemini_forecaster import GeminiForecaster
from ledger_core.services.forecast.interface import ForecasterInterface
from ledger_core.services.storage.google_sheets import (
    GoogleSheetsBudgetRepository,
    GoogleSheetsClient,
    GoogleSheetsPredictionCacheStorage,
    GoogleSheetsTransactionRepository,
    GoogleSheetsWalletRepository,
)
from ledger_core.services.storage.interface import (
    DuplicateError,
    NotFoundError,
    PersistenceError,
    TransactionRepository,
    TransferDeletionProcedure,
    WalletRepository,
)
from ledger_core.services.storage.memory import (
    InMemoryBudgetRepository,
    InMemoryDatabase,
    InMemoryPredictionCacheStorage,
    InMemoryTransactionRepository,
    InMemoryWalletRepository,
)
from ledger_core.validation.validator import TransactionValidator, ValidationError

logger = get_logger(__name__)

# Fields that can never be cleared by a patch
_REQUIRED_FIELDS = ("type", "amount", "fee", "wallet_id", "description", "occurred_at")


def is_transient_write_error(exc: BaseException) -> bool:
    """Store failures worth retrying (a missing or duplicate row won't fix itself)."""
    return isinstance(exc, PersistenceError) and not isinstance(
        exc, (NotFoundError, DuplicateError)
    )


def _not_found(entity: str, entity_id: UUID) -> ValidationError:
    return ValidationError([
        ValidationIssue(
            field=f"{entity}_id",
            issue_type="not_found",
            message=f"{entity.capitalize()} not found: {entity_id}",
            severity="error",
        )
    ])


def _newest_first(transactions: list[Transaction]) -> list[Transaction]:
    """
    Sort by occurred_at descending, then created_at descending.

    Rows equal on both keys keep store (insertion) order, oldest row
    first; sorted() is stable under reverse=True.
    """
    return sorted(transactions, key=lambda t: (t.occurred_at, t.created_at), reverse=True)


class LedgerOrchestrator:
    """
    The single writer of wallet balances and transaction records.

    Args:
        wallets: Wallet repository
        transactions: Transaction repository
        budgets: Budget aggregator (refreshed after every ledger write)
        validator: Transaction validator (built from `wallets` if omitted)
        transfer_procedure: Optional atomic reverse-and-delete for transfers
        write_retry: Retry for record deletes and compensating writes
        clock: Returns "now"; stamps created_at on new wallets and transactions
    """

    def __init__(
        self,
        wallets: WalletRepository,
        transactions: TransactionRepository,
        budgets: BudgetAggregator,
        validator: Optional[TransactionValidator] = None,
        transfer_procedure: Optional[TransferDeletionProcedure] = None,
        write_retry: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._wallets = wallets
        self._transactions = transactions
        self._budgets = budgets
        self._clock = clock or utc_now
        self._validator = validator or TransactionValidator(wallets, clock=self._clock)
        self._transfer_procedure = transfer_procedure
        self._write_retry = write_retry or RetryPolicy(
            max_retries=2,
            retryable=is_transient_write_error,
        )

    @property
    def budgets(self) -> BudgetAggregator:
        return self._budgets

    # =========================================================================
    # WALLETS
    # =========================================================================

    async def create_wallet(self, owner_id: str, data: WalletInput) -> Wallet:
        """Create a wallet whose balance starts at its opening balance."""
        wallet = Wallet(
            owner_id=owner_id,
            name=data.name,
            type=data.type,
            balance=data.opening_balance,
            opening_balance=data.opening_balance,
            color=data.color,
            icon=data.icon,
            created_at=self._clock(),
        )
        saved = await self._wallets.insert(wallet)
        logger.info("wallet_created", wallet_id=str(saved.id), owner_id=owner_id)
        return saved

    async def get_wallet(self, wallet_id: UUID) -> Optional[Wallet]:
        return await self._wallets.get(wallet_id)

    async def list_wallets(self, owner_id: str) -> list[Wallet]:
        return await self._wallets.list_for_owner(owner_id)

    async def delete_wallet(self, wallet_id: UUID) -> int:
        """
        Delete a wallet and every transaction touching it.

        Each transaction goes through the normal delete path, so the
        counterpart wallet of a transfer gets its balance restored.

        Returns:
            Number of transactions removed

        Raises:
            ValidationError: If the wallet doesn't exist
            PersistenceError: If a write fails (transactions already
                              removed stay removed and their budgets are
                              still refreshed; the wallet remains)
        """
        wallet = await self._wallets.get(wallet_id)
        if wallet is None:
            raise _not_found("wallet", wallet_id)

        await self._before_mutation()
        history = await self._transactions.list_transactions(wallet_id=wallet_id)
        return await asyncio.shield(self._delete_wallet_flow(wallet, history))

    async def reconcile_wallet(self, wallet_id: UUID) -> WalletReconciliation:
        """Compare a wallet's recorded balance with the balance its history implies."""
        wallet = await self._wallets.get(wallet_id)
        if wallet is None:
            raise _not_found("wallet", wallet_id)

        history = await self._transactions.list_transactions(wallet_id=wallet_id)
        result = WalletReconciliation(
            wallet_id=wallet_id,
            recorded_balance=wallet.balance,
            expected_balance=expected_balance(wallet.opening_balance, wallet_id, history),
        )
        if not result.is_consistent:
            logger.warning(
                "wallet_out_of_balance",
                wallet_id=str(wallet_id),
                recorded=str(result.recorded_balance),
                expected=str(result.expected_balance),
            )
        return result

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(self, owner_id: str, data: TransactionInput) -> Transaction:
        """
        Record a new transaction and apply its effect to wallet balances.

        Raises:
            ValidationError: If the transaction is invalid (nothing written)
            PersistenceError: If a store write fails (record compensated)
        """
        await self._before_mutation()
        await self._validator.ensure_valid(owner_id, data)

        transaction = Transaction(
            owner_id=owner_id,
            created_at=self._clock(),
            **data.model_dump(),
        )
        return await asyncio.shield(self._create_flow(transaction))

    async def update_transaction(
        self,
        transaction_id: UUID,
        patch: TransactionPatch,
    ) -> Transaction:
        """
        Change a transaction, moving its wallet effect from the old version
        to the new one in one combined batch.

        A type change clears fields that no longer apply.

        Raises:
            ValidationError: If the transaction doesn't exist or the result
                             is invalid (nothing written)
            PersistenceError: If a store write fails (batch compensated)
        """
        existing = await self._transactions.get(transaction_id)
        if existing is None:
            raise _not_found("transaction", transaction_id)

        await self._before_mutation()
        merged = self._merge(existing, patch)
        await self._validator.ensure_valid(existing.owner_id, merged, previous=existing)

        updated = Transaction(
            id=existing.id,
            owner_id=existing.owner_id,
            created_at=existing.created_at,
            **merged.model_dump(),
        )
        return await asyncio.shield(self._update_flow(existing, updated))

    async def delete_transaction(self, transaction_id: UUID) -> Transaction:
        """
        Remove a transaction and reverse its wallet effect.

        Returns:
            The deleted transaction

        Raises:
            ValidationError: If the transaction doesn't exist
            PersistenceError: If a store write fails. When the balance
                              reversal fails the record is left in place.
        """
        existing = await self._transactions.get(transaction_id)
        if existing is None:
            raise _not_found("transaction", transaction_id)

        await self._before_mutation()
        await asyncio.shield(self._delete_flow(existing))
        return existing

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        return await self._transactions.get(transaction_id)

    async def list_for_wallet(
        self,
        wallet_id: UUID,
        date_range: Optional[DateRange] = None,
    ) -> list[Transaction]:
        """
        Transactions where the wallet is the source or the destination,
        newest first (occurred_at, then created_at).
        """
        transactions = await self._transactions.list_transactions(
            wallet_id=wallet_id,
            date_from=date_range.start if date_range else None,
            date_to=date_range.end if date_range else None,
        )
        return _newest_first(transactions)

    async def list_for_category(
        self,
        owner_id: str,
        category_id: int,
        period: BudgetPeriod,
    ) -> list[Transaction]:
        """Category transactions inside the current window of `period`, newest first."""
        window = self._budgets.window_for(period)
        transactions = await self._transactions.list_transactions(
            owner_id=owner_id,
            category_id=category_id,
            date_from=window.start,
            date_to=window.end,
        )
        return _newest_first(transactions)

    # =========================================================================
    # SHIELDED FLOWS
    # =========================================================================
    # Each flow is the whole of an operation after validation: its store
    # writes plus the budget refresh. A cancelled caller stops waiting, but
    # the flow runs to the end, so budgets are always refreshed or marked
    # stale once a write has been issued.

    async def _create_flow(self, transaction: Transaction) -> Transaction:
        saved = await self._create_write_phase(transaction)
        logger.info(
            "transaction_created",
            transaction_id=str(saved.id),
            owner_id=saved.owner_id,
            type=saved.type.value,
            amount=str(saved.amount),
        )
        await self._budgets.refresh_or_mark_stale(saved.owner_id, [saved.category_id])
        return saved

    async def _update_flow(self, existing: Transaction, updated: Transaction) -> Transaction:
        saved = await self._update_write_phase(existing, updated)
        logger.info(
            "transaction_updated",
            transaction_id=str(saved.id),
            owner_id=saved.owner_id,
            type=saved.type.value,
            type_changed=existing.type != saved.type,
        )
        await self._budgets.refresh_or_mark_stale(
            saved.owner_id,
            [existing.category_id, saved.category_id],
        )
        return saved

    async def _delete_flow(self, existing: Transaction) -> None:
        await self._delete_write_phase(existing)
        logger.info(
            "transaction_deleted",
            transaction_id=str(existing.id),
            owner_id=existing.owner_id,
            type=existing.type.value,
        )
        await self._budgets.refresh_or_mark_stale(existing.owner_id, [existing.category_id])

    async def _delete_wallet_flow(self, wallet: Wallet, history: list[Transaction]) -> int:
        removed_categories = set()
        try:
            for transaction in history:
                await self._delete_write_phase(transaction)
                removed_categories.add(transaction.category_id)

            await self._write_retry.call(self._delete_wallet_row, wallet.id)
        finally:
            # Runs for whatever was removed, even when the cascade stopped early
            await self._budgets.refresh_or_mark_stale(wallet.owner_id, removed_categories)

        logger.info(
            "wallet_deleted",
            wallet_id=str(wallet.id),
            owner_id=wallet.owner_id,
            transactions_removed=len(history),
        )
        return len(history)

    # =========================================================================
    # WRITE PHASES
    # =========================================================================

    async def _create_write_phase(self, transaction: Transaction) -> Transaction:
        try:
            saved = await self._transactions.insert(transaction)
        except PersistenceError as e:
            logger.error(
                "transaction_insert_failed",
                transaction_id=str(transaction.id),
                error=str(e),
            )
            raise

        try:
            await self._wallets.batch_apply_deltas(compute_deltas(saved))
        except PersistenceError as e:
            logger.error(
                "wallet_batch_failed",
                operation="create",
                transaction_id=str(saved.id),
                error=str(e),
            )
            compensated = await self._compensate(
                "create",
                saved.id,
                self._remove_record,
                saved.id,
            )
            raise PersistenceError(
                f"Failed to apply transaction to wallets: {e}",
                requires_reconciliation=not compensated,
            ) from e

        return saved

    async def _update_write_phase(
        self,
        existing: Transaction,
        updated: Transaction,
    ) -> Transaction:
        deltas = combine_deltas(
            compute_deltas(existing, BalanceDirection.REVERSE),
            compute_deltas(updated, BalanceDirection.APPLY),
        )

        if deltas:
            try:
                await self._wallets.batch_apply_deltas(deltas)
            except PersistenceError as e:
                logger.error(
                    "wallet_batch_failed",
                    operation="update",
                    transaction_id=str(existing.id),
                    error=str(e),
                )
                raise

        try:
            return await self._transactions.update(updated)
        except PersistenceError as e:
            logger.error(
                "transaction_update_failed",
                transaction_id=str(existing.id),
                error=str(e),
            )
            compensated = True
            if deltas:
                compensated = await self._compensate(
                    "update",
                    existing.id,
                    self._wallets.batch_apply_deltas,
                    negate_deltas(deltas),
                )
            raise PersistenceError(
                f"Failed to update transaction: {e}",
                requires_reconciliation=not compensated,
            ) from e

    async def _delete_write_phase(self, existing: Transaction) -> None:
        if existing.type == TransactionType.TRANSFER and self._transfer_procedure is not None:
            try:
                await self._transfer_procedure.delete_transfer(
                    existing.id,
                    existing.wallet_id,
                    existing.destination_wallet_id,
                    existing.amount,
                    existing.fee,
                )
            except PersistenceError as e:
                logger.error(
                    "transfer_procedure_failed",
                    transaction_id=str(existing.id),
                    error=str(e),
                )
                raise
            return

        try:
            await self._wallets.batch_apply_deltas(
                compute_deltas(existing, BalanceDirection.REVERSE)
            )
        except PersistenceError as e:
            logger.error(
                "wallet_batch_failed",
                operation="delete",
                transaction_id=str(existing.id),
                error=str(e),
            )
            raise

        try:
            await self._write_retry.call(self._remove_record, existing.id, missing_ok=False)
        except PersistenceError as e:
            logger.error(
                "transaction_delete_failed",
                transaction_id=str(existing.id),
                error=str(e),
            )
            compensated = await self._compensate(
                "delete",
                existing.id,
                self._wallets.batch_apply_deltas,
                compute_deltas(existing, BalanceDirection.APPLY),
            )
            raise PersistenceError(
                f"Failed to delete transaction: {e}",
                requires_reconciliation=not compensated,
            ) from e

    async def _remove_record(self, transaction_id: UUID, missing_ok: bool = True) -> None:
        deleted = await self._transactions.delete(transaction_id)
        if not deleted and not missing_ok:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

    async def _delete_wallet_row(self, wallet_id: UUID) -> None:
        if not await self._wallets.delete(wallet_id):
            raise NotFoundError(f"Wallet not found: {wallet_id}")

    async def _compensate(
        self,
        operation: str,
        transaction_id: UUID,
        fn: Callable,
        *args,
    ) -> bool:
        """Undo an earlier write with retry. Returns False if it could not be undone."""
        try:
            await self._write_retry.call(fn, *args)
        except PersistenceError as e:
            logger.critical(
                "compensation_failed",
                operation=operation,
                transaction_id=str(transaction_id),
                error=str(e),
            )
            return False

        logger.warning(
            "compensation_applied",
            operation=operation,
            transaction_id=str(transaction_id),
        )
        return True

    async def _before_mutation(self) -> None:
        if self._budgets.stale_categories:
            await self._budgets.recompute_stale()

    @staticmethod
    def _merge(existing: Transaction, patch: TransactionPatch) -> TransactionInput:
        changes = patch.model_dump(exclude_unset=True)
        for field in _REQUIRED_FIELDS:
            if changes.get(field, ...) is None:
                del changes[field]

        base = existing.model_dump(include=set(TransactionInput.model_fields))
        new_type = changes.get("type", existing.type)
        if new_type != existing.type:
            if existing.type == TransactionType.TRANSFER:
                base["destination_wallet_id"] = None
                base["fee"] = 0
            if new_type == TransactionType.TRANSFER:
                base["category_id"] = None

        base.update(changes)
        return TransactionInput(**base)


def create_ledger_components(
    use_storage: bool = True,
    forecaster: Optional[ForecasterInterface] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> tuple[LedgerOrchestrator, PredictionCacheService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all ledger components.

    Args:
        use_storage: Whether to use Google Sheets storage.
                     Set to False for in-memory storage.
        forecaster: Forecasting backend (Gemini if omitted)
        clock: Returns "now" (UTC if omitted)

    Returns:
        (ledger_orchestrator, prediction_service, sheets_client)
    """
    settings = get_settings().ledger
    clock = clock or utc_now
    sheets_client = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            wallets = GoogleSheetsWalletRepository(sheets_client)
            transactions = GoogleSheetsTransactionRepository(sheets_client)
            budget_repo = GoogleSheetsBudgetRepository(sheets_client)
            prediction_storage = GoogleSheetsPredictionCacheStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            use_storage = False

    if not use_storage:
        db = InMemoryDatabase()
        wallets = InMemoryWalletRepository(db)
        transactions = InMemoryTransactionRepository(db)
        budget_repo = InMemoryBudgetRepository(db)
        prediction_storage = InMemoryPredictionCacheStorage(db)

    aggregator = BudgetAggregator(
        budget_repo,
        transactions,
        clock=clock,
        timezone_name=settings.budget_timezone,
        warning_threshold=settings.budget_warning_threshold,
    )
    validator = TransactionValidator(
        wallets,
        enforce_sufficient_balance=settings.enforce_sufficient_balance,
        clock=clock,
    )
    orchestrator = LedgerOrchestrator(
        wallets,
        transactions,
        aggregator,
        validator=validator,
        write_retry=RetryPolicy(
            max_retries=settings.write_retry_attempts - 1,
            retryable=is_transient_write_error,
        ),
        clock=clock,
    )

    prediction_service = PredictionCacheService(
        prediction_storage,
        forecaster or GeminiForecaster(),
        categories=CategoryResolver(),
        retry_policy=RetryPolicy(
            max_retries=settings.forecast_max_retries,
            base_delay=settings.forecast_backoff_base_seconds,
            factor=settings.forecast_backoff_factor,
            max_delay=settings.forecast_backoff_cap_seconds,
            retryable=is_retryable,
        ),
        clock=clock,
        ttl=timedelta(hours=settings.prediction_cache_ttl_hours),
        cleanup_age=timedelta(hours=settings.prediction_cleanup_age_hours),
        default_language=settings.default_language,
        timezone_name=settings.budget_timezone,
    )

    return orchestrator, prediction_service, sheets_client
