"""
Budget Aggregator

Maintains the cached `spent` figure on budgets and derives progress,
status and alerts from it.

CRITICAL: `spent` is derived data. It always equals the sum of expense
amounts for the budget's category inside the current window of its
period, and recomputing it any number of times gives the same result.
A failed refresh therefore never invalidates a ledger write; the
category is remembered as stale and recomputed later.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional
from uuid import UUID

from ledger_core.ledger.periods import local_today, period_window
from ledger_core.logging_config import get_logger
from ledger_core.models.finance import (
    Budget,
    BudgetAlert,
    BudgetInput,
    BudgetPeriod,
    BudgetStatus,
    BudgetSummary,
    DateRange,
    TransactionType,
    utc_now,
)
from ledger_core.services.storage.interface import (
    BudgetRepository,
    PersistenceError,
    TransactionRepository,
)

logger = get_logger(__name__)

ZERO = Decimal("0")


class BudgetAggregator:
    """
    Recomputes budget spending from transactions.

    Args:
        budgets: Budget repository
        transactions: Transaction repository (read only)
        clock: Returns "now"
        timezone_name: Timezone deciding which window "today" falls in
        warning_threshold: Utilization at which a budget becomes a warning
    """

    def __init__(
        self,
        budgets: BudgetRepository,
        transactions: TransactionRepository,
        clock: Optional[Callable[[], datetime]] = None,
        timezone_name: Optional[str] = None,
        warning_threshold: Decimal = Decimal("0.75"),
    ):
        self._budgets = budgets
        self._transactions = transactions
        self._clock = clock or utc_now
        self._timezone_name = timezone_name
        self._warning_threshold = Decimal(str(warning_threshold))
        self._stale: set[tuple[str, int]] = set()

    @property
    def stale_categories(self) -> frozenset[tuple[str, int]]:
        """(owner_id, category_id) pairs whose last refresh failed."""
        return frozenset(self._stale)

    def today(self) -> date:
        return local_today(self._clock(), self._timezone_name)

    def window_for(self, period: BudgetPeriod) -> DateRange:
        """Current window of a budget period."""
        return period_window(period, self.today())

    # =========================================================================
    # SPENDING
    # =========================================================================

    async def compute_spent(
        self,
        owner_id: str,
        category_id: int,
        period: BudgetPeriod,
    ) -> Decimal:
        """Sum of expense amounts for the category in the current window."""
        window = self.window_for(period)
        expenses = await self._transactions.list_transactions(
            owner_id=owner_id,
            category_id=category_id,
            transaction_type=TransactionType.EXPENSE,
            date_from=window.start,
            date_to=window.end,
        )
        return sum((t.amount for t in expenses), ZERO)

    async def recompute(
        self,
        owner_id: str,
        category_id: int,
        period: BudgetPeriod,
    ) -> Decimal:
        """
        Recompute and store `spent` on every budget of the owner matching
        the category and period.

        Idempotent. Returns the computed sum.
        """
        spent = await self.compute_spent(owner_id, category_id, period)
        budgets = await self._budgets.list_for_owner(owner_id, [category_id])
        for budget in budgets:
            if budget.period == period and budget.spent != spent:
                await self._budgets.update_spent(budget.id, spent)

        logger.debug(
            "budget_recomputed",
            owner_id=owner_id,
            category_id=category_id,
            period=period.value,
            spent=str(spent),
        )
        return spent

    async def refresh_for_categories(
        self,
        owner_id: str,
        category_ids: Iterable[Optional[int]],
    ) -> list[Budget]:
        """
        Recompute every budget of the owner whose category is in the set.

        None entries (transfers) are ignored. Returns the refreshed budgets.
        """
        wanted = {c for c in category_ids if c is not None}
        if not wanted:
            return []

        budgets = await self._budgets.list_for_owner(owner_id, wanted)
        sums: dict[tuple[int, BudgetPeriod], Decimal] = {}
        refreshed = []
        for budget in budgets:
            key = (budget.category_id, budget.period)
            if key not in sums:
                sums[key] = await self.compute_spent(owner_id, budget.category_id, budget.period)
            spent = sums[key]
            if budget.spent != spent:
                budget = await self._budgets.update_spent(budget.id, spent)
            refreshed.append(budget)

        for category_id in wanted:
            self._stale.discard((owner_id, category_id))
        return refreshed

    async def refresh_or_mark_stale(
        self,
        owner_id: str,
        category_ids: Iterable[Optional[int]],
    ) -> bool:
        """
        Refresh after a ledger write. A store failure is logged and the
        categories are remembered for `recompute_stale`.

        Returns True when the refresh succeeded.
        """
        wanted = {c for c in category_ids if c is not None}
        try:
            await self.refresh_for_categories(owner_id, wanted)
            return True
        except PersistenceError as e:
            self._stale.update((owner_id, category_id) for category_id in wanted)
            logger.warning(
                "budget_refresh_failed",
                owner_id=owner_id,
                category_ids=sorted(wanted),
                error=str(e),
            )
            return False

    async def recompute_stale(self) -> int:
        """
        Retry every stale category. Failures stay stale.

        Returns the number of categories still stale.
        """
        by_owner: dict[str, set[int]] = {}
        for owner_id, category_id in self._stale:
            by_owner.setdefault(owner_id, set()).add(category_id)

        for owner_id, category_ids in by_owner.items():
            try:
                await self.refresh_for_categories(owner_id, category_ids)
                logger.info("stale_budgets_recomputed", owner_id=owner_id, count=len(category_ids))
            except PersistenceError as e:
                logger.warning("stale_budget_recompute_failed", owner_id=owner_id, error=str(e))

        return len(self._stale)

    # =========================================================================
    # BUDGET MANAGEMENT
    # =========================================================================

    async def create_budget(self, owner_id: str, data: BudgetInput) -> Budget:
        """Create a budget with `spent` already computed for the current window."""
        spent = await self.compute_spent(owner_id, data.category_id, data.period)
        budget = Budget(
            owner_id=owner_id,
            category_id=data.category_id,
            amount=data.amount,
            period=data.period,
            spent=spent,
        )
        saved = await self._budgets.insert(budget)
        logger.info(
            "budget_created",
            budget_id=str(saved.id),
            category_id=saved.category_id,
            period=saved.period.value,
        )
        return saved

    async def delete_budget(self, budget_id: UUID) -> bool:
        deleted = await self._budgets.delete(budget_id)
        if deleted:
            logger.info("budget_deleted", budget_id=str(budget_id))
        return deleted

    async def list_budgets(self, owner_id: str) -> list[Budget]:
        return await self._budgets.list_for_owner(owner_id)

    # =========================================================================
    # PROGRESS, STATUS AND ALERTS
    # =========================================================================

    @staticmethod
    def summarize(budgets: Iterable[Budget]) -> BudgetSummary:
        """
        Totals across budgets.

        overall_progress is total_spent / total_budgeted (0 when nothing is
        budgeted); remaining_budget may be negative.
        """
        budgets = list(budgets)
        total_budgeted = sum((b.amount for b in budgets), ZERO)
        total_spent = sum((b.spent for b in budgets), ZERO)
        progress = total_spent / total_budgeted if total_budgeted > 0 else ZERO
        return BudgetSummary(
            total_budgeted=total_budgeted,
            total_spent=total_spent,
            overall_progress=progress,
            remaining_budget=total_budgeted - total_spent,
        )

    @staticmethod
    def utilization(budget: Budget) -> Decimal:
        """spent / amount as a fraction."""
        return budget.spent / budget.amount

    def status_for(self, budget: Budget) -> BudgetStatus:
        utilization = self.utilization(budget)
        if utilization >= 1:
            return BudgetStatus.EXCEEDED
        if utilization >= self._warning_threshold:
            return BudgetStatus.WARNING
        return BudgetStatus.ON_TRACK

    def budget_alerts(self, budgets: Iterable[Budget]) -> list[BudgetAlert]:
        """Budgets that are over, or close to, their limit, in input order."""
        alerts = []
        for budget in budgets:
            status = self.status_for(budget)
            if status == BudgetStatus.ON_TRACK:
                continue

            utilization = self.utilization(budget)
            percent = utilization * 100
            if status == BudgetStatus.EXCEEDED:
                message = f"Budget exceeded by {percent - 100:.0f}%"
            else:
                message = f"Budget at {percent:.0f}% - approaching limit"

            alerts.append(BudgetAlert(
                budget=budget,
                status=status,
                utilization=utilization,
                message=message,
            ))
        return alerts
