"""Tests for balance arithmetic and period windows."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from ledger_core.ledger import (
    BalanceDirection,
    apply_deltas,
    combine_deltas,
    compute_deltas,
    expected_balance,
    local_today,
    negate_deltas,
    period_window,
)
from ledger_core.models import BudgetPeriod, Transaction, TransactionType, WalletDelta


A = uuid4()
B = uuid4()


def _transaction(type_, amount, fee="0", destination=None, category_id=1):
    return Transaction(
        owner_id="u",
        type=type_,
        amount=Decimal(amount),
        fee=Decimal(fee),
        category_id=None if type_ == TransactionType.TRANSFER else category_id,
        wallet_id=A,
        destination_wallet_id=destination,
        occurred_at=date(2025, 3, 1),
    )


class TestComputeDeltas:

    def test_income(self):
        deltas = compute_deltas(_transaction(TransactionType.INCOME, "500"))
        assert deltas == [WalletDelta(wallet_id=A, delta=Decimal("500"))]

    def test_expense(self):
        deltas = compute_deltas(_transaction(TransactionType.EXPENSE, "200"))
        assert deltas == [WalletDelta(wallet_id=A, delta=Decimal("-200"))]

    def test_transfer_fee_is_consumed(self):
        """The source pays amount + fee; the destination only receives amount."""
        deltas = compute_deltas(_transaction(TransactionType.TRANSFER, "200", "10", B))
        assert deltas == [
            WalletDelta(wallet_id=A, delta=Decimal("-210")),
            WalletDelta(wallet_id=B, delta=Decimal("200")),
        ]

    def test_transfer_reverse_is_not_a_swap(self):
        """Reversal negates; swapping wallets would credit the fee to the source."""
        transfer = _transaction(TransactionType.TRANSFER, "200", "10", B)
        reverse = compute_deltas(transfer, BalanceDirection.REVERSE)
        assert reverse == [
            WalletDelta(wallet_id=A, delta=Decimal("210")),
            WalletDelta(wallet_id=B, delta=Decimal("-200")),
        ]

    @pytest.mark.parametrize("transaction", [
        _transaction(TransactionType.INCOME, "12.34"),
        _transaction(TransactionType.EXPENSE, "0.01"),
        _transaction(TransactionType.TRANSFER, "99.99", "0", B),
        _transaction(TransactionType.TRANSFER, "200", "10", B),
    ])
    def test_apply_then_reverse_restores_balances(self, transaction):
        start = {A: Decimal("1000"), B: Decimal("500")}
        applied = apply_deltas(start, compute_deltas(transaction))
        restored = apply_deltas(applied, compute_deltas(transaction, BalanceDirection.REVERSE))
        assert restored == start


class TestDeltaHelpers:

    def test_negate(self):
        assert negate_deltas([WalletDelta(wallet_id=A, delta=Decimal("5"))]) == [
            WalletDelta(wallet_id=A, delta=Decimal("-5"))
        ]

    def test_combine_sums_per_wallet_in_first_seen_order(self):
        combined = combine_deltas(
            [WalletDelta(wallet_id=B, delta=Decimal("1")), WalletDelta(wallet_id=A, delta=Decimal("2"))],
            [WalletDelta(wallet_id=A, delta=Decimal("3"))],
        )
        assert combined == [
            WalletDelta(wallet_id=B, delta=Decimal("1")),
            WalletDelta(wallet_id=A, delta=Decimal("5")),
        ]

    def test_combine_drops_zero_nets(self):
        combined = combine_deltas(
            [WalletDelta(wallet_id=A, delta=Decimal("200"))],
            [WalletDelta(wallet_id=A, delta=Decimal("-200"))],
        )
        assert combined == []
        assert len(combine_deltas(
            [WalletDelta(wallet_id=A, delta=Decimal("200"))],
            [WalletDelta(wallet_id=A, delta=Decimal("-200"))],
            keep_zero=True,
        )) == 1

    def test_apply_to_unknown_wallet_raises(self):
        with pytest.raises(KeyError):
            apply_deltas({A: Decimal("0")}, [WalletDelta(wallet_id=B, delta=Decimal("1"))])

    def test_expected_balance_counts_both_sides(self):
        history = [
            _transaction(TransactionType.INCOME, "100"),
            _transaction(TransactionType.TRANSFER, "40", "5", B),
        ]
        assert expected_balance(Decimal("10"), A, history) == Decimal("65")
        assert expected_balance(Decimal("0"), B, history) == Decimal("40")


class TestPeriodWindows:

    def test_weekly_is_iso_week(self):
        # 2025-03-15 is a Saturday
        window = period_window(BudgetPeriod.WEEKLY, date(2025, 3, 15))
        assert window.start == date(2025, 3, 10)
        assert window.end == date(2025, 3, 16)

    def test_weekly_on_monday_and_sunday(self):
        assert period_window(BudgetPeriod.WEEKLY, date(2025, 3, 10)).start == date(2025, 3, 10)
        assert period_window(BudgetPeriod.WEEKLY, date(2025, 3, 16)).start == date(2025, 3, 10)

    def test_monthly_handles_leap_february(self):
        window = period_window(BudgetPeriod.MONTHLY, date(2024, 2, 10))
        assert window.start == date(2024, 2, 1)
        assert window.end == date(2024, 2, 29)

    def test_monthly_december(self):
        window = period_window(BudgetPeriod.MONTHLY, date(2025, 12, 31))
        assert window.start == date(2025, 12, 1)
        assert window.end == date(2025, 12, 31)

    def test_yearly(self):
        window = period_window(BudgetPeriod.YEARLY, date(2025, 6, 1))
        assert (window.start, window.end) == (date(2025, 1, 1), date(2025, 12, 31))

    def test_local_today_uses_timezone(self):
        now = datetime(2025, 3, 15, 20, 0, tzinfo=timezone.utc)
        assert local_today(now) == date(2025, 3, 15)
        assert local_today(now, "Asia/Jakarta") == date(2025, 3, 16)
