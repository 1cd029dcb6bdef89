"""
Shared fixtures.

Ledger tests run against the in-memory repositories with a fixed clock
and a retry policy that never really sleeps. No real network calls.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from ledger_core.budgets import BudgetAggregator
from ledger_core.models import (
    TransactionInput,
    TransactionType,
    WalletInput,
)
from ledger_core.orchestrator import LedgerOrchestrator, is_transient_write_error
from ledger_core.retry import RetryPolicy
from ledger_core.services.storage import (
    InMemoryBudgetRepository,
    InMemoryDatabase,
    InMemoryTransactionRepository,
    InMemoryWalletRepository,
)
from ledger_core.validation import TransactionValidator


OWNER = "user-1"
TODAY = date(2025, 3, 15)


class FixedClock:
    """Controllable 'now' for TTL and budget window tests."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Ledger:
    """In-memory ledger wiring used across tests."""

    def __init__(
        self,
        clock: FixedClock,
        enforce_sufficient_balance: bool = False,
        wallet_repo_cls=InMemoryWalletRepository,
        transaction_repo_cls=InMemoryTransactionRepository,
        budget_repo_cls=InMemoryBudgetRepository,
        transfer_procedure=None,
    ):
        self.clock = clock
        self.db = InMemoryDatabase()
        self.wallets = wallet_repo_cls(self.db)
        self.transactions = transaction_repo_cls(self.db)
        self.budget_repo = budget_repo_cls(self.db)
        self.aggregator = BudgetAggregator(self.budget_repo, self.transactions, clock=clock)
        self.sleep = RecordingSleep()
        self.orchestrator = LedgerOrchestrator(
            self.wallets,
            self.transactions,
            self.aggregator,
            validator=TransactionValidator(
                self.wallets,
                enforce_sufficient_balance=enforce_sufficient_balance,
                clock=clock,
            ),
            write_retry=RetryPolicy(
                max_retries=2,
                retryable=is_transient_write_error,
                sleep=self.sleep,
            ),
            transfer_procedure=transfer_procedure,
            clock=clock,
        )

    async def wallet(self, name: str = "Cash", balance: str = "0", owner_id: str = OWNER):
        return await self.orchestrator.create_wallet(
            owner_id,
            WalletInput(name=name, opening_balance=Decimal(balance)),
        )

    async def balance(self, wallet_id) -> Decimal:
        return (await self.wallets.get(wallet_id)).balance


def income(wallet_id, amount: str, category_id: int = 9, occurred_at: date = TODAY, **kwargs):
    return TransactionInput(
        type=TransactionType.INCOME,
        amount=Decimal(amount),
        category_id=category_id,
        wallet_id=wallet_id,
        occurred_at=occurred_at,
        **kwargs,
    )


def expense(wallet_id, amount: str, category_id: int = 1, occurred_at: date = TODAY, **kwargs):
    return TransactionInput(
        type=TransactionType.EXPENSE,
        amount=Decimal(amount),
        category_id=category_id,
        wallet_id=wallet_id,
        occurred_at=occurred_at,
        **kwargs,
    )


def transfer(source_id, destination_id, amount: str, fee: str = "0", occurred_at: date = TODAY):
    return TransactionInput(
        type=TransactionType.TRANSFER,
        amount=Decimal(amount),
        fee=Decimal(fee),
        wallet_id=source_id,
        destination_wallet_id=destination_id,
        occurred_at=occurred_at,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def ledger(clock):
    return Ledger(clock)
