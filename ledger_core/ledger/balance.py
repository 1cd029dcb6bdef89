"""
Balance Arithmetic

Pure functions that turn a transaction into the wallet deltas it causes.
No state and no I/O: everything above (validator, orchestrator) builds on
these.

RULES:
- income   apply -> source +amount
- expense  apply -> source -amount
- transfer apply -> source -(amount + fee), destination +amount

The fee is consumed by the transfer and never credited to the destination.
Reversal is the exact additive inverse of application for every type; it
is NOT "apply with the wallets swapped".
"""

from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping
from uuid import UUID

from ledger_core.models.finance import Transaction, TransactionType, WalletDelta


class BalanceDirection(str, Enum):
    """Whether a transaction is being added to or removed from the ledger."""
    APPLY = "apply"
    REVERSE = "reverse"


def compute_deltas(
    transaction: Transaction,
    direction: BalanceDirection = BalanceDirection.APPLY,
) -> list[WalletDelta]:
    """
    Compute the wallet deltas of a transaction.

    Returns source first, then destination for transfers.
    """
    if transaction.type == TransactionType.INCOME:
        deltas = [WalletDelta(wallet_id=transaction.wallet_id, delta=transaction.amount)]
    elif transaction.type == TransactionType.EXPENSE:
        deltas = [WalletDelta(wallet_id=transaction.wallet_id, delta=-transaction.amount)]
    else:
        deltas = [
            WalletDelta(
                wallet_id=transaction.wallet_id,
                delta=-(transaction.amount + transaction.fee),
            ),
            WalletDelta(
                wallet_id=transaction.destination_wallet_id,
                delta=transaction.amount,
            ),
        ]

    if direction == BalanceDirection.REVERSE:
        return negate_deltas(deltas)
    return deltas


def negate_deltas(deltas: Iterable[WalletDelta]) -> list[WalletDelta]:
    """Additive inverse of a delta set."""
    return [WalletDelta(wallet_id=d.wallet_id, delta=-d.delta) for d in deltas]


def combine_deltas(
    *groups: Iterable[WalletDelta],
    keep_zero: bool = False,
) -> list[WalletDelta]:
    """
    Sum several delta sets into one entry per wallet.

    Wallets keep the order in which they first appear. Wallets whose net
    delta is exactly zero are dropped unless `keep_zero` is set.
    """
    totals: dict[UUID, Decimal] = {}
    for group in groups:
        for delta in group:
            totals[delta.wallet_id] = totals.get(delta.wallet_id, Decimal("0")) + delta.delta

    return [
        WalletDelta(wallet_id=wallet_id, delta=total)
        for wallet_id, total in totals.items()
        if keep_zero or total != 0
    ]


def apply_deltas(
    balances: Mapping[UUID, Decimal],
    deltas: Iterable[WalletDelta],
) -> dict[UUID, Decimal]:
    """
    Return new balances after adding the deltas.

    Raises KeyError if a delta targets a wallet missing from `balances`.
    """
    result = dict(balances)
    for delta in deltas:
        result[delta.wallet_id] = result[delta.wallet_id] + delta.delta
    return result


def expected_balance(
    opening_balance: Decimal,
    wallet_id: UUID,
    transactions: Iterable[Transaction],
) -> Decimal:
    """
    Balance implied by history: opening balance plus the apply-deltas of
    every present transaction touching the wallet.
    """
    total = opening_balance
    for transaction in transactions:
        for delta in compute_deltas(transaction, BalanceDirection.APPLY):
            if delta.wallet_id == wallet_id:
                total += delta.delta
    return total
