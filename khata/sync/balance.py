"""
Balance derivation.

Pure functions over a transaction snapshot. The balance is always
recomputed from the whole set; nothing is carried over between snapshots.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from khata.models.ledger import BalanceStatus, Direction, LedgerView, Transaction


def compute_balance(transactions: Iterable[Transaction]) -> Decimal:
    """Σ credit amounts − Σ debit amounts."""
    credit = Decimal("0")
    debit = Decimal("0")
    for transaction in transactions:
        if transaction.direction is Direction.CREDIT:
            credit += transaction.amount
        elif transaction.direction is Direction.DEBIT:
            debit += transaction.amount
    return credit - debit


def _newest_first_key(transaction: Transaction) -> tuple:
    return (transaction.effective_date, transaction.created_at, transaction.id)


def order_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """
    Newest entry first.

    Sorted by effective date descending; entries sharing a date are ordered
    by created_at descending, then by id descending, so the order never
    depends on the order the store returned them in.
    """
    return sorted(transactions, key=_newest_first_key, reverse=True)


def balance_status(balance: Decimal) -> BalanceStatus:
    return BalanceStatus.from_balance(balance)


def derive_view(
    contact_id: str,
    transactions: Iterable[Transaction],
    computed_at: Optional[datetime] = None,
) -> LedgerView:
    """Build the ledger view for one contact from a full snapshot."""
    ordered = order_transactions(transactions)
    return LedgerView(
        contact_id=contact_id,
        balance=compute_balance(ordered),
        transactions=ordered,
        computed_at=computed_at or datetime.utcnow(),
    )
