"""Live ledger synchronization package."""

from khata.sync.balance import (
    balance_status,
    compute_balance,
    derive_view,
    order_transactions,
)
from khata.sync.engine import LedgerSyncEngine, LedgerWatch
from khata.sync.session import LedgerSession

__all__ = [
    "LedgerSession",
    "LedgerSyncEngine",
    "LedgerWatch",
    "balance_status",
    "compute_balance",
    "derive_view",
    "order_transactions",
]
