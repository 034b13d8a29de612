"""
Khata Ledger - Source Package

A single-user bookkeeping ledger: running balances against customer
contacts, kept in sync with a remote document store.

DESIGN PRINCIPLES:
1. Transactions are the source of truth; a contact's balance is a cache
2. Every balance is re-derived from the full transaction set
3. Bad input is rejected before it reaches the store
4. Every user action is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Khata Ledger Team"
