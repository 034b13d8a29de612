"""
Ledger session.

Everything an operation needs to reach the backing store, passed
explicitly instead of living in module globals.
"""

from typing import Optional

from khata.audit import AuditLogger
from khata.config import LedgerSettings, get_settings
from khata.services.storage import LedgerStorageInterface


class LedgerSession:
    """
    The signed-in owner's handle on the ledger.

    Attributes:
        user_id: Owner of every record read or written through this session
        store: Backing document store
        audit_logger: Where user actions and failures are recorded
        settings: Ledger behaviour settings
    """

    def __init__(
        self,
        store: LedgerStorageInterface,
        user_id: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self.settings = settings or get_settings().ledger
        self.user_id = user_id or self.settings.user_id
        self.store = store
        self.audit_logger = audit_logger or AuditLogger()

    def __repr__(self) -> str:
        return f"LedgerSession(user_id={self.user_id!r}, store={type(self.store).__name__})"
