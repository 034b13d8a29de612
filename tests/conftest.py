"""
Shared fixtures.

Everything runs against the in-memory store; no test touches the network.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from khata.audit import AuditLogger
from khata.config import LedgerSettings
from khata.models.ledger import Contact, Direction, Transaction
from khata.orchestrator import ContactFlow, TransactionFlow
from khata.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage
from khata.sync import LedgerSession, LedgerSyncEngine


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        user_id="test-owner",
        poll_interval_seconds=0.5,
        business_signature="Sharma General Store\\nMain Bazaar, Jaipur",
    )


@pytest.fixture
def store() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def session(store, audit_storage, ledger_settings) -> LedgerSession:
    return LedgerSession(
        store=store,
        audit_logger=AuditLogger(audit_storage),
        settings=ledger_settings,
    )


@pytest_asyncio.fixture
async def engine(session):
    engine = LedgerSyncEngine(session)
    yield engine
    await engine.close()


@pytest.fixture
def contact_flow(session) -> ContactFlow:
    return ContactFlow(session)


@pytest.fixture
def transaction_flow(session) -> TransactionFlow:
    return TransactionFlow(session)


@pytest.fixture
def ramesh() -> Contact:
    return Contact(id="c-ramesh", name="Ramesh Kumar", phone="98765 43210")


@pytest.fixture
def make_transaction():
    """
    Factory for transactions with sensible defaults.

    Each call gets a created_at one second later than the previous one, so
    insertion order is visible to the ordering rules.
    """
    clock = {"now": datetime(2025, 1, 1, 9, 0, 0)}

    def _make(
        amount="100",
        direction=Direction.CREDIT,
        contact_id="c-ramesh",
        effective_date=date(2025, 1, 5),
        **kwargs,
    ) -> Transaction:
        clock["now"] += timedelta(seconds=1)
        kwargs.setdefault("created_at", clock["now"])
        return Transaction(
            contact_id=contact_id,
            amount=Decimal(str(amount)),
            direction=direction,
            effective_date=effective_date,
            **kwargs,
        )

    return _make
