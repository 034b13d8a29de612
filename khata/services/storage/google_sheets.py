"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the hosted document store:
1. The owner can open the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (a shop ledger is fine)
- No transactions: a balance write-back can land after a newer edit
  (last writer wins, which the ledger tolerates)
- No push notifications: live feeds poll the worksheet
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from khata.config import get_settings
from khata.models.audit import AuditEvent, AuditEventType, AuditSeverity
from khata.models.ledger import (
    Contact,
    ContactType,
    Direction,
    Transaction,
    TransactionChanges,
)
from khata.services.storage.feed import PollingSnapshotFeed, SnapshotFeed
from khata.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    SubscriptionError,
)


logger = structlog.get_logger(__name__)

# Column mappings for Contacts sheet
CONTACT_COLUMNS = [
    "id",
    "name",
    "phone",
    "address",
    "contact_type",
    "balance",
    "created_at",
]

# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "contact_id",
    "amount",
    "direction",
    "description",
    "effective_date",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Cell value, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_contacts_sheet(self) -> gspread.Worksheet:
        """Get or create the Contacts worksheet."""
        return self._get_or_create_sheet(
            self._settings.contacts_sheet_name, CONTACT_COLUMNS, rows=1000
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    One contact per row in the Contacts sheet, one transaction per row in
    the Transactions sheet. Live feeds poll the Transactions sheet.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else get_settings().ledger.poll_interval_seconds
        )

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _contact_to_row(self, contact: Contact) -> list:
        return [
            contact.id,
            contact.name,
            contact.phone or "",
            contact.address or "",
            contact.contact_type.value,
            str(contact.balance),
            contact.created_at.isoformat(),
        ]

    def _row_to_contact(self, row: list) -> Contact:
        return Contact(
            id=_safe_get(row, 0),
            name=_safe_get(row, 1),
            phone=_safe_get(row, 2) or None,
            address=_safe_get(row, 3) or None,
            contact_type=ContactType(_safe_get(row, 4, ContactType.CUSTOMER.value)),
            balance=Decimal(_safe_get(row, 5, "0")),
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
        )

    def _transaction_to_row(self, transaction: Transaction) -> list:
        return [
            transaction.id,
            transaction.contact_id,
            str(transaction.amount),
            transaction.direction.value,
            transaction.description or "",
            transaction.effective_date.isoformat(),
            transaction.created_at.isoformat(),
            transaction.updated_at.isoformat() if transaction.updated_at else "",
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        return Transaction(
            id=_safe_get(row, 0),
            contact_id=_safe_get(row, 1),
            amount=Decimal(_safe_get(row, 2)),
            direction=Direction(_safe_get(row, 3)),
            description=_safe_get(row, 4) or None,
            effective_date=date.fromisoformat(_safe_get(row, 5)),
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
            updated_at=datetime.fromisoformat(_safe_get(row, 7)) if _safe_get(row, 7) else None,
        )

    def _find_row(self, sheet: gspread.Worksheet, record_id: str) -> tuple[int, Optional[list]]:
        """Locate a record by id. Returns (sheet_row_number, row) or (0, None)."""
        all_rows = sheet.get_all_values()
        # Row 1 is the header
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == record_id:
                return idx, row
        return 0, None

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def add_contact(self, contact: Contact) -> str:
        try:
            sheet = self._client.get_contacts_sheet()
            sheet.append_row(self._contact_to_row(contact), value_input_option="RAW")
            return contact.id
        except Exception as e:
            raise StorageError(f"Failed to add contact: {e}")

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        try:
            sheet = self._client.get_contacts_sheet()
            _, row = self._find_row(sheet, contact_id)
            return self._row_to_contact(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get contact: {e}")

    async def list_contacts(
        self,
        contact_type: Optional[ContactType] = ContactType.CUSTOMER,
    ) -> list[Contact]:
        try:
            sheet = self._client.get_contacts_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list contacts: {e}")

        contacts = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                contact = self._row_to_contact(row)
            except Exception as e:
                logger.warning("malformed_contact_row", row_id=row[0], error=str(e))
                continue
            if contact_type is not None and contact.contact_type != contact_type:
                continue
            contacts.append(contact)
        return contacts

    @retry(
        retry=retry_if_not_exception_type(NotFoundError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update_contact_balance(
        self,
        contact_id: str,
        balance: Decimal,
    ) -> bool:
        try:
            sheet = self._client.get_contacts_sheet()
            idx, row = self._find_row(sheet, contact_id)
            if row is None:
                raise NotFoundError(f"Contact not found: {contact_id}")
            sheet.update_cell(idx, CONTACT_COLUMNS.index("balance") + 1, str(balance))
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update contact balance: {e}")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def add_transaction(self, transaction: Transaction) -> str:
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
            return transaction.id
        except Exception as e:
            raise StorageError(f"Failed to add transaction: {e}")

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            _, row = self._find_row(sheet, transaction_id)
            return self._row_to_transaction(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def update_transaction(
        self,
        transaction_id: str,
        changes: TransactionChanges,
    ) -> Transaction:
        try:
            sheet = self._client.get_transactions_sheet()
            idx, row = self._find_row(sheet, transaction_id)
            if row is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            existing = self._row_to_transaction(row)
            updated = existing.model_copy(
                update={
                    **changes.model_dump(),
                    "updated_at": datetime.utcnow(),
                }
            )
            new_row = self._transaction_to_row(updated)

            # Update each cell in the row
            for col_idx, value in enumerate(new_row, start=1):
                sheet.update_cell(idx, col_idx, value)

            return updated
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: str) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            idx, row = self._find_row(sheet, transaction_id)
            if row is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def list_transactions(self, contact_id: str) -> list[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for row in all_rows:
            if not row or len(row) < 2 or row[1] != contact_id:
                continue
            try:
                transactions.append(self._row_to_transaction(row))
            except Exception as e:
                logger.warning("malformed_transaction_row", row_id=row[0], error=str(e))
        return transactions

    async def watch_transactions(self, contact_id: str) -> SnapshotFeed:
        feed = PollingSnapshotFeed(
            contact_id,
            fetch=lambda: self.list_transactions(contact_id),
            interval_seconds=self._poll_interval,
        )
        try:
            # Initial load happens before the feed is handed out
            await feed.poll_once()
        except Exception as e:
            feed.close()
            raise SubscriptionError(f"Failed to load transactions: {e}") from e
        return feed.start()


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        correlation_id = _safe_get(row, 6)
        details_json = _safe_get(row, 8)
        return AuditEvent(
            event_id=_safe_get(row, 0),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=_safe_get(row, 5) or None,
            correlation_id=correlation_id or None,
            description=_safe_get(row, 7),
            details=json.loads(details_json) if details_json else {},
            error_message=_safe_get(row, 9) or None,
            is_user_action=_safe_get(row, 10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception as e:
                logger.warning("malformed_audit_row", row_id=row[0], error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
