"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Household members can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each collection lives in its own worksheet, one document per row, with the
workspace id in the first column.

TRADEOFFS:
- Not suitable for high-volume data (we're fine for household use)
- No transactions: the version column gives us compare-and-swap on
  accounts, and the ledger's own locks and undo journal do the rest
- Limited query capabilities (we filter and paginate in Python)

Reads and connection setup are retried. Appends are NOT retried: a retry
after a timeout could insert the same document twice.
"""

import json
from datetime import datetime
from typing import Any, Optional, Type, TypeVar
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.models.ledger import (
    Account,
    Category,
    CreditCard,
    Transaction,
    TransactionPage,
    TransactionQuery,
)
from src.services.storage.interface import (
    AuditStorageInterface,
    ConcurrentModificationError,
    ConnectionError,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
)
from src.services.storage.memory import page_transactions

ModelT = TypeVar("ModelT", bound=BaseModel)


# Column mappings (workspace_id is always column 1)
ACCOUNT_COLUMNS = [
    "workspace_id",
    "id",
    "name",
    "type",
    "initial_balance",
    "current_balance",
    "yield_rate",
    "yield_reference",
    "is_active",
    "version",
    "created_at",
    "updated_at",
]

TRANSACTION_COLUMNS = [
    "workspace_id",
    "id",
    "type",
    "amount",
    "account_id",
    "target_account_id",
    "category_id",
    "credit_card_id",
    "description",
    "date",
    "balance_state",
    "credit_card_purchase_id",
    "installment_number",
    "is_recurring",
    "recurrence_frequency",
    "recurrence_template_id",
    "recurrence_key",
    "created_by",
    "created_at",
    "updated_at",
]

CATEGORY_COLUMNS = [
    "workspace_id",
    "id",
    "name",
    "type",
    "is_system",
    "created_at",
]

CREDIT_CARD_COLUMNS = [
    "workspace_id",
    "id",
    "name",
    "closing_day",
    "due_day",
    "limit",
    "is_active",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "workspace_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

READ_RETRY = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def model_to_row(workspace_id: str, model: BaseModel, columns: list[str]) -> list[str]:
    """Serialize a model into a row following the column order."""
    data = model.model_dump(mode="json")
    data["workspace_id"] = workspace_id
    return ["" if data.get(col) is None else str(data[col]) for col in columns]


def row_to_model(row: list[str], columns: list[str], model_cls: Type[ModelT]) -> ModelT:
    """Parse a row back into a model. Empty cells become None."""
    values = {}
    for idx, col in enumerate(columns[1:], start=1):
        cell = row[idx] if idx < len(row) else ""
        if cell != "":
            values[col] = cell
    return model_cls.model_validate(values)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(**READ_RETRY)
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

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_accounts_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=5000,
        )

    def get_categories_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.categories_sheet_name, CATEGORY_COLUMNS)

    def get_credit_cards_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.credit_cards_sheet_name, CREDIT_CARD_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    Rows are located by (workspace_id, id) in the first two columns.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------------

    @retry(**READ_RETRY)
    def _read_rows(self, sheet: gspread.Worksheet) -> list[list[str]]:
        """All data rows (header excluded)."""
        return sheet.get_all_values()[1:]

    def _workspace_rows(self, sheet, workspace_id: str) -> list[list[str]]:
        return [row for row in self._read_rows(sheet) if row and row[0] == workspace_id]

    def _find_row(
        self,
        sheet: gspread.Worksheet,
        workspace_id: str,
        entity_id: str,
    ) -> tuple[Optional[int], Optional[list[str]]]:
        """Return (1-based sheet row index, row) or (None, None)."""
        for idx, row in enumerate(self._read_rows(sheet), start=2):  # row 1 is header
            if len(row) > 1 and row[0] == workspace_id and row[1] == entity_id:
                return idx, row
        return None, None

    def _write_row(self, sheet: gspread.Worksheet, row_idx: int, old: list[str], new: list[str]) -> None:
        """Write only the cells that changed."""
        for col_idx, value in enumerate(new, start=1):
            current = old[col_idx - 1] if col_idx - 1 < len(old) else ""
            if current != value:
                sheet.update_cell(row_idx, col_idx, value)

    def _append(self, sheet: gspread.Worksheet, row: list[str], what: str) -> None:
        try:
            sheet.append_row(row, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save {what}: {e}")

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def list_accounts(self, workspace_id: str) -> list[Account]:
        try:
            sheet = self._client.get_accounts_sheet()
            return [
                row_to_model(row, ACCOUNT_COLUMNS, Account)
                for row in self._workspace_rows(sheet, workspace_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")

    async def get_account(self, workspace_id: str, account_id: str) -> Optional[Account]:
        try:
            sheet = self._client.get_accounts_sheet()
            _, row = self._find_row(sheet, workspace_id, account_id)
            return row_to_model(row, ACCOUNT_COLUMNS, Account) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")

    async def create_account(self, workspace_id: str, account: Account) -> str:
        now = datetime.utcnow()
        stored = account.model_copy(
            update={"id": uuid4().hex, "version": 0, "created_at": now, "updated_at": now}
        )
        sheet = self._client.get_accounts_sheet()
        self._append(sheet, model_to_row(workspace_id, stored, ACCOUNT_COLUMNS), "account")
        return stored.id

    async def update_account(
        self,
        workspace_id: str,
        account_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Account:
        try:
            sheet = self._client.get_accounts_sheet()
            row_idx, row = self._find_row(sheet, workspace_id, account_id)
            if row is None:
                raise NotFoundError(f"Account not found: {account_id}")

            stored = row_to_model(row, ACCOUNT_COLUMNS, Account)
            if expected_version is not None and stored.version != expected_version:
                raise ConcurrentModificationError(account_id, expected_version, stored.version)

            updated = Account.model_validate({
                **stored.model_dump(),
                **fields,
                "version": stored.version + 1,
                "updated_at": datetime.utcnow(),
            })
            self._write_row(
                sheet,
                row_idx,
                row,
                model_to_row(workspace_id, updated, ACCOUNT_COLUMNS),
            )
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(self, workspace_id: str, transaction: Transaction) -> str:
        now = datetime.utcnow()
        stored = transaction.model_copy(
            update={"id": uuid4().hex, "created_at": now, "updated_at": now}
        )
        sheet = self._client.get_transactions_sheet()
        self._append(
            sheet,
            model_to_row(workspace_id, stored, TRANSACTION_COLUMNS),
            "transaction",
        )
        return stored.id

    async def get_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
    ) -> Optional[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            _, row = self._find_row(sheet, workspace_id, transaction_id)
            return row_to_model(row, TRANSACTION_COLUMNS, Transaction) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def update_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> None:
        try:
            sheet = self._client.get_transactions_sheet()
            row_idx, row = self._find_row(sheet, workspace_id, transaction_id)
            if row is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            stored = row_to_model(row, TRANSACTION_COLUMNS, Transaction)
            updated = Transaction.model_validate({
                **stored.model_dump(),
                **fields,
                "updated_at": datetime.utcnow(),
            })
            self._write_row(
                sheet,
                row_idx,
                row,
                model_to_row(workspace_id, updated, TRANSACTION_COLUMNS),
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, workspace_id: str, transaction_id: str) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            row_idx, _ = self._find_row(sheet, workspace_id, transaction_id)
            if row_idx is None:
                return False
            sheet.delete_rows(row_idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def query_transactions(
        self,
        workspace_id: str,
        query: TransactionQuery,
    ) -> TransactionPage:
        try:
            sheet = self._client.get_transactions_sheet()
            transactions = []
            for row in self._workspace_rows(sheet, workspace_id):
                try:
                    transactions.append(row_to_model(row, TRANSACTION_COLUMNS, Transaction))
                except ValueError:
                    continue  # Skip malformed rows
            return page_transactions(transactions, query)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query transactions: {e}")

    # -------------------------------------------------------------------------
    # Categories and credit cards
    # -------------------------------------------------------------------------

    async def list_categories(self, workspace_id: str) -> list[Category]:
        try:
            sheet = self._client.get_categories_sheet()
            return [
                row_to_model(row, CATEGORY_COLUMNS, Category)
                for row in self._workspace_rows(sheet, workspace_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list categories: {e}")

    async def create_category(self, workspace_id: str, category: Category) -> str:
        stored = category.model_copy(
            update={"id": uuid4().hex, "created_at": datetime.utcnow()}
        )
        sheet = self._client.get_categories_sheet()
        self._append(sheet, model_to_row(workspace_id, stored, CATEGORY_COLUMNS), "category")
        return stored.id

    async def list_credit_cards(self, workspace_id: str) -> list[CreditCard]:
        try:
            sheet = self._client.get_credit_cards_sheet()
            return [
                row_to_model(row, CREDIT_CARD_COLUMNS, CreditCard)
                for row in self._workspace_rows(sheet, workspace_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list credit cards: {e}")

    async def get_credit_card(self, workspace_id: str, card_id: str) -> Optional[CreditCard]:
        try:
            sheet = self._client.get_credit_cards_sheet()
            _, row = self._find_row(sheet, workspace_id, card_id)
            return row_to_model(row, CREDIT_CARD_COLUMNS, CreditCard) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get credit card: {e}")

    async def create_credit_card(self, workspace_id: str, card: CreditCard) -> str:
        now = datetime.utcnow()
        stored = card.model_copy(
            update={"id": uuid4().hex, "created_at": now, "updated_at": now}
        )
        sheet = self._client.get_credit_cards_sheet()
        self._append(
            sheet,
            model_to_row(workspace_id, stored, CREDIT_CARD_COLUMNS),
            "credit card",
        )
        return stored.id


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            workspace_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    @retry(**READ_RETRY)
    def _read_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. The caller decides what a failure means."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

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
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
