"""
Abstract Storage Interface

DESIGN DECISION: The ledger only talks to storage through these interfaces.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep balance logic decoupled from storage implementation

The interface is intentionally small - it mirrors the document-store
primitives the ledger needs (per-workspace collections, partial
updates, cursor pagination), not a full ORM.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from src.models.ledger import (
    Account,
    Category,
    CreditCard,
    Transaction,
    TransactionPage,
    TransactionQuery,
)
from src.models.audit import AuditEvent


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the workspace document store.

    Every collection is namespaced by workspace id. Ids and
    created_at/updated_at timestamps are assigned by the store.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_accounts(self, workspace_id: str) -> list[Account]:
        """Return every account of the workspace (active or not)."""
        pass

    @abstractmethod
    async def get_account(
        self,
        workspace_id: str,
        account_id: str,
    ) -> Optional[Account]:
        """Return the account, or None if it does not exist."""
        pass

    @abstractmethod
    async def create_account(self, workspace_id: str, account: Account) -> str:
        """
        Insert an account and return its new id.

        The store sets id, version=0 and timestamps.
        """
        pass

    @abstractmethod
    async def update_account(
        self,
        workspace_id: str,
        account_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Account:
        """
        Partially update an account and stamp updated_at.

        Args:
            workspace_id: Partition key
            account_id: Account to update
            fields: Model field names and their new values
            expected_version: If given, the write only happens when the
                stored version still equals it

        Returns:
            The account as stored after the write (version bumped)

        Raises:
            NotFoundError: If the account doesn't exist
            ConcurrentModificationError: If expected_version doesn't match
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_transaction(
        self,
        workspace_id: str,
        transaction: Transaction,
    ) -> str:
        """Insert a transaction and return its new id."""
        pass

    @abstractmethod
    async def get_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
    ) -> Optional[Transaction]:
        """Return the transaction, or None if it does not exist."""
        pass

    @abstractmethod
    async def update_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Partially update a transaction and stamp updated_at.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
    ) -> bool:
        """Delete a transaction. Returns False if it was already gone."""
        pass

    @abstractmethod
    async def query_transactions(
        self,
        workspace_id: str,
        query: TransactionQuery,
    ) -> TransactionPage:
        """
        Return one page of transactions, newest date first.

        next_cursor is set when more matching rows remain; pass it back
        as query.start_after to fetch the following page.
        """
        pass

    # -------------------------------------------------------------------------
    # Categories and credit cards
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_categories(self, workspace_id: str) -> list[Category]:
        """Return every stored category, duplicates included."""
        pass

    @abstractmethod
    async def create_category(self, workspace_id: str, category: Category) -> str:
        pass

    @abstractmethod
    async def list_credit_cards(self, workspace_id: str) -> list[CreditCard]:
        pass

    @abstractmethod
    async def get_credit_card(
        self,
        workspace_id: str,
        card_id: str,
    ) -> Optional[CreditCard]:
        pass

    @abstractmethod
    async def create_credit_card(self, workspace_id: str, card: CreditCard) -> str:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ConcurrentModificationError(StorageError):
    """A conditional write found a different version than expected."""

    def __init__(self, entity_id: str, expected_version: int, actual_version: int):
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{entity_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
