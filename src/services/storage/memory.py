"""
In-Memory Storage Implementation

Used by the test-suite and for local runs without Google credentials.
Behaves like the real document store: ids and timestamps are assigned
on insert, account versions are bumped on every write, and every read
returns a copy so callers can never mutate stored state in place.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from src.models.audit import AuditEvent
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
    DocumentStoreInterface,
    NotFoundError,
)


def page_transactions(
    transactions: Iterable[Transaction],
    query: TransactionQuery,
) -> TransactionPage:
    """
    Filter, order (date desc, id desc) and slice one page.

    Shared by every store that can't push the query down to its backend.
    """
    matching = [tx for tx in transactions if query.matches(tx)]
    matching.sort(key=lambda tx: (tx.date, tx.id or ""), reverse=True)

    start = 0
    if query.start_after:
        for idx, tx in enumerate(matching):
            if tx.id == query.start_after:
                start = idx + 1
                break
        else:
            raise NotFoundError(f"Cursor transaction not found: {query.start_after}")

    page = matching[start:start + query.limit]
    has_more = start + query.limit < len(matching)
    return TransactionPage(
        items=page,
        next_cursor=page[-1].id if page and has_more else None,
    )


def _new_id() -> str:
    return uuid4().hex


class InMemoryDocumentStore(DocumentStoreInterface):
    """Dict-backed document store, one namespace per workspace."""

    def __init__(self):
        self._accounts: dict[str, dict[str, Account]] = defaultdict(dict)
        self._transactions: dict[str, dict[str, Transaction]] = defaultdict(dict)
        self._categories: dict[str, dict[str, Category]] = defaultdict(dict)
        self._credit_cards: dict[str, dict[str, CreditCard]] = defaultdict(dict)

    # Accounts

    async def list_accounts(self, workspace_id: str) -> list[Account]:
        return [a.model_copy(deep=True) for a in self._accounts[workspace_id].values()]

    async def get_account(self, workspace_id: str, account_id: str) -> Optional[Account]:
        account = self._accounts[workspace_id].get(account_id)
        return account.model_copy(deep=True) if account else None

    async def create_account(self, workspace_id: str, account: Account) -> str:
        now = datetime.utcnow()
        account_id = _new_id()
        self._accounts[workspace_id][account_id] = account.model_copy(
            update={"id": account_id, "version": 0, "created_at": now, "updated_at": now},
            deep=True,
        )
        return account_id

    async def update_account(
        self,
        workspace_id: str,
        account_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Account:
        stored = self._accounts[workspace_id].get(account_id)
        if stored is None:
            raise NotFoundError(f"Account not found: {account_id}")
        if expected_version is not None and stored.version != expected_version:
            raise ConcurrentModificationError(account_id, expected_version, stored.version)

        updated = Account.model_validate({
            **stored.model_dump(),
            **fields,
            "version": stored.version + 1,
            "updated_at": datetime.utcnow(),
        })
        self._accounts[workspace_id][account_id] = updated
        return updated.model_copy(deep=True)

    # Transactions

    async def create_transaction(self, workspace_id: str, transaction: Transaction) -> str:
        now = datetime.utcnow()
        transaction_id = _new_id()
        self._transactions[workspace_id][transaction_id] = transaction.model_copy(
            update={"id": transaction_id, "created_at": now, "updated_at": now},
            deep=True,
        )
        return transaction_id

    async def get_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
    ) -> Optional[Transaction]:
        tx = self._transactions[workspace_id].get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def update_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> None:
        stored = self._transactions[workspace_id].get(transaction_id)
        if stored is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        self._transactions[workspace_id][transaction_id] = Transaction.model_validate({
            **stored.model_dump(),
            **fields,
            "updated_at": datetime.utcnow(),
        })

    async def delete_transaction(self, workspace_id: str, transaction_id: str) -> bool:
        return self._transactions[workspace_id].pop(transaction_id, None) is not None

    async def query_transactions(
        self,
        workspace_id: str,
        query: TransactionQuery,
    ) -> TransactionPage:
        page = page_transactions(self._transactions[workspace_id].values(), query)
        page.items = [tx.model_copy(deep=True) for tx in page.items]
        return page

    # Categories and credit cards

    async def list_categories(self, workspace_id: str) -> list[Category]:
        return [c.model_copy() for c in self._categories[workspace_id].values()]

    async def create_category(self, workspace_id: str, category: Category) -> str:
        category_id = _new_id()
        self._categories[workspace_id][category_id] = category.model_copy(
            update={"id": category_id, "created_at": datetime.utcnow()},
        )
        return category_id

    async def list_credit_cards(self, workspace_id: str) -> list[CreditCard]:
        return [c.model_copy() for c in self._credit_cards[workspace_id].values()]

    async def get_credit_card(self, workspace_id: str, card_id: str) -> Optional[CreditCard]:
        card = self._credit_cards[workspace_id].get(card_id)
        return card.model_copy() if card else None

    async def create_credit_card(self, workspace_id: str, card: CreditCard) -> str:
        now = datetime.utcnow()
        card_id = _new_id()
        self._credit_cards[workspace_id][card_id] = card.model_copy(
            update={"id": card_id, "created_at": now, "updated_at": now},
        )
        return card_id


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = asyncio.Lock()

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._lock:
            self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
