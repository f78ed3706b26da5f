"""
Workspace Catalog

Accounts, categories and credit cards: everything a transaction refers
to. Accounts are never deleted, only deactivated, so historical
transactions always resolve.
"""

from decimal import Decimal
from typing import Optional, Union

from src.ledger.errors import NotFoundError, ValidationError
from src.models.ledger import (
    Account,
    AccountType,
    Category,
    CategoryType,
    CreditCard,
)
from src.services.storage import DocumentStoreInterface
from src.services.storage import NotFoundError as StorageNotFoundError
from src.utils.money import to_decimal

DEFAULT_CATEGORIES = [
    ("Food", CategoryType.EXPENSE),
    ("Transport", CategoryType.EXPENSE),
    ("Housing", CategoryType.EXPENSE),
    ("Health", CategoryType.EXPENSE),
    ("Education", CategoryType.EXPENSE),
    ("Leisure", CategoryType.EXPENSE),
    ("Subscriptions", CategoryType.EXPENSE),
    ("Shopping", CategoryType.EXPENSE),
    ("Other (expense)", CategoryType.EXPENSE),
    ("Salary", CategoryType.INCOME),
    ("Freelance", CategoryType.INCOME),
    ("Investments", CategoryType.INCOME),
    ("Other (income)", CategoryType.INCOME),
]


class WorkspaceCatalog:
    """Reference data of a workspace."""

    def __init__(self, store: DocumentStoreInterface):
        self._store = store

    # Accounts

    async def create_account(
        self,
        workspace_id: str,
        name: str,
        type: AccountType = AccountType.BANK,
        initial_balance: Union[Decimal, int, float, str] = 0,
        yield_rate: Optional[Decimal] = None,
        yield_reference: Optional[str] = None,
    ) -> str:
        """Create an account whose current balance starts at its initial balance."""
        initial = to_decimal(initial_balance)
        account = Account(
            name=name,
            type=type,
            initial_balance=initial,
            current_balance=initial,
            yield_rate=yield_rate,
            yield_reference=yield_reference or None,
        )
        return await self._store.create_account(workspace_id, account)

    async def deactivate_account(self, workspace_id: str, account_id: str) -> Account:
        try:
            return await self._store.update_account(
                workspace_id, account_id, {"is_active": False}
            )
        except StorageNotFoundError:
            raise NotFoundError("account not found", account_id)

    async def list_accounts(
        self,
        workspace_id: str,
        include_inactive: bool = False,
    ) -> list[Account]:
        accounts = await self._store.list_accounts(workspace_id)
        if not include_inactive:
            accounts = [a for a in accounts if a.is_active]
        return sorted(accounts, key=lambda a: a.name.lower())

    # Categories

    async def list_categories(
        self,
        workspace_id: str,
        type: Optional[CategoryType] = None,
    ) -> list[Category]:
        """
        Categories deduplicated by (name, type), first stored wins.

        Duplicates can exist if seeding ever ran twice concurrently.
        """
        seen = set()
        unique = []
        for category in await self._store.list_categories(workspace_id):
            if category.dedupe_key in seen:
                continue
            seen.add(category.dedupe_key)
            if type is None or category.type == type:
                unique.append(category)
        return unique

    async def seed_default_categories(self, workspace_id: str) -> list[str]:
        """Insert the default categories that are missing. Returns the new ids."""
        existing = {c.dedupe_key for c in await self.list_categories(workspace_id)}
        created = []
        for name, category_type in DEFAULT_CATEGORIES:
            key = (name, category_type.value)
            if key in existing:
                continue
            category_id = await self._store.create_category(
                workspace_id,
                Category(name=name, type=category_type, is_system=True),
            )
            existing.add(key)
            created.append(category_id)
        return created

    # Credit cards

    async def create_credit_card(
        self,
        workspace_id: str,
        name: str,
        closing_day: int = 1,
        due_day: int = 10,
        limit: Optional[Union[Decimal, int, float, str]] = None,
    ) -> str:
        for field, day in (("closing_day", closing_day), ("due_day", due_day)):
            if not 1 <= day <= 31:
                raise ValidationError.single(field, f"{field.replace('_', ' ')} must be between 1 and 31")
        card = CreditCard(
            name=name,
            closing_day=closing_day,
            due_day=due_day,
            limit=to_decimal(limit) if limit not in (None, "") else None,
        )
        return await self._store.create_credit_card(workspace_id, card)

    async def list_credit_cards(
        self,
        workspace_id: str,
        include_inactive: bool = False,
    ) -> list[CreditCard]:
        cards = await self._store.list_credit_cards(workspace_id)
        if not include_inactive:
            cards = [c for c in cards if c.is_active]
        return sorted(cards, key=lambda c: c.name.lower())
