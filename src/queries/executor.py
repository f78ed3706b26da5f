"""
Query Execution Engine

DESIGN DECISION: Read-side figures are computed from stored data only.
Nothing here writes; balances shown for past periods are recomputed from
initial balances and transactions, never estimated.

The dashboard asks for:
- Transactions in a date range
- Total balance now, or at the end of a past period
- Income / expense totals and breakdowns for a period
- Installment purchases grouped by purchase
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from src.config import LedgerSettings, get_settings
from src.ledger.balance import transaction_deltas
from src.ledger.service import collect_transactions, strip_installment_suffix
from src.models.ledger import (
    InstallmentGroup,
    NamedAmount,
    PeriodSummary,
    SummaryPeriod,
    Transaction,
    TransactionQuery,
    TransactionType,
)
from src.services.storage import DocumentStoreInterface
from src.utils.dates import (
    Clock,
    add_months,
    end_of_month,
    end_of_year,
    local_now,
    start_of_month,
    start_of_year,
)
from src.utils.money import ZERO, quantize_money

INCOME_TYPES = (TransactionType.INCOME, TransactionType.YIELD)
EXPENSE_TYPES = (TransactionType.EXPENSE, TransactionType.INVESTMENT)

UNCATEGORIZED = "Other"
UNKNOWN_CARD = "Card"

# Page size per period, for the single-page period listing
PERIOD_LIMITS = {
    SummaryPeriod.THIS_MONTH: 150,
    SummaryPeriod.LAST_MONTH: 150,
    SummaryPeriod.LAST_3_MONTHS: 400,
    SummaryPeriod.THIS_YEAR: 800,
}


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


def _ranked(totals: dict[str, Decimal]) -> list[NamedAmount]:
    """Largest amount first."""
    return [
        NamedAmount(name=name, amount=quantize_money(amount))
        for name, amount in sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    ]


def group_installments(transactions: Iterable[Transaction]) -> list[InstallmentGroup]:
    """
    Group parcels by credit_card_purchase_id.

    Groups come back newest first (by their first parcel's date);
    transactions without a purchase id are ignored.
    """
    by_purchase: dict[str, list[Transaction]] = defaultdict(list)
    for tx in transactions:
        if tx.is_installment:
            by_purchase[tx.credit_card_purchase_id].append(tx)

    groups = []
    for purchase_id, members in by_purchase.items():
        members.sort(key=lambda tx: tx.installment_number or 0)
        groups.append(InstallmentGroup(
            purchase_id=purchase_id,
            base_description=strip_installment_suffix(members[0].description) or "Installment purchase",
            total_amount=quantize_money(sum((tx.amount for tx in members), ZERO)),
            transactions=members,
        ))
    groups.sort(key=lambda g: g.transactions[0].date, reverse=True)
    return groups


class LedgerQueryExecutor:
    """
    Executes read-side queries against the document store.

    GUARANTEES:
    - Only returns real data from storage
    - Never writes
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        clock: Clock = local_now,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._clock = clock
        self._settings = settings or get_settings().ledger

    def period_range(self, period: SummaryPeriod) -> tuple[datetime, datetime]:
        """Inclusive [start, end] of a dashboard period, relative to the clock."""
        now = self._clock()
        if period == SummaryPeriod.THIS_MONTH:
            return start_of_month(now), end_of_month(now)
        if period == SummaryPeriod.LAST_MONTH:
            last = add_months(now.date(), -1, day=1)
            return start_of_month(last), end_of_month(last)
        if period == SummaryPeriod.LAST_3_MONTHS:
            first = add_months(now.date(), -2, day=1)
            return start_of_month(first), end_of_month(now)
        if period == SummaryPeriod.THIS_YEAR:
            return start_of_year(now), end_of_year(now)
        raise QueryExecutionError(f"Unknown period: {period}")

    async def get_transactions(
        self,
        workspace_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Transaction]:
        """One page of transactions in [start, end], newest first."""
        page = await self._store.query_transactions(
            workspace_id,
            TransactionQuery(date_from=start, date_to=end, limit=limit),
        )
        return page.items

    async def get_transactions_up_to(
        self,
        workspace_id: str,
        end: datetime,
    ) -> list[Transaction]:
        """Every transaction dated on or before `end`."""
        return await collect_transactions(
            self._store,
            workspace_id,
            TransactionQuery(date_to=end, limit=self._settings.sweep_page_size),
        )

    async def total_current_balance(self, workspace_id: str) -> Decimal:
        accounts = await self._store.list_accounts(workspace_id)
        return quantize_money(sum((a.current_balance for a in accounts), ZERO))

    async def balance_at(self, workspace_id: str, end: datetime) -> Decimal:
        """
        Total balance as of `end`: initial balances plus the deltas of every
        transaction dated on or before it.
        """
        accounts = await self._store.list_accounts(workspace_id)
        total = sum((a.initial_balance for a in accounts), ZERO)
        for tx in await self.get_transactions_up_to(workspace_id, end):
            total += sum(transaction_deltas(tx).values(), ZERO)
        return quantize_money(total)

    async def period_summary(
        self,
        workspace_id: str,
        period: SummaryPeriod = SummaryPeriod.THIS_MONTH,
        category_id: Optional[str] = None,
        recent_count: int = 5,
    ) -> PeriodSummary:
        """
        Income, expense and their breakdowns for a period.

        category_id narrows the expense side only; income is always the
        whole period's.
        """
        period = SummaryPeriod(period)
        start, end = self.period_range(period)

        transactions = await self.get_transactions(
            workspace_id, start, end, limit=PERIOD_LIMITS[period]
        )
        categories = {c.id: c.name for c in await self._store.list_categories(workspace_id)}
        cards = {c.id: c.name for c in await self._store.list_credit_cards(workspace_id)}

        if period == SummaryPeriod.THIS_MONTH:
            total_balance = await self.total_current_balance(workspace_id)
        else:
            total_balance = await self.balance_at(workspace_id, end)

        income = ZERO
        expense = ZERO
        by_category: dict[str, Decimal] = defaultdict(Decimal)
        card_by_category: dict[str, Decimal] = defaultdict(Decimal)
        card_by_card: dict[str, Decimal] = defaultdict(Decimal)

        for tx in transactions:
            if tx.type in INCOME_TYPES:
                income += tx.amount
                continue
            if tx.type not in EXPENSE_TYPES:
                continue
            if category_id and tx.category_id != category_id:
                continue

            expense += tx.amount
            category_name = categories.get(tx.category_id, UNCATEGORIZED)
            by_category[category_name] += tx.amount
            if tx.credit_card_id:
                card_by_category[category_name] += tx.amount
                card_by_card[cards.get(tx.credit_card_id, UNKNOWN_CARD)] += tx.amount

        recent = await self.get_transactions(workspace_id, limit=recent_count)

        return PeriodSummary(
            period=period,
            start=start,
            end=end,
            total_balance=total_balance,
            income=quantize_money(income),
            expense=quantize_money(expense),
            expense_by_category=_ranked(by_category),
            card_expense_total=quantize_money(sum(card_by_card.values(), ZERO)),
            card_expense_by_category=_ranked(card_by_category),
            card_expense_by_card=_ranked(card_by_card),
            recent_transactions=recent,
        )

    async def installment_groups(
        self,
        workspace_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000,
    ) -> list[InstallmentGroup]:
        transactions = await self.get_transactions(workspace_id, start, end, limit)
        return group_installments(transactions)
