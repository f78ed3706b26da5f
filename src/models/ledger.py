"""
Core Data Models for the Household Ledger

These models define the schemas for everything the ledger reads from and
writes to the document store. They are designed to:
1. Keep money as Decimal cents end to end
2. Make the balance state of a transaction explicit
3. Be serializable for storage and logging

DESIGN DECISION: A transaction's balance effect is tracked with an explicit
two-state enum (UNAPPLIED / APPLIED). Only the ledger and the sweeper move a
transaction between states.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from src.utils.dates import as_local_datetime
from src.utils.money import ZERO, magnitude, to_decimal


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of accounts a workspace can hold."""
    BANK = "bank"
    DIGITAL_WALLET = "digital_wallet"
    CASH = "cash"
    INVESTMENT = "investment"


class TransactionType(str, Enum):
    """
    Transaction types.

    The sign of a transaction is never stored; it is derived from its type
    when the delta is applied (see src.ledger.balance).
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    INVESTMENT = "investment"
    YIELD = "yield"


class CategoryType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class RecurrenceFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BalanceState(str, Enum):
    """
    Whether a transaction's delta has been folded into account balances.

    UNAPPLIED → APPLIED happens at creation (past-dated) or in the sweep.
    APPLIED → UNAPPLIED only happens inside an update or delete.
    """
    UNAPPLIED = "unapplied"
    APPLIED = "applied"


class RevertPolicy(str, Enum):
    """
    How update/delete decide whether to reverse a transaction's effect.

    APPLIED_ONLY reverses only what was actually applied.
    ALWAYS reverses unconditionally (legacy behavior; deleting an unswept
    future transaction then moves the balance).
    """
    APPLIED_ONLY = "applied_only"
    ALWAYS = "always"


# =============================================================================
# WORKSPACE ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    A bank account, wallet, cash box or investment account.

    CRITICAL: current_balance is only ever written by the ledger's balance
    updater (and the reconciliation repair). version is bumped by the store
    on every write and is what compare-and-swap checks against.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType = AccountType.BANK
    initial_balance: Decimal = Field(default=ZERO, decimal_places=2)
    current_balance: Decimal = Field(default=ZERO, decimal_places=2)
    yield_rate: Optional[Decimal] = None
    yield_reference: Optional[str] = Field(default=None, max_length=100)
    is_active: bool = True
    version: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("initial_balance", "current_balance", mode="before")
    @classmethod
    def parse_balance(cls, v) -> Decimal:
        return to_decimal(v)


class Category(BaseModel):
    """Transaction category. Seeded defaults carry is_system=True."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    is_system: bool = False
    created_at: Optional[datetime] = None

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (self.name, self.type.value)


class CreditCard(BaseModel):
    """
    A credit card. Used only to compute installment schedules; all money
    lands on the account referenced by the transaction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    closing_day: int = Field(default=1, ge=1, le=31)
    due_day: int = Field(default=10, ge=1, le=31)
    limit: Optional[Decimal] = Field(default=None, ge=0)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Transaction(BaseModel):
    """
    A stored transaction.

    amount is always the positive magnitude. date is the economic/due date,
    distinct from created_at.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    type: TransactionType
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    account_id: str
    target_account_id: Optional[str] = None
    category_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: datetime
    balance_state: BalanceState = BalanceState.UNAPPLIED

    # Installment grouping
    credit_card_purchase_id: Optional[str] = None
    installment_number: Optional[int] = Field(default=None, ge=1)

    # Recurrence: templates carry the flag, instances point back at them
    is_recurring: bool = False
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    recurrence_template_id: Optional[str] = None
    recurrence_key: Optional[str] = None

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def store_magnitude(cls, v) -> Decimal:
        return magnitude(v)

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v) -> datetime:
        return as_local_datetime(v)

    @property
    def applied_to_balance(self) -> bool:
        return self.balance_state == BalanceState.APPLIED

    @property
    def is_installment(self) -> bool:
        return self.credit_card_purchase_id is not None

    @property
    def account_ids(self) -> set[str]:
        """Every account this transaction can touch."""
        ids = {self.account_id}
        if self.target_account_id:
            ids.add(self.target_account_id)
        return ids


# =============================================================================
# COMMANDS - what callers hand to the ledger
# =============================================================================

class TransactionInput(BaseModel):
    """
    Fields for creating or updating a transaction.

    amount accepts numbers or formatted strings and is normalized to the
    positive magnitude; a zero or unparseable amount is left for the
    validator to reject so the caller gets a proper message.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Decimal
    account_id: Optional[str] = None
    target_account_id: Optional[str] = None
    category_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: datetime

    is_recurring: bool = False
    recurrence_frequency: Optional[RecurrenceFrequency] = None

    # Set by the ledger itself for bulk and recurring creation
    skip_balance_update: bool = False
    credit_card_purchase_id: Optional[str] = None
    installment_number: Optional[int] = Field(default=None, ge=1)
    recurrence_template_id: Optional[str] = None
    recurrence_key: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v) -> Decimal:
        return magnitude(v)

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v) -> datetime:
        return as_local_datetime(v)

    @field_validator("description")
    @classmethod
    def blank_description_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def recurring_needs_frequency(self) -> "TransactionInput":
        if self.is_recurring and self.recurrence_frequency is None:
            self.recurrence_frequency = RecurrenceFrequency.MONTHLY
        if not self.is_recurring:
            self.recurrence_frequency = None
        return self

    @classmethod
    def from_transaction(cls, tx: Transaction, **changes) -> "TransactionInput":
        """Build an input that reproduces an existing transaction, with overrides."""
        data = {
            "type": tx.type,
            "amount": tx.amount,
            "account_id": tx.account_id,
            "target_account_id": tx.target_account_id,
            "category_id": tx.category_id,
            "credit_card_id": tx.credit_card_id,
            "description": tx.description,
            "date": tx.date,
            "is_recurring": tx.is_recurring,
            "recurrence_frequency": tx.recurrence_frequency,
        }
        data.update(changes)
        return cls(**data)


class InstallmentPurchaseInput(BaseModel):
    """
    A credit card purchase split into installments.

    closing_day / due_day override the card's own values when given.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    total_amount: Decimal
    installments_count: int
    purchase_date: date
    credit_card_id: str
    account_id: str
    category_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=450)
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)

    @field_validator("total_amount", mode="before")
    @classmethod
    def parse_total(cls, v) -> Decimal:
        return magnitude(v)

    @field_validator("purchase_date", mode="before")
    @classmethod
    def purchase_day(cls, v) -> date:
        if isinstance(v, datetime):
            return as_local_datetime(v).date()
        return v


class InstallmentGroupChanges(BaseModel):
    """Fields shared by every member of an installment group."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType = TransactionType.EXPENSE
    account_id: str
    target_account_id: Optional[str] = None
    category_id: Optional[str] = None
    credit_card_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=450)


# =============================================================================
# INSTALLMENT SCHEDULE
# =============================================================================

class Installment(BaseModel):
    """One parcel of an installment schedule."""
    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=1)
    amount: Decimal
    due_date: date
    closing_date: date


class InstallmentPurchaseResult(BaseModel):
    count: int
    first_id: Optional[str] = None
    transaction_ids: list[str] = Field(default_factory=list)


# =============================================================================
# STORE QUERIES
# =============================================================================

class TransactionQuery(BaseModel):
    """
    A page request against the transactions collection.

    Results are always ordered by date descending (id descending as the
    tie-break, so cursors are stable).
    """
    limit: int = Field(default=100, ge=1, le=10000)
    start_after: Optional[str] = Field(
        default=None,
        description="Id of the last transaction of the previous page",
    )
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    balance_state: Optional[BalanceState] = None
    is_recurring: Optional[bool] = None
    recurrence_template_id: Optional[str] = None
    credit_card_purchase_id: Optional[str] = None

    def matches(self, tx: Transaction) -> bool:
        """Filter predicate shared by store implementations."""
        if self.date_from and tx.date < self.date_from:
            return False
        if self.date_to and tx.date > self.date_to:
            return False
        if self.balance_state and tx.balance_state != self.balance_state:
            return False
        if self.is_recurring is not None and tx.is_recurring != self.is_recurring:
            return False
        if (
            self.recurrence_template_id
            and tx.recurrence_template_id != self.recurrence_template_id
        ):
            return False
        if (
            self.credit_card_purchase_id
            and tx.credit_card_purchase_id != self.credit_card_purchase_id
        ):
            return False
        return True


class TransactionPage(BaseModel):
    items: list[Transaction] = Field(default_factory=list)
    next_cursor: Optional[str] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'not_found')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
    )


class ValidationResult(BaseModel):
    """Outcome of validating a ledger command."""

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def error_messages(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "error"]


# =============================================================================
# RESULTS
# =============================================================================

class SweepResult(BaseModel):
    """What one pass of the pending-transaction sweep did."""

    workspace_id: str
    scanned: int = 0
    applied_ids: list[str] = Field(default_factory=list)
    skipped_ids: list[str] = Field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.applied_ids)


class AccountReconciliation(BaseModel):
    """Recorded vs recomputed balance for one account."""

    account_id: str
    account_name: str
    recorded_balance: Decimal
    expected_balance: Decimal
    repaired: bool = False

    @property
    def drift(self) -> Decimal:
        return self.recorded_balance - self.expected_balance

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


# =============================================================================
# QUERY RESULTS
# =============================================================================

class SummaryPeriod(str, Enum):
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    LAST_3_MONTHS = "last_3_months"
    THIS_YEAR = "this_year"


class NamedAmount(BaseModel):
    name: str
    amount: Decimal


class PeriodSummary(BaseModel):
    """
    Dashboard figures for one period.

    total_balance is the live sum of current balances for THIS_MONTH and
    the recomputed balance at period end for every other period.
    """
    period: SummaryPeriod
    start: datetime
    end: datetime
    total_balance: Decimal = ZERO
    income: Decimal = ZERO
    expense: Decimal = ZERO
    expense_by_category: list[NamedAmount] = Field(default_factory=list)
    card_expense_total: Decimal = ZERO
    card_expense_by_category: list[NamedAmount] = Field(default_factory=list)
    card_expense_by_card: list[NamedAmount] = Field(default_factory=list)
    recent_transactions: list[Transaction] = Field(default_factory=list)

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class InstallmentGroup(BaseModel):
    """The parcels of one credit card purchase, in installment order."""
    purchase_id: str
    base_description: str
    total_amount: Decimal
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.transactions)
