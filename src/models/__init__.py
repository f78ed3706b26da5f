"""
Data Models Package

This package contains all Pydantic models used by the ledger.
Everything read from or written to the document store conforms to these schemas.
"""

from src.models.ledger import (
    Account,
    AccountReconciliation,
    AccountType,
    BalanceState,
    Category,
    CategoryType,
    CreditCard,
    Installment,
    InstallmentGroup,
    InstallmentGroupChanges,
    InstallmentPurchaseInput,
    InstallmentPurchaseResult,
    NamedAmount,
    PeriodSummary,
    RecurrenceFrequency,
    RevertPolicy,
    SummaryPeriod,
    SweepResult,
    Transaction,
    TransactionInput,
    TransactionPage,
    TransactionQuery,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountReconciliation",
    "AccountType",
    "BalanceState",
    "Category",
    "CategoryType",
    "CreditCard",
    "Installment",
    "InstallmentGroup",
    "InstallmentGroupChanges",
    "InstallmentPurchaseInput",
    "InstallmentPurchaseResult",
    "NamedAmount",
    "PeriodSummary",
    "RecurrenceFrequency",
    "RevertPolicy",
    "SummaryPeriod",
    "SweepResult",
    "Transaction",
    "TransactionInput",
    "TransactionPage",
    "TransactionQuery",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
