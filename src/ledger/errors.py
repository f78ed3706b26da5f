"""
Ledger Errors

Every error reaches the caller. Validation and lookup errors are raised
before anything is written; ConsistencyError means a write path gave up.
"""

from typing import Optional

from src.models.ledger import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """A command was rejected before any write."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        messages = [i.message for i in issues if i.severity == "error"]
        super().__init__("; ".join(messages) or "invalid command")

    @classmethod
    def single(cls, field: str, message: str, issue_type: str = "invalid_value") -> "ValidationError":
        return cls([ValidationIssue(field=field, issue_type=issue_type, message=message)])


class NotFoundError(LedgerError):
    """A referenced transaction, card or installment group doesn't exist."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)


class ConsistencyError(LedgerError):
    """A balance write could not be completed consistently."""
    pass
