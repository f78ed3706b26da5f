"""
Two-Stage Validation for Ledger Commands

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Positive amount
- Required references present (account, transfer target)
- Shape rules (transfer target differs from source, parcel count)
- Runs without storage

STAGE 2 - REFERENCE VALIDATION:
- Referenced accounts exist in the workspace
- Inactive accounts are flagged as warnings
- Needs storage access

Stage 2 is skipped when stage 1 fails. Both run before the ledger
writes anything, so a rejected command never leaves a partial effect.

IMPORTANT: Validation NEVER silently fixes issues. It reports them; the
ledger turns errors into a ValidationError.
"""

from typing import Optional

from src.models.ledger import (
    Account,
    InstallmentPurchaseInput,
    TransactionInput,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from src.services.storage import DocumentStoreInterface
from src.utils.money import floor_to_cent


class TransactionValidator:
    """
    Validates transaction and installment commands.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Reference validation (needs storage)
    """

    def __init__(self, store: Optional[DocumentStoreInterface] = None):
        """
        Args:
            store: Document store used to resolve account references.
                   If None, reference checks are skipped.
        """
        self._store = store

    def _validate_schema(
        self,
        data: TransactionInput,
    ) -> tuple[bool, list[ValidationIssue]]:
        """Stage 1. Returns (is_valid, list_of_issues)."""
        issues = []

        if data.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="amount must be positive",
            ))

        if not data.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="account is required",
            ))

        if data.type == TransactionType.TRANSFER:
            if not data.target_account_id:
                issues.append(ValidationIssue(
                    field="target_account_id",
                    issue_type="missing",
                    message="target account is required for transfers",
                ))
            elif data.target_account_id == data.account_id:
                issues.append(ValidationIssue(
                    field="target_account_id",
                    issue_type="invalid_value",
                    message="target account must differ from the source account",
                ))
        elif data.target_account_id:
            issues.append(ValidationIssue(
                field="target_account_id",
                issue_type="ignored",
                message=f"target account is ignored for {data.type.value} transactions",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _validate_references(
        self,
        workspace_id: str,
        data: TransactionInput,
    ) -> tuple[bool, list[ValidationIssue]]:
        """Stage 2. Returns (is_valid, list_of_issues)."""
        issues = []

        if self._store is None:
            return True, issues

        source = await self._store.get_account(workspace_id, data.account_id)
        issues.extend(self._account_issues("account_id", "account", source))

        if data.type == TransactionType.TRANSFER and data.target_account_id:
            target = await self._store.get_account(workspace_id, data.target_account_id)
            issues.extend(self._account_issues("target_account_id", "target account", target))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    @staticmethod
    def _account_issues(
        field: str,
        label: str,
        account: Optional[Account],
    ) -> list[ValidationIssue]:
        if account is None:
            return [ValidationIssue(
                field=field,
                issue_type="not_found",
                message=f"{label} not found",
            )]
        if not account.is_active:
            return [ValidationIssue(
                field=field,
                issue_type="inactive",
                message=f"{label} '{account.name}' is inactive",
                severity="warning",
            )]
        return []

    async def validate_transaction(
        self,
        workspace_id: str,
        data: TransactionInput,
    ) -> ValidationResult:
        """
        Run the full two-stage validation for a create or update.

        Returns:
            ValidationResult with all issues found
        """
        schema_valid, issues = self._validate_schema(data)

        references_valid = False
        if schema_valid:
            references_valid, reference_issues = await self._validate_references(
                workspace_id, data
            )
            issues.extend(reference_issues)

        return ValidationResult(
            is_valid=schema_valid and references_valid,
            issues=issues,
        )

    async def validate_installment_purchase(
        self,
        workspace_id: str,
        params: InstallmentPurchaseInput,
    ) -> ValidationResult:
        """
        Validate an installment purchase.

        Each parcel is an expense on params.account_id, so the shared
        checks run once on a representative parcel.
        """
        issues = []

        if params.installments_count < 1:
            issues.append(ValidationIssue(
                field="installments_count",
                issue_type="invalid_value",
                message="installments count must be at least 1",
            ))
        elif 0 < params.total_amount and floor_to_cent(
            params.total_amount / params.installments_count
        ) == 0:
            # Every parcel must be worth at least a cent
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="invalid_value",
                message="amount must be positive",
            ))

        representative = TransactionInput(
            type=TransactionType.EXPENSE,
            amount=params.total_amount,
            account_id=params.account_id,
            date=params.purchase_date,
        )
        result = await self.validate_transaction(workspace_id, representative)
        issues.extend(result.issues)

        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )
