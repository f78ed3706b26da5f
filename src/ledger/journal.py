"""
Undo journal for multi-step ledger operations.

A logical operation (create, update, bulk installments, ...) records one
undo step per write that succeeded. If a later step fails, the journal
runs the undo steps in reverse order and the original error propagates.
An undo step that itself fails is audited as a consistency risk and the
remaining steps still run.
"""

from typing import Awaitable, Callable, Optional
from uuid import UUID

from src.audit import AuditLogger

UndoStep = Callable[[], Awaitable[object]]


class LedgerJournal:
    """
    Usage:
        journal = LedgerJournal("create_transaction", workspace_id, audit)
        async with journal:
            tx_id = await store.create_transaction(...)
            journal.record("insert", partial(store.delete_transaction, ws, tx_id))
    """

    def __init__(
        self,
        operation: str,
        workspace_id: str,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self.operation = operation
        self.workspace_id = workspace_id
        self.correlation_id = correlation_id
        self._audit = audit_logger or AuditLogger()
        self._steps: list[tuple[str, UndoStep]] = []

    @property
    def steps(self) -> list[str]:
        return [label for label, _ in self._steps]

    def record(self, label: str, undo: UndoStep) -> None:
        self._steps.append((label, undo))

    async def rollback(self, error: BaseException) -> int:
        """Undo every recorded step, newest first. Returns the number undone."""
        undone = 0
        while self._steps:
            label, undo = self._steps.pop()
            try:
                await undo()
                undone += 1
            except Exception as e:
                await self._audit.log_rollback_step_failed(
                    workspace_id=self.workspace_id,
                    operation=self.operation,
                    step=label,
                    error_message=str(e),
                    correlation_id=self.correlation_id,
                )

        await self._audit.log_operation_rolled_back(
            workspace_id=self.workspace_id,
            operation=self.operation,
            steps=undone,
            error_message=str(error),
            correlation_id=self.correlation_id,
        )
        return undone

    async def __aenter__(self) -> "LedgerJournal":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and isinstance(exc, Exception):
            await self.rollback(exc)
        else:
            self._steps.clear()
        return False
