"""
Per-account locks.

Every multi-step balance operation holds the locks of all accounts it
touches for its whole duration. Locks are always taken in sorted order,
so two operations sharing accounts can never deadlock. Locks are not
reentrant: code running under hold() must not call hold() again for
the same account.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable, Optional


class AccountLocks:
    """One asyncio.Lock per (workspace, account), created on first use."""

    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, workspace_id: str, account_id: str) -> asyncio.Lock:
        key = (workspace_id, account_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_locked(self, workspace_id: str, account_id: str) -> bool:
        lock = self._locks.get((workspace_id, account_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self,
        workspace_id: str,
        account_ids: Iterable[Optional[str]],
    ) -> AsyncIterator[list[str]]:
        """Acquire every given account's lock (None entries are ignored)."""
        ordered = sorted({a for a in account_ids if a})
        async with AsyncExitStack() as stack:
            for account_id in ordered:
                await stack.enter_async_context(self._lock_for(workspace_id, account_id))
            yield ordered
