"""Per-loan asyncio locks.

Serializes disbursement and repayment posting for one loan inside this
process. Rows are also read ``FOR UPDATE`` so other processes sharing the
database wait on the row lock.
"""

from __future__ import annotations

import uuid
import weakref
from asyncio import Lock
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable

_locks: "weakref.WeakValueDictionary[uuid.UUID, Lock]" = weakref.WeakValueDictionary()


def loan_lock(loan_id: uuid.UUID) -> Lock:
    lock = _locks.get(loan_id)
    if lock is None:
        lock = Lock()
        _locks[loan_id] = lock
    return lock


@asynccontextmanager
async def hold_loan_locks(loan_ids: Iterable[uuid.UUID]) -> AsyncIterator[None]:
    """Acquire the locks of several loans in a stable order."""
    async with AsyncExitStack() as stack:
        # Hold strong references for the duration; the registry is weak.
        held = [loan_lock(loan_id) for loan_id in sorted(set(loan_ids), key=str)]
        for lock in held:
            await stack.enter_async_context(lock)
        yield
