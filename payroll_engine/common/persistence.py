"""Timeout-bounded commits that surface storage failures as PersistenceError."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.common.exceptions import PersistenceError
from payroll_engine.config import settings

logger = logging.getLogger(__name__)


async def commit_or_raise(
    session: AsyncSession,
    timeout: Optional[float] = None,
) -> None:
    """Commit *session* within the persistence timeout.

    On timeout or a driver error the transaction is rolled back and a
    retryable ``PersistenceError`` is raised instead.
    """
    limit = timeout if timeout is not None else settings.PERSISTENCE_TIMEOUT_SECONDS
    try:
        await asyncio.wait_for(session.commit(), timeout=limit)
    except asyncio.TimeoutError:
        logger.warning("Commit exceeded %.1fs, rolling back", limit)
        await session.rollback()
        raise PersistenceError(f"Commit timed out after {limit:.1f}s. Please retry.")
    except SQLAlchemyError as exc:
        logger.warning("Commit failed: %s", exc.__class__.__name__)
        await session.rollback()
        raise PersistenceError() from exc
