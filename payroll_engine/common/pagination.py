"""Generic pagination utilities for SQLAlchemy async queries."""


import math
from typing import Any, Generic, Sequence, TypeVar

from fastapi import Query
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from payroll_engine.common.schemas import CamelModel

T = TypeVar("T")


# ── FastAPI dependency ──────────────────────────────────────────────

class PaginationParams:
    """Inject via ``Depends(PaginationParams)`` on any list endpoint."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
        limit: int = Query(
            default=DEFAULT_PAGE_SIZE,
            ge=1,
            le=MAX_PAGE_SIZE,
            description=f"Items per page (max {MAX_PAGE_SIZE})",
        ),
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# ── Pydantic response model ────────────────────────────────────────

class PaginatedResponse(CamelModel, Generic[T]):
    """Standard envelope: ``{"items": [...], "total": n, ...}``."""

    items: Sequence[T]
    total: int
    page: int
    limit: int
    total_pages: int


# ── SQLAlchemy helper ───────────────────────────────────────────────

async def paginate(
    session: AsyncSession,
    query: Select,
    params: PaginationParams,
) -> tuple[list[Any], int, int]:
    """
    Execute *query* with LIMIT/OFFSET derived from *params*.

    Returns ``(rows, total, total_pages)``; the caller wraps rows in its
    own output schema.
    """
    count_q = select(func.count()).select_from(query.order_by(None).subquery())
    total: int = (await session.execute(count_q)).scalar_one()

    rows = (
        await session.execute(
            query.offset(params.offset).limit(params.limit)
        )
    ).scalars().all()

    total_pages = math.ceil(total / params.limit) if total else 0
    return list(rows), total, total_pages
