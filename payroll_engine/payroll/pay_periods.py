"""Pay period administration and the OPEN ⇄ PROCESSING claim.

At most one period is OPEN or PROCESSING at a time. A commit-mode payroll
run claims its period with an atomic ``UPDATE … WHERE status = 'OPEN'`` and
releases it when done; closing claims it the same way and ends in CLOSED.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import extract, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.common.audit import create_audit_entry
from payroll_engine.common.constants import PayPeriodStatus
from payroll_engine.common.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundException,
    ValidationException,
)
from payroll_engine.common.pagination import PaginationParams, paginate
from payroll_engine.common.persistence import commit_or_raise
from payroll_engine.payroll.models import TERMINAL_SALARY_STATUSES, PayPeriod, Salary

logger = logging.getLogger(__name__)

_LIVE = (PayPeriodStatus.OPEN, PayPeriodStatus.PROCESSING)


class PayPeriodService:
    """Create, query, claim and close pay periods."""

    @staticmethod
    async def get(db: AsyncSession, pay_period_id: uuid.UUID) -> PayPeriod:
        period = await db.get(PayPeriod, pay_period_id, populate_existing=True)
        if period is None:
            raise NotFoundException("PayPeriod", str(pay_period_id))
        return period

    @staticmethod
    async def list_periods(
        db: AsyncSession,
        params: PaginationParams,
        *,
        status: Optional[PayPeriodStatus] = None,
        year: Optional[int] = None,
    ) -> tuple[list[PayPeriod], int, int]:
        query = select(PayPeriod)
        if status is not None:
            query = query.where(PayPeriod.status == status)
        if year is not None:
            query = query.where(extract("year", PayPeriod.start_date) == year)
        query = query.order_by(PayPeriod.start_date.desc())
        return await paginate(db, query, params)

    @staticmethod
    async def get_current(db: AsyncSession) -> PayPeriod:
        result = await db.execute(
            select(PayPeriod)
            .where(PayPeriod.status.in_(_LIVE))
            .order_by(PayPeriod.start_date)
            .limit(1)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundException("PayPeriod", "current")
        return period

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        start_date: date,
        end_date: date,
        payment_date: date,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayPeriod:
        """Open a new period; rejects bad dates, overlaps and a second live period."""
        errors: dict[str, list[str]] = {}
        if not name or not name.strip():
            errors["name"] = ["Name is required."]
        if start_date > end_date:
            errors["end_date"] = ["End date must be on or after the start date."]
        if payment_date < start_date:
            errors["payment_date"] = ["Payment date cannot precede the start date."]
        if errors:
            raise ValidationException(errors)

        live = (await db.execute(
            select(func.count()).select_from(PayPeriod).where(PayPeriod.status.in_(_LIVE))
        )).scalar_one()
        if live:
            raise ConflictError(
                "status", PayPeriodStatus.OPEN.value,
                detail="Another pay period is still open; close it first.",
            )

        overlapping = (await db.execute(
            select(PayPeriod.name).where(
                PayPeriod.start_date <= end_date,
                PayPeriod.end_date >= start_date,
            ).limit(1)
        )).scalar_one_or_none()
        if overlapping is not None:
            raise ConflictError(
                "start_date", start_date.isoformat(),
                detail=f"Dates overlap existing pay period '{overlapping}'.",
            )

        period = PayPeriod(
            name=name.strip(),
            start_date=start_date,
            end_date=end_date,
            payment_date=payment_date,
            status=PayPeriodStatus.OPEN,
        )
        db.add(period)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="pay_period",
            entity_id=period.id,
            actor_id=actor_id,
            new_values={
                "name": period.name,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        await commit_or_raise(db)
        logger.info("Pay period %s (%s) opened", period.id, period.name)
        return period

    # ── Claim / release ───────────────────────────────────────────────

    @staticmethod
    async def claim(db: AsyncSession, pay_period_id: uuid.UUID, action: str) -> None:
        """Move OPEN → PROCESSING atomically and commit, or raise."""
        result = await db.execute(
            update(PayPeriod)
            .where(
                PayPeriod.id == pay_period_id,
                PayPeriod.status == PayPeriodStatus.OPEN,
            )
            .values(status=PayPeriodStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            period = await PayPeriodService.get(db, pay_period_id)
            raise InvalidTransition("pay period", period.status, action)
        await commit_or_raise(db)

    @staticmethod
    async def release(
        db: AsyncSession,
        pay_period_id: uuid.UUID,
        target: PayPeriodStatus = PayPeriodStatus.OPEN,
    ) -> None:
        """Move PROCESSING → *target* and commit."""
        values: dict = {"status": target}
        if target == PayPeriodStatus.CLOSED:
            values["closed_at"] = datetime.now(timezone.utc)
        await db.execute(
            update(PayPeriod)
            .where(
                PayPeriod.id == pay_period_id,
                PayPeriod.status == PayPeriodStatus.PROCESSING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await commit_or_raise(db)

    # ── Close ─────────────────────────────────────────────────────────

    @staticmethod
    async def close(
        db: AsyncSession,
        pay_period_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayPeriod:
        """Close a period whose salaries are all PAID or CANCELLED."""
        await PayPeriodService.claim(db, pay_period_id, "close")

        closed = False
        try:
            statuses = list((await db.execute(
                select(Salary.status).where(Salary.pay_period_id == pay_period_id)
            )).scalars().all())
            if not statuses:
                raise ValidationException(
                    {"pay_period_id": ["Pay period has no salaries to close."]}
                )
            pending = sum(1 for s in statuses if s not in TERMINAL_SALARY_STATUSES)
            if pending:
                raise ValidationException(
                    {"pay_period_id": [
                        f"{pending} salary record(s) are not yet paid or cancelled."
                    ]}
                )
            await create_audit_entry(
                db,
                action="close",
                entity_type="pay_period",
                entity_id=pay_period_id,
                actor_id=actor_id,
                old_values={"status": PayPeriodStatus.OPEN.value},
                new_values={"status": PayPeriodStatus.CLOSED.value},
            )
            await PayPeriodService.release(db, pay_period_id, PayPeriodStatus.CLOSED)
            closed = True
        finally:
            if not closed:
                await db.rollback()
                await PayPeriodService.release(db, pay_period_id)

        logger.info("Pay period %s closed", pay_period_id)
        return await PayPeriodService.get(db, pay_period_id)
