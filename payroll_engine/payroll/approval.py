"""Salary approval and payment state machine.

    DRAFT ─approve─► APPROVED ─pay─► PAID
      └──────cancel──────┴──► CANCELLED

Details are frozen from APPROVED onwards; only a DRAFT is ever recalculated.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.common.audit import create_audit_entry
from payroll_engine.common.constants import SalaryStatus
from payroll_engine.common.exceptions import (
    AppException,
    InvalidTransition,
    NotFoundException,
    ValidationException,
)
from payroll_engine.common.pagination import PaginationParams, paginate
from payroll_engine.common.persistence import commit_or_raise
from payroll_engine.database import async_session_factory
from payroll_engine.loans.locks import hold_loan_locks
from payroll_engine.loans.service import LoanService
from payroll_engine.payroll.models import Salary

logger = logging.getLogger(__name__)


@dataclass
class BulkPaymentResult:
    total_processed: int = 0
    successful: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)


def _snapshot(salary: Salary) -> dict[str, Any]:
    return {
        "status": SalaryStatus(salary.status).value,
        "net_salary": str(salary.net_salary),
        "payment_reference": salary.payment_reference,
    }


class SalaryApprovalService:
    """Approve, pay and cancel salaries; plus salary queries."""

    # ── Queries ───────────────────────────────────────────────────────

    @staticmethod
    async def get_salary(
        db: AsyncSession,
        salary_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Salary:
        stmt = select(Salary).where(Salary.id == salary_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        salary = (await db.execute(stmt)).scalar_one_or_none()
        if salary is None:
            raise NotFoundException("Salary", str(salary_id))
        return salary

    @staticmethod
    async def list_salaries(
        db: AsyncSession,
        params: PaginationParams,
        *,
        pay_period_id: Optional[uuid.UUID] = None,
        status: Optional[SalaryStatus] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> tuple[list[Salary], int, int]:
        query = select(Salary)
        if pay_period_id is not None:
            query = query.where(Salary.pay_period_id == pay_period_id)
        if status is not None:
            query = query.where(Salary.status == status)
        if employee_id is not None:
            query = query.where(Salary.employee_id == employee_id)
        query = query.order_by(Salary.calculated_at.desc(), Salary.id)
        return await paginate(db, query, params)

    # ── Transitions ───────────────────────────────────────────────────

    @staticmethod
    async def _record(
        db: AsyncSession,
        salary: Salary,
        *,
        action: str,
        old: dict[str, Any],
        actor_id: Optional[uuid.UUID],
    ) -> Salary:
        await db.flush()
        await create_audit_entry(
            db,
            action=action,
            entity_type="salary",
            entity_id=salary.id,
            actor_id=actor_id,
            old_values=old,
            new_values=_snapshot(salary),
        )
        await commit_or_raise(db)
        logger.info("Salary %s %s → %s", salary.id, old["status"], _snapshot(salary)["status"])
        return salary

    @staticmethod
    async def approve(
        db: AsyncSession,
        salary_id: uuid.UUID,
        approver_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> Salary:
        salary = await SalaryApprovalService.get_salary(db, salary_id, for_update=True)
        if salary.status != SalaryStatus.DRAFT:
            raise InvalidTransition("salary", salary.status, "approve")

        old = _snapshot(salary)
        salary.status = SalaryStatus.APPROVED
        salary.approved_by = approver_id
        salary.approved_at = datetime.now(timezone.utc)
        if notes:
            salary.notes = notes
        return await SalaryApprovalService._record(
            db, salary, action="approve", old=old, actor_id=approver_id,
        )

    @staticmethod
    async def pay(
        db: AsyncSession,
        salary_id: uuid.UUID,
        payment_reference: str,
        notes: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Salary:
        reference = (payment_reference or "").strip()
        if not reference:
            raise ValidationException({"payment_reference": ["Payment reference is required."]})

        salary = await SalaryApprovalService.get_salary(db, salary_id, for_update=True)
        if salary.status != SalaryStatus.APPROVED:
            raise InvalidTransition("salary", salary.status, "pay")

        old = _snapshot(salary)
        salary.status = SalaryStatus.PAID
        salary.payment_reference = reference
        salary.paid_at = datetime.now(timezone.utc)
        if notes:
            salary.notes = notes
        return await SalaryApprovalService._record(
            db, salary, action="pay", old=old, actor_id=actor_id,
        )

    @staticmethod
    async def cancel(
        db: AsyncSession,
        salary_id: uuid.UUID,
        notes: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Salary:
        """Cancel a DRAFT or APPROVED salary.

        Loan instalments posted against it are reversed in the same
        transaction, since nothing will be withheld.
        """
        salary = await SalaryApprovalService.get_salary(db, salary_id, for_update=True)
        if salary.status not in (SalaryStatus.DRAFT, SalaryStatus.APPROVED):
            raise InvalidTransition("salary", salary.status, "cancel")

        loan_ids = await LoanService.loans_charged_to_salary(db, salary.id)
        async with hold_loan_locks(loan_ids):
            await LoanService.reverse_salary_repayments(db, salary.id, actor_id=actor_id)

            old = _snapshot(salary)
            salary.status = SalaryStatus.CANCELLED
            salary.cancelled_at = datetime.now(timezone.utc)
            if notes:
                salary.notes = notes
            return await SalaryApprovalService._record(
                db, salary, action="cancel", old=old, actor_id=actor_id,
            )

    # ── Bulk payment ──────────────────────────────────────────────────

    @staticmethod
    async def bulk_payment(
        payments: list[dict[str, Any]],
        *,
        session_factory: Optional[async_sessionmaker] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BulkPaymentResult:
        """Pay each ``{salary_id, payment_reference}`` item independently.

        Every item commits on its own session; a failure is reported for
        that item only.
        """
        factory = session_factory or async_session_factory
        result = BulkPaymentResult(total_processed=len(payments))

        for item in payments:
            raw_id = item.get("salary_id")
            reference = item.get("payment_reference") or ""
            try:
                salary_id = raw_id if isinstance(raw_id, uuid.UUID) else uuid.UUID(str(raw_id))
            except (TypeError, ValueError):
                result.failed.append({"salary_id": str(raw_id), "reason": "Malformed salary id."})
                continue

            async with factory() as session:
                try:
                    salary = await SalaryApprovalService.pay(
                        session, salary_id, reference, actor_id=actor_id,
                    )
                except AppException as exc:
                    await session.rollback()
                    result.failed.append({"salary_id": str(salary_id), "reason": exc.detail})
                    continue
                except Exception:
                    await session.rollback()
                    logger.exception("Unexpected failure paying salary %s", salary_id)
                    result.failed.append({
                        "salary_id": str(salary_id),
                        "reason": "Unexpected error while recording payment.",
                    })
                    continue
            result.successful.append(
                {"salary_id": str(salary_id), "payment_reference": salary.payment_reference}
            )

        logger.info(
            "Bulk payment: %d processed, %d paid, %d failed",
            result.total_processed, len(result.successful), len(result.failed),
        )
        return result
