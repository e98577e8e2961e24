"""Payroll Run Orchestrator — batch salary calculation for one pay period.

Each eligible employee is resolved, calculated and (in commit mode) saved
on its own session, so one employee's failure never rolls back another's
salary. Failures are collected into the run result instead of raised.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.common.audit import create_audit_entry
from payroll_engine.common.constants import (
    PayPeriodStatus,
    RepaymentStatus,
    SalaryStatus,
)
from payroll_engine.common.exceptions import AppException, InvalidTransition
from payroll_engine.common.money import ZERO, money_sum
from payroll_engine.common.persistence import commit_or_raise
from payroll_engine.components.resolver import ComponentResolver
from payroll_engine.config import settings
from payroll_engine.core_hr.service import EmployeeDirectory
from payroll_engine.database import async_session_factory
from payroll_engine.loans.locks import hold_loan_locks
from payroll_engine.loans.service import LoanService, deduction_line
from payroll_engine.payroll.calculator import SalaryComputation, calculate_salary
from payroll_engine.payroll.models import PayPeriod, Salary, SalaryDetail
from payroll_engine.payroll.pay_periods import PayPeriodService

logger = logging.getLogger(__name__)


# ── Result types ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmployeeError:
    employee_id: uuid.UUID
    message: str


@dataclass
class PayrollRunResult:
    pay_period_id: uuid.UUID
    dry_run: bool
    total_employees: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    total_gross_salary: Decimal = ZERO
    total_net_salary: Decimal = ZERO
    errors: list[EmployeeError] = field(default_factory=list)
    cancelled: bool = False


@dataclass(frozen=True)
class _Outcome:
    employee_id: uuid.UUID
    kind: str  # processed | skipped | error | not_started
    computation: Optional[SalaryComputation] = None
    message: Optional[str] = None


# ── Per-employee work ────────────────────────────────────────────────

def _apply_computation(salary: Salary, computation: SalaryComputation) -> None:
    salary.gross_salary = computation.gross_salary
    salary.total_deductions = computation.total_deductions
    salary.total_tax = computation.total_tax
    salary.net_salary = computation.net_salary
    salary.calculated_at = datetime.now(timezone.utc)
    salary.details.clear()
    for position, line in enumerate(computation.lines, start=1):
        salary.details.append(
            SalaryDetail(
                position=position,
                salary_component_id=line.salary_component_id,
                loan_id=line.loan_id,
                component_name=line.name,
                component_type=line.component_type,
                amount=line.amount,
                calculation_note=line.note,
                show_on_payslip=line.show_on_payslip,
            )
        )


async def _process_employee(
    session: AsyncSession,
    period: PayPeriod,
    employee_id: uuid.UUID,
    dry_run: bool,
) -> _Outcome:
    employee = await EmployeeDirectory.get_employee(session, employee_id)

    existing = (await session.execute(
        select(Salary).where(
            Salary.employee_id == employee_id,
            Salary.pay_period_id == period.id,
        )
    )).scalar_one_or_none()
    if existing is not None and existing.status != SalaryStatus.DRAFT:
        return _Outcome(employee_id, "skipped")

    components = await ComponentResolver.resolve(session, employee, period.end_date)
    due = await LoanService.due_deductions(
        session, employee_id, period, existing.id if existing else None,
    )
    computation = calculate_salary(components, [deduction_line(r) for r in due])
    if dry_run:
        return _Outcome(employee_id, "processed", computation)

    to_post = [r for r in due if r.status != RepaymentStatus.PAID]
    async with hold_loan_locks(r.loan_id for r in to_post):
        salary = existing
        if salary is None:
            salary = Salary(
                employee_id=employee_id,
                pay_period_id=period.id,
                status=SalaryStatus.DRAFT,
            )
            session.add(salary)
        _apply_computation(salary, computation)
        await session.flush()

        await LoanService.post_salary_repayments(
            session, to_post, salary_id=salary.id, paid_date=period.payment_date,
        )
        await commit_or_raise(session)
    return _Outcome(employee_id, "processed", computation)


# ── Orchestrator ─────────────────────────────────────────────────────

class PayrollService:
    """Runs payroll for a pay period."""

    @staticmethod
    async def process(
        db: AsyncSession,
        pay_period_id: uuid.UUID,
        *,
        dry_run: bool = False,
        session_factory: Optional[async_sessionmaker] = None,
        cancel_event: Optional[asyncio.Event] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayrollRunResult:
        """Calculate salaries for every payable employee of the period.

        In dry-run mode nothing is written and the period is not claimed.
        In commit mode the period is held in PROCESSING for the duration of
        the run, DRAFT salaries are created or replaced, and salaries that
        are already APPROVED, PAID or CANCELLED are skipped.
        """
        factory = session_factory or async_session_factory
        period = await PayPeriodService.get(db, pay_period_id)
        if period.status != PayPeriodStatus.OPEN:
            raise InvalidTransition("pay period", period.status, "process")

        if not dry_run:
            await PayPeriodService.claim(db, pay_period_id, "process")

        result = PayrollRunResult(pay_period_id=pay_period_id, dry_run=dry_run)
        try:
            employee_ids = await EmployeeDirectory.payable_employee_ids(db, period.end_date)
            result.total_employees = len(employee_ids)
            logger.info(
                "Payroll run started: period=%s employees=%d dry_run=%s",
                pay_period_id, len(employee_ids), dry_run,
            )

            semaphore = asyncio.Semaphore(settings.PAYROLL_MAX_CONCURRENCY)

            async def run_one(employee_id: uuid.UUID) -> _Outcome:
                async with semaphore:
                    if cancel_event is not None and cancel_event.is_set():
                        return _Outcome(employee_id, "not_started")
                    async with factory() as session:
                        try:
                            return await _process_employee(session, period, employee_id, dry_run)
                        except AppException as exc:
                            await session.rollback()
                            logger.warning(
                                "Payroll failed for employee %s: %s", employee_id, exc.detail,
                            )
                            return _Outcome(employee_id, "error", message=exc.detail)
                        except Exception:
                            await session.rollback()
                            logger.exception("Unexpected payroll failure for employee %s", employee_id)
                            return _Outcome(
                                employee_id, "error",
                                message="Unexpected error while calculating salary.",
                            )

            outcomes = await asyncio.gather(*(run_one(eid) for eid in employee_ids))

            processed = [o.computation for o in outcomes if o.kind == "processed"]
            result.processed_count = len(processed)
            result.skipped_count = sum(1 for o in outcomes if o.kind == "skipped")
            result.total_gross_salary = money_sum(c.gross_salary for c in processed)
            result.total_net_salary = money_sum(c.net_salary for c in processed)
            result.errors = [
                EmployeeError(o.employee_id, o.message or "")
                for o in outcomes if o.kind == "error"
            ]
            result.cancelled = cancel_event is not None and cancel_event.is_set()

            if not dry_run:
                await create_audit_entry(
                    db,
                    action="process",
                    entity_type="pay_period",
                    entity_id=pay_period_id,
                    actor_id=actor_id,
                    new_values={
                        "processed": result.processed_count,
                        "skipped": result.skipped_count,
                        "errors": len(result.errors),
                        "cancelled": result.cancelled,
                    },
                )
        finally:
            if not dry_run:
                await PayPeriodService.release(db, pay_period_id)

        logger.info(
            "Payroll run finished: period=%s processed=%d skipped=%d errors=%d cancelled=%s",
            pay_period_id, result.processed_count, result.skipped_count,
            len(result.errors), result.cancelled,
        )
        return result
