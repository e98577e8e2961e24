"""Loan service layer — application, approval workflow, disbursement and repayment.

State machine::

    PENDING ─approve─► APPROVED ─disburse─► ACTIVE ─final repayment─► FULLY_PAID
       │                  │                   └─missed ≥ threshold─► DEFAULTED
       ├─reject─► REJECTED
       └─cancel─► CANCELLED ◄─cancel─┘
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from payroll_engine.common.audit import create_audit_entry
from payroll_engine.common.constants import (
    EmployeeStatus,
    LoanStatus,
    LoanType,
    RepaymentStatus,
)
from payroll_engine.common.exceptions import (
    InvalidTransition,
    NotFoundException,
    OutOfSequenceRepayment,
    ValidationException,
)
from payroll_engine.common.money import ZERO, quantize
from payroll_engine.common.pagination import PaginationParams, paginate
from payroll_engine.common.persistence import commit_or_raise
from payroll_engine.config import settings
from payroll_engine.core_hr.service import EmployeeDirectory
from payroll_engine.loans.locks import hold_loan_locks
from payroll_engine.loans.models import Loan, LoanRepayment
from payroll_engine.loans.schedule import build_schedule, quote
from payroll_engine.payroll.calculator import DeductionLine
from payroll_engine.payroll.models import PayPeriod

logger = logging.getLogger(__name__)

_UNPAID = (RepaymentStatus.SCHEDULED, RepaymentStatus.MISSED)


def _snapshot(loan: Loan) -> dict[str, str]:
    return {
        "status": LoanStatus(loan.status).value,
        "outstanding_balance": str(loan.outstanding_balance),
    }


def deduction_line(repayment: LoanRepayment) -> DeductionLine:
    """Salary deduction line for one loan instalment."""
    loan = repayment.loan
    label = (
        "Salary Advance Recovery"
        if loan.loan_type == LoanType.SALARY_ADVANCE
        else "Loan Repayment"
    )
    return DeductionLine(
        name=label,
        amount=repayment.amount,
        loan_id=loan.id,
        repayment_id=repayment.id,
        note=f"Instalment {repayment.installment_number} of {loan.term_months}",
    )


class LoanService:
    """Business logic for the loan and salary-advance lifecycle."""

    # ── Queries ───────────────────────────────────────────────────────

    @staticmethod
    async def get_loan(
        db: AsyncSession,
        loan_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Loan:
        stmt = select(Loan).where(Loan.id == loan_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        loan = (await db.execute(stmt)).scalar_one_or_none()
        if loan is None:
            raise NotFoundException("Loan", str(loan_id))
        return loan

    @staticmethod
    async def list_loans(
        db: AsyncSession,
        params: PaginationParams,
        *,
        status: Optional[LoanStatus] = None,
        loan_type: Optional[LoanType] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> tuple[list[Loan], int, int]:
        query = select(Loan)
        if status is not None:
            query = query.where(Loan.status == status)
        if loan_type is not None:
            query = query.where(Loan.loan_type == loan_type)
        if employee_id is not None:
            query = query.where(Loan.employee_id == employee_id)
        query = query.order_by(Loan.application_date.desc(), Loan.created_at.desc())
        return await paginate(db, query, params)

    @staticmethod
    async def employee_loans(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> list[Loan]:
        await EmployeeDirectory.get_employee(db, employee_id)
        result = await db.execute(
            select(Loan)
            .where(Loan.employee_id == employee_id)
            .order_by(Loan.application_date.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_repayments(
        db: AsyncSession,
        loan_id: uuid.UUID,
    ) -> list[LoanRepayment]:
        loan = await LoanService.get_loan(db, loan_id)
        return list(loan.repayments)

    # ── Application ───────────────────────────────────────────────────

    @staticmethod
    async def _require_active_employee(db: AsyncSession, employee_id: uuid.UUID) -> None:
        employee = await EmployeeDirectory.get_employee(db, employee_id)
        if employee.status != EmployeeStatus.ACTIVE:
            raise ValidationException(
                {"employee_id": [f"Employee is {EmployeeStatus(employee.status).value}, not ACTIVE."]}
            )

    @staticmethod
    async def _create(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        loan_type: LoanType,
        amount: Decimal,
        interest_rate: Decimal,
        term_months: int,
        reason: Optional[str],
        actor_id: Optional[uuid.UUID],
        application_date: Optional[date],
    ) -> Loan:
        await LoanService._require_active_employee(db, employee_id)
        q = quote(amount, interest_rate, term_months)

        loan = Loan(
            employee_id=employee_id,
            loan_type=loan_type,
            amount=quantize(amount),
            interest_rate=interest_rate,
            term_months=term_months,
            total_repayable=q.total_repayable,
            outstanding_balance=ZERO,
            monthly_repayment=q.monthly_repayment,
            status=LoanStatus.PENDING,
            application_date=application_date or date.today(),
            reason=reason,
            repayments=[],
        )
        db.add(loan)
        await db.flush()

        await create_audit_entry(
            db,
            action="apply",
            entity_type="loan",
            entity_id=loan.id,
            actor_id=actor_id,
            new_values={
                "loan_type": loan_type.value,
                "amount": str(loan.amount),
                "term_months": term_months,
                "total_repayable": str(loan.total_repayable),
            },
        )
        await commit_or_raise(db)
        logger.info("Loan %s applied: %s %s over %d months", loan.id, loan_type.value, loan.amount, term_months)
        return loan

    @staticmethod
    async def apply_loan(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        amount: Decimal,
        interest_rate: Decimal,
        term_months: int,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
        application_date: Optional[date] = None,
    ) -> Loan:
        """Create a PENDING standard loan with its quoted totals."""
        errors: dict[str, list[str]] = {}
        if amount <= 0:
            errors["amount"] = ["Amount must be greater than zero."]
        if not 1 <= term_months <= settings.LOAN_MAX_TERM_MONTHS:
            errors["term_months"] = [
                f"Term must be between 1 and {settings.LOAN_MAX_TERM_MONTHS} months."
            ]
        if not Decimal(0) <= interest_rate <= Decimal(100):
            errors["interest_rate"] = ["Interest rate must be between 0 and 100."]
        if errors:
            raise ValidationException(errors)

        return await LoanService._create(
            db,
            employee_id=employee_id,
            loan_type=LoanType.STANDARD_LOAN,
            amount=amount,
            interest_rate=interest_rate,
            term_months=term_months,
            reason=reason,
            actor_id=actor_id,
            application_date=application_date,
        )

    @staticmethod
    async def apply_advance(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        amount: Decimal,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
        application_date: Optional[date] = None,
    ) -> Loan:
        """Create a PENDING interest-free advance recovered in one instalment."""
        if amount <= 0:
            raise ValidationException({"amount": ["Amount must be greater than zero."]})
        if amount > settings.SALARY_ADVANCE_CAP:
            raise ValidationException(
                {"amount": [f"Salary advances are capped at {settings.SALARY_ADVANCE_CAP}."]}
            )
        return await LoanService._create(
            db,
            employee_id=employee_id,
            loan_type=LoanType.SALARY_ADVANCE,
            amount=amount,
            interest_rate=Decimal("0"),
            term_months=1,
            reason=reason,
            actor_id=actor_id,
            application_date=application_date,
        )

    # ── Approval workflow ─────────────────────────────────────────────

    @staticmethod
    async def _transition(
        db: AsyncSession,
        loan: Loan,
        *,
        action: str,
        allowed: tuple[LoanStatus, ...],
        target: LoanStatus,
        actor_id: Optional[uuid.UUID],
        notes: Optional[str] = None,
    ) -> Loan:
        if loan.status not in allowed:
            raise InvalidTransition("loan", loan.status, action)
        old = _snapshot(loan)
        loan.status = target
        if notes:
            loan.notes = notes
        await db.flush()
        await create_audit_entry(
            db,
            action=action,
            entity_type="loan",
            entity_id=loan.id,
            actor_id=actor_id,
            old_values=old,
            new_values={**_snapshot(loan), "notes": notes},
        )
        await commit_or_raise(db)
        logger.info("Loan %s %s → %s", loan.id, old["status"], target.value)
        return loan

    @staticmethod
    async def approve(
        db: AsyncSession,
        loan_id: uuid.UUID,
        approver_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> Loan:
        loan = await LoanService.get_loan(db, loan_id, for_update=True)
        if loan.status == LoanStatus.PENDING:
            loan.approved_by = approver_id
            loan.approval_date = date.today()
        return await LoanService._transition(
            db, loan,
            action="approve",
            allowed=(LoanStatus.PENDING,),
            target=LoanStatus.APPROVED,
            actor_id=approver_id,
            notes=notes,
        )

    @staticmethod
    async def reject(
        db: AsyncSession,
        loan_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Loan:
        loan = await LoanService.get_loan(db, loan_id, for_update=True)
        return await LoanService._transition(
            db, loan,
            action="reject",
            allowed=(LoanStatus.PENDING,),
            target=LoanStatus.REJECTED,
            actor_id=actor_id,
            notes=notes,
        )

    @staticmethod
    async def cancel(
        db: AsyncSession,
        loan_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Loan:
        loan = await LoanService.get_loan(db, loan_id, for_update=True)
        return await LoanService._transition(
            db, loan,
            action="cancel",
            allowed=(LoanStatus.PENDING, LoanStatus.APPROVED),
            target=LoanStatus.CANCELLED,
            actor_id=actor_id,
            notes=notes,
        )

    # ── Disbursement ──────────────────────────────────────────────────

    @staticmethod
    async def disburse(
        db: AsyncSession,
        loan_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
        disbursement_date: Optional[date] = None,
        first_repayment_date: Optional[date] = None,
    ) -> Loan:
        """Activate an APPROVED loan and generate its repayment schedule."""
        async with hold_loan_locks([loan_id]):
            loan = await LoanService.get_loan(db, loan_id, for_update=True)
            if loan.status != LoanStatus.APPROVED:
                raise InvalidTransition("loan", loan.status, "disburse")

            disbursed_on = disbursement_date or date.today()
            if first_repayment_date is None:
                if loan.loan_type == LoanType.SALARY_ADVANCE:
                    first_repayment_date = disbursed_on
                else:
                    first_repayment_date = disbursed_on + relativedelta(months=1)
            if first_repayment_date < disbursed_on:
                raise ValidationException(
                    {"first_repayment_date": ["First repayment cannot precede disbursement."]}
                )

            old = _snapshot(loan)
            for row in build_schedule(
                loan.amount, loan.interest_rate, loan.term_months, first_repayment_date,
            ):
                loan.repayments.append(
                    LoanRepayment(
                        installment_number=row.installment_number,
                        due_date=row.due_date,
                        amount=row.amount,
                        principal_portion=row.principal_portion,
                        interest_portion=row.interest_portion,
                        balance_after=row.balance_after,
                        status=RepaymentStatus.SCHEDULED,
                    )
                )
            loan.disbursement_date = disbursed_on
            loan.first_repayment_date = first_repayment_date
            loan.outstanding_balance = loan.total_repayable
            loan.status = LoanStatus.ACTIVE
            await db.flush()

            await create_audit_entry(
                db,
                action="disburse",
                entity_type="loan",
                entity_id=loan.id,
                actor_id=actor_id,
                old_values=old,
                new_values={
                    **_snapshot(loan),
                    "disbursement_date": disbursed_on.isoformat(),
                    "first_repayment_date": first_repayment_date.isoformat(),
                },
            )
            await commit_or_raise(db)

        logger.info(
            "Loan %s disbursed: %d instalments from %s",
            loan.id, loan.term_months, first_repayment_date,
        )
        return loan

    # ── Repayments ────────────────────────────────────────────────────

    @staticmethod
    async def _apply_repayment(
        db: AsyncSession,
        loan: Loan,
        *,
        repayment_id: Optional[uuid.UUID],
        paid_date: date,
        salary_id: Optional[uuid.UUID],
        actor_id: Optional[uuid.UUID],
    ) -> LoanRepayment:
        """Pay the earliest unpaid instalment of *loan*; flushes, does not commit."""
        if loan.status != LoanStatus.ACTIVE:
            raise InvalidTransition("loan", loan.status, "repay")

        unpaid = [r for r in loan.repayments if r.status in _UNPAID]
        if not unpaid:
            raise InvalidTransition("loan", loan.status, "repay")
        row = unpaid[0]
        if repayment_id is not None and row.id != repayment_id:
            if not any(r.id == repayment_id for r in loan.repayments):
                raise NotFoundException("LoanRepayment", str(repayment_id))
            raise OutOfSequenceRepayment(
                f"Instalment {row.installment_number} is due before the requested "
                f"repayment and must be paid first."
            )

        old = _snapshot(loan)
        row.status = RepaymentStatus.PAID
        row.paid_date = paid_date
        row.salary_id = salary_id
        loan.outstanding_balance = quantize(loan.outstanding_balance - row.amount)
        if loan.outstanding_balance <= ZERO:
            loan.outstanding_balance = ZERO
            loan.status = LoanStatus.FULLY_PAID
        await db.flush()

        await create_audit_entry(
            db,
            action="repay",
            entity_type="loan",
            entity_id=loan.id,
            actor_id=actor_id,
            old_values=old,
            new_values={
                **_snapshot(loan),
                "installment_number": row.installment_number,
                "amount": str(row.amount),
                "salary_id": str(salary_id) if salary_id else None,
            },
        )
        if loan.status == LoanStatus.FULLY_PAID:
            logger.info("Loan %s fully paid", loan.id)
        return row

    @staticmethod
    async def post_repayment(
        db: AsyncSession,
        loan_id: uuid.UUID,
        *,
        repayment_id: Optional[uuid.UUID] = None,
        paid_date: Optional[date] = None,
        salary_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LoanRepayment:
        """Record payment of the next instalment, in due-date order."""
        async with hold_loan_locks([loan_id]):
            loan = await LoanService.get_loan(db, loan_id, for_update=True)
            row = await LoanService._apply_repayment(
                db, loan,
                repayment_id=repayment_id,
                paid_date=paid_date or date.today(),
                salary_id=salary_id,
                actor_id=actor_id,
            )
            await commit_or_raise(db)
        return row

    @staticmethod
    async def post_salary_repayments(
        db: AsyncSession,
        repayments: list[LoanRepayment],
        *,
        salary_id: uuid.UUID,
        paid_date: date,
    ) -> None:
        """Post instalments withheld from a salary; caller holds the locks and commits."""
        for repayment in sorted(repayments, key=lambda r: (str(r.loan_id), r.installment_number)):
            loan = await LoanService.get_loan(db, repayment.loan_id, for_update=True)
            await LoanService._apply_repayment(
                db, loan,
                repayment_id=repayment.id,
                paid_date=paid_date,
                salary_id=salary_id,
                actor_id=None,
            )

    @staticmethod
    async def loans_charged_to_salary(
        db: AsyncSession,
        salary_id: uuid.UUID,
    ) -> list[uuid.UUID]:
        result = await db.execute(
            select(LoanRepayment.loan_id)
            .where(
                LoanRepayment.salary_id == salary_id,
                LoanRepayment.status == RepaymentStatus.PAID,
            )
            .distinct()
        )
        return list(result.scalars().all())

    @staticmethod
    async def reverse_salary_repayments(
        db: AsyncSession,
        salary_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LoanRepayment]:
        """Undo instalments posted against a salary that will not be paid.

        The rows go back to SCHEDULED and the balance is restored; a loan
        closed by those rows becomes ACTIVE again. Refused when a later
        instalment of the same loan has already been paid. Caller holds
        the loan locks and commits.
        """
        reverted: list[LoanRepayment] = []
        for loan_id in await LoanService.loans_charged_to_salary(db, salary_id):
            loan = await LoanService.get_loan(db, loan_id, for_update=True)
            rows = [
                r for r in loan.repayments
                if r.salary_id == salary_id and r.status == RepaymentStatus.PAID
            ]
            if not rows:
                continue
            last = max(r.installment_number for r in rows)
            later = [
                r for r in loan.repayments
                if r.installment_number > last and r.status == RepaymentStatus.PAID
            ]
            if later:
                raise OutOfSequenceRepayment(
                    f"Instalment {later[0].installment_number} of loan {loan.id} was paid "
                    f"after this salary's deductions; they cannot be reversed."
                )

            old = _snapshot(loan)
            for row in rows:
                row.status = RepaymentStatus.SCHEDULED
                row.paid_date = None
                row.salary_id = None
                loan.outstanding_balance = quantize(loan.outstanding_balance + row.amount)
            if loan.status == LoanStatus.FULLY_PAID:
                loan.status = LoanStatus.ACTIVE
            await db.flush()

            await create_audit_entry(
                db,
                action="reverse",
                entity_type="loan",
                entity_id=loan.id,
                actor_id=actor_id,
                old_values=old,
                new_values={
                    **_snapshot(loan),
                    "installments": [r.installment_number for r in rows],
                    "salary_id": str(salary_id),
                },
            )
            logger.info(
                "Loan %s: %d instalment(s) reversed for salary %s",
                loan.id, len(rows), salary_id,
            )
            reverted.extend(rows)
        return reverted

    @staticmethod
    async def record_missed_repayments(
        db: AsyncSession,
        as_of: date,
        *,
        loan_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[Loan]:
        """Mark overdue SCHEDULED instalments MISSED and default loans over the threshold.

        Returns the loans that were touched.
        """
        stmt = select(Loan.id).where(Loan.status == LoanStatus.ACTIVE)
        if loan_id is not None:
            loan = await LoanService.get_loan(db, loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidTransition("loan", loan.status, "record missed repayments for")
            stmt = stmt.where(Loan.id == loan_id)
        loan_ids = list((await db.execute(stmt)).scalars().all())

        touched: list[Loan] = []
        async with hold_loan_locks(loan_ids):
            for lid in loan_ids:
                loan = await LoanService.get_loan(db, lid, for_update=True)
                overdue = [
                    r for r in loan.repayments
                    if r.status == RepaymentStatus.SCHEDULED and r.due_date < as_of
                ]
                if not overdue:
                    continue
                old = _snapshot(loan)
                for row in overdue:
                    row.status = RepaymentStatus.MISSED
                missed = sum(1 for r in loan.repayments if r.status == RepaymentStatus.MISSED)
                if missed >= settings.LOAN_DEFAULT_MISSED_THRESHOLD:
                    loan.status = LoanStatus.DEFAULTED
                    logger.warning("Loan %s defaulted after %d missed repayments", loan.id, missed)
                await db.flush()
                await create_audit_entry(
                    db,
                    action="default" if loan.status == LoanStatus.DEFAULTED else "miss",
                    entity_type="loan",
                    entity_id=loan.id,
                    actor_id=actor_id,
                    old_values=old,
                    new_values={**_snapshot(loan), "missed_count": missed},
                )
                touched.append(loan)
            await commit_or_raise(db)
        return touched

    # ── Payroll feed ──────────────────────────────────────────────────

    @staticmethod
    async def due_deductions(
        db: AsyncSession,
        employee_id: uuid.UUID,
        period: PayPeriod,
        salary_id: Optional[uuid.UUID] = None,
    ) -> list[LoanRepayment]:
        """Instalments to withhold from the employee's salary for *period*.

        Unpaid instalments of ACTIVE loans due by the period end, plus any
        already posted against *salary_id* so a re-run reproduces them.
        """
        due = and_(
            Loan.status == LoanStatus.ACTIVE,
            LoanRepayment.status.in_(_UNPAID),
            LoanRepayment.due_date <= period.end_date,
        )
        condition = or_(due, LoanRepayment.salary_id == salary_id) if salary_id else due
        stmt = (
            select(LoanRepayment)
            .join(Loan, LoanRepayment.loan_id == Loan.id)
            .where(Loan.employee_id == employee_id, condition)
            .options(contains_eager(LoanRepayment.loan))
            .order_by(Loan.application_date, Loan.id, LoanRepayment.installment_number)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
