"""Loans router — applications, approval workflow, disbursement, repayments."""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.auth.dependencies import Principal, require_permission
from payroll_engine.common.constants import LoanStatus, LoanType
from payroll_engine.common.pagination import PaginationParams
from payroll_engine.database import get_db
from payroll_engine.loans.schemas import (
    AdvanceApply,
    LoanApply,
    LoanApproveRequest,
    LoanDecision,
    LoanDetailOut,
    LoanDisburseRequest,
    LoanListResponse,
    LoanOut,
    LoanRepaymentOut,
    MissedRepaymentsRequest,
    RepaymentPost,
)
from payroll_engine.loans.service import LoanService

router = APIRouter(prefix="", tags=["loans"])


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=LoanListResponse)
async def list_loans(
    status: Optional[LoanStatus] = Query(None),
    loan_type: Optional[LoanType] = Query(None, alias="loanType"),
    employee_id: Optional[uuid.UUID] = Query(None, alias="employeeId"),
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(require_permission("loan:read")),
    db: AsyncSession = Depends(get_db),
):
    loans, total, total_pages = await LoanService.list_loans(
        db, pagination, status=status, loan_type=loan_type, employee_id=employee_id,
    )
    return LoanListResponse(
        items=[LoanOut.model_validate(loan) for loan in loans],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        total_pages=total_pages,
    )


# ── POST / and /advances ─────────────────────────────────────────────

@router.post("", response_model=LoanDetailOut, status_code=201)
async def apply_loan(
    body: LoanApply,
    principal: Principal = Depends(require_permission("loan:apply")),
    db: AsyncSession = Depends(get_db),
):
    loan = await LoanService.apply_loan(
        db,
        employee_id=body.employee_id,
        amount=body.amount,
        interest_rate=body.interest_rate,
        term_months=body.term_months,
        reason=body.reason,
        actor_id=principal.user_id,
    )
    return LoanDetailOut.model_validate(loan)


@router.post("/advances", response_model=LoanDetailOut, status_code=201)
async def apply_advance(
    body: AdvanceApply,
    principal: Principal = Depends(require_permission("loan:apply")),
    db: AsyncSession = Depends(get_db),
):
    loan = await LoanService.apply_advance(
        db,
        employee_id=body.employee_id,
        amount=body.amount,
        reason=body.reason,
        actor_id=principal.user_id,
    )
    return LoanDetailOut.model_validate(loan)


# ── GET /employee/{employee_id} ──────────────────────────────────────

@router.get("/employee/{employee_id}", response_model=List[LoanOut])
async def employee_loans(
    employee_id: uuid.UUID,
    principal: Principal = Depends(require_permission("loan:read")),
    db: AsyncSession = Depends(get_db),
):
    loans = await LoanService.employee_loans(db, employee_id)
    return [LoanOut.model_validate(loan) for loan in loans]


# ── GET /{id} ────────────────────────────────────────────────────────

@router.get("/{loan_id}", response_model=LoanDetailOut)
async def get_loan(
    loan_id: uuid.UUID,
    principal: Principal = Depends(require_permission("loan:read")),
    db: AsyncSession = Depends(get_db),
):
    return LoanDetailOut.model_validate(await LoanService.get_loan(db, loan_id))


# ── PATCH /{id}/approve|reject|cancel|disburse ───────────────────────

@router.patch("/{loan_id}/approve", response_model=LoanDetailOut)
async def approve_loan(
    loan_id: uuid.UUID,
    body: LoanApproveRequest,
    principal: Principal = Depends(require_permission("loan:approve")),
    db: AsyncSession = Depends(get_db),
):
    loan = await LoanService.approve(
        db, loan_id, body.approver_id or principal.user_id, body.notes,
    )
    return LoanDetailOut.model_validate(loan)


@router.patch("/{loan_id}/reject", response_model=LoanDetailOut)
async def reject_loan(
    loan_id: uuid.UUID,
    body: LoanDecision,
    principal: Principal = Depends(require_permission("loan:approve")),
    db: AsyncSession = Depends(get_db),
):
    loan = await LoanService.reject(db, loan_id, principal.user_id, body.notes)
    return LoanDetailOut.model_validate(loan)


@router.patch("/{loan_id}/cancel", response_model=LoanDetailOut)
async def cancel_loan(
    loan_id: uuid.UUID,
    body: LoanDecision,
    principal: Principal = Depends(require_permission("loan:approve")),
    db: AsyncSession = Depends(get_db),
):
    loan = await LoanService.cancel(db, loan_id, principal.user_id, body.notes)
    return LoanDetailOut.model_validate(loan)


@router.patch("/{loan_id}/disburse", response_model=LoanDetailOut)
async def disburse_loan(
    loan_id: uuid.UUID,
    body: LoanDisburseRequest,
    principal: Principal = Depends(require_permission("loan:disburse")),
    db: AsyncSession = Depends(get_db),
):
    loan = await LoanService.disburse(
        db,
        loan_id,
        actor_id=principal.user_id,
        disbursement_date=body.disbursement_date,
        first_repayment_date=body.first_repayment_date,
    )
    return LoanDetailOut.model_validate(loan)


# ── Repayments ───────────────────────────────────────────────────────

@router.get("/{loan_id}/repayments", response_model=List[LoanRepaymentOut])
async def list_repayments(
    loan_id: uuid.UUID,
    principal: Principal = Depends(require_permission("loan:read")),
    db: AsyncSession = Depends(get_db),
):
    rows = await LoanService.list_repayments(db, loan_id)
    return [LoanRepaymentOut.model_validate(r) for r in rows]


@router.post("/{loan_id}/repayments", response_model=LoanRepaymentOut, status_code=201)
async def post_repayment(
    loan_id: uuid.UUID,
    body: RepaymentPost,
    principal: Principal = Depends(require_permission("loan:repay")),
    db: AsyncSession = Depends(get_db),
):
    row = await LoanService.post_repayment(
        db,
        loan_id,
        repayment_id=body.repayment_id,
        paid_date=body.paid_date,
        actor_id=principal.user_id,
    )
    return LoanRepaymentOut.model_validate(row)


@router.post("/{loan_id}/missed", response_model=LoanDetailOut)
async def record_missed(
    loan_id: uuid.UUID,
    body: MissedRepaymentsRequest,
    principal: Principal = Depends(require_permission("loan:repay")),
    db: AsyncSession = Depends(get_db),
):
    """Mark overdue instalments missed; defaults the loan past the threshold."""
    await LoanService.record_missed_repayments(
        db, body.as_of or date.today(), loan_id=loan_id, actor_id=principal.user_id,
    )
    return LoanDetailOut.model_validate(await LoanService.get_loan(db, loan_id))
