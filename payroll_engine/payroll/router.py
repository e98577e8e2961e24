"""Payroll router — runs, salaries, approval and payment; plus pay periods.

All endpoints require a bearer token; each enforces its own permission.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.auth.dependencies import Principal, require_permission
from payroll_engine.common.constants import PayPeriodStatus, SalaryStatus
from payroll_engine.common.pagination import PaginationParams
from payroll_engine.common.rate_limit import limiter
from payroll_engine.database import get_db, get_session_factory
from payroll_engine.payroll.approval import SalaryApprovalService
from payroll_engine.payroll.pay_periods import PayPeriodService
from payroll_engine.payroll.schemas import (
    ApproveSalaryRequest,
    BulkPaymentRequest,
    BulkPaymentResultOut,
    CancelSalaryRequest,
    PayPeriodCreate,
    PayPeriodListResponse,
    PayPeriodOut,
    PayrollProcessResultOut,
    PaySalaryRequest,
    ProcessPayrollRequest,
    SalaryListResponse,
    SalaryOut,
)
from payroll_engine.payroll.service import PayrollService

router = APIRouter(prefix="", tags=["payroll"])
pay_periods_router = APIRouter(prefix="", tags=["pay-periods"])


# ── POST /process ────────────────────────────────────────────────────

@router.post("/process", response_model=PayrollProcessResultOut)
@limiter.limit("10/minute")
async def process_payroll(
    request: Request,
    body: ProcessPayrollRequest,
    principal: Principal = Depends(require_permission("payroll:process")),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Calculate DRAFT salaries for every payable employee (or preview with dryRun)."""
    result = await PayrollService.process(
        db,
        body.pay_period_id,
        dry_run=body.dry_run,
        session_factory=session_factory,
        actor_id=principal.user_id,
    )
    return PayrollProcessResultOut.model_validate(result)


# ── GET /salaries ────────────────────────────────────────────────────

@router.get("/salaries", response_model=SalaryListResponse)
async def list_salaries(
    pay_period_id: Optional[uuid.UUID] = Query(None, alias="payPeriodId"),
    status: Optional[SalaryStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None, alias="employeeId"),
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(require_permission("payroll:read")),
    db: AsyncSession = Depends(get_db),
):
    salaries, total, total_pages = await SalaryApprovalService.list_salaries(
        db,
        pagination,
        pay_period_id=pay_period_id,
        status=status,
        employee_id=employee_id,
    )
    return SalaryListResponse(
        items=[SalaryOut.model_validate(s) for s in salaries],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        total_pages=total_pages,
    )


# ── GET /salaries/{id} ───────────────────────────────────────────────

@router.get("/salaries/{salary_id}", response_model=SalaryOut)
async def get_salary(
    salary_id: uuid.UUID,
    principal: Principal = Depends(require_permission("payroll:read")),
    db: AsyncSession = Depends(get_db),
):
    salary = await SalaryApprovalService.get_salary(db, salary_id)
    return SalaryOut.model_validate(salary)


# ── PATCH /salaries/{id}/approve|pay|cancel ──────────────────────────

@router.patch("/salaries/{salary_id}/approve", response_model=SalaryOut)
async def approve_salary(
    salary_id: uuid.UUID,
    body: ApproveSalaryRequest,
    principal: Principal = Depends(require_permission("payroll:approve")),
    db: AsyncSession = Depends(get_db),
):
    salary = await SalaryApprovalService.approve(
        db, salary_id, body.approver_id or principal.user_id, body.notes,
    )
    return SalaryOut.model_validate(salary)


@router.patch("/salaries/{salary_id}/pay", response_model=SalaryOut)
async def pay_salary(
    salary_id: uuid.UUID,
    body: PaySalaryRequest,
    principal: Principal = Depends(require_permission("payroll:pay")),
    db: AsyncSession = Depends(get_db),
):
    salary = await SalaryApprovalService.pay(
        db, salary_id, body.payment_reference, body.notes, actor_id=principal.user_id,
    )
    return SalaryOut.model_validate(salary)


@router.patch("/salaries/{salary_id}/cancel", response_model=SalaryOut)
async def cancel_salary(
    salary_id: uuid.UUID,
    body: CancelSalaryRequest,
    principal: Principal = Depends(require_permission("payroll:cancel")),
    db: AsyncSession = Depends(get_db),
):
    salary = await SalaryApprovalService.cancel(
        db, salary_id, body.notes, actor_id=principal.user_id,
    )
    return SalaryOut.model_validate(salary)


# ── POST /bulk-payment ───────────────────────────────────────────────

@router.post("/bulk-payment", response_model=BulkPaymentResultOut)
@limiter.limit("10/minute")
async def bulk_payment(
    request: Request,
    body: BulkPaymentRequest,
    principal: Principal = Depends(require_permission("payroll:pay")),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Pay many APPROVED salaries; each item succeeds or fails on its own."""
    result = await SalaryApprovalService.bulk_payment(
        [p.model_dump() for p in body.payments],
        session_factory=session_factory,
        actor_id=principal.user_id,
    )
    return BulkPaymentResultOut.model_validate(result)


# ═════════════════════════════════════════════════════════════════════
# Pay periods
# ═════════════════════════════════════════════════════════════════════


@pay_periods_router.get("", response_model=PayPeriodListResponse)
async def list_pay_periods(
    status: Optional[PayPeriodStatus] = Query(None),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(require_permission("pay_period:read")),
    db: AsyncSession = Depends(get_db),
):
    periods, total, total_pages = await PayPeriodService.list_periods(
        db, pagination, status=status, year=year,
    )
    return PayPeriodListResponse(
        items=[PayPeriodOut.model_validate(p) for p in periods],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        total_pages=total_pages,
    )


@pay_periods_router.post("", response_model=PayPeriodOut, status_code=201)
async def create_pay_period(
    body: PayPeriodCreate,
    principal: Principal = Depends(require_permission("pay_period:manage")),
    db: AsyncSession = Depends(get_db),
):
    period = await PayPeriodService.create(
        db,
        name=body.name,
        start_date=body.start_date,
        end_date=body.end_date,
        payment_date=body.payment_date,
        actor_id=principal.user_id,
    )
    return PayPeriodOut.model_validate(period)


@pay_periods_router.get("/current", response_model=PayPeriodOut)
async def current_pay_period(
    principal: Principal = Depends(require_permission("pay_period:read")),
    db: AsyncSession = Depends(get_db),
):
    return PayPeriodOut.model_validate(await PayPeriodService.get_current(db))


@pay_periods_router.get("/{pay_period_id}", response_model=PayPeriodOut)
async def get_pay_period(
    pay_period_id: uuid.UUID,
    principal: Principal = Depends(require_permission("pay_period:read")),
    db: AsyncSession = Depends(get_db),
):
    return PayPeriodOut.model_validate(await PayPeriodService.get(db, pay_period_id))


@pay_periods_router.patch("/{pay_period_id}/close", response_model=PayPeriodOut)
async def close_pay_period(
    pay_period_id: uuid.UUID,
    principal: Principal = Depends(require_permission("pay_period:manage")),
    db: AsyncSession = Depends(get_db),
):
    period = await PayPeriodService.close(db, pay_period_id, actor_id=principal.user_id)
    return PayPeriodOut.model_validate(period)
