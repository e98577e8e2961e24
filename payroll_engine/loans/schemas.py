"""Loan Pydantic v2 schemas — request/response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, computed_field

from payroll_engine.common.constants import LoanStatus, LoanType, RepaymentStatus
from payroll_engine.common.pagination import PaginatedResponse
from payroll_engine.common.schemas import CamelModel
from payroll_engine.common.status import Tone, loan_status_tone, repayment_status_tone


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class LoanApply(CamelModel):
    """Apply for a standard loan."""

    employee_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    interest_rate: Decimal = Field(Decimal("0"), ge=0, le=100, max_digits=7, decimal_places=4)
    term_months: int = Field(..., ge=1)
    reason: Optional[str] = Field(None, max_length=2000)


class AdvanceApply(CamelModel):
    """Apply for a salary advance."""

    employee_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=2000)


class LoanDecision(CamelModel):
    notes: Optional[str] = Field(None, max_length=2000)


class LoanApproveRequest(LoanDecision):
    # Defaults to the authenticated caller.
    approver_id: Optional[uuid.UUID] = None


class LoanDisburseRequest(CamelModel):
    disbursement_date: Optional[date] = None
    first_repayment_date: Optional[date] = None


class RepaymentPost(CamelModel):
    repayment_id: Optional[uuid.UUID] = None
    paid_date: Optional[date] = None


class MissedRepaymentsRequest(CamelModel):
    as_of: Optional[date] = None


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class LoanRepaymentOut(CamelModel):
    id: uuid.UUID
    loan_id: uuid.UUID
    installment_number: int
    due_date: date
    amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    balance_after: Decimal
    status: RepaymentStatus
    paid_date: Optional[date] = None
    salary_id: Optional[uuid.UUID] = None

    @computed_field
    @property
    def status_tone(self) -> Tone:
        return repayment_status_tone(self.status)


class LoanOut(CamelModel):
    """Loan summary (list views)."""

    id: uuid.UUID
    employee_id: uuid.UUID
    loan_type: LoanType
    amount: Decimal
    interest_rate: Decimal
    term_months: int
    total_repayable: Decimal
    outstanding_balance: Decimal
    monthly_repayment: Decimal
    status: LoanStatus
    application_date: date
    approval_date: Optional[date] = None
    approved_by: Optional[uuid.UUID] = None
    disbursement_date: Optional[date] = None
    first_repayment_date: Optional[date] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @computed_field
    @property
    def status_tone(self) -> Tone:
        return loan_status_tone(self.status)


class LoanDetailOut(LoanOut):
    repayments: List[LoanRepaymentOut] = []


LoanListResponse = PaginatedResponse[LoanOut]
