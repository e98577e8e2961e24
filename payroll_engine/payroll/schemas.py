"""Payroll Pydantic v2 schemas — request/response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, computed_field

from payroll_engine.common.constants import (
    ComponentType,
    PayPeriodStatus,
    SalaryStatus,
)
from payroll_engine.common.pagination import PaginatedResponse
from payroll_engine.common.schemas import CamelModel
from payroll_engine.common.status import Tone, pay_period_status_tone, salary_status_tone


# ═════════════════════════════════════════════════════════════════════
# Pay Period
# ═════════════════════════════════════════════════════════════════════


class PayPeriodCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    payment_date: date


class PayPeriodOut(CamelModel):
    id: uuid.UUID
    name: str
    start_date: date
    end_date: date
    payment_date: date
    status: PayPeriodStatus
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @computed_field
    @property
    def status_tone(self) -> Tone:
        return pay_period_status_tone(self.status)


PayPeriodListResponse = PaginatedResponse[PayPeriodOut]


# ═════════════════════════════════════════════════════════════════════
# Payroll run
# ═════════════════════════════════════════════════════════════════════


class ProcessPayrollRequest(CamelModel):
    pay_period_id: uuid.UUID
    dry_run: bool = False


class EmployeeErrorOut(CamelModel):
    employee_id: uuid.UUID
    message: str


class PayrollProcessResultOut(CamelModel):
    """Outcome of one payroll run."""

    pay_period_id: uuid.UUID
    dry_run: bool
    total_employees: int
    processed_count: int
    skipped_count: int
    total_gross_salary: Decimal
    total_net_salary: Decimal
    errors: List[EmployeeErrorOut] = []
    cancelled: bool = False


# ═════════════════════════════════════════════════════════════════════
# Salary
# ═════════════════════════════════════════════════════════════════════


class SalaryDetailOut(CamelModel):
    id: uuid.UUID
    position: int
    component_name: str
    component_type: ComponentType
    amount: Decimal
    calculation_note: Optional[str] = None
    show_on_payslip: bool = True
    salary_component_id: Optional[uuid.UUID] = None
    loan_id: Optional[uuid.UUID] = None


class SalaryOut(CamelModel):
    """Salary with its ordered breakdown."""

    id: uuid.UUID
    employee_id: uuid.UUID
    pay_period_id: uuid.UUID
    gross_salary: Decimal
    total_deductions: Decimal
    total_tax: Decimal
    net_salary: Decimal
    status: SalaryStatus
    calculated_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    details: List[SalaryDetailOut] = []

    @computed_field
    @property
    def status_tone(self) -> Tone:
        return salary_status_tone(self.status)


SalaryListResponse = PaginatedResponse[SalaryOut]


class ApproveSalaryRequest(CamelModel):
    # Defaults to the authenticated caller.
    approver_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=2000)


class PaySalaryRequest(CamelModel):
    payment_reference: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class CancelSalaryRequest(CamelModel):
    notes: Optional[str] = Field(None, max_length=2000)


# ── Bulk payment ─────────────────────────────────────────────────────

class BulkPaymentItem(CamelModel):
    # Kept as text so one malformed id fails only its own item.
    salary_id: str
    payment_reference: str = ""


class BulkPaymentRequest(CamelModel):
    payments: List[BulkPaymentItem] = Field(..., min_length=1)


class BulkPaymentSuccessOut(CamelModel):
    salary_id: str
    payment_reference: str


class BulkPaymentFailureOut(CamelModel):
    salary_id: str
    reason: str


class BulkPaymentResultOut(CamelModel):
    total_processed: int
    successful: List[BulkPaymentSuccessOut] = []
    failed: List[BulkPaymentFailureOut] = []
