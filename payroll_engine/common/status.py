"""Display tone per entity status.

One explicit table per status enum; each is checked at import so adding a
member without a tone fails fast.
"""

from __future__ import annotations

import enum
from typing import Mapping

from payroll_engine.common.constants import (
    EmployeeStatus,
    LoanStatus,
    PayPeriodStatus,
    PayslipStatus,
    RepaymentStatus,
    SalaryStatus,
)


class Tone(str, enum.Enum):
    neutral = "neutral"
    info = "info"
    success = "success"
    warning = "warning"
    danger = "danger"


def _exhaustive(enum_cls: type[enum.Enum], table: Mapping) -> Mapping:
    missing = set(enum_cls) - set(table)
    if missing:
        names = ", ".join(sorted(m.name for m in missing))
        raise RuntimeError(f"{enum_cls.__name__} has no tone for: {names}")
    return table


_EMPLOYEE = _exhaustive(EmployeeStatus, {
    EmployeeStatus.ACTIVE: Tone.success,
    EmployeeStatus.ON_LEAVE: Tone.info,
    EmployeeStatus.INACTIVE: Tone.neutral,
    EmployeeStatus.TERMINATED: Tone.danger,
})

_SALARY = _exhaustive(SalaryStatus, {
    SalaryStatus.DRAFT: Tone.neutral,
    SalaryStatus.APPROVED: Tone.info,
    SalaryStatus.PAID: Tone.success,
    SalaryStatus.CANCELLED: Tone.danger,
})

_LOAN = _exhaustive(LoanStatus, {
    LoanStatus.PENDING: Tone.warning,
    LoanStatus.APPROVED: Tone.info,
    LoanStatus.REJECTED: Tone.danger,
    LoanStatus.ACTIVE: Tone.info,
    LoanStatus.FULLY_PAID: Tone.success,
    LoanStatus.DEFAULTED: Tone.danger,
    LoanStatus.CANCELLED: Tone.neutral,
})

_PAY_PERIOD = _exhaustive(PayPeriodStatus, {
    PayPeriodStatus.OPEN: Tone.success,
    PayPeriodStatus.PROCESSING: Tone.warning,
    PayPeriodStatus.CLOSED: Tone.neutral,
})

_PAYSLIP = _exhaustive(PayslipStatus, {
    PayslipStatus.GENERATED: Tone.neutral,
    PayslipStatus.SENT: Tone.info,
    PayslipStatus.VIEWED: Tone.success,
    PayslipStatus.FAILED: Tone.danger,
})

_REPAYMENT = _exhaustive(RepaymentStatus, {
    RepaymentStatus.SCHEDULED: Tone.neutral,
    RepaymentStatus.PAID: Tone.success,
    RepaymentStatus.MISSED: Tone.danger,
})


def employee_status_tone(status: EmployeeStatus) -> Tone:
    return _EMPLOYEE[EmployeeStatus(status)]


def salary_status_tone(status: SalaryStatus) -> Tone:
    return _SALARY[SalaryStatus(status)]


def loan_status_tone(status: LoanStatus) -> Tone:
    return _LOAN[LoanStatus(status)]


def pay_period_status_tone(status: PayPeriodStatus) -> Tone:
    return _PAY_PERIOD[PayPeriodStatus(status)]


def payslip_status_tone(status: PayslipStatus) -> Tone:
    return _PAYSLIP[PayslipStatus(status)]


def repayment_status_tone(status: RepaymentStatus) -> Tone:
    return _REPAYMENT[RepaymentStatus(status)]
