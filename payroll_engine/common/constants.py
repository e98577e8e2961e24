"""Enums and constants for the payroll engine — stored as VARCHAR enums."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Employee / Org ──────────────────────────────────────────────────

class EmployeeStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ON_LEAVE = "ON_LEAVE"
    INACTIVE = "INACTIVE"
    TERMINATED = "TERMINATED"


class RoleType(str, enum.Enum):
    FULL_TIME = "FULL_TIME"
    PART_TIME = "PART_TIME"
    CONTRACTOR = "CONTRACTOR"


# ── Salary components ───────────────────────────────────────────────

class ComponentType(str, enum.Enum):
    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"
    TAX = "TAX"


class CalculationType(str, enum.Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"
    FORMULA = "FORMULA"


class PercentageBase(str, enum.Enum):
    BASE = "BASE"
    GROSS = "GROSS"


# ── Payroll ─────────────────────────────────────────────────────────

class PayPeriodStatus(str, enum.Enum):
    OPEN = "OPEN"
    PROCESSING = "PROCESSING"
    CLOSED = "CLOSED"


class SalaryStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PayslipStatus(str, enum.Enum):
    GENERATED = "GENERATED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    FAILED = "FAILED"


# ── Loans ───────────────────────────────────────────────────────────

class LoanType(str, enum.Enum):
    STANDARD_LOAN = "STANDARD_LOAN"
    SALARY_ADVANCE = "SALARY_ADVANCE"


class LoanStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    FULLY_PAID = "FULLY_PAID"
    DEFAULTED = "DEFAULTED"
    CANCELLED = "CANCELLED"


class RepaymentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    PAID = "PAID"
    MISSED = "MISSED"


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    payroll_officer = "payroll_officer"
    finance_admin = "finance_admin"
    approver = "approver"
    viewer = "viewer"
    employee = "employee"


_READ = [
    "payroll:read",
    "pay_period:read",
    "loan:read",
    "component:read",
]

PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.employee: [
        "loan:apply",
    ],
    UserRole.viewer: [
        *_READ,
    ],
    UserRole.approver: [
        *_READ,
        "payroll:approve",
        "payroll:cancel",
        "loan:approve",
    ],
    UserRole.payroll_officer: [
        *_READ,
        "payroll:process",
        "payroll:cancel",
        "pay_period:manage",
        "loan:apply",
        "loan:repay",
        "component:manage",
    ],
    UserRole.finance_admin: [
        *_READ,
        "payroll:approve",
        "payroll:pay",
        "payroll:cancel",
        "pay_period:manage",
        "loan:approve",
        "loan:disburse",
        "loan:repay",
    ],
    UserRole.admin: [
        *_READ,
        "payroll:process",
        "payroll:approve",
        "payroll:pay",
        "payroll:cancel",
        "pay_period:manage",
        "loan:apply",
        "loan:approve",
        "loan:disburse",
        "loan:repay",
        "component:manage",
    ],
}

# ── Misc constants ──────────────────────────────────────────────────

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
