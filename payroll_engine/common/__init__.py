"""Common module — shared utilities for the payroll engine."""

from payroll_engine.common.audit import AuditTrail, create_audit_entry
from payroll_engine.common.constants import (
    CENT,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PERMISSIONS,
    CalculationType,
    ComponentType,
    EmployeeStatus,
    LoanStatus,
    LoanType,
    PayPeriodStatus,
    PayslipStatus,
    PercentageBase,
    RepaymentStatus,
    RoleType,
    SalaryStatus,
    UserRole,
)
from payroll_engine.common.exceptions import (
    AppException,
    CalculationError,
    ConflictError,
    ForbiddenException,
    FormulaError,
    InvalidTransition,
    NotFoundException,
    OutOfSequenceRepayment,
    PersistenceError,
    ResolutionError,
    ValidationException,
    register_exception_handlers,
)
from payroll_engine.common.money import ZERO, money_sum, percentage_of, quantize, truncate
from payroll_engine.common.pagination import PaginatedResponse, PaginationParams, paginate
from payroll_engine.common.persistence import commit_or_raise

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "CalculationType",
    "ComponentType",
    "EmployeeStatus",
    "LoanStatus",
    "LoanType",
    "PayPeriodStatus",
    "PayslipStatus",
    "PercentageBase",
    "RepaymentStatus",
    "RoleType",
    "SalaryStatus",
    "UserRole",
    "PERMISSIONS",
    "CENT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "CalculationError",
    "ConflictError",
    "ForbiddenException",
    "FormulaError",
    "InvalidTransition",
    "NotFoundException",
    "OutOfSequenceRepayment",
    "PersistenceError",
    "ResolutionError",
    "ValidationException",
    "register_exception_handlers",
    # Money
    "ZERO",
    "money_sum",
    "percentage_of",
    "quantize",
    "truncate",
    # Pagination / persistence
    "PaginatedResponse",
    "PaginationParams",
    "paginate",
    "commit_or_raise",
]
