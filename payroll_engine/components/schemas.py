"""Salary component Pydantic v2 schemas."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from payroll_engine.common.constants import CalculationType, ComponentType, PercentageBase
from payroll_engine.common.pagination import PaginatedResponse
from payroll_engine.common.schemas import CamelModel


# ═════════════════════════════════════════════════════════════════════
# Salary Component
# ═════════════════════════════════════════════════════════════════════


class SalaryComponentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=150)
    component_type: ComponentType
    calculation_type: CalculationType = CalculationType.FIXED
    value: Decimal = Field(Decimal("0"), ge=0, max_digits=14, decimal_places=4)
    is_base: bool = False
    percentage_base: Optional[PercentageBase] = None
    formula: Optional[str] = None
    taxable: bool = True
    show_on_payslip: bool = True
    role_id: Optional[uuid.UUID] = None
    country_id: Optional[uuid.UUID] = None
    effective_from: Optional[date] = None


class SalaryComponentUpdate(CamelModel):
    """Partial update; only fields that are sent are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=150)
    component_type: Optional[ComponentType] = None
    calculation_type: Optional[CalculationType] = None
    value: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=4)
    is_base: Optional[bool] = None
    percentage_base: Optional[PercentageBase] = None
    formula: Optional[str] = None
    taxable: Optional[bool] = None
    show_on_payslip: Optional[bool] = None
    role_id: Optional[uuid.UUID] = None
    country_id: Optional[uuid.UUID] = None
    # Start of the new version when the current one is already in use.
    effective_from: Optional[date] = None


class SalaryComponentOut(CamelModel):
    id: uuid.UUID
    lineage_id: uuid.UUID
    version: int
    name: str
    component_type: ComponentType
    calculation_type: CalculationType
    value: Decimal
    is_base: bool
    percentage_base: Optional[PercentageBase] = None
    formula: Optional[str] = None
    taxable: bool
    show_on_payslip: bool
    role_id: Optional[uuid.UUID] = None
    country_id: Optional[uuid.UUID] = None
    effective_from: date
    effective_to: Optional[date] = None
    created_at: Optional[datetime] = None


SalaryComponentListResponse = PaginatedResponse[SalaryComponentOut]


# ═════════════════════════════════════════════════════════════════════
# Employee assignments
# ═════════════════════════════════════════════════════════════════════


class AssignmentCreate(CamelModel):
    employee_id: uuid.UUID
    salary_component_id: uuid.UUID
    value: Decimal = Field(..., ge=0, max_digits=14, decimal_places=4)
    effective_from: date


class AssignmentEnd(CamelModel):
    effective_to: date


class AssignmentOut(CamelModel):
    id: uuid.UUID
    employee_id: uuid.UUID
    salary_component_id: uuid.UUID
    component_name: Optional[str] = None
    value: Decimal
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool


class ResolvedComponentOut(CamelModel):
    salary_component_id: uuid.UUID
    lineage_id: uuid.UUID
    name: str
    component_type: ComponentType
    is_base: bool
    calculation_type: CalculationType
    value: Decimal
    percentage_base: Optional[PercentageBase] = None
    formula: Optional[str] = None
    taxable: bool
    source: str


class ResolvedComponentsOut(CamelModel):
    employee_id: uuid.UUID
    as_of: date
    components: List[ResolvedComponentOut]
