"""Component Resolver — which components apply to an employee on a date.

Role- and country-scoped component versions supply defaults; the employee's
own effective-dated assignments override them, one entry per component
lineage.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.common.constants import (
    CalculationType,
    ComponentType,
    PercentageBase,
)
from payroll_engine.common.exceptions import ResolutionError
from payroll_engine.components.models import EmployeeSalaryComponent, SalaryComponent
from payroll_engine.core_hr.models import Employee

logger = logging.getLogger(__name__)

_GROUP_ORDER = {
    ComponentType.EARNING: 1,
    ComponentType.TAX: 2,
    ComponentType.DEDUCTION: 3,
}


@dataclass(frozen=True)
class ResolvedComponent:
    """A component definition paired with the value that applies."""

    salary_component_id: uuid.UUID
    lineage_id: uuid.UUID
    name: str
    component_type: ComponentType
    is_base: bool
    calculation_type: CalculationType
    value: Decimal
    percentage_base: Optional[PercentageBase] = None
    formula: Optional[str] = None
    taxable: bool = True
    show_on_payslip: bool = True
    source: str = "role"

    @classmethod
    def from_component(
        cls,
        component: SalaryComponent,
        *,
        source: str,
        value: Optional[Decimal] = None,
    ) -> ResolvedComponent:
        return cls(
            salary_component_id=component.id,
            lineage_id=component.lineage_id,
            name=component.name,
            component_type=ComponentType(component.component_type),
            is_base=component.is_base,
            calculation_type=CalculationType(component.calculation_type),
            value=Decimal(component.value if value is None else value),
            percentage_base=component.percentage_base,
            formula=component.formula,
            taxable=component.taxable,
            show_on_payslip=component.show_on_payslip,
            source=source,
        )

    @property
    def sort_key(self) -> tuple[int, str]:
        group = 0 if self.is_base else _GROUP_ORDER[self.component_type]
        return group, self.name.lower()


def _valid_on(as_of: date):
    return and_(
        SalaryComponent.effective_from <= as_of,
        or_(
            SalaryComponent.effective_to.is_(None),
            SalaryComponent.effective_to > as_of,
        ),
    )


class ComponentResolver:
    """Resolves the effective component set for one employee."""

    @staticmethod
    async def _scoped_defaults(
        db: AsyncSession,
        employee: Employee,
        as_of: date,
    ) -> list[SalaryComponent]:
        """Versions valid on *as_of* whose every set scope matches the employee."""
        stmt = select(SalaryComponent).where(
            _valid_on(as_of),
            or_(
                SalaryComponent.role_id.is_not(None),
                SalaryComponent.country_id.is_not(None),
            ),
            or_(
                SalaryComponent.role_id.is_(None),
                SalaryComponent.role_id == employee.role_id,
            ),
            or_(
                SalaryComponent.country_id.is_(None),
                SalaryComponent.country_id == employee.country_id,
            ),
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def _assignments(
        db: AsyncSession,
        employee_id: uuid.UUID,
        as_of: date,
    ) -> list[EmployeeSalaryComponent]:
        stmt = select(EmployeeSalaryComponent).where(
            EmployeeSalaryComponent.employee_id == employee_id,
            EmployeeSalaryComponent.is_active.is_(True),
            EmployeeSalaryComponent.effective_from <= as_of,
            or_(
                EmployeeSalaryComponent.effective_to.is_(None),
                EmployeeSalaryComponent.effective_to > as_of,
            ),
        )
        result = await db.execute(stmt)
        return list(result.scalars().unique().all())

    @staticmethod
    async def _versions_for(
        db: AsyncSession,
        lineage_ids: set[uuid.UUID],
        as_of: date,
    ) -> dict[uuid.UUID, SalaryComponent]:
        if not lineage_ids:
            return {}
        stmt = select(SalaryComponent).where(
            SalaryComponent.lineage_id.in_(lineage_ids),
            _valid_on(as_of),
        )
        result = await db.execute(stmt)
        return {c.lineage_id: c for c in result.scalars().all()}

    @staticmethod
    async def resolve(
        db: AsyncSession,
        employee: Employee,
        as_of: date,
    ) -> list[ResolvedComponent]:
        """Return the ordered component set for *employee* on *as_of*.

        Raises ``ResolutionError`` when assignments overlap or the employee
        does not end up with exactly one base-salary component.
        """
        resolved: dict[uuid.UUID, ResolvedComponent] = {}

        for component in await ComponentResolver._scoped_defaults(db, employee, as_of):
            source = "role" if component.role_id is not None else "country"
            resolved[component.lineage_id] = ResolvedComponent.from_component(
                component, source=source,
            )

        assignments = await ComponentResolver._assignments(db, employee.id, as_of)
        by_lineage: dict[uuid.UUID, EmployeeSalaryComponent] = {}
        for assignment in assignments:
            lineage_id = assignment.salary_component.lineage_id
            if lineage_id in by_lineage:
                raise ResolutionError(
                    f"Employee {employee.id} has overlapping assignments of "
                    f"'{assignment.salary_component.name}' on {as_of.isoformat()}."
                )
            by_lineage[lineage_id] = assignment

        versions = await ComponentResolver._versions_for(db, set(by_lineage), as_of)
        for lineage_id, assignment in by_lineage.items():
            version = versions.get(lineage_id)
            if version is None:
                logger.debug(
                    "Assignment %s skipped: component retired on %s",
                    assignment.id, as_of,
                )
                continue
            existing = resolved.get(lineage_id)
            if existing is not None and existing.salary_component_id == version.id:
                resolved[lineage_id] = replace(
                    existing, value=Decimal(assignment.value), source="employee",
                )
            else:
                resolved[lineage_id] = ResolvedComponent.from_component(
                    version, source="employee", value=assignment.value,
                )

        bases = [c for c in resolved.values() if c.is_base]
        if not bases:
            raise ResolutionError(
                f"Employee {employee.id} has no base salary component "
                f"as of {as_of.isoformat()}."
            )
        if len(bases) > 1:
            names = ", ".join(sorted(c.name for c in bases))
            raise ResolutionError(
                f"Employee {employee.id} has {len(bases)} base salary components "
                f"({names}) as of {as_of.isoformat()}."
            )

        return sorted(resolved.values(), key=lambda c: c.sort_key)
