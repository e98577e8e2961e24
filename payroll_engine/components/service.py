"""Salary component administration — versioned definitions and assignments."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.common.audit import create_audit_entry
from payroll_engine.common.constants import (
    CalculationType,
    ComponentType,
    PercentageBase,
)
from payroll_engine.common.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundException,
    ValidationException,
)
from payroll_engine.common.pagination import PaginationParams, paginate
from payroll_engine.common.persistence import commit_or_raise
from payroll_engine.components.models import EmployeeSalaryComponent, SalaryComponent
from payroll_engine.components.resolver import ComponentResolver, ResolvedComponent
from payroll_engine.core_hr.models import Country, Role
from payroll_engine.core_hr.service import EmployeeDirectory
from payroll_engine.payroll.formula import Formula
from payroll_engine.payroll.models import SalaryDetail

logger = logging.getLogger(__name__)

_EDITABLE = (
    "name",
    "component_type",
    "is_base",
    "calculation_type",
    "percentage_base",
    "value",
    "formula",
    "taxable",
    "show_on_payslip",
    "role_id",
    "country_id",
)


def _validate_definition(fields: dict[str, Any]) -> None:
    """Cross-field checks for a component definition; raises ValidationException."""
    errors: dict[str, list[str]] = {}
    name = (fields.get("name") or "").strip()
    if not name:
        errors["name"] = ["Name is required."]

    calc = CalculationType(fields["calculation_type"])
    value = Decimal(fields.get("value") or 0)
    if value < 0:
        errors["value"] = ["Value cannot be negative."]
    if calc == CalculationType.PERCENTAGE and value > 100:
        errors["value"] = ["Percentage cannot exceed 100."]

    if calc == CalculationType.FORMULA:
        if not fields.get("formula"):
            errors["formula"] = ["A FORMULA component needs a formula."]
        else:
            # FormulaError surfaces as its own 422
            Formula(fields["formula"])

    if fields.get("is_base"):
        if ComponentType(fields["component_type"]) != ComponentType.EARNING:
            errors["is_base"] = ["The base salary component must be an EARNING."]
        elif calc != CalculationType.FIXED:
            errors["is_base"] = ["The base salary component must be FIXED."]

    if errors:
        raise ValidationException(errors)


def _snapshot(component: SalaryComponent) -> dict[str, Any]:
    return {
        "version": component.version,
        "name": component.name,
        "calculation_type": CalculationType(component.calculation_type).value,
        "value": str(component.value),
        "formula": component.formula,
        "effective_from": component.effective_from.isoformat(),
    }


class ComponentService:
    """Business logic for salary components and employee assignments."""

    # ── Component definitions ─────────────────────────────────────────

    @staticmethod
    async def _check_scope(
        db: AsyncSession,
        role_id: Optional[uuid.UUID],
        country_id: Optional[uuid.UUID],
    ) -> None:
        if role_id is not None and await db.get(Role, role_id) is None:
            raise NotFoundException("Role", str(role_id))
        if country_id is not None and await db.get(Country, country_id) is None:
            raise NotFoundException("Country", str(country_id))

    @staticmethod
    async def get_component(db: AsyncSession, component_id: uuid.UUID) -> SalaryComponent:
        component = await db.get(SalaryComponent, component_id)
        if component is None:
            raise NotFoundException("SalaryComponent", str(component_id))
        return component

    @staticmethod
    async def list_components(
        db: AsyncSession,
        params: PaginationParams,
        *,
        component_type: Optional[ComponentType] = None,
        role_id: Optional[uuid.UUID] = None,
        country_id: Optional[uuid.UUID] = None,
        include_history: bool = False,
    ) -> tuple[list[SalaryComponent], int, int]:
        query = select(SalaryComponent)
        if not include_history:
            query = query.where(SalaryComponent.effective_to.is_(None))
        if component_type is not None:
            query = query.where(SalaryComponent.component_type == component_type)
        if role_id is not None:
            query = query.where(SalaryComponent.role_id == role_id)
        if country_id is not None:
            query = query.where(SalaryComponent.country_id == country_id)
        query = query.order_by(SalaryComponent.name, SalaryComponent.version.desc())
        return await paginate(db, query, params)

    @staticmethod
    async def create_component(
        db: AsyncSession,
        *,
        name: str,
        component_type: ComponentType,
        calculation_type: CalculationType = CalculationType.FIXED,
        value: Decimal = Decimal("0"),
        is_base: bool = False,
        percentage_base: Optional[PercentageBase] = None,
        formula: Optional[str] = None,
        taxable: bool = True,
        show_on_payslip: bool = True,
        role_id: Optional[uuid.UUID] = None,
        country_id: Optional[uuid.UUID] = None,
        effective_from: Optional[date] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryComponent:
        fields = dict(
            name=name,
            component_type=component_type,
            calculation_type=calculation_type,
            value=value,
            is_base=is_base,
            percentage_base=percentage_base,
            formula=formula,
            taxable=taxable,
            show_on_payslip=show_on_payslip,
            role_id=role_id,
            country_id=country_id,
        )
        _validate_definition(fields)
        await ComponentService._check_scope(db, role_id, country_id)

        fields["name"] = name.strip()
        component = SalaryComponent(
            lineage_id=uuid.uuid4(),
            version=1,
            effective_from=effective_from or date.today(),
            **fields,
        )
        db.add(component)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="salary_component",
            entity_id=component.id,
            actor_id=actor_id,
            new_values=_snapshot(component),
        )
        await commit_or_raise(db)
        logger.info("Salary component %r created (%s)", component.name, component.id)
        return component

    @staticmethod
    async def is_referenced(db: AsyncSession, component_id: uuid.UUID) -> bool:
        """True once any salary breakdown line points at this version."""
        stmt = select(exists().where(SalaryDetail.salary_component_id == component_id))
        return bool((await db.execute(stmt)).scalar())

    @staticmethod
    async def update_component(
        db: AsyncSession,
        component_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        effective_from: Optional[date] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SalaryComponent:
        """Apply *changes*; a version already used by a salary is superseded, not edited."""
        current = await ComponentService.get_component(db, component_id)
        if not current.is_current:
            raise ConflictError(
                "id", str(component_id),
                detail="Only the current version of a component can be updated.",
            )

        unknown = set(changes) - set(_EDITABLE)
        if unknown:
            raise ValidationException({f: ["Field cannot be updated."] for f in sorted(unknown)})

        merged = {f: getattr(current, f) for f in _EDITABLE}
        merged.update(changes)
        _validate_definition(merged)
        await ComponentService._check_scope(db, merged["role_id"], merged["country_id"])
        if "name" in changes:
            merged["name"] = merged["name"].strip()

        old = _snapshot(current)
        if await ComponentService.is_referenced(db, current.id):
            starts = effective_from or date.today()
            if starts <= current.effective_from:
                raise ValidationException({
                    "effective_from": [
                        f"New version must start after {current.effective_from.isoformat()}."
                    ],
                })
            current.effective_to = starts
            target = SalaryComponent(
                lineage_id=current.lineage_id,
                version=current.version + 1,
                effective_from=starts,
                **merged,
            )
            db.add(target)
            action = "version"
        else:
            for key, val in merged.items():
                setattr(current, key, val)
            if effective_from is not None:
                current.effective_from = effective_from
            target = current
            action = "update"

        await db.flush()
        await create_audit_entry(
            db,
            action=action,
            entity_type="salary_component",
            entity_id=target.id,
            actor_id=actor_id,
            old_values=old,
            new_values=_snapshot(target),
        )
        await commit_or_raise(db)
        logger.info(
            "Salary component %s %s (lineage %s, v%d)",
            target.id, "versioned" if action == "version" else "updated",
            target.lineage_id, target.version,
        )
        return target

    # ── Employee assignments ──────────────────────────────────────────

    @staticmethod
    async def list_assignments(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> list[EmployeeSalaryComponent]:
        await EmployeeDirectory.get_employee(db, employee_id)
        result = await db.execute(
            select(EmployeeSalaryComponent)
            .where(EmployeeSalaryComponent.employee_id == employee_id)
            .order_by(EmployeeSalaryComponent.effective_from, EmployeeSalaryComponent.created_at)
        )
        return list(result.scalars().unique().all())

    @staticmethod
    async def _lineage_assignments(
        db: AsyncSession,
        employee_id: uuid.UUID,
        lineage_id: uuid.UUID,
    ) -> list[EmployeeSalaryComponent]:
        result = await db.execute(
            select(EmployeeSalaryComponent)
            .join(SalaryComponent, EmployeeSalaryComponent.salary_component_id == SalaryComponent.id)
            .where(
                EmployeeSalaryComponent.employee_id == employee_id,
                EmployeeSalaryComponent.is_active.is_(True),
                SalaryComponent.lineage_id == lineage_id,
            )
            .with_for_update()
        )
        return list(result.scalars().unique().all())

    @staticmethod
    async def assign_component(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        salary_component_id: uuid.UUID,
        value: Decimal,
        effective_from: date,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeSalaryComponent:
        """Give the employee a new value from *effective_from*, closing the open one."""
        await EmployeeDirectory.get_employee(db, employee_id)
        component = await ComponentService.get_component(db, salary_component_id)
        if value < 0:
            raise ValidationException({"value": ["Value cannot be negative."]})

        history = await ComponentService._lineage_assignments(db, employee_id, component.lineage_id)
        open_rows = [a for a in history if a.effective_to is None]
        for row in history:
            if row.effective_to is not None and row.effective_to > effective_from:
                raise ValidationException({
                    "effective_from": [
                        f"Overlaps an assignment that ran until {row.effective_to.isoformat()}."
                    ],
                })
        for row in open_rows:
            if effective_from <= row.effective_from:
                raise ValidationException({
                    "effective_from": [
                        f"Must be after the current assignment's start "
                        f"{row.effective_from.isoformat()}."
                    ],
                })
            row.effective_to = effective_from

        assignment = EmployeeSalaryComponent(
            employee_id=employee_id,
            salary_component_id=salary_component_id,
            value=value,
            effective_from=effective_from,
            is_active=True,
        )
        db.add(assignment)
        await db.flush()
        await create_audit_entry(
            db,
            action="assign",
            entity_type="employee_salary_component",
            entity_id=assignment.id,
            actor_id=actor_id,
            new_values={
                "employee_id": str(employee_id),
                "salary_component_id": str(salary_component_id),
                "value": str(value),
                "effective_from": effective_from.isoformat(),
                "closed": [str(r.id) for r in open_rows],
            },
        )
        await commit_or_raise(db)
        await db.refresh(assignment, ["salary_component"])
        return assignment

    @staticmethod
    async def end_assignment(
        db: AsyncSession,
        assignment_id: uuid.UUID,
        effective_to: date,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeSalaryComponent:
        assignment = await db.get(EmployeeSalaryComponent, assignment_id)
        if assignment is None:
            raise NotFoundException("EmployeeSalaryComponent", str(assignment_id))
        if assignment.effective_to is not None:
            raise InvalidTransition("assignment", "ENDED", "end")
        if effective_to <= assignment.effective_from:
            raise ValidationException({
                "effective_to": ["End date must be after the assignment's start date."],
            })

        assignment.effective_to = effective_to
        await db.flush()
        await create_audit_entry(
            db,
            action="end",
            entity_type="employee_salary_component",
            entity_id=assignment.id,
            actor_id=actor_id,
            new_values={"effective_to": effective_to.isoformat()},
        )
        await commit_or_raise(db)
        return assignment

    @staticmethod
    async def resolved_components(
        db: AsyncSession,
        employee_id: uuid.UUID,
        as_of: Optional[date] = None,
    ) -> list[ResolvedComponent]:
        employee = await EmployeeDirectory.get_employee(db, employee_id)
        return await ComponentResolver.resolve(db, employee, as_of or date.today())
