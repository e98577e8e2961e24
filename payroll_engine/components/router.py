"""Salary components router — definitions, versions and employee assignments."""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.auth.dependencies import Principal, require_permission
from payroll_engine.common.constants import ComponentType
from payroll_engine.common.pagination import PaginationParams
from payroll_engine.components.schemas import (
    AssignmentCreate,
    AssignmentEnd,
    AssignmentOut,
    ResolvedComponentOut,
    ResolvedComponentsOut,
    SalaryComponentCreate,
    SalaryComponentListResponse,
    SalaryComponentOut,
    SalaryComponentUpdate,
)
from payroll_engine.components.service import ComponentService
from payroll_engine.database import get_db

router = APIRouter(prefix="", tags=["salary-components"])


# ── GET / ────────────────────────────────────────────────────────────

@router.get("", response_model=SalaryComponentListResponse)
async def list_components(
    component_type: Optional[ComponentType] = Query(None, alias="componentType"),
    role_id: Optional[uuid.UUID] = Query(None, alias="roleId"),
    country_id: Optional[uuid.UUID] = Query(None, alias="countryId"),
    include_history: bool = Query(False, alias="includeHistory"),
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(require_permission("component:read")),
    db: AsyncSession = Depends(get_db),
):
    """List current component versions (all versions with includeHistory)."""
    components, total, total_pages = await ComponentService.list_components(
        db,
        pagination,
        component_type=component_type,
        role_id=role_id,
        country_id=country_id,
        include_history=include_history,
    )
    return SalaryComponentListResponse(
        items=[SalaryComponentOut.model_validate(c) for c in components],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        total_pages=total_pages,
    )


# ── POST / ───────────────────────────────────────────────────────────

@router.post("", response_model=SalaryComponentOut, status_code=201)
async def create_component(
    body: SalaryComponentCreate,
    principal: Principal = Depends(require_permission("component:manage")),
    db: AsyncSession = Depends(get_db),
):
    component = await ComponentService.create_component(
        db, actor_id=principal.user_id, **body.model_dump(),
    )
    return SalaryComponentOut.model_validate(component)


# ── Assignments ──────────────────────────────────────────────────────

@router.post("/assignments", response_model=AssignmentOut, status_code=201)
async def assign_component(
    body: AssignmentCreate,
    principal: Principal = Depends(require_permission("component:manage")),
    db: AsyncSession = Depends(get_db),
):
    assignment = await ComponentService.assign_component(
        db, actor_id=principal.user_id, **body.model_dump(),
    )
    return AssignmentOut.model_validate(assignment)


@router.patch("/assignments/{assignment_id}/end", response_model=AssignmentOut)
async def end_assignment(
    assignment_id: uuid.UUID,
    body: AssignmentEnd,
    principal: Principal = Depends(require_permission("component:manage")),
    db: AsyncSession = Depends(get_db),
):
    assignment = await ComponentService.end_assignment(
        db, assignment_id, body.effective_to, actor_id=principal.user_id,
    )
    return AssignmentOut.model_validate(assignment)


@router.get("/employees/{employee_id}/assignments", response_model=List[AssignmentOut])
async def list_assignments(
    employee_id: uuid.UUID,
    principal: Principal = Depends(require_permission("component:read")),
    db: AsyncSession = Depends(get_db),
):
    rows = await ComponentService.list_assignments(db, employee_id)
    return [AssignmentOut.model_validate(r) for r in rows]


@router.get("/employees/{employee_id}/resolved", response_model=ResolvedComponentsOut)
async def resolved_components(
    employee_id: uuid.UUID,
    as_of: Optional[date] = Query(None, alias="asOf"),
    principal: Principal = Depends(require_permission("component:read")),
    db: AsyncSession = Depends(get_db),
):
    """Components that would feed this employee's salary on *asOf* (default today)."""
    on = as_of or date.today()
    components = await ComponentService.resolved_components(db, employee_id, on)
    return ResolvedComponentsOut(
        employee_id=employee_id,
        as_of=on,
        components=[ResolvedComponentOut.model_validate(c) for c in components],
    )


# ── GET|PATCH /{id} ──────────────────────────────────────────────────

@router.get("/{component_id}", response_model=SalaryComponentOut)
async def get_component(
    component_id: uuid.UUID,
    principal: Principal = Depends(require_permission("component:read")),
    db: AsyncSession = Depends(get_db),
):
    return SalaryComponentOut.model_validate(await ComponentService.get_component(db, component_id))


@router.patch("/{component_id}", response_model=SalaryComponentOut)
async def update_component(
    component_id: uuid.UUID,
    body: SalaryComponentUpdate,
    principal: Principal = Depends(require_permission("component:manage")),
    db: AsyncSession = Depends(get_db),
):
    """Edit in place, or create the next version if this one already fed a salary."""
    changes = body.model_dump(exclude_unset=True)
    effective_from = changes.pop("effective_from", None)
    component = await ComponentService.update_component(
        db,
        component_id,
        changes,
        effective_from=effective_from,
        actor_id=principal.user_id,
    )
    return SalaryComponentOut.model_validate(component)
