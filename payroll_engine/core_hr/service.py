"""Read-only lookups against the employee store."""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.common.constants import EmployeeStatus
from payroll_engine.common.exceptions import NotFoundException
from payroll_engine.core_hr.models import Employee


class EmployeeDirectory:
    """Queries the payroll engine needs from the employee-management data."""

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def payable_employee_ids(
        db: AsyncSession,
        as_of: date,
    ) -> list[uuid.UUID]:
        """Ids of employees eligible for a run ending on *as_of*, stable order."""
        stmt = (
            select(Employee.id)
            .where(
                Employee.status == EmployeeStatus.ACTIVE,
                Employee.join_date <= as_of,
                or_(
                    Employee.termination_date.is_(None),
                    Employee.termination_date >= as_of,
                ),
            )
            .order_by(Employee.employee_number)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
