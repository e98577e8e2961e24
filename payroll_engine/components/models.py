"""Salary component ORM models: SalaryComponent, EmployeeSalaryComponent.

SalaryComponent rows are versioned: every version of one logical component
shares a ``lineage_id``. A version referenced by a salary breakdown is never
edited again; changes create the next version.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_engine.common.constants import (
    CalculationType,
    ComponentType,
    PercentageBase,
)
from payroll_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SalaryComponent(Base):
    """One version of a salary component definition (e.g. Basic, Housing, PAYE)."""

    __tablename__ = "salary_components"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    lineage_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True,
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    component_type: Mapped[ComponentType] = mapped_column(
        sa.Enum(ComponentType, name="component_type", native_enum=False, length=20),
        nullable=False,
    )
    is_base: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    calculation_type: Mapped[CalculationType] = mapped_column(
        sa.Enum(CalculationType, name="calculation_type", native_enum=False, length=20),
        nullable=False,
        default=CalculationType.FIXED,
    )
    percentage_base: Mapped[Optional[PercentageBase]] = mapped_column(
        sa.Enum(PercentageBase, name="percentage_base", native_enum=False, length=10),
    )
    value: Mapped[Decimal] = mapped_column(sa.Numeric(14, 4), nullable=False, default=0)
    formula: Mapped[Optional[str]] = mapped_column(sa.Text)
    taxable: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    show_on_payslip: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    role_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("roles.id"),
    )
    country_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("countries.id"),
    )
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    __table_args__ = (
        sa.UniqueConstraint("lineage_id", "version", name="uq_component_lineage_version"),
        sa.Index("ix_salary_components_scope", "role_id", "country_id"),
    )

    @property
    def is_current(self) -> bool:
        return self.effective_to is None

    def __repr__(self) -> str:
        return f"<SalaryComponent {self.name!r} v{self.version}>"


class EmployeeSalaryComponent(Base):
    """Effective-dated, append-only assignment of a component to an employee."""

    __tablename__ = "employee_salary_components"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    salary_component_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("salary_components.id"), nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(sa.Numeric(14, 4), nullable=False)
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    salary_component: Mapped[SalaryComponent] = relationship(lazy="joined")

    __table_args__ = (
        sa.Index("ix_esc_employee", "employee_id"),
    )

    @property
    def component_name(self) -> str:
        return self.salary_component.name

    def __repr__(self) -> str:
        return (
            f"<EmployeeSalaryComponent employee={self.employee_id} "
            f"component={self.salary_component_id} value={self.value}>"
        )
