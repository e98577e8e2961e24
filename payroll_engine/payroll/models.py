"""Payroll ORM models: PayPeriod, Salary, SalaryDetail.

SQLAlchemy 2.0 async-compatible models.
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
    ComponentType,
    PayPeriodStatus,
    SalaryStatus,
)
from payroll_engine.database import Base

TERMINAL_SALARY_STATUSES = frozenset({SalaryStatus.PAID, SalaryStatus.CANCELLED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# PayPeriod
# ═════════════════════════════════════════════════════════════════════


class PayPeriod(Base):
    """A payroll window, e.g. "March 2026"."""

    __tablename__ = "pay_periods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    payment_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[PayPeriodStatus] = mapped_column(
        sa.Enum(PayPeriodStatus, name="pay_period_status", native_enum=False, length=20),
        nullable=False,
        default=PayPeriodStatus.OPEN,
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    __table_args__ = (
        sa.Index("ix_pay_periods_status", "status"),
        sa.CheckConstraint("start_date <= end_date", name="ck_pay_period_dates"),
    )

    def __repr__(self) -> str:
        return f"<PayPeriod {self.name!r} {self.status}>"


# ═════════════════════════════════════════════════════════════════════
# Salary
# ═════════════════════════════════════════════════════════════════════


class Salary(Base):
    """One employee's salary for one pay period."""

    __tablename__ = "salaries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    pay_period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("pay_periods.id"), nullable=False,
    )
    gross_salary: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=0)
    total_deductions: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=0)
    total_tax: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=0)
    net_salary: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=0)
    status: Mapped[SalaryStatus] = mapped_column(
        sa.Enum(SalaryStatus, name="salary_status", native_enum=False, length=20),
        nullable=False,
        default=SalaryStatus.DRAFT,
    )
    calculated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    paid_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    payment_reference: Mapped[Optional[str]] = mapped_column(sa.String(100))
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    details: Mapped[list[SalaryDetail]] = relationship(
        back_populates="salary",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SalaryDetail.position",
    )

    __table_args__ = (
        sa.UniqueConstraint("employee_id", "pay_period_id", name="uq_salary_employee_period"),
        sa.Index("ix_salaries_period_status", "pay_period_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SALARY_STATUSES

    def __repr__(self) -> str:
        return f"<Salary employee={self.employee_id} net={self.net_salary} {self.status}>"


class SalaryDetail(Base):
    """One line of a salary breakdown."""

    __tablename__ = "salary_details"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    salary_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("salaries.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    salary_component_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("salary_components.id"),
    )
    loan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("loans.id"),
    )
    component_name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    component_type: Mapped[ComponentType] = mapped_column(
        sa.Enum(ComponentType, name="component_type", native_enum=False, length=20),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    calculation_note: Mapped[Optional[str]] = mapped_column(sa.String(500))
    show_on_payslip: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)

    salary: Mapped[Salary] = relationship(back_populates="details")

    __table_args__ = (
        sa.Index("ix_salary_details_salary", "salary_id"),
        sa.Index("ix_salary_details_component", "salary_component_id"),
    )

    def __repr__(self) -> str:
        return f"<SalaryDetail {self.component_name!r} {self.amount}>"
