"""Loan ORM models: Loan, LoanRepayment."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_engine.common.constants import LoanStatus, LoanType, RepaymentStatus
from payroll_engine.database import Base

TERMINAL_LOAN_STATUSES = frozenset({
    LoanStatus.REJECTED,
    LoanStatus.FULLY_PAID,
    LoanStatus.DEFAULTED,
    LoanStatus.CANCELLED,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Loan(Base):
    """Employee loan or salary advance."""

    __tablename__ = "loans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    loan_type: Mapped[LoanType] = mapped_column(
        sa.Enum(LoanType, name="loan_type", native_enum=False, length=20),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(sa.Numeric(7, 4), nullable=False, default=0)
    term_months: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_repayable: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    outstanding_balance: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False, default=0)
    monthly_repayment: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    status: Mapped[LoanStatus] = mapped_column(
        sa.Enum(LoanStatus, name="loan_status", native_enum=False, length=20),
        nullable=False,
        default=LoanStatus.PENDING,
    )
    application_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    approval_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    disbursement_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    first_repayment_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    repayments: Mapped[list[LoanRepayment]] = relationship(
        back_populates="loan",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="LoanRepayment.installment_number",
    )

    __table_args__ = (
        sa.Index("ix_loans_employee_status", "employee_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_LOAN_STATUSES

    def __repr__(self) -> str:
        return f"<Loan {self.loan_type} {self.amount} {self.status}>"


class LoanRepayment(Base):
    """One scheduled instalment of a loan."""

    __tablename__ = "loan_repayments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    loan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("loans.id", ondelete="CASCADE"),
        nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    principal_portion: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    interest_portion: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    status: Mapped[RepaymentStatus] = mapped_column(
        sa.Enum(RepaymentStatus, name="repayment_status", native_enum=False, length=20),
        nullable=False,
        default=RepaymentStatus.SCHEDULED,
    )
    paid_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    salary_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("salaries.id"),
    )

    loan: Mapped[Loan] = relationship(back_populates="repayments")

    __table_args__ = (
        sa.UniqueConstraint("loan_id", "installment_number", name="uq_repayment_installment"),
        sa.Index("ix_loan_repayments_due", "status", "due_date"),
        sa.Index("ix_loan_repayments_salary", "salary_id"),
    )

    def __repr__(self) -> str:
        return f"<LoanRepayment #{self.installment_number} {self.amount} {self.status}>"
