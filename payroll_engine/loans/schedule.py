"""Amortization schedule for simple-interest loans and advances."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from payroll_engine.common.exceptions import ValidationException
from payroll_engine.common.money import ZERO, quantize, truncate


@dataclass(frozen=True)
class Quote:
    total_repayable: Decimal
    monthly_repayment: Decimal
    total_interest: Decimal


@dataclass(frozen=True)
class Installment:
    installment_number: int
    due_date: date
    amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    balance_after: Decimal


def quote(amount: Decimal, interest_rate: Decimal, term_months: int) -> Quote:
    """Total repayable and the regular monthly instalment.

    Interest is simple: ``amount * rate / 100`` over the whole term. The
    monthly instalment is truncated to the cent; the remainder goes on the
    final instalment.
    """
    if term_months < 1:
        raise ValidationException({"term_months": ["Term must be at least one month."]})
    interest = quantize(amount * interest_rate / Decimal(100))
    total = quantize(amount) + interest
    monthly = truncate(total / term_months)
    if monthly <= ZERO:
        raise ValidationException(
            {"amount": ["Amount is too small to be repaid over the requested term."]}
        )
    return Quote(total_repayable=total, monthly_repayment=monthly, total_interest=interest)


def build_schedule(
    amount: Decimal,
    interest_rate: Decimal,
    term_months: int,
    first_repayment_date: date,
) -> list[Installment]:
    """Generate *term_months* instalments summing exactly to the total."""
    q = quote(amount, interest_rate, term_months)
    principal_total = quantize(amount)

    rows: list[Installment] = []
    balance = q.total_repayable
    principal_left = principal_total
    for i in range(term_months):
        last = i == term_months - 1
        if last:
            payment = balance
            principal = principal_left
        else:
            payment = q.monthly_repayment
            principal = quantize(payment * principal_total / q.total_repayable)
        balance -= payment
        principal_left -= principal
        rows.append(
            Installment(
                installment_number=i + 1,
                due_date=first_repayment_date + relativedelta(months=i),
                amount=payment,
                principal_portion=principal,
                interest_portion=payment - principal,
                balance_after=balance,
            )
        )
    return rows
