"""Salary Calculator — pure computation of one employee's salary breakdown.

Evaluation order is fixed: base → other earnings → gross → tax → other
deductions → loan repayment lines → net. Each line is rounded once to the
cent; every total is a sum of already-rounded lines, so
``gross - total_deductions - total_tax == net`` holds exactly.
"""

from __future__ import annotations

import decimal
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from payroll_engine.common.constants import (
    CalculationType,
    ComponentType,
    PercentageBase,
)
from payroll_engine.common.exceptions import CalculationError, FormulaError
from payroll_engine.common.money import ZERO, money_sum, percentage_of, quantize
from payroll_engine.components.resolver import ResolvedComponent
from payroll_engine.payroll.formula import Formula, variable_name

LOAN_COMPONENT_TYPE = ComponentType.DEDUCTION


@dataclass(frozen=True)
class DeductionLine:
    """A loan repayment instalment to be withheld from this salary."""

    name: str
    amount: Decimal
    loan_id: Optional[uuid.UUID] = None
    repayment_id: Optional[uuid.UUID] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class SalaryLine:
    name: str
    component_type: ComponentType
    amount: Decimal
    note: Optional[str] = None
    show_on_payslip: bool = True
    salary_component_id: Optional[uuid.UUID] = None
    loan_id: Optional[uuid.UUID] = None


@dataclass
class SalaryComputation:
    base_salary: Decimal = ZERO
    gross_salary: Decimal = ZERO
    taxable_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_tax: Decimal = ZERO
    net_salary: Decimal = ZERO
    lines: list[SalaryLine] = field(default_factory=list)


# ── Per-component evaluation ─────────────────────────────────────────

def _default_base(component: ResolvedComponent) -> PercentageBase:
    if component.percentage_base is not None:
        return PercentageBase(component.percentage_base)
    if component.component_type == ComponentType.TAX:
        return PercentageBase.GROSS
    return PercentageBase.BASE


def _amount(component: ResolvedComponent, **context) -> tuple[Decimal, str]:
    """Return the rounded amount for *component* and a calculation note."""
    try:
        return _evaluate(component, **context)
    except decimal.DecimalException as exc:
        raise CalculationError(
            f"Component '{component.name}' produced an amount that cannot be represented."
        ) from exc


def _evaluate(
    component: ResolvedComponent,
    *,
    base_salary: Decimal,
    gross: Decimal,
    taxable_gross: Decimal,
    computed: dict[str, Decimal],
) -> tuple[Decimal, str]:
    calc = CalculationType(component.calculation_type)

    if calc == CalculationType.FIXED:
        return quantize(component.value), "Fixed amount"

    if calc == CalculationType.PERCENTAGE:
        if _default_base(component) == PercentageBase.BASE:
            return (
                percentage_of(component.value, base_salary),
                f"{component.value.normalize():f}% of base salary",
            )
        # Tax percentages apply to the taxable part of gross only.
        reference = taxable_gross if component.component_type == ComponentType.TAX else gross
        label = "taxable gross" if component.component_type == ComponentType.TAX else "gross salary"
        return (
            percentage_of(component.value, reference),
            f"{component.value.normalize():f}% of {label}",
        )

    if not component.formula:
        raise FormulaError(f"Component '{component.name}' has no formula.")
    variables = dict(computed)
    variables.update(
        baseSalary=base_salary,
        base_salary=base_salary,
        grossSalary=gross,
        gross_salary=gross,
        taxableGross=taxable_gross,
        taxable_gross=taxable_gross,
    )
    formula = Formula(component.formula)
    return quantize(formula.evaluate(variables)), f"Formula: {formula.source}"


def _line(component: ResolvedComponent, amount: Decimal, note: str) -> SalaryLine:
    if amount < 0:
        raise CalculationError(
            f"Component '{component.name}' evaluated to a negative amount ({amount})."
        )
    return SalaryLine(
        name=component.name,
        component_type=component.component_type,
        amount=amount,
        note=note,
        show_on_payslip=component.show_on_payslip,
        salary_component_id=component.salary_component_id,
    )


# ── Public API ───────────────────────────────────────────────────────

def calculate_salary(
    components: Sequence[ResolvedComponent],
    loan_deductions: Sequence[DeductionLine] = (),
) -> SalaryComputation:
    """Compute gross, deductions, tax and net from resolved components.

    Raises ``FormulaError`` for malformed formulas and ``CalculationError``
    for arithmetic failures, negative lines or a negative net.
    """
    bases = [c for c in components if c.is_base]
    if len(bases) != 1:
        raise CalculationError(f"Expected exactly one base component, found {len(bases)}.")
    base = bases[0]
    if base.component_type != ComponentType.EARNING or base.calculation_type != CalculationType.FIXED:
        raise CalculationError(f"Base component '{base.name}' must be a FIXED earning.")

    result = SalaryComputation()
    computed: dict[str, Decimal] = {}

    base_amount = quantize(base.value)
    base_line = _line(base, base_amount, "Base salary")
    result.base_salary = base_amount
    result.lines.append(base_line)
    computed[variable_name(base.name)] = base_amount

    earnings = [c for c in components if not c.is_base and c.component_type == ComponentType.EARNING]
    taxes = [c for c in components if c.component_type == ComponentType.TAX]
    deductions = [c for c in components if c.component_type == ComponentType.DEDUCTION]

    gross = base_amount
    taxable_gross = base_amount if base.taxable else ZERO
    for component in earnings:
        amount, note = _amount(
            component,
            base_salary=base_amount,
            gross=gross,
            taxable_gross=taxable_gross,
            computed=computed,
        )
        result.lines.append(_line(component, amount, note))
        computed[variable_name(component.name)] = amount
        gross += amount
        if component.taxable:
            taxable_gross += amount

    result.gross_salary = gross
    result.taxable_gross = taxable_gross

    tax_amounts: list[Decimal] = []
    for component in taxes:
        amount, note = _amount(
            component,
            base_salary=base_amount,
            gross=gross,
            taxable_gross=taxable_gross,
            computed=computed,
        )
        result.lines.append(_line(component, amount, note))
        computed[variable_name(component.name)] = amount
        tax_amounts.append(amount)

    deduction_amounts: list[Decimal] = []
    for component in deductions:
        amount, note = _amount(
            component,
            base_salary=base_amount,
            gross=gross,
            taxable_gross=taxable_gross,
            computed=computed,
        )
        result.lines.append(_line(component, amount, note))
        computed[variable_name(component.name)] = amount
        deduction_amounts.append(amount)

    for loan in loan_deductions:
        amount = quantize(loan.amount)
        if amount < 0:
            raise CalculationError(f"Loan deduction '{loan.name}' is negative ({amount}).")
        result.lines.append(
            SalaryLine(
                name=loan.name,
                component_type=LOAN_COMPONENT_TYPE,
                amount=amount,
                note=loan.note,
                loan_id=loan.loan_id,
            )
        )
        deduction_amounts.append(amount)

    result.total_tax = money_sum(tax_amounts)
    result.total_deductions = money_sum(deduction_amounts)
    result.net_salary = result.gross_salary - result.total_deductions - result.total_tax

    if result.net_salary < 0:
        raise CalculationError(
            f"Net salary would be negative ({result.net_salary}): deductions and tax "
            f"exceed gross salary {result.gross_salary}."
        )
    return result
