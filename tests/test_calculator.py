"""Salary calculator test suite — 14 tests covering evaluation order,
percentage bases, formulas, loan lines, rounding and failure modes.

Pure computation: no database.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from payroll_engine.common.constants import (
    CalculationType,
    ComponentType,
    PercentageBase,
)
from payroll_engine.common.exceptions import CalculationError, FormulaError
from payroll_engine.components.resolver import ResolvedComponent
from payroll_engine.payroll.calculator import DeductionLine, calculate_salary


# ── Helpers ─────────────────────────────────────────────────────────


def _component(
    name: str,
    value: str,
    *,
    component_type: ComponentType = ComponentType.EARNING,
    calculation_type: CalculationType = CalculationType.FIXED,
    is_base: bool = False,
    percentage_base: PercentageBase | None = None,
    formula: str | None = None,
    taxable: bool = True,
) -> ResolvedComponent:
    return ResolvedComponent(
        salary_component_id=uuid.uuid4(),
        lineage_id=uuid.uuid4(),
        name=name,
        component_type=component_type,
        is_base=is_base,
        calculation_type=calculation_type,
        value=Decimal(value),
        percentage_base=percentage_base,
        formula=formula,
        taxable=taxable,
    )


def _base(value: str = "300000") -> ResolvedComponent:
    return _component("Basic Salary", value, is_base=True)


def _pct(name: str, value: str, **kwargs) -> ResolvedComponent:
    return _component(name, value, calculation_type=CalculationType.PERCENTAGE, **kwargs)


def _tax(value: str = "7.5") -> ResolvedComponent:
    return _pct("PAYE", value, component_type=ComponentType.TAX)


# ═════════════════════════════════════════════════════════════════════
# 1. GROSS / TAX / NET
# ═════════════════════════════════════════════════════════════════════


def test_base_housing_and_tax():
    """300k base + 10% housing, 7.5% tax on gross → net 305,250."""
    result = calculate_salary([_base(), _pct("Housing Allowance", "10"), _tax()])

    assert result.base_salary == Decimal("300000.00")
    assert result.gross_salary == Decimal("330000.00")
    assert result.total_tax == Decimal("24750.00")
    assert result.total_deductions == Decimal("0.00")
    assert result.net_salary == Decimal("305250.00")

    names = [line.name for line in result.lines]
    assert names == ["Basic Salary", "Housing Allowance", "PAYE"]
    assert result.lines[1].note == "10% of base salary"
    assert result.lines[2].note == "7.5% of taxable gross"


def test_identity_holds_with_awkward_rounding():
    """Each line is rounded once, so gross − deductions − tax == net exactly."""
    components = [
        _base("123456.78"),
        _pct("Transport", "3.333"),
        _pct("Meal", "1.7", percentage_base=PercentageBase.GROSS),
        _pct("Pension", "8.125", component_type=ComponentType.DEDUCTION),
        _tax("7.77"),
    ]
    result = calculate_salary(components)

    earnings = sum(
        (line.amount for line in result.lines if line.component_type == ComponentType.EARNING),
        Decimal("0"),
    )
    assert earnings == result.gross_salary
    assert result.gross_salary - result.total_deductions - result.total_tax == result.net_salary
    for line in result.lines:
        assert line.amount == line.amount.quantize(Decimal("0.01"))


def test_non_taxable_earning_excluded_from_tax_base():
    result = calculate_salary([
        _base("100000"),
        _component("Relocation", "50000", taxable=False),
        _tax("10"),
    ])
    assert result.gross_salary == Decimal("150000.00")
    assert result.taxable_gross == Decimal("100000.00")
    assert result.total_tax == Decimal("10000.00")


def test_percentage_rounds_half_up():
    # 0.5% of 1001 = 5.005 → 5.01
    result = calculate_salary([_base("1001"), _pct("Bonus", "0.5")])
    assert result.lines[1].amount == Decimal("5.01")


# ═════════════════════════════════════════════════════════════════════
# 2. FORMULAS
# ═════════════════════════════════════════════════════════════════════


def test_formula_sees_earlier_components_and_totals():
    result = calculate_salary([
        _base("200000"),
        _pct("Housing Allowance", "20"),
        _component(
            "Pension",
            "0",
            component_type=ComponentType.DEDUCTION,
            calculation_type=CalculationType.FORMULA,
            formula="(base_salary + housing_allowance) * 0.08",
        ),
        _component(
            "Levy",
            "0",
            component_type=ComponentType.TAX,
            calculation_type=CalculationType.FORMULA,
            formula="min(grossSalary * 0.01, 1000)",
        ),
    ])
    lines = {line.name: line for line in result.lines}
    assert lines["Pension"].amount == Decimal("19200.00")
    assert lines["Pension"].note == "Formula: (base_salary + housing_allowance) * 0.08"
    assert lines["Levy"].amount == Decimal("1000.00")
    assert result.net_salary == Decimal("219800.00")


def test_formula_with_unknown_name_fails():
    with pytest.raises(FormulaError):
        calculate_salary([
            _base(),
            _component(
                "Bonus", "0",
                calculation_type=CalculationType.FORMULA,
                formula="performance_score * 1000",
            ),
        ])


def test_formula_result_too_large_for_cents_fails():
    with pytest.raises(CalculationError, match="Bonus"):
        calculate_salary([
            _base(),
            _component(
                "Bonus", "0",
                calculation_type=CalculationType.FORMULA,
                formula="base_salary * 1000000000000000000000000000000",
            ),
        ])


# ═════════════════════════════════════════════════════════════════════
# 3. LOAN DEDUCTIONS
# ═════════════════════════════════════════════════════════════════════


def test_loan_lines_come_last_and_reduce_net():
    loan_id = uuid.uuid4()
    result = calculate_salary(
        [_base(), _pct("Housing Allowance", "10"), _tax()],
        [DeductionLine(name="Loan Repayment", amount=Decimal("11000"), loan_id=loan_id, note="Instalment 1 of 12")],
    )
    assert result.lines[-1].name == "Loan Repayment"
    assert result.lines[-1].loan_id == loan_id
    assert result.lines[-1].component_type == ComponentType.DEDUCTION
    assert result.total_deductions == Decimal("11000.00")
    assert result.net_salary == Decimal("294250.00")


def test_deductions_equal_gross_gives_zero_net():
    result = calculate_salary(
        [_base("50000")],
        [DeductionLine(name="Salary Advance Recovery", amount=Decimal("50000"))],
    )
    assert result.net_salary == Decimal("0.00")


def test_negative_net_fails():
    with pytest.raises(CalculationError, match="negative"):
        calculate_salary(
            [_base("50000")],
            [DeductionLine(name="Loan Repayment", amount=Decimal("50000.01"))],
        )


# ═════════════════════════════════════════════════════════════════════
# 4. INVALID COMPONENT SETS
# ═════════════════════════════════════════════════════════════════════


def test_no_base_fails():
    with pytest.raises(CalculationError):
        calculate_salary([_pct("Housing Allowance", "10")])


def test_two_bases_fail():
    with pytest.raises(CalculationError):
        calculate_salary([_base(), _component("Second Basic", "1000", is_base=True)])


def test_percentage_base_component_fails():
    base = _pct("Basic Salary", "10", is_base=True)
    with pytest.raises(CalculationError, match="FIXED"):
        calculate_salary([base])


def test_negative_component_fails():
    with pytest.raises(CalculationError, match="Adjustment"):
        calculate_salary([_base(), _component("Adjustment", "-10")])
