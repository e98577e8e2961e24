"""Formula interpreter test suite — 13 tests covering parsing, the allowed
operator set, Decimal evaluation and error reporting.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from payroll_engine.common.exceptions import CalculationError, FormulaError
from payroll_engine.payroll.formula import Formula, evaluate_formula, variable_name


# ═════════════════════════════════════════════════════════════════════
# 1. EVALUATION
# ═════════════════════════════════════════════════════════════════════


class TestEvaluate:

    def test_arithmetic_precedence(self):
        assert evaluate_formula("2 + 3 * 4", {}) == Decimal("14")

    def test_parentheses(self):
        assert evaluate_formula("(2 + 3) * 4", {}) == Decimal("20")

    def test_decimal_literal_is_exact(self):
        """0.075 stays 0.075 — no binary float drift."""
        result = evaluate_formula("base_salary * 0.075", {"base_salary": Decimal("330000")})
        assert result == Decimal("24750.000")

    def test_variables_and_functions(self):
        variables = {"gross_salary": Decimal("500000"), "base_salary": Decimal("300000")}
        assert evaluate_formula("min(gross_salary * 0.1, 40000)", variables) == Decimal("40000")
        assert evaluate_formula("max(base_salary - 400000, 0)", variables) == Decimal("0")
        assert evaluate_formula("abs(base_salary - gross_salary)", variables) == Decimal("200000")

    def test_unary_minus(self):
        assert evaluate_formula("-5 + 10", {}) == Decimal("5")

    def test_names_are_collected(self):
        formula = Formula("housing_allowance + baseSalary / 12")
        assert formula.names == frozenset({"housing_allowance", "baseSalary"})


# ═════════════════════════════════════════════════════════════════════
# 2. REJECTED INPUT
# ═════════════════════════════════════════════════════════════════════


class TestRejected:

    @pytest.mark.parametrize("source", [
        "__import__('os').system('true')",
        "base_salary ** 2",
        "base_salary if 1 else 2",
        "'text'",
        "[1, 2]",
        "base_salary.real",
        "round(base_salary)",
        "min(*values)",
        "True + 1",
    ])
    def test_disallowed_syntax(self, source):
        with pytest.raises(FormulaError):
            Formula(source)

    def test_empty_formula(self):
        with pytest.raises(FormulaError):
            Formula("   ")

    def test_syntax_error(self):
        with pytest.raises(FormulaError):
            Formula("base_salary +")

    def test_too_long(self):
        with pytest.raises(FormulaError, match="exceeds"):
            Formula("1 + " * 50 + "1", max_length=20)

    def test_unknown_identifier(self):
        with pytest.raises(FormulaError, match="bonus"):
            evaluate_formula("base_salary + bonus", {"base_salary": Decimal("1")})

    def test_division_by_zero(self):
        with pytest.raises(CalculationError):
            evaluate_formula("base_salary / (gross_salary - gross_salary)", {
                "base_salary": Decimal("1"),
                "gross_salary": Decimal("5"),
            })


# ═════════════════════════════════════════════════════════════════════
# 3. VARIABLE NAMES
# ═════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("name, expected", [
    ("Housing Allowance", "housing_allowance"),
    ("  Transport / Fuel ", "transport_fuel"),
    ("13th Month", "c_13th_month"),
])
def test_variable_name(name, expected):
    assert variable_name(name) == expected
