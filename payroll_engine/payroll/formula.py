"""Restricted arithmetic interpreter for FORMULA salary components.

Formulas are parsed with :mod:`ast` and walked node by node; nothing is ever
handed to ``eval``. The accepted language is:

* decimal literals (``1500``, ``0.075``, ``1_000``)
* variables from the caller-supplied mapping
* ``+ - * /``, unary ``+``/``-``, parentheses
* ``min(...)``, ``max(...)``, ``abs(x)``

All arithmetic is done in :class:`decimal.Decimal` under a fixed local
context, so results do not depend on process-wide decimal settings.
"""

from __future__ import annotations

import ast
import decimal
import operator
import re
from decimal import Decimal
from typing import Callable, Mapping, Optional

from payroll_engine.common.exceptions import CalculationError, FormulaError
from payroll_engine.config import settings

_NON_IDENT = re.compile(r"[^0-9a-zA-Z]+")

_BINARY: dict[type, Callable[[Decimal, Decimal], Decimal]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_UNARY: dict[type, Callable[[Decimal], Decimal]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: dict[str, tuple[Callable[..., Decimal], int, Optional[int]]] = {
    # name: (callable, min args, max args)
    "min": (min, 1, None),
    "max": (max, 1, None),
    "abs": (abs, 1, 1),
}

_CONTEXT = decimal.Context(prec=28, rounding=decimal.ROUND_HALF_EVEN)


def variable_name(component_name: str) -> str:
    """Snake-case identifier a formula uses for a component.

    ``"Housing Allowance"`` → ``"housing_allowance"``.
    """
    name = _NON_IDENT.sub("_", component_name.strip()).strip("_").lower()
    if not name or name[0].isdigit():
        name = f"c_{name}"
    return name


class Formula:
    """A parsed, structurally validated formula."""

    def __init__(self, source: str, *, max_length: Optional[int] = None) -> None:
        limit = max_length or settings.FORMULA_MAX_LENGTH
        if not source or not source.strip():
            raise FormulaError("Formula is empty.")
        if len(source) > limit:
            raise FormulaError(f"Formula exceeds {limit} characters.")

        self.source = source.strip()
        try:
            tree = ast.parse(self.source, mode="eval")
        except (SyntaxError, ValueError, RecursionError) as exc:
            raise FormulaError(f"Formula is not valid arithmetic: {self.source!r}.") from exc

        self._tree = tree
        names: set[str] = set()
        self._check(tree.body, names)
        self.names = frozenset(names)

    # ── Structural validation ─────────────────────────────────────────

    def _check(self, node: ast.AST, names: set[str]) -> None:
        if isinstance(node, ast.BinOp):
            if type(node.op) not in _BINARY:
                raise FormulaError(f"Operator '{type(node.op).__name__}' is not allowed.")
            self._check(node.left, names)
            self._check(node.right, names)
        elif isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY:
                raise FormulaError(f"Operator '{type(node.op).__name__}' is not allowed.")
            self._check(node.operand, names)
        elif isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise FormulaError(f"Literal {node.value!r} is not a number.")
        elif isinstance(node, ast.Name):
            names.add(node.id)
        elif isinstance(node, ast.Call):
            func = node.func
            if not isinstance(func, ast.Name) or func.id not in _FUNCTIONS:
                raise FormulaError("Only min(), max() and abs() may be called.")
            if node.keywords:
                raise FormulaError(f"{func.id}() does not take keyword arguments.")
            _, lo, hi = _FUNCTIONS[func.id]
            if len(node.args) < lo or (hi is not None and len(node.args) > hi):
                raise FormulaError(f"Wrong number of arguments to {func.id}().")
            for arg in node.args:
                if isinstance(arg, ast.Starred):
                    raise FormulaError("Argument unpacking is not allowed.")
                self._check(arg, names)
        else:
            raise FormulaError(f"Unsupported syntax '{type(node).__name__}' in formula.")

    # ── Evaluation ────────────────────────────────────────────────────

    def evaluate(self, variables: Mapping[str, Decimal]) -> Decimal:
        """Evaluate against *variables*.

        Raises ``FormulaError`` for unknown identifiers and
        ``CalculationError`` for division by zero or decimal overflow.
        """
        unknown = sorted(self.names - set(variables))
        if unknown:
            raise FormulaError(
                f"Unknown identifier(s) {', '.join(unknown)} in formula {self.source!r}."
            )
        with decimal.localcontext(_CONTEXT):
            try:
                return self._eval(self._tree.body, variables)
            except decimal.DecimalException as exc:
                raise CalculationError(
                    f"Arithmetic error evaluating {self.source!r}."
                ) from exc

    def _eval(self, node: ast.AST, variables: Mapping[str, Decimal]) -> Decimal:
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, variables)
            right = self._eval(node.right, variables)
            if isinstance(node.op, ast.Div) and right == 0:
                raise CalculationError(f"Division by zero in formula {self.source!r}.")
            return _BINARY[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp):
            return _UNARY[type(node.op)](self._eval(node.operand, variables))
        if isinstance(node, ast.Constant):
            return self._literal(node)
        if isinstance(node, ast.Name):
            return Decimal(variables[node.id])
        if isinstance(node, ast.Call):
            fn = _FUNCTIONS[node.func.id][0]
            return fn(*(self._eval(arg, variables) for arg in node.args))
        raise FormulaError(f"Unsupported syntax '{type(node).__name__}' in formula.")

    def _literal(self, node: ast.Constant) -> Decimal:
        # Use the literal text so 0.075 stays exactly 0.075.
        text = ast.get_source_segment(self.source, node) or repr(node.value)
        try:
            return Decimal(text)
        except decimal.InvalidOperation as exc:
            raise FormulaError(f"Unsupported numeric literal {text!r}.") from exc


def evaluate_formula(source: str, variables: Mapping[str, Decimal]) -> Decimal:
    """Parse and evaluate *source* in one step."""
    return Formula(source).evaluate(variables)
