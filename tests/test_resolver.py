"""Component resolver test suite — 9 tests covering scoped defaults,
employee overrides, effective dating, versions and base-salary checks.
"""

from __future__ import annotations

from datetime import date

import pytest

from payroll_engine.common.constants import CalculationType, ComponentType
from payroll_engine.common.exceptions import ResolutionError
from payroll_engine.components.resolver import ComponentResolver
from tests.conftest import (
    make_assignment,
    make_component,
    make_country,
    make_employee,
    make_role,
)

AS_OF = date(2026, 3, 31)


# ═════════════════════════════════════════════════════════════════════
# 1. DEFAULTS AND OVERRIDES
# ═════════════════════════════════════════════════════════════════════


async def test_role_and_country_defaults_are_combined(db):
    role = await make_role(db)
    country = await make_country(db)
    await make_component(db, name="Basic Salary", value="300000", is_base=True, role_id=role.id)
    await make_component(
        db, name="PAYE", component_type=ComponentType.TAX,
        calculation_type=CalculationType.PERCENTAGE, value="7.5", country_id=country.id,
    )
    # Scoped to another role, must not apply
    other = await make_role(db, name="Driver")
    await make_component(db, name="Driving Allowance", value="5000", role_id=other.id)
    employee = await make_employee(db, role_id=role.id, country_id=country.id)

    resolved = await ComponentResolver.resolve(db, employee, AS_OF)

    assert [c.name for c in resolved] == ["Basic Salary", "PAYE"]
    assert resolved[0].source == "role"
    assert resolved[1].source == "country"


async def test_unscoped_component_is_not_a_default(db):
    role = await make_role(db)
    await make_component(db, name="Basic Salary", value="300000", is_base=True, role_id=role.id)
    await make_component(db, name="Signing Bonus", value="10000")
    employee = await make_employee(db, role_id=role.id)

    resolved = await ComponentResolver.resolve(db, employee, AS_OF)
    assert [c.name for c in resolved] == ["Basic Salary"]


async def test_employee_assignment_overrides_default(db):
    role = await make_role(db)
    basic = await make_component(db, name="Basic Salary", value="300000", is_base=True, role_id=role.id)
    employee = await make_employee(db, role_id=role.id)
    await make_assignment(db, employee_id=employee.id, component_id=basic.id, value="450000")

    resolved = await ComponentResolver.resolve(db, employee, AS_OF)

    assert len(resolved) == 1
    assert resolved[0].value == 450000
    assert resolved[0].source == "employee"


async def test_assignment_outside_its_window_is_ignored(db):
    role = await make_role(db)
    basic = await make_component(db, name="Basic Salary", value="300000", is_base=True, role_id=role.id)
    employee = await make_employee(db, role_id=role.id)
    await make_assignment(
        db, employee_id=employee.id, component_id=basic.id, value="450000",
        effective_from=date(2026, 4, 1),
    )

    resolved = await ComponentResolver.resolve(db, employee, AS_OF)
    assert resolved[0].value == 300000


async def test_ordering_base_earnings_tax_deductions(db):
    role = await make_role(db)
    for name, ctype, is_base in [
        ("Pension", ComponentType.DEDUCTION, False),
        ("PAYE", ComponentType.TAX, False),
        ("Transport", ComponentType.EARNING, False),
        ("Basic Salary", ComponentType.EARNING, True),
        ("Housing", ComponentType.EARNING, False),
    ]:
        await make_component(
            db, name=name, component_type=ctype, value="100", is_base=is_base, role_id=role.id,
        )
    employee = await make_employee(db, role_id=role.id)

    resolved = await ComponentResolver.resolve(db, employee, AS_OF)
    assert [c.name for c in resolved] == ["Basic Salary", "Housing", "Transport", "PAYE", "Pension"]


# ═════════════════════════════════════════════════════════════════════
# 2. VERSIONS
# ═════════════════════════════════════════════════════════════════════


async def test_version_valid_on_date_is_used(db):
    role = await make_role(db)
    v1 = await make_component(
        db, name="Basic Salary", value="300000", is_base=True, role_id=role.id,
        effective_to=date(2026, 3, 1),
    )
    await make_component(
        db, name="Basic Salary", value="320000", is_base=True, role_id=role.id,
        effective_from=date(2026, 3, 1), lineage_id=v1.lineage_id, version=2,
    )
    employee = await make_employee(db, role_id=role.id)

    before = await ComponentResolver.resolve(db, employee, date(2026, 2, 28))
    after = await ComponentResolver.resolve(db, employee, AS_OF)

    assert before[0].value == 300000
    assert after[0].value == 320000
    assert before[0].lineage_id == after[0].lineage_id


# ═════════════════════════════════════════════════════════════════════
# 3. RESOLUTION ERRORS
# ═════════════════════════════════════════════════════════════════════


async def test_no_base_component(db):
    role = await make_role(db)
    await make_component(db, name="Housing", value="1000", role_id=role.id)
    employee = await make_employee(db, role_id=role.id)

    with pytest.raises(ResolutionError, match="no base"):
        await ComponentResolver.resolve(db, employee, AS_OF)


async def test_two_base_components(db):
    role = await make_role(db)
    await make_component(db, name="Basic Salary", value="300000", is_base=True, role_id=role.id)
    await make_component(db, name="Base Pay", value="250000", is_base=True, role_id=role.id)
    employee = await make_employee(db, role_id=role.id)

    with pytest.raises(ResolutionError, match="2 base"):
        await ComponentResolver.resolve(db, employee, AS_OF)


async def test_overlapping_assignments(db):
    role = await make_role(db)
    basic = await make_component(db, name="Basic Salary", value="300000", is_base=True, role_id=role.id)
    employee = await make_employee(db, role_id=role.id)
    await make_assignment(db, employee_id=employee.id, component_id=basic.id, value="400000")
    await make_assignment(
        db, employee_id=employee.id, component_id=basic.id, value="410000",
        effective_from=date(2025, 6, 1),
    )

    with pytest.raises(ResolutionError, match="overlapping"):
        await ComponentResolver.resolve(db, employee, AS_OF)
