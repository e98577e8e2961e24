"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from payroll_engine.common.constants import (
    CalculationType,
    ComponentType,
    EmployeeStatus,
    PayPeriodStatus,
    PercentageBase,
    UserRole,
)
from payroll_engine.config import settings
from payroll_engine.database import Base, get_db, get_session_factory
from payroll_engine.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module foreign keys
import payroll_engine.common.audit  # noqa: F401
import payroll_engine.core_hr.models  # noqa: F401
import payroll_engine.components.models  # noqa: F401
import payroll_engine.payroll.models  # noqa: F401
import payroll_engine.loans.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _serial_payroll(monkeypatch):
    """All test sessions share one SQLite connection; run employees one at a time."""
    monkeypatch.setattr(settings, "PAYROLL_MAX_CONCURRENCY", 1)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from payroll_engine.common.rate_limit import limiter
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def make_country(
    db: AsyncSession,
    *,
    name: str = "Nigeria",
    code: str = "NG",
    currency_code: str = "NGN",
):
    from payroll_engine.core_hr.models import Country

    country = Country(id=uuid.uuid4(), name=name, code=code, currency_code=currency_code)
    db.add(country)
    await db.commit()
    return country


async def make_role(db: AsyncSession, *, name: str = "Software Engineer"):
    from payroll_engine.core_hr.models import Department, Role

    department = Department(id=uuid.uuid4(), name=f"{name} Dept")
    role = Role(id=uuid.uuid4(), name=name, department_id=department.id)
    db.add_all([department, role])
    await db.commit()
    return role


async def make_employee(
    db: AsyncSession,
    *,
    role_id: Optional[uuid.UUID] = None,
    country_id: Optional[uuid.UUID] = None,
    status: EmployeeStatus = EmployeeStatus.ACTIVE,
    join_date: date = date(2024, 1, 15),
    termination_date: Optional[date] = None,
    number: Optional[str] = None,
):
    from payroll_engine.core_hr.models import Employee

    suffix = uuid.uuid4().hex[:6].upper()
    employee = Employee(
        id=uuid.uuid4(),
        employee_number=number or f"EMP-{suffix}",
        first_name="Ada",
        last_name=f"Obi {suffix}",
        email=f"ada.{suffix.lower()}@example.com",
        join_date=join_date,
        termination_date=termination_date,
        role_id=role_id,
        country_id=country_id,
        status=status,
    )
    db.add(employee)
    await db.commit()
    return employee


async def make_component(
    db: AsyncSession,
    *,
    name: str,
    component_type: ComponentType = ComponentType.EARNING,
    calculation_type: CalculationType = CalculationType.FIXED,
    value: Decimal | str = "0",
    is_base: bool = False,
    percentage_base: Optional[PercentageBase] = None,
    formula: Optional[str] = None,
    taxable: bool = True,
    role_id: Optional[uuid.UUID] = None,
    country_id: Optional[uuid.UUID] = None,
    effective_from: date = date(2024, 1, 1),
    effective_to: Optional[date] = None,
    lineage_id: Optional[uuid.UUID] = None,
    version: int = 1,
):
    """Insert a component version directly (bypasses the admin service)."""
    from payroll_engine.components.models import SalaryComponent

    component = SalaryComponent(
        id=uuid.uuid4(),
        lineage_id=lineage_id or uuid.uuid4(),
        version=version,
        name=name,
        component_type=component_type,
        calculation_type=calculation_type,
        value=Decimal(value),
        is_base=is_base,
        percentage_base=percentage_base,
        formula=formula,
        taxable=taxable,
        role_id=role_id,
        country_id=country_id,
        effective_from=effective_from,
        effective_to=effective_to,
    )
    db.add(component)
    await db.commit()
    return component


async def make_assignment(
    db: AsyncSession,
    *,
    employee_id: uuid.UUID,
    component_id: uuid.UUID,
    value: Decimal | str,
    effective_from: date = date(2024, 1, 1),
    effective_to: Optional[date] = None,
):
    from payroll_engine.components.models import EmployeeSalaryComponent

    assignment = EmployeeSalaryComponent(
        id=uuid.uuid4(),
        employee_id=employee_id,
        salary_component_id=component_id,
        value=Decimal(value),
        effective_from=effective_from,
        effective_to=effective_to,
        is_active=True,
    )
    db.add(assignment)
    await db.commit()
    return assignment


async def make_pay_period(
    db: AsyncSession,
    *,
    name: str = "March 2026",
    start_date: date = date(2026, 3, 1),
    end_date: date = date(2026, 3, 31),
    payment_date: date = date(2026, 3, 28),
    status: PayPeriodStatus = PayPeriodStatus.OPEN,
):
    from payroll_engine.payroll.models import PayPeriod

    period = PayPeriod(
        id=uuid.uuid4(),
        name=name,
        start_date=start_date,
        end_date=end_date,
        payment_date=payment_date,
        status=status,
    )
    db.add(period)
    await db.commit()
    return period


async def make_salaried_employee(
    db: AsyncSession,
    *,
    base: str = "300000",
    housing_pct: Optional[str] = "10",
    tax_pct: Optional[str] = "7.5",
    **employee_kwargs,
):
    """Role-scoped Basic (+ Housing % of base, + PAYE % of gross) and one employee."""
    role = await make_role(db, name=f"Role {uuid.uuid4().hex[:6]}")
    await make_component(
        db, name="Basic Salary", value=base, is_base=True, role_id=role.id,
    )
    if housing_pct is not None:
        await make_component(
            db,
            name="Housing Allowance",
            calculation_type=CalculationType.PERCENTAGE,
            value=housing_pct,
            role_id=role.id,
        )
    if tax_pct is not None:
        await make_component(
            db,
            name="PAYE",
            component_type=ComponentType.TAX,
            calculation_type=CalculationType.PERCENTAGE,
            value=tax_pct,
            role_id=role.id,
        )
    return await make_employee(db, role_id=role.id, **employee_kwargs)


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: Optional[uuid.UUID] = None,
    role: UserRole = UserRole.admin,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id or uuid.uuid4()),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_header(role: UserRole = UserRole.admin, user_id: Optional[uuid.UUID] = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_header(UserRole.admin)
