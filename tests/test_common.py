"""Common module test suite — money helpers, status tones, RFC 7807 error
bodies, persistence failures and pagination.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from payroll_engine.common.constants import (
    EmployeeStatus,
    LoanStatus,
    PayPeriodStatus,
    PayslipStatus,
    RepaymentStatus,
    SalaryStatus,
)
from payroll_engine.common.exceptions import (
    InvalidTransition,
    PersistenceError,
    ValidationException,
    register_exception_handlers,
)
from payroll_engine.common.money import money_sum, percentage_of, quantize, to_decimal, truncate
from payroll_engine.common.pagination import PaginationParams, paginate
from payroll_engine.common.persistence import commit_or_raise
from payroll_engine.common.status import (
    Tone,
    employee_status_tone,
    loan_status_tone,
    pay_period_status_tone,
    payslip_status_tone,
    repayment_status_tone,
    salary_status_tone,
)
from payroll_engine.core_hr.models import Employee
from tests.conftest import make_employee


# ═════════════════════════════════════════════════════════════════════
# 1. MONEY
# ═════════════════════════════════════════════════════════════════════


class TestMoney:

    def test_quantize_rounds_half_up(self):
        assert quantize("2.345") == Decimal("2.35")
        assert quantize("2.344") == Decimal("2.34")
        assert quantize(10) == Decimal("10.00")

    def test_truncate_rounds_towards_zero(self):
        assert truncate("11000.999") == Decimal("11000.99")

    def test_percentage_of(self):
        assert percentage_of("7.5", "330000") == Decimal("24750.00")

    def test_floats_are_rejected(self):
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_money_sum_of_nothing_is_zero(self):
        assert money_sum([]) == Decimal("0.00")


# ═════════════════════════════════════════════════════════════════════
# 2. STATUS TONES
# ═════════════════════════════════════════════════════════════════════


class TestStatusTones:

    @pytest.mark.parametrize("enum_cls, tone_of", [
        (EmployeeStatus, employee_status_tone),
        (SalaryStatus, salary_status_tone),
        (LoanStatus, loan_status_tone),
        (PayPeriodStatus, pay_period_status_tone),
        (PayslipStatus, payslip_status_tone),
        (RepaymentStatus, repayment_status_tone),
    ])
    def test_every_status_has_a_tone(self, enum_cls, tone_of):
        for status in enum_cls:
            assert isinstance(tone_of(status), Tone)

    def test_known_tones(self):
        assert salary_status_tone(SalaryStatus.PAID) == Tone.success
        assert loan_status_tone(LoanStatus.DEFAULTED) == Tone.danger
        assert pay_period_status_tone(PayPeriodStatus.PROCESSING) == Tone.warning
        assert employee_status_tone(EmployeeStatus.TERMINATED) == Tone.danger
        assert payslip_status_tone(PayslipStatus.FAILED) == Tone.danger

    def test_accepts_raw_values(self):
        assert salary_status_tone("CANCELLED") == Tone.danger


# ═════════════════════════════════════════════════════════════════════
# 3. RFC 7807 HANDLERS
# ═════════════════════════════════════════════════════════════════════


@pytest.fixture
async def problem_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/transition")
    async def _transition():
        raise InvalidTransition("salary", SalaryStatus.PAID, "cancel")

    @app.get("/validation")
    async def _validation():
        raise ValidationException({"amount": ["Amount must be greater than zero."]})

    @app.get("/persistence")
    async def _persistence():
        raise PersistenceError()

    @app.get("/boom")
    async def _boom():
        raise RuntimeError("secret internals")

    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as ac:
        yield ac


class TestProblemDetails:

    async def test_invalid_transition_body(self, problem_client):
        resp = await problem_client.get("/transition")
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["detail"] == "Cannot cancel a salary in status 'PAID'."
        assert body["instance"] == "/transition"
        assert "retryable" not in body

    async def test_validation_carries_field_errors(self, problem_client):
        resp = await problem_client.get("/validation")
        assert resp.status_code == 422
        assert resp.json()["errors"] == {"amount": ["Amount must be greater than zero."]}

    async def test_persistence_error_is_retryable(self, problem_client):
        resp = await problem_client.get("/persistence")
        assert resp.status_code == 503
        assert resp.json()["retryable"] is True

    async def test_unexpected_error_hides_internals(self, problem_client):
        resp = await problem_client.get("/boom")
        assert resp.status_code == 500
        assert "secret" not in resp.text


# ═════════════════════════════════════════════════════════════════════
# 4. PERSISTENCE
# ═════════════════════════════════════════════════════════════════════


class TestCommitOrRaise:

    async def test_driver_error_becomes_persistence_error(self):
        session = AsyncMock()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with pytest.raises(PersistenceError):
            await commit_or_raise(session)
        session.rollback.assert_awaited_once()

    async def test_timeout_becomes_persistence_error(self):
        import asyncio

        async def _slow_commit():
            await asyncio.sleep(1)

        session = AsyncMock()
        session.commit.side_effect = _slow_commit

        with pytest.raises(PersistenceError, match="timed out"):
            await commit_or_raise(session, timeout=0.01)
        session.rollback.assert_awaited_once()


# ═════════════════════════════════════════════════════════════════════
# 5. PAGINATION
# ═════════════════════════════════════════════════════════════════════


async def test_paginate_counts_and_slices(db):
    for i in range(5):
        await make_employee(db, number=f"EMP-{i:03d}")

    rows, total, total_pages = await paginate(
        db,
        select(Employee).order_by(Employee.employee_number),
        PaginationParams(page=2, limit=2),
    )
    assert total == 5
    assert total_pages == 3
    assert [e.employee_number for e in rows] == ["EMP-002", "EMP-003"]
