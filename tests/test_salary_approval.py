"""Salary approval test suite — 12 tests covering the DRAFT → APPROVED →
PAID workflow, cancellation, bulk payment and the salary endpoints.
"""

from __future__ import annotations

import uuid

import pytest

from payroll_engine.common.constants import SalaryStatus, UserRole
from payroll_engine.common.exceptions import InvalidTransition, ValidationException
from payroll_engine.payroll.approval import SalaryApprovalService
from payroll_engine.payroll.service import PayrollService
from tests.conftest import (
    TestSessionFactory,
    auth_header,
    make_pay_period,
    make_salaried_employee,
)


# ── Helpers ─────────────────────────────────────────────────────────


async def _draft_salaries(db, count: int = 1) -> list[uuid.UUID]:
    for i in range(count):
        await make_salaried_employee(db, number=f"EMP-{i:03d}")
    period = await make_pay_period(db)
    await PayrollService.process(db, period.id, session_factory=TestSessionFactory)
    salaries, _, _ = await _list(period.id)
    return [s.id for s in salaries]


async def _list(period_id):
    from payroll_engine.common.pagination import PaginationParams

    async with TestSessionFactory() as session:
        return await SalaryApprovalService.list_salaries(
            session, PaginationParams(page=1, limit=50), pay_period_id=period_id,
        )


async def _status(salary_id) -> SalaryStatus:
    async with TestSessionFactory() as session:
        return (await SalaryApprovalService.get_salary(session, salary_id)).status


# ═════════════════════════════════════════════════════════════════════
# 1. TRANSITIONS
# ═════════════════════════════════════════════════════════════════════


async def test_approve_then_pay(db):
    [salary_id] = await _draft_salaries(db)
    approver = uuid.uuid4()

    approved = await SalaryApprovalService.approve(db, salary_id, approver)
    assert approved.status == SalaryStatus.APPROVED
    assert approved.approved_by == approver
    assert approved.approved_at is not None

    paid = await SalaryApprovalService.pay(db, salary_id, " TRX-2026-03-001 ")
    assert paid.status == SalaryStatus.PAID
    assert paid.payment_reference == "TRX-2026-03-001"
    assert paid.paid_at is not None


async def test_pay_requires_approval(db):
    [salary_id] = await _draft_salaries(db)
    with pytest.raises(InvalidTransition):
        await SalaryApprovalService.pay(db, salary_id, "TRX-1")
    assert await _status(salary_id) == SalaryStatus.DRAFT


async def test_pay_requires_reference(db):
    [salary_id] = await _draft_salaries(db)
    await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())
    with pytest.raises(ValidationException):
        await SalaryApprovalService.pay(db, salary_id, "   ")


async def test_approve_twice_fails(db):
    [salary_id] = await _draft_salaries(db)
    await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())
    with pytest.raises(InvalidTransition):
        await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())


async def test_cancel_approved_then_cannot_pay(db):
    [salary_id] = await _draft_salaries(db)
    await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())

    cancelled = await SalaryApprovalService.cancel(db, salary_id, notes="Duplicate")
    assert cancelled.status == SalaryStatus.CANCELLED
    assert cancelled.cancelled_at is not None

    with pytest.raises(InvalidTransition):
        await SalaryApprovalService.pay(db, salary_id, "TRX-1")


async def test_paid_salary_cannot_be_cancelled(db):
    [salary_id] = await _draft_salaries(db)
    await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())
    await SalaryApprovalService.pay(db, salary_id, "TRX-1")

    with pytest.raises(InvalidTransition):
        await SalaryApprovalService.cancel(db, salary_id)
    assert await _status(salary_id) == SalaryStatus.PAID


# ═════════════════════════════════════════════════════════════════════
# 2. BULK PAYMENT
# ═════════════════════════════════════════════════════════════════════


async def test_bulk_payment_reports_each_item(db):
    first, second, third = await _draft_salaries(db, 3)
    await SalaryApprovalService.approve(db, first, uuid.uuid4())
    await SalaryApprovalService.approve(db, second, uuid.uuid4())

    result = await SalaryApprovalService.bulk_payment(
        [
            {"salary_id": str(first), "payment_reference": "TRX-1"},
            {"salary_id": "not-a-uuid", "payment_reference": "TRX-2"},
            {"salary_id": str(third), "payment_reference": "TRX-3"},
            {"salary_id": str(second), "payment_reference": ""},
        ],
        session_factory=TestSessionFactory,
    )

    assert result.total_processed == 4
    assert result.successful == [{"salary_id": str(first), "payment_reference": "TRX-1"}]
    reasons = {f["salary_id"]: f["reason"] for f in result.failed}
    assert reasons["not-a-uuid"] == "Malformed salary id."
    assert "DRAFT" in reasons[str(third)]
    assert "reference" in reasons[str(second)]

    assert await _status(first) == SalaryStatus.PAID
    assert await _status(second) == SalaryStatus.APPROVED
    assert await _status(third) == SalaryStatus.DRAFT


async def test_bulk_payment_unknown_salary(db):
    missing = uuid.uuid4()
    result = await SalaryApprovalService.bulk_payment(
        [{"salary_id": str(missing), "payment_reference": "TRX-1"}],
        session_factory=TestSessionFactory,
    )
    assert result.successful == []
    assert "does not exist" in result.failed[0]["reason"]


async def test_bulk_payment_continues_after_unexpected_error(db, monkeypatch):
    broken, healthy = await _draft_salaries(db, 2)
    for salary_id in (broken, healthy):
        await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())

    real_pay = SalaryApprovalService.pay

    async def flaky_pay(session, salary_id, payment_reference, **kwargs):
        if salary_id == broken:
            raise RuntimeError("driver went away")
        return await real_pay(session, salary_id, payment_reference, **kwargs)

    monkeypatch.setattr(SalaryApprovalService, "pay", staticmethod(flaky_pay))

    result = await SalaryApprovalService.bulk_payment(
        [
            {"salary_id": str(broken), "payment_reference": "TRX-1"},
            {"salary_id": str(healthy), "payment_reference": "TRX-2"},
        ],
        session_factory=TestSessionFactory,
    )

    assert result.successful == [{"salary_id": str(healthy), "payment_reference": "TRX-2"}]
    assert result.failed == [{
        "salary_id": str(broken),
        "reason": "Unexpected error while recording payment.",
    }]
    assert await _status(broken) == SalaryStatus.APPROVED
    assert await _status(healthy) == SalaryStatus.PAID


# ═════════════════════════════════════════════════════════════════════
# 3. HTTP
# ═════════════════════════════════════════════════════════════════════


async def test_salary_workflow_via_api(client, db):
    [salary_id] = await _draft_salaries(db)
    finance = auth_header(UserRole.finance_admin)

    resp = await client.get(f"/api/v1/payroll/salaries/{salary_id}", headers=auth_header(UserRole.viewer))
    assert resp.status_code == 200
    body = resp.json()
    assert body["netSalary"] == "305250.00"
    assert [d["componentName"] for d in body["details"]] == ["Basic Salary", "Housing Allowance", "PAYE"]

    resp = await client.patch(f"/api/v1/payroll/salaries/{salary_id}/approve", headers=finance, json={})
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "APPROVED"

    resp = await client.patch(
        f"/api/v1/payroll/salaries/{salary_id}/pay",
        headers=finance,
        json={"paymentReference": "TRX-77"},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["paymentReference"] == "TRX-77"


async def test_bulk_payment_via_api(client, db):
    [salary_id] = await _draft_salaries(db)
    await SalaryApprovalService.approve(db, salary_id, uuid.uuid4())

    resp = await client.post(
        "/api/v1/payroll/bulk-payment",
        headers=auth_header(UserRole.finance_admin),
        json={"payments": [
            {"salaryId": str(salary_id), "paymentReference": "TRX-1"},
            {"salaryId": "bogus"},
        ]},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["totalProcessed"] == 2
    assert body["successful"][0]["salaryId"] == str(salary_id)
    assert body["failed"][0]["reason"] == "Malformed salary id."


async def test_approver_cannot_pay(client, db):
    [salary_id] = await _draft_salaries(db)
    resp = await client.patch(
        f"/api/v1/payroll/salaries/{salary_id}/pay",
        headers=auth_header(UserRole.approver),
        json={"paymentReference": "TRX-1"},
    )
    assert resp.status_code == 403
