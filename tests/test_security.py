"""Security test suite — token validation, role permissions, rate limiting
and migration SQL hygiene.
"""

from __future__ import annotations

import ast
import importlib.util
import os
import uuid

import pytest
from jose import jwt

from payroll_engine.common.constants import PERMISSIONS, UserRole
from payroll_engine.config import settings
from tests.conftest import auth_header, create_access_token

MIGRATION_DIR = os.path.join(os.path.dirname(__file__), "..", "alembic", "versions")


def _load_migration(fname: str):
    spec = importlib.util.spec_from_file_location(fname[:-3], os.path.join(MIGRATION_DIR, fname))
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


# ═════════════════════════════════════════════════════════════════════
# 1. JWT VALIDATION
# ═════════════════════════════════════════════════════════════════════


class TestTokens:

    async def test_missing_header_is_401(self, client):
        resp = await client.get("/api/v1/loans")
        assert resp.status_code == 401

    async def test_expired_token_is_401(self, client):
        token = create_access_token(expired=True)
        resp = await client.get("/api/v1/loans", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert "expired" in resp.text.lower()

    async def test_wrong_secret_is_401(self, client):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "role": "admin", "type": "access"},
            "not-the-secret",
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.get("/api/v1/loans", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_refresh_token_type_rejected(self, client):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "role": "admin", "type": "refresh"},
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.get("/api/v1/loans", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_unknown_role_falls_back_to_employee(self, client):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "role": "superuser", "type": "access"},
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.get("/api/v1/loans", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403

    async def test_health_needs_no_token(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


# ═════════════════════════════════════════════════════════════════════
# 2. ROLE PERMISSIONS
# ═════════════════════════════════════════════════════════════════════


class TestPermissions:

    def test_every_role_has_an_entry(self):
        assert set(PERMISSIONS) == set(UserRole)

    def test_admin_holds_every_permission(self):
        granted = {p for perms in PERMISSIONS.values() for p in perms}
        assert granted == set(PERMISSIONS[UserRole.admin])

    def test_employee_cannot_read_payroll(self):
        assert "payroll:read" not in PERMISSIONS[UserRole.employee]

    async def test_viewer_reads_but_cannot_write(self, client):
        headers = auth_header(UserRole.viewer)
        assert (await client.get("/api/v1/pay-periods", headers=headers)).status_code == 200
        resp = await client.post("/api/v1/pay-periods", headers=headers, json={
            "name": "June 2026",
            "startDate": "2026-06-01",
            "endDate": "2026-06-30",
            "paymentDate": "2026-06-28",
        })
        assert resp.status_code == 403
        assert resp.json()["type"].endswith("/forbidden")


# ═════════════════════════════════════════════════════════════════════
# 3. RATE LIMITING
# ═════════════════════════════════════════════════════════════════════


class TestRateLimiting:

    @pytest.fixture(autouse=True)
    def _enable_limiter(self):
        from payroll_engine.common.rate_limit import limiter
        original = limiter.enabled
        limiter.enabled = True
        limiter.reset()
        yield
        limiter.enabled = original

    async def test_process_limited_at_10_per_minute(self, client):
        """Counting happens before the handler, so 404s still count."""
        headers = auth_header(UserRole.payroll_officer)
        body = {"payPeriodId": str(uuid.uuid4()), "dryRun": True}
        for i in range(10):
            resp = await client.post("/api/v1/payroll/process", headers=headers, json=body)
            assert resp.status_code == 404, f"Request {i + 1} should reach the handler"

        resp = await client.post("/api/v1/payroll/process", headers=headers, json=body)
        assert resp.status_code == 429


# ═════════════════════════════════════════════════════════════════════
# 4. MIGRATION SQL HYGIENE
# ═════════════════════════════════════════════════════════════════════


class TestMigrations:

    def test_validate_identifier_rejects_injection(self):
        migration = _load_migration("001_payroll_schema.py")

        assert migration._validate_identifier("loan_repayments") == "loan_repayments"
        for bad in ["salaries; DROP TABLE loans", "", "Robert'); DROP TABLE--", "LOANS"]:
            with pytest.raises(ValueError, match="Unsafe SQL identifier"):
                migration._validate_identifier(bad)

    def test_no_fstring_sql_in_migrations(self):
        for fname in os.listdir(MIGRATION_DIR):
            if not fname.endswith(".py"):
                continue
            with open(os.path.join(MIGRATION_DIR, fname)) as f:
                tree = ast.parse(f.read())
            for node in ast.walk(tree):
                if (
                    isinstance(node, ast.Call)
                    and isinstance(node.func, ast.Attribute)
                    and node.func.attr == "execute"
                    and node.args
                ):
                    assert not isinstance(node.args[0], ast.JoinedStr), (
                        f"Raw f-string in execute() in {fname}:{node.lineno}."
                    )

    def test_migration_creates_every_mapped_table(self):
        from payroll_engine.database import Base

        with open(os.path.join(MIGRATION_DIR, "001_payroll_schema.py")) as f:
            source = f.read()
        for table in Base.metadata.tables:
            assert f"CREATE TABLE IF NOT EXISTS {table}" in source, table
