"""001 – Payroll schema: org tables, components, pay periods, salaries, loans, audit.

Uses CREATE TABLE IF NOT EXISTS so the org tables (countries, departments,
roles, employees) are left alone when the employee-management service has
already created them.

Revision ID: 001_payroll_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

import re

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_payroll_schema"
down_revision = None
branch_labels = None
depends_on = None

_SAFE_IDENT_RE = re.compile(r'^[a-z_][a-z0-9_]*$')


def _validate_identifier(name: str) -> str:
    if not _SAFE_IDENT_RE.match(name):
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return name


def _safe_drop_table(name: str) -> None:
    _validate_identifier(name)
    op.execute(sa.text(f'DROP TABLE IF EXISTS "{name}" CASCADE'))


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ══════════════════════════════════════════════════════════════════
    # 1. Org tables (read-only for payroll)
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS countries (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(100) NOT NULL UNIQUE,
            code            VARCHAR(3) NOT NULL UNIQUE,
            currency_code   VARCHAR(3) NOT NULL,
            is_active       BOOLEAN DEFAULT TRUE,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS departments (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(150) NOT NULL UNIQUE,
            description     TEXT,
            is_active       BOOLEAN DEFAULT TRUE,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS roles (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(150) NOT NULL UNIQUE,
            description     TEXT,
            department_id   UUID REFERENCES departments(id),
            role_type       VARCHAR(20) NOT NULL DEFAULT 'FULL_TIME',
            min_salary      NUMERIC(14,2),
            max_salary      NUMERIC(14,2),
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS employees (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_number  VARCHAR(30) NOT NULL UNIQUE,
            first_name       VARCHAR(100) NOT NULL,
            last_name        VARCHAR(100) NOT NULL,
            email            VARCHAR(255) NOT NULL UNIQUE,
            join_date        DATE NOT NULL,
            termination_date DATE,
            role_id          UUID REFERENCES roles(id),
            country_id       UUID REFERENCES countries(id),
            status           VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_employees_status ON employees(status)"
    )

    # ══════════════════════════════════════════════════════════════════
    # 2. salary_components (versioned) + employee assignments
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS salary_components (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            lineage_id       UUID NOT NULL,
            version          INTEGER NOT NULL DEFAULT 1,
            name             VARCHAR(150) NOT NULL,
            component_type   VARCHAR(20) NOT NULL,
            is_base          BOOLEAN NOT NULL DEFAULT FALSE,
            calculation_type VARCHAR(20) NOT NULL DEFAULT 'FIXED',
            percentage_base  VARCHAR(10),
            value            NUMERIC(14,4) NOT NULL DEFAULT 0,
            formula          TEXT,
            taxable          BOOLEAN NOT NULL DEFAULT TRUE,
            show_on_payslip  BOOLEAN NOT NULL DEFAULT TRUE,
            role_id          UUID REFERENCES roles(id),
            country_id       UUID REFERENCES countries(id),
            effective_from   DATE NOT NULL,
            effective_to     DATE,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_component_lineage_version UNIQUE (lineage_id, version)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_salary_components_lineage_id ON salary_components(lineage_id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_salary_components_scope ON salary_components(role_id, country_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS employee_salary_components (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id         UUID NOT NULL REFERENCES employees(id),
            salary_component_id UUID NOT NULL REFERENCES salary_components(id),
            value               NUMERIC(14,4) NOT NULL,
            effective_from      DATE NOT NULL,
            effective_to        DATE,
            is_active           BOOLEAN NOT NULL DEFAULT TRUE,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_esc_employee ON employee_salary_components(employee_id)"
    )

    # ══════════════════════════════════════════════════════════════════
    # 3. pay_periods + salaries
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS pay_periods (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(100) NOT NULL,
            start_date      DATE NOT NULL,
            end_date        DATE NOT NULL,
            payment_date    DATE NOT NULL,
            status          VARCHAR(20) NOT NULL DEFAULT 'OPEN',
            closed_at       TIMESTAMPTZ,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_pay_period_dates CHECK (start_date <= end_date)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_pay_periods_status ON pay_periods(status)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS salaries (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id       UUID NOT NULL REFERENCES employees(id),
            pay_period_id     UUID NOT NULL REFERENCES pay_periods(id),
            gross_salary      NUMERIC(14,2) NOT NULL DEFAULT 0,
            total_deductions  NUMERIC(14,2) NOT NULL DEFAULT 0,
            total_tax         NUMERIC(14,2) NOT NULL DEFAULT 0,
            net_salary        NUMERIC(14,2) NOT NULL DEFAULT 0,
            status            VARCHAR(20) NOT NULL DEFAULT 'DRAFT',
            calculated_at     TIMESTAMPTZ DEFAULT NOW(),
            approved_by       UUID,
            approved_at       TIMESTAMPTZ,
            paid_at           TIMESTAMPTZ,
            cancelled_at      TIMESTAMPTZ,
            payment_reference VARCHAR(100),
            notes             TEXT,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_salary_employee_period UNIQUE (employee_id, pay_period_id)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_salaries_period_status ON salaries(pay_period_id, status)"
    )

    # ══════════════════════════════════════════════════════════════════
    # 4. loans
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS loans (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id          UUID NOT NULL REFERENCES employees(id),
            loan_type            VARCHAR(20) NOT NULL,
            amount               NUMERIC(14,2) NOT NULL,
            interest_rate        NUMERIC(7,4) NOT NULL DEFAULT 0,
            term_months          INTEGER NOT NULL,
            total_repayable      NUMERIC(14,2) NOT NULL,
            outstanding_balance  NUMERIC(14,2) NOT NULL DEFAULT 0,
            monthly_repayment    NUMERIC(14,2) NOT NULL,
            status               VARCHAR(20) NOT NULL DEFAULT 'PENDING',
            application_date     DATE NOT NULL,
            approval_date        DATE,
            approved_by          UUID,
            disbursement_date    DATE,
            first_repayment_date DATE,
            reason               TEXT,
            notes                TEXT,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_loans_employee_status ON loans(employee_id, status)"
    )

    # ══════════════════════════════════════════════════════════════════
    # 5. salary_details + loan_repayments
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS salary_details (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            salary_id           UUID NOT NULL REFERENCES salaries(id) ON DELETE CASCADE,
            position            INTEGER NOT NULL,
            salary_component_id UUID REFERENCES salary_components(id),
            loan_id             UUID REFERENCES loans(id),
            component_name      VARCHAR(150) NOT NULL,
            component_type      VARCHAR(20) NOT NULL,
            amount              NUMERIC(14,2) NOT NULL,
            calculation_note    VARCHAR(500),
            show_on_payslip     BOOLEAN NOT NULL DEFAULT TRUE
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_salary_details_salary ON salary_details(salary_id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_salary_details_component ON salary_details(salary_component_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS loan_repayments (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            loan_id            UUID NOT NULL REFERENCES loans(id) ON DELETE CASCADE,
            installment_number INTEGER NOT NULL,
            due_date           DATE NOT NULL,
            amount             NUMERIC(14,2) NOT NULL,
            principal_portion  NUMERIC(14,2) NOT NULL,
            interest_portion   NUMERIC(14,2) NOT NULL,
            balance_after      NUMERIC(14,2) NOT NULL,
            status             VARCHAR(20) NOT NULL DEFAULT 'SCHEDULED',
            paid_date          DATE,
            salary_id          UUID REFERENCES salaries(id),
            CONSTRAINT uq_repayment_installment UNIQUE (loan_id, installment_number)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_loan_repayments_due ON loan_repayments(status, due_date)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_loan_repayments_salary ON loan_repayments(salary_id)"
    )

    # ══════════════════════════════════════════════════════════════════
    # 6. audit_trail
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID,
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_audit_trail_entity ON audit_trail(entity_type, entity_id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_audit_trail_created_at ON audit_trail(created_at)"
    )


def downgrade() -> None:
    _safe_drop_table("audit_trail")
    _safe_drop_table("loan_repayments")
    _safe_drop_table("salary_details")
    _safe_drop_table("loans")
    _safe_drop_table("salaries")
    _safe_drop_table("pay_periods")
    _safe_drop_table("employee_salary_components")
    _safe_drop_table("salary_components")
