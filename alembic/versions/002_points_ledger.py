"""Points ledger: accounts, transaction log, withdrawals, point requests.

Revision ID: 002_points_ledger
Revises: 001_subject_tables
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_points_ledger"
down_revision: str | None = "001_subject_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS ledger_accounts (
            id BIGSERIAL PRIMARY KEY,
            subject_id BIGINT NOT NULL,
            subject_type VARCHAR(16) NOT NULL,
            points_balance BIGINT NOT NULL DEFAULT 0,
            total_earned BIGINT NOT NULL DEFAULT 0,
            total_spent BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_ledger_accounts_subject UNIQUE (subject_id, subject_type),
            CONSTRAINT ck_ledger_accounts_balance_non_negative CHECK (points_balance >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_ledger_accounts_balance
        ON ledger_accounts(points_balance DESC)
    """)

    # --- Transaction log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_transactions (
            id BIGSERIAL PRIMARY KEY,
            subject_id BIGINT NOT NULL,
            subject_type VARCHAR(16) NOT NULL,
            transaction_type VARCHAR(32) NOT NULL,
            points_change BIGINT NOT NULL,
            description TEXT NOT NULL,
            reference_type VARCHAR(32),
            reference_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_point_transactions_subject
        ON point_transactions(subject_id, subject_type, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_point_transactions_reference
        ON point_transactions(reference_type, reference_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_point_transactions_created_at
        ON point_transactions(created_at)
    """)

    # --- Withdrawals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_withdrawals (
            id BIGSERIAL PRIMARY KEY,
            subject_id BIGINT NOT NULL,
            subject_type VARCHAR(16) NOT NULL,
            points_amount BIGINT NOT NULL,
            withdrawal_method VARCHAR(64) NOT NULL,
            account_details TEXT NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            admin_notes TEXT,
            rejection_reason TEXT,
            processed_by BIGINT,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_point_withdrawals_amount_positive CHECK (points_amount > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_point_withdrawals_status
        ON point_withdrawals(status, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_point_withdrawals_subject
        ON point_withdrawals(subject_id, subject_type)
    """)

    # --- Point requests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_requests (
            id BIGSERIAL PRIMARY KEY,
            subject_id BIGINT NOT NULL,
            subject_type VARCHAR(16) NOT NULL,
            request_type VARCHAR(32) NOT NULL,
            points_amount INTEGER NOT NULL,
            reason TEXT NOT NULL,
            supporting_evidence TEXT,
            additional_details TEXT,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            admin_notes TEXT,
            points_awarded INTEGER,
            processed_by BIGINT,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_point_requests_amount_positive CHECK (points_amount > 0)
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_point_requests_open_per_type
        ON point_requests(subject_id, subject_type, request_type)
        WHERE status IN ('pending', 'under_review')
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_point_requests_status
        ON point_requests(status, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS point_requests CASCADE")
    op.execute("DROP TABLE IF EXISTS point_withdrawals CASCADE")
    op.execute("DROP TABLE IF EXISTS point_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS ledger_accounts CASCADE")
