"""ORM models for subjects and the points ledger.

Subject tables (users, advertisers, admins) are owned by the wider marketplace
app; only the columns the ledger reads are mapped here. The ledger owns
ledger_accounts and point_transactions; each workflow owns its request table.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from marketpoints.db.base import Base, BigIntPK


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Subjects (read-only for the ledger)
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Advertiser(Base):
    """Maps to the 'advertisers' table."""

    __tablename__ = "advertisers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)
    store_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Admin(Base):
    """Maps to the 'admins' table."""

    __tablename__ = "admins"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerAccount(Base):
    """One balance row per subject, created lazily on first mutation."""

    __tablename__ = "ledger_accounts"
    __table_args__ = (
        UniqueConstraint("subject_id", "subject_type", name="uq_ledger_accounts_subject"),
        CheckConstraint("points_balance >= 0", name="ck_ledger_accounts_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    subject_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    points_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PointTransaction(Base):
    """Append-only log of every balance-affecting event."""

    __tablename__ = "point_transactions"
    __table_args__ = (
        Index("idx_point_transactions_subject", "subject_id", "subject_type", "created_at"),
        Index("idx_point_transactions_reference", "reference_type", "reference_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    subject_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    points_change: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


class WithdrawalRequest(Base):
    """A subject's ask to cash out points, gated by admin approval."""

    __tablename__ = "point_withdrawals"
    __table_args__ = (
        CheckConstraint("points_amount > 0", name="ck_point_withdrawals_amount_positive"),
        Index("idx_point_withdrawals_status", "status", "created_at"),
        Index("idx_point_withdrawals_subject", "subject_id", "subject_type"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    subject_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    points_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    withdrawal_method: Mapped[str] = mapped_column(String(64), nullable=False)
    account_details: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


_OPEN_POINT_REQUEST = text("status IN ('pending', 'under_review')")


class PointRequest(Base):
    """A subject's ask for bonus or compensation points."""

    __tablename__ = "point_requests"
    __table_args__ = (
        CheckConstraint("points_amount > 0", name="ck_point_requests_amount_positive"),
        Index(
            "uq_point_requests_open_per_type",
            "subject_id",
            "subject_type",
            "request_type",
            unique=True,
            postgresql_where=_OPEN_POINT_REQUEST,
            sqlite_where=_OPEN_POINT_REQUEST,
        ),
        Index("idx_point_requests_status", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    subject_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    request_type: Mapped[str] = mapped_column(String(32), nullable=False)
    points_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    supporting_evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    additional_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    points_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
