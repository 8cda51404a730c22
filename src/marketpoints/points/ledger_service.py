"""Points ledger: balances, the atomic delta primitive, and transaction history.

Every balance mutation in the system goes through ``apply_delta``. It runs
inside the caller's database transaction and never commits; workflow
services wrap their status change and the delta in one ``transaction()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.config import get_settings
from marketpoints.db.models import LedgerAccount, PointTransaction
from marketpoints.errors import ValidationError
from marketpoints.subjects.directory import all_directories, validate_subject_type
from marketpoints.subjects.interfaces import SubjectRef

logger = structlog.get_logger()

# Transaction kinds
ADMIN_ADJUSTMENT = "admin_adjustment"
ADMIN_BONUS = "admin_bonus"
ADMIN_PENALTY = "admin_penalty"
ADMIN_CORRECTION = "admin_correction"
COMPENSATION = "compensation"
REFUND = "refund"
SPENT_WITHDRAWAL = "spent_withdrawal"

TRANSACTION_KINDS: frozenset[str] = frozenset({
    ADMIN_ADJUSTMENT,
    ADMIN_BONUS,
    ADMIN_PENALTY,
    ADMIN_CORRECTION,
    COMPENSATION,
    REFUND,
    SPENT_WITHDRAWAL,
})

# Upper bound of the BIGINT ledger columns
BIGINT_MAX = 2**63 - 1

# Reference types linking a transaction to the request that caused it
REF_WITHDRAWAL = "withdrawal"
REF_POINT_REQUEST = "point_request"


@dataclass(frozen=True)
class Reference:
    reference_type: str
    reference_id: int


@dataclass
class LedgerResult:
    new_balance: int
    effective_delta: int
    account: LedgerAccount
    transaction: PointTransaction


def clamp_balance(current: int, delta: int) -> int:
    """Balance after applying ``delta``; never below zero."""
    return max(0, current + delta)


def _locked_account_query(subject: SubjectRef) -> Select:
    return (
        select(LedgerAccount)
        .where(
            LedgerAccount.subject_id == subject.subject_id,
            LedgerAccount.subject_type == subject.subject_type,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _insert_account_if_absent(dialect_name: str, subject: SubjectRef):  # noqa: ANN202
    insert_fn = pg_insert if dialect_name == "postgresql" else sqlite_insert
    now = datetime.now(timezone.utc)
    return (
        insert_fn(LedgerAccount)
        .values(
            subject_id=subject.subject_id,
            subject_type=subject.subject_type,
            points_balance=0,
            total_earned=0,
            total_spent=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["subject_id", "subject_type"])
    )


async def lock_account(db: AsyncSession, subject: SubjectRef) -> LedgerAccount:
    """Read-or-create the subject's account row and hold its row lock.

    The insert is a no-op when the row exists, so two first-time writers for
    the same subject cannot both create it; the FOR UPDATE read then
    serialises them until the surrounding transaction ends.
    """
    dialect_name = db.get_bind().dialect.name
    await db.execute(_insert_account_if_absent(dialect_name, subject))
    result = await db.execute(_locked_account_query(subject))
    return result.scalar_one()


async def apply_delta(
    db: AsyncSession,
    subject: SubjectRef,
    delta: int,
    kind: str,
    description: str,
    reference: Reference | None = None,
) -> LedgerResult:
    """Apply a signed point delta and append the matching transaction row.

    The caller must have validated that the subject exists. The balance is
    clamped at zero. Totals and the log record the requested delta unless
    ``ledger_record_clamped_delta`` is enabled, in which case they record
    the change that actually happened.
    """
    if delta == 0:
        raise ValidationError("Points change must be non-zero")
    if kind not in TRANSACTION_KINDS:
        raise ValidationError(f"Unknown transaction type: {kind}")
    if abs(delta) > BIGINT_MAX:
        raise ValidationError("Points change is out of range")

    settings = get_settings()
    account = await lock_account(db, subject)

    old_balance = account.points_balance
    new_balance = clamp_balance(old_balance, delta)
    effective_delta = new_balance - old_balance
    recorded = effective_delta if settings.ledger_record_clamped_delta else delta
    if (
        old_balance + delta > BIGINT_MAX
        or account.total_earned + max(0, recorded) > BIGINT_MAX
        or account.total_spent + max(0, -recorded) > BIGINT_MAX
    ):
        raise ValidationError("Points change would overflow the account balance")

    account.points_balance = new_balance
    account.total_earned += max(0, recorded)
    account.total_spent += max(0, -recorded)
    account.updated_at = datetime.now(timezone.utc)

    txn = PointTransaction(
        subject_id=subject.subject_id,
        subject_type=subject.subject_type,
        transaction_type=kind,
        points_change=recorded,
        description=description,
        reference_type=reference.reference_type if reference else None,
        reference_id=reference.reference_id if reference else None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(txn)
    await db.flush()

    logger.info(
        "points_delta_applied",
        subject_id=subject.subject_id,
        subject_type=subject.subject_type,
        kind=kind,
        delta=delta,
        effective_delta=effective_delta,
        new_balance=new_balance,
        clamped=effective_delta != delta,
    )
    return LedgerResult(
        new_balance=new_balance,
        effective_delta=effective_delta,
        account=account,
        transaction=txn,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_account(db: AsyncSession, subject: SubjectRef) -> LedgerAccount | None:
    """Return the subject's account row without creating it."""
    result = await db.execute(
        select(LedgerAccount).where(
            LedgerAccount.subject_id == subject.subject_id,
            LedgerAccount.subject_type == subject.subject_type,
        )
    )
    return result.scalar_one_or_none()


async def get_balance(db: AsyncSession, subject: SubjectRef) -> int:
    account = await get_account(db, subject)
    return account.points_balance if account else 0


async def get_recent_transactions(
    db: AsyncSession,
    subject: SubjectRef,
    limit: int | None = None,
) -> list[PointTransaction]:
    """Most recent transactions first."""
    if limit is None:
        limit = get_settings().recent_transactions_limit
    result = await db.execute(
        select(PointTransaction)
        .where(
            PointTransaction.subject_id == subject.subject_id,
            PointTransaction.subject_type == subject.subject_type,
        )
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_balance_summary(db: AsyncSession, subject: SubjectRef) -> dict:
    """Account totals plus recent transactions. Subjects with no account read as zero."""
    account = await get_account(db, subject)
    transactions = await get_recent_transactions(db, subject)
    return {
        "subject_id": subject.subject_id,
        "subject_type": subject.subject_type,
        "points_balance": account.points_balance if account else 0,
        "total_earned": account.total_earned if account else 0,
        "total_spent": account.total_spent if account else 0,
        "created_at": account.created_at if account else None,
        "updated_at": account.updated_at if account else None,
        "recent_transactions": transactions,
    }


async def list_transactions(
    db: AsyncSession,
    subject: SubjectRef,
    page: int = 1,
    per_page: int = 20,
    transaction_type: str | None = None,
) -> tuple[list[PointTransaction], int]:
    """Paginated transaction history for one subject."""
    conditions = [
        PointTransaction.subject_id == subject.subject_id,
        PointTransaction.subject_type == subject.subject_type,
    ]
    if transaction_type is not None:
        conditions.append(PointTransaction.transaction_type == transaction_type)

    total = (
        await db.execute(select(func.count()).select_from(PointTransaction).where(*conditions))
    ).scalar_one()

    result = await db.execute(
        select(PointTransaction)
        .where(*conditions)
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def list_accounts(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 10,
    search: str | None = None,
    subject_type: str | None = None,
) -> tuple[list[LedgerAccount], int]:
    """Admin listing of accounts, richest first.

    ``search`` matches subject name or phone through the subject
    directories; ``subject_type`` narrows to users or advertisers.
    """
    conditions = []
    if subject_type:
        conditions.append(LedgerAccount.subject_type == validate_subject_type(subject_type))

    if search:
        conditions.append(
            or_(*[
                and_(
                    LedgerAccount.subject_type == directory.subject_type,
                    LedgerAccount.subject_id.in_(directory.matching_ids(search)),
                )
                for directory in all_directories(db)
            ])
        )

    total = (
        await db.execute(select(func.count()).select_from(LedgerAccount).where(*conditions))
    ).scalar_one()

    result = await db.execute(
        select(LedgerAccount)
        .where(*conditions)
        .order_by(LedgerAccount.points_balance.desc(), LedgerAccount.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
