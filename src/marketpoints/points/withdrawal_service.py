"""Withdrawal workflow: a subject cashes out points once an admin approves.

State progression: pending -> approved | rejected (both terminal).
Approval debits the ledger in the same transaction as the status change.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.db.models import WithdrawalRequest
from marketpoints.errors import InsufficientBalanceError, NotFoundError, ValidationError
from marketpoints.points.ledger_service import (
    REF_WITHDRAWAL,
    SPENT_WITHDRAWAL,
    LedgerResult,
    Reference,
    apply_delta,
    get_account,
    lock_account,
)
from marketpoints.points.workflow import clean_text, validate_transition
from marketpoints.subjects.directory import require_subject
from marketpoints.subjects.interfaces import SubjectRef

logger = structlog.get_logger()

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
WITHDRAWAL_STATUSES: tuple[str, ...] = (PENDING, APPROVED, REJECTED)

VALID_TRANSITIONS: dict[str, list[str]] = {
    PENDING: [APPROVED, REJECTED],
    APPROVED: [],
    REJECTED: [],
}

DEFAULT_APPROVAL_NOTE = "Approved by admin"


async def request_withdrawal(
    db: AsyncSession,
    subject: SubjectRef,
    points_amount: int | None,
    withdrawal_method: str | None,
    account_details: str | None,
) -> WithdrawalRequest:
    """Create a pending withdrawal after checking the current balance covers it."""
    if points_amount is None or points_amount <= 0:
        raise ValidationError("Points amount must be positive")
    method = clean_text(withdrawal_method)
    details = clean_text(account_details)
    if method is None or details is None:
        raise ValidationError("Withdrawal method and account details are required")

    await require_subject(db, subject)

    account = await get_account(db, subject)
    if account is None or account.points_balance < points_amount:
        raise InsufficientBalanceError("Insufficient points balance")

    now = datetime.now(timezone.utc)
    withdrawal = WithdrawalRequest(
        subject_id=subject.subject_id,
        subject_type=subject.subject_type,
        points_amount=points_amount,
        withdrawal_method=method,
        account_details=details,
        status=PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(withdrawal)
    await db.flush()

    logger.info(
        "withdrawal_requested",
        withdrawal_id=withdrawal.id,
        subject_id=subject.subject_id,
        subject_type=subject.subject_type,
        points_amount=points_amount,
    )
    return withdrawal


async def _lock_withdrawal(db: AsyncSession, withdrawal_id: int) -> WithdrawalRequest:
    result = await db.execute(
        select(WithdrawalRequest)
        .where(WithdrawalRequest.id == withdrawal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    withdrawal = result.scalar_one_or_none()
    if withdrawal is None:
        raise NotFoundError(f"Withdrawal request {withdrawal_id} not found")
    return withdrawal


async def approve_withdrawal(
    db: AsyncSession,
    withdrawal_id: int,
    admin_id: int,
    admin_notes: str | None = None,
) -> tuple[WithdrawalRequest, LedgerResult]:
    """Approve a pending withdrawal and debit the subject's balance.

    The withdrawal row and the account row stay locked until the caller
    commits, so a concurrent second approval waits and then sees the
    request already approved.
    """
    withdrawal = await _lock_withdrawal(db, withdrawal_id)
    validate_transition(VALID_TRANSITIONS, withdrawal.status, APPROVED)

    subject = SubjectRef(withdrawal.subject_id, withdrawal.subject_type)
    account = await lock_account(db, subject)
    if account.points_balance < withdrawal.points_amount:
        raise InsufficientBalanceError(
            f"Balance {account.points_balance} no longer covers withdrawal of {withdrawal.points_amount}"
        )

    now = datetime.now(timezone.utc)
    withdrawal.status = APPROVED
    withdrawal.admin_notes = clean_text(admin_notes) or DEFAULT_APPROVAL_NOTE
    withdrawal.processed_by = admin_id
    withdrawal.processed_at = now
    withdrawal.updated_at = now

    ledger = await apply_delta(
        db,
        subject,
        -withdrawal.points_amount,
        SPENT_WITHDRAWAL,
        f"Withdrawal approved: {withdrawal.withdrawal_method}",
        reference=Reference(REF_WITHDRAWAL, withdrawal.id),
    )

    logger.info(
        "withdrawal_approved",
        withdrawal_id=withdrawal.id,
        admin_id=admin_id,
        points_amount=withdrawal.points_amount,
        new_balance=ledger.new_balance,
    )
    return withdrawal, ledger


async def reject_withdrawal(
    db: AsyncSession,
    withdrawal_id: int,
    admin_id: int,
    admin_notes: str | None,
    reason: str | None,
) -> WithdrawalRequest:
    """Reject a pending withdrawal. No ledger effect."""
    notes = clean_text(admin_notes)
    reason = clean_text(reason)
    if notes is None or reason is None:
        raise ValidationError("Admin notes and rejection reason are required")

    withdrawal = await _lock_withdrawal(db, withdrawal_id)
    validate_transition(VALID_TRANSITIONS, withdrawal.status, REJECTED)

    now = datetime.now(timezone.utc)
    withdrawal.status = REJECTED
    withdrawal.admin_notes = notes
    withdrawal.rejection_reason = reason
    withdrawal.processed_by = admin_id
    withdrawal.processed_at = now
    withdrawal.updated_at = now
    await db.flush()

    logger.info("withdrawal_rejected", withdrawal_id=withdrawal.id, admin_id=admin_id)
    return withdrawal


async def get_withdrawal(db: AsyncSession, withdrawal_id: int) -> WithdrawalRequest | None:
    result = await db.execute(select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_id))
    return result.scalar_one_or_none()


async def list_withdrawals(
    db: AsyncSession,
    status: str | None = PENDING,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[WithdrawalRequest], int]:
    """Admin listing, newest first. ``status=None`` lists every request."""
    conditions = []
    if status is not None:
        if status not in WITHDRAWAL_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(WITHDRAWAL_STATUSES)}")
        conditions.append(WithdrawalRequest.status == status)

    total = (
        await db.execute(select(func.count()).select_from(WithdrawalRequest).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(WithdrawalRequest)
        .where(*conditions)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def list_subject_withdrawals(
    db: AsyncSession,
    subject: SubjectRef,
    status: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[WithdrawalRequest], int]:
    """A subject's own withdrawals, newest first."""
    conditions = [
        WithdrawalRequest.subject_id == subject.subject_id,
        WithdrawalRequest.subject_type == subject.subject_type,
    ]
    if status is not None:
        if status not in WITHDRAWAL_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(WITHDRAWAL_STATUSES)}")
        conditions.append(WithdrawalRequest.status == status)

    total = (
        await db.execute(select(func.count()).select_from(WithdrawalRequest).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(WithdrawalRequest)
        .where(*conditions)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
