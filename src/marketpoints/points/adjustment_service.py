"""Direct admin credits and debits, bypassing the request workflows."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.config import get_settings
from marketpoints.errors import ValidationError
from marketpoints.points.ledger_service import (
    ADMIN_ADJUSTMENT,
    ADMIN_BONUS,
    ADMIN_CORRECTION,
    ADMIN_PENALTY,
    COMPENSATION,
    REFUND,
    LedgerResult,
    apply_delta,
)
from marketpoints.points.workflow import clean_text
from marketpoints.subjects.directory import require_subject, validate_subject_type
from marketpoints.subjects.interfaces import SubjectRef

logger = structlog.get_logger()

# Withdrawal debits are reserved for the withdrawal workflow
ADJUSTMENT_KINDS: frozenset[str] = frozenset({
    ADMIN_ADJUSTMENT,
    ADMIN_BONUS,
    ADMIN_PENALTY,
    ADMIN_CORRECTION,
    COMPENSATION,
    REFUND,
})


async def admin_adjust(
    db: AsyncSession,
    subject_id: int | None,
    subject_type: str | None,
    points_change: int | None,
    reason: str | None,
    transaction_kind: str | None = None,
    admin_id: int | None = None,
) -> LedgerResult:
    """Credit or debit a subject directly. The balance is clamped at zero."""
    reason = clean_text(reason)
    if subject_id is None or subject_type is None or not points_change or reason is None:
        raise ValidationError("Subject id, subject type, points change, and reason are required")
    max_points = get_settings().admin_points_max
    if abs(points_change) > max_points:
        raise ValidationError(f"Points change must be between -{max_points} and {max_points}")
    subject = SubjectRef(subject_id, validate_subject_type(subject_type))

    kind = transaction_kind or ADMIN_ADJUSTMENT
    if kind not in ADJUSTMENT_KINDS:
        raise ValidationError(f"transaction_type must be one of: {', '.join(sorted(ADJUSTMENT_KINDS))}")

    await require_subject(db, subject)

    result = await apply_delta(db, subject, points_change, kind, reason)
    logger.info(
        "points_adjusted",
        admin_id=admin_id,
        subject_id=subject.subject_id,
        subject_type=subject.subject_type,
        points_change=points_change,
        new_balance=result.new_balance,
    )
    return result
