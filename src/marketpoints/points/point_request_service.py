"""Point-request workflow: subjects ask for bonus or compensation points.

State progression:
    pending -> under_review -> approved | rejected
    under_review -> under_review  (further review notes)
    pending -> approved | rejected
    pending | under_review -> cancelled  (by the requesting subject only)

Admins move requests with ``process_point_request``; approval credits the
admin-chosen amount, which may differ from the amount the subject asked for.
At most one open (pending or under_review) request exists per subject and
request type.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.config import get_settings
from marketpoints.db.models import PointRequest
from marketpoints.errors import ConflictError, NotFoundError, ValidationError
from marketpoints.points.ledger_service import (
    ADMIN_BONUS,
    REF_POINT_REQUEST,
    LedgerResult,
    Reference,
    apply_delta,
)
from marketpoints.points.workflow import clean_text, validate_transition
from marketpoints.subjects.directory import require_subject
from marketpoints.subjects.interfaces import SubjectRef

logger = logging.getLogger(__name__)

PENDING = "pending"
UNDER_REVIEW = "under_review"
APPROVED = "approved"
REJECTED = "rejected"
CANCELLED = "cancelled"
POINT_REQUEST_STATUSES: tuple[str, ...] = (PENDING, UNDER_REVIEW, APPROVED, REJECTED, CANCELLED)
OPEN_STATUSES: tuple[str, ...] = (PENDING, UNDER_REVIEW)

REQUEST_TYPES: frozenset[str] = frozenset({
    "bonus_points",
    "compensation",
    "refund",
    "achievement_reward",
    "referral_bonus",
    "content_quality",
    "community_help",
    "other",
})

VALID_TRANSITIONS: dict[str, list[str]] = {
    PENDING: [UNDER_REVIEW, APPROVED, REJECTED, CANCELLED],
    UNDER_REVIEW: [UNDER_REVIEW, APPROVED, REJECTED, CANCELLED],
    APPROVED: [],
    REJECTED: [],
    CANCELLED: [],
}

# Admin action -> target status
ACTIONS: dict[str, str] = {
    "approve": APPROVED,
    "reject": REJECTED,
    "review": UNDER_REVIEW,
}


async def _open_request_exists(db: AsyncSession, subject: SubjectRef, request_type: str) -> bool:
    result = await db.execute(
        select(PointRequest.id).where(
            PointRequest.subject_id == subject.subject_id,
            PointRequest.subject_type == subject.subject_type,
            PointRequest.request_type == request_type,
            PointRequest.status.in_(OPEN_STATUSES),
        )
    )
    return result.first() is not None


async def submit_point_request(
    db: AsyncSession,
    subject: SubjectRef,
    request_type: str | None,
    points_amount: int | None,
    reason: str | None,
    supporting_evidence: str | None = None,
    additional_details: str | None = None,
) -> PointRequest:
    """Create a pending point request."""
    max_points = get_settings().point_request_max_points
    if points_amount is None or points_amount <= 0 or points_amount > max_points:
        raise ValidationError(f"Points amount must be between 1 and {max_points}")
    if request_type not in REQUEST_TYPES:
        raise ValidationError(f"request_type must be one of: {', '.join(sorted(REQUEST_TYPES))}")
    reason = clean_text(reason)
    if reason is None:
        raise ValidationError("Reason is required")

    await require_subject(db, subject)

    if await _open_request_exists(db, subject, request_type):
        raise ConflictError(f"An open {request_type} request already exists")

    now = datetime.now(timezone.utc)
    point_request = PointRequest(
        subject_id=subject.subject_id,
        subject_type=subject.subject_type,
        request_type=request_type,
        points_amount=points_amount,
        reason=reason,
        supporting_evidence=clean_text(supporting_evidence),
        additional_details=clean_text(additional_details),
        status=PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(point_request)
    try:
        await db.flush()
    except IntegrityError as e:
        # Lost a race with a concurrent submit; the partial unique index caught it
        raise ConflictError(f"An open {request_type} request already exists") from e

    logger.info(
        "Point request %d submitted by %s %d: %s for %d points",
        point_request.id,
        subject.subject_type,
        subject.subject_id,
        request_type,
        points_amount,
    )
    return point_request


async def _lock_point_request(db: AsyncSession, request_id: int) -> PointRequest:
    result = await db.execute(
        select(PointRequest)
        .where(PointRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    point_request = result.scalar_one_or_none()
    if point_request is None:
        raise NotFoundError(f"Point request {request_id} not found")
    return point_request


async def process_point_request(
    db: AsyncSession,
    request_id: int,
    action: str | None,
    admin_id: int,
    admin_notes: str | None = None,
    points_adjustment: int | None = None,
) -> tuple[PointRequest, LedgerResult | None]:
    """Apply an admin action (approve, reject, review) to an open request.

    Returns the request and, for approvals, the ledger result of the credit.
    """
    target = ACTIONS.get(action or "")
    if target is None:
        raise ValidationError(f"action must be one of: {', '.join(ACTIONS)}")
    if target == APPROVED:
        max_points = get_settings().admin_points_max
        if points_adjustment is None or points_adjustment <= 0 or points_adjustment > max_points:
            raise ValidationError(f"points_adjustment must be between 1 and {max_points} to approve")

    point_request = await _lock_point_request(db, request_id)
    validate_transition(VALID_TRANSITIONS, point_request.status, target)

    now = datetime.now(timezone.utc)
    point_request.status = target
    # A later action without notes keeps the ones left at review
    point_request.admin_notes = clean_text(admin_notes) or point_request.admin_notes
    point_request.processed_by = admin_id
    point_request.processed_at = now
    point_request.updated_at = now

    ledger: LedgerResult | None = None
    if target == APPROVED:
        point_request.points_awarded = points_adjustment
        ledger = await apply_delta(
            db,
            SubjectRef(point_request.subject_id, point_request.subject_type),
            points_adjustment,
            ADMIN_BONUS,
            f"Point request approved: {point_request.request_type}",
            reference=Reference(REF_POINT_REQUEST, point_request.id),
        )
    else:
        await db.flush()

    logger.info(
        "Point request %d: %s by admin %d (awarded=%s)",
        point_request.id,
        action,
        admin_id,
        point_request.points_awarded,
    )
    return point_request, ledger


async def cancel_point_request(
    db: AsyncSession,
    subject: SubjectRef,
    request_id: int,
) -> PointRequest:
    """Withdraw one's own open request. Other subjects' requests read as not found."""
    point_request = await _lock_point_request(db, request_id)
    if (point_request.subject_id, point_request.subject_type) != (subject.subject_id, subject.subject_type):
        raise NotFoundError(f"Point request {request_id} not found")
    validate_transition(VALID_TRANSITIONS, point_request.status, CANCELLED)

    now = datetime.now(timezone.utc)
    point_request.status = CANCELLED
    point_request.updated_at = now
    await db.flush()

    logger.info("Point request %d cancelled by its owner", point_request.id)
    return point_request


async def get_point_request(db: AsyncSession, request_id: int) -> PointRequest | None:
    result = await db.execute(select(PointRequest).where(PointRequest.id == request_id))
    return result.scalar_one_or_none()


def _status_condition(status: str | None) -> list:
    if status is None:
        return []
    if status not in POINT_REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(POINT_REQUEST_STATUSES)}")
    return [PointRequest.status == status]


async def list_point_requests(
    db: AsyncSession,
    status: str | None = None,
    request_type: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[PointRequest], int]:
    """Admin listing, newest first."""
    conditions = _status_condition(status)
    if request_type is not None:
        if request_type not in REQUEST_TYPES:
            raise ValidationError(f"request_type must be one of: {', '.join(sorted(REQUEST_TYPES))}")
        conditions.append(PointRequest.request_type == request_type)

    total = (
        await db.execute(select(func.count()).select_from(PointRequest).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(PointRequest)
        .where(*conditions)
        .order_by(PointRequest.created_at.desc(), PointRequest.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def list_subject_point_requests(
    db: AsyncSession,
    subject: SubjectRef,
    status: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[PointRequest], int]:
    """A subject's own requests, newest first."""
    conditions = [
        PointRequest.subject_id == subject.subject_id,
        PointRequest.subject_type == subject.subject_type,
        *_status_condition(status),
    ]
    total = (
        await db.execute(select(func.count()).select_from(PointRequest).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(PointRequest)
        .where(*conditions)
        .order_by(PointRequest.created_at.desc(), PointRequest.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
