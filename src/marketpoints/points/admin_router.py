"""Admin points endpoints, 8 routes.

Accounts (1), Stats (1), Adjust (1), Withdrawals (3), Point requests (2).
"""

from __future__ import annotations

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.auth.dependencies import Identity, require_admin
from marketpoints.database import get_session, transaction
from marketpoints.db.models import PointRequest, WithdrawalRequest
from marketpoints.points import (
    adjustment_service,
    ledger_service,
    point_request_service,
    stats_service,
    withdrawal_service,
)
from marketpoints.points.schemas import (
    AccountListResponse,
    AccountResponse,
    AdjustPointsRequest,
    AdjustPointsResponse,
    PointRequestDecisionResponse,
    PointRequestListResponse,
    PointRequestProcessRequest,
    PointRequestResponse,
    PointsStatsResponse,
    WithdrawalApproveRequest,
    WithdrawalDecisionResponse,
    WithdrawalListResponse,
    WithdrawalRejectRequest,
    WithdrawalResponse,
)
from marketpoints.redis_client import get_optional_redis
from marketpoints.subjects.directory import resolve_contacts, resolve_display_names
from marketpoints.subjects.interfaces import SubjectRef

router = APIRouter(prefix="/api/v1/admin/points", tags=["Admin Points"])


# ── Helpers ──


async def _withdrawal_responses(
    db: AsyncSession, items: list[WithdrawalRequest]
) -> list[WithdrawalResponse]:
    subjects = [SubjectRef(w.subject_id, w.subject_type) for w in items]
    names = await resolve_display_names(db, subjects)
    contacts = await resolve_contacts(db, subjects)
    responses = []
    for w, subject in zip(items, subjects):
        resp = WithdrawalResponse.model_validate(w)
        resp.display_name = names.get(subject)
        contact = contacts.get(subject)
        if contact is not None:
            resp.phone = contact.phone
            resp.store_name = contact.store_name
        responses.append(resp)
    return responses


async def _point_request_responses(
    db: AsyncSession, items: list[PointRequest]
) -> list[PointRequestResponse]:
    names = await resolve_display_names(db, [SubjectRef(r.subject_id, r.subject_type) for r in items])
    responses = []
    for r in items:
        resp = PointRequestResponse.model_validate(r)
        resp.display_name = names.get(SubjectRef(r.subject_id, r.subject_type))
        responses.append(resp)
    return responses


# ── Accounts & stats ──


@router.get("/accounts", response_model=AccountListResponse)
async def list_accounts(
    search: str | None = Query(None, max_length=128),
    subject_type: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    _admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """All ledger accounts, richest first, with search and type filter."""
    if subject_type == "all":
        subject_type = None
    accounts, total = await ledger_service.list_accounts(db, page, per_page, search, subject_type)
    names = await resolve_display_names(db, [SubjectRef(a.subject_id, a.subject_type) for a in accounts])
    return AccountListResponse(
        accounts=[
            AccountResponse(
                subject_id=a.subject_id,
                subject_type=a.subject_type,
                display_name=names.get(SubjectRef(a.subject_id, a.subject_type)),
                points_balance=a.points_balance,
                total_earned=a.total_earned,
                total_spent=a.total_spent,
                created_at=a.created_at,
                updated_at=a.updated_at,
            )
            for a in accounts
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/stats", response_model=PointsStatsResponse)
async def get_stats(
    _admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: aioredis.Redis | None = Depends(get_optional_redis),
):
    """Ledger-wide aggregates (short-lived cache)."""
    return await stats_service.get_points_stats(db, redis)


@router.put("/adjust", response_model=AdjustPointsResponse)
async def adjust_points(
    body: AdjustPointsRequest,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Credit or debit a subject directly."""
    async with transaction(db):
        result = await adjustment_service.admin_adjust(
            db,
            body.subject_id,
            body.subject_type,
            body.points_change,
            body.reason,
            body.transaction_type,
            admin_id=admin.subject_id,
        )
    return AdjustPointsResponse(
        subject_id=result.account.subject_id,
        subject_type=result.account.subject_type,
        points_change=body.points_change,
        new_balance=result.new_balance,
        reason=result.transaction.description,
        transaction_id=result.transaction.id,
    )


# ── Withdrawals ──


@router.get("/withdrawals", response_model=WithdrawalListResponse)
async def list_withdrawals(
    status: str = Query("pending"),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    _admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Withdrawal requests joined with subject names. ``status=all`` lists everything."""
    items, total = await withdrawal_service.list_withdrawals(
        db, None if status == "all" else status, page, per_page,
    )
    return WithdrawalListResponse(
        withdrawals=await _withdrawal_responses(db, items),
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalDecisionResponse)
async def approve_withdrawal(
    withdrawal_id: int,
    body: WithdrawalApproveRequest | None = None,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Approve a pending withdrawal and debit the balance atomically."""
    async with transaction(db):
        withdrawal, ledger = await withdrawal_service.approve_withdrawal(
            db, withdrawal_id, admin.subject_id, body.admin_notes if body else None,
        )
    (resp,) = await _withdrawal_responses(db, [withdrawal])
    return WithdrawalDecisionResponse(withdrawal=resp, new_balance=ledger.new_balance)


@router.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalDecisionResponse)
async def reject_withdrawal(
    withdrawal_id: int,
    body: WithdrawalRejectRequest,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Reject a pending withdrawal. Notes and reason are both required."""
    async with transaction(db):
        withdrawal = await withdrawal_service.reject_withdrawal(
            db, withdrawal_id, admin.subject_id, body.admin_notes, body.reason,
        )
    (resp,) = await _withdrawal_responses(db, [withdrawal])
    return WithdrawalDecisionResponse(withdrawal=resp)


# ── Point requests ──


@router.get("/requests", response_model=PointRequestListResponse)
async def list_point_requests(
    status: str | None = Query(None),
    request_type: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    _admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Point requests, optionally filtered by status and type."""
    items, total = await point_request_service.list_point_requests(db, status, request_type, page, per_page)
    return PointRequestListResponse(
        requests=await _point_request_responses(db, items),
        total=total,
        page=page,
        per_page=per_page,
    )


@router.put("/requests/{request_id}", response_model=PointRequestDecisionResponse)
async def process_point_request(
    request_id: int,
    body: PointRequestProcessRequest,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Approve, reject, or mark a request under review."""
    async with transaction(db):
        point_request, ledger = await point_request_service.process_point_request(
            db,
            request_id,
            body.action,
            admin.subject_id,
            body.admin_notes,
            body.points_adjustment,
        )
    (resp,) = await _point_request_responses(db, [point_request])
    return PointRequestDecisionResponse(
        request=resp,
        new_balance=ledger.new_balance if ledger else None,
    )
