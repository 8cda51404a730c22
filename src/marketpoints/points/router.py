"""Points API endpoints for users and advertisers, 8 routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.auth.dependencies import (
    Identity,
    ensure_self_or_admin,
    get_current_identity,
    get_current_subject,
)
from marketpoints.database import get_session, transaction
from marketpoints.points import ledger_service, point_request_service, withdrawal_service
from marketpoints.points.schemas import (
    BalanceResponse,
    PointRequestCreateRequest,
    PointRequestListResponse,
    PointRequestResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    WithdrawalCreateRequest,
    WithdrawalListResponse,
    WithdrawalResponse,
)
from marketpoints.subjects.directory import require_subject
from marketpoints.subjects.interfaces import SubjectRef

router = APIRouter(prefix="/api/v1/points", tags=["Points"])


async def _balance(db: AsyncSession, subject: SubjectRef) -> BalanceResponse:
    summary = await ledger_service.get_balance_summary(db, subject)
    summary["recent_transactions"] = [
        TransactionResponse.model_validate(t) for t in summary["recent_transactions"]
    ]
    return BalanceResponse(**summary)


# ── Balance ──


@router.get("/me", response_model=BalanceResponse)
async def get_my_points(
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Current caller's balance and most recent transactions."""
    return await _balance(db, subject)


@router.get("/me/transactions", response_model=TransactionHistoryResponse)
async def get_my_transactions(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    transaction_type: str | None = Query(None),
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Paginated transaction history."""
    txns, total = await ledger_service.list_transactions(db, subject, page, per_page, transaction_type)
    return TransactionHistoryResponse(
        transactions=[TransactionResponse.model_validate(t) for t in txns],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/subjects/{subject_type}/{subject_id}", response_model=BalanceResponse)
async def get_subject_points(
    subject_type: str = Path(..., pattern="^(user|advertiser)$"),
    subject_id: int = Path(..., ge=1),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_session),
):
    """Balance of a given subject (the subject itself or an admin)."""
    subject = SubjectRef(subject_id, subject_type)
    ensure_self_or_admin(identity, subject)
    await require_subject(db, subject)
    return await _balance(db, subject)


# ── Withdrawals ──


@router.post("/withdrawals", response_model=WithdrawalResponse, status_code=201)
async def create_withdrawal(
    body: WithdrawalCreateRequest,
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Ask to cash out points. Nothing is debited until an admin approves."""
    async with transaction(db):
        withdrawal = await withdrawal_service.request_withdrawal(
            db, subject, body.points_amount, body.withdrawal_method, body.account_details,
        )
    return WithdrawalResponse.model_validate(withdrawal)


@router.get("/withdrawals/me", response_model=WithdrawalListResponse)
async def list_my_withdrawals(
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Caller's own withdrawal requests."""
    items, total = await withdrawal_service.list_subject_withdrawals(db, subject, status, page, per_page)
    return WithdrawalListResponse(
        withdrawals=[WithdrawalResponse.model_validate(w) for w in items],
        total=total,
        page=page,
        per_page=per_page,
    )


# ── Point requests ──


@router.post("/requests", response_model=PointRequestResponse, status_code=201)
async def create_point_request(
    body: PointRequestCreateRequest,
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Ask an admin for bonus or compensation points."""
    async with transaction(db):
        point_request = await point_request_service.submit_point_request(
            db,
            subject,
            body.request_type,
            body.points_amount,
            body.reason,
            body.supporting_evidence,
            body.additional_details,
        )
    return PointRequestResponse.model_validate(point_request)


@router.get("/requests/me", response_model=PointRequestListResponse)
async def list_my_point_requests(
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Caller's own point requests, optionally filtered by status."""
    items, total = await point_request_service.list_subject_point_requests(db, subject, status, page, per_page)
    return PointRequestListResponse(
        requests=[PointRequestResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/requests/{request_id}/cancel", response_model=PointRequestResponse)
async def cancel_point_request(
    request_id: int,
    subject: SubjectRef = Depends(get_current_subject),
    db: AsyncSession = Depends(get_session),
):
    """Withdraw an open request."""
    async with transaction(db):
        point_request = await point_request_service.cancel_point_request(db, subject, request_id)
    return PointRequestResponse.model_validate(point_request)
