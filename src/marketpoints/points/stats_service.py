"""Points statistics for the admin panel.

Read-only aggregates over accounts, transactions and both workflows.
Results are cached in Redis for a short TTL; with no Redis (or a Redis
error) the numbers are computed straight from the database.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.config import get_settings
from marketpoints.db.models import LedgerAccount, PointRequest, PointTransaction, WithdrawalRequest
from marketpoints.errors import InternalError
from marketpoints.points.point_request_service import OPEN_STATUSES
from marketpoints.subjects.directory import resolve_display_names
from marketpoints.subjects.interfaces import SubjectRef

logger = structlog.get_logger()

STATS_CACHE_KEY = "points:stats"


async def _overview(db: AsyncSession) -> dict:
    row = (
        await db.execute(
            select(
                func.count(LedgerAccount.id),
                func.coalesce(func.sum(LedgerAccount.points_balance), 0),
                func.coalesce(func.sum(LedgerAccount.total_earned), 0),
                func.coalesce(func.sum(LedgerAccount.total_spent), 0),
                func.coalesce(func.avg(LedgerAccount.points_balance), 0),
                func.count(case((LedgerAccount.points_balance > 0, 1))),
            )
        )
    ).one()
    return {
        "total_accounts": int(row[0]),
        "total_points_in_circulation": int(row[1]),
        "total_points_ever_earned": int(row[2]),
        "total_points_ever_spent": int(row[3]),
        "average_points_per_account": round(float(row[4]), 2),
        "accounts_with_balance": int(row[5]),
    }


async def _daily_trends(db: AsyncSession, days: int) -> list[dict]:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    day = func.date(PointTransaction.created_at)
    result = await db.execute(
        select(
            day.label("day"),
            func.count(PointTransaction.id).label("transactions"),
            func.coalesce(
                func.sum(case((PointTransaction.points_change > 0, PointTransaction.points_change), else_=0)), 0
            ).label("credited"),
            func.coalesce(
                func.sum(case((PointTransaction.points_change < 0, -PointTransaction.points_change), else_=0)), 0
            ).label("debited"),
        )
        .where(PointTransaction.created_at >= since)
        .group_by(day)
        .order_by(day)
    )
    return [
        {
            "date": str(row.day),
            "transactions": int(row.transactions),
            "points_credited": int(row.credited),
            "points_debited": int(row.debited),
        }
        for row in result
    ]


async def _top_subjects(db: AsyncSession, limit: int) -> list[dict]:
    result = await db.execute(
        select(LedgerAccount)
        .where(LedgerAccount.points_balance > 0)
        .order_by(LedgerAccount.points_balance.desc(), LedgerAccount.id.asc())
        .limit(limit)
    )
    accounts = list(result.scalars().all())
    names = await resolve_display_names(db, [SubjectRef(a.subject_id, a.subject_type) for a in accounts])
    return [
        {
            "subject_id": a.subject_id,
            "subject_type": a.subject_type,
            "display_name": names.get(SubjectRef(a.subject_id, a.subject_type)),
            "points_balance": a.points_balance,
            "total_earned": a.total_earned,
        }
        for a in accounts
    ]


async def _recent_transactions(db: AsyncSession, limit: int) -> list[dict]:
    result = await db.execute(
        select(PointTransaction)
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .limit(limit)
    )
    txns = list(result.scalars().all())
    names = await resolve_display_names(db, [SubjectRef(t.subject_id, t.subject_type) for t in txns])
    return [
        {
            "id": t.id,
            "subject_id": t.subject_id,
            "subject_type": t.subject_type,
            "display_name": names.get(SubjectRef(t.subject_id, t.subject_type)),
            "transaction_type": t.transaction_type,
            "points_change": t.points_change,
            "description": t.description,
            "reference_type": t.reference_type,
            "reference_id": t.reference_id,
            "created_at": t.created_at.isoformat() if t.created_at else None,
        }
        for t in txns
    ]


async def _count_status(db: AsyncSession, model: type, status: str) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(model.status == status))
    return int(result.scalar_one())


async def _count_open_requests(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(PointRequest).where(PointRequest.status.in_(OPEN_STATUSES))
    )
    return int(result.scalar_one())


async def compute_points_stats(db: AsyncSession) -> dict:
    """Compute every aggregate from the database. Returns a JSON-safe dict."""
    settings = get_settings()
    try:
        return {
            "overview": await _overview(db),
            "pending_withdrawals": await _count_status(db, WithdrawalRequest, "pending"),
            "pending_point_requests": await _count_open_requests(db),
            "recent_transactions": await _recent_transactions(db, settings.recent_transactions_limit),
            "daily_trends": await _daily_trends(db, settings.stats_trend_days),
            "top_subjects": await _top_subjects(db, settings.stats_top_subjects),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
    except SQLAlchemyError as exc:
        logger.error("points_stats_failed", error=str(exc), exc_info=exc)
        raise InternalError("Failed to retrieve points statistics") from exc


async def get_points_stats(db: AsyncSession, redis: aioredis.Redis | None) -> dict:
    """Cached wrapper around ``compute_points_stats``."""
    if redis is not None:
        try:
            cached = await redis.get(STATS_CACHE_KEY)
            if cached:
                return json.loads(cached)
        except Exception:
            logger.warning("points_stats_cache_read_failed", exc_info=True)

    stats = await compute_points_stats(db)

    if redis is not None:
        try:
            await redis.set(STATS_CACHE_KEY, json.dumps(stats), ex=get_settings().stats_cache_ttl_seconds)
        except Exception:
            logger.warning("points_stats_cache_write_failed", exc_info=True)
    return stats
