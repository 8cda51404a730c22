"""Points statistics unit tests."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.errors import InternalError
from marketpoints.points import stats_service
from marketpoints.points.ledger_service import ADMIN_BONUS, ADMIN_PENALTY, apply_delta
from marketpoints.points.point_request_service import process_point_request, submit_point_request
from marketpoints.points.stats_service import STATS_CACHE_KEY, compute_points_stats, get_points_stats
from marketpoints.points.withdrawal_service import request_withdrawal


class TestComputeStats:
    @pytest.mark.asyncio
    async def test_empty_ledger(self, db_session: AsyncSession):
        stats = await compute_points_stats(db_session)
        assert stats["overview"]["total_accounts"] == 0
        assert stats["overview"]["total_points_in_circulation"] == 0
        assert stats["overview"]["average_points_per_account"] == 0
        assert stats["pending_withdrawals"] == 0
        assert stats["recent_transactions"] == []
        assert stats["top_subjects"] == []

    @pytest.mark.asyncio
    async def test_aggregates(self, db_session: AsyncSession, make_user, make_advertiser):
        user = await make_user("Sara Ahmed")
        broke = await make_user("Nour Ali")
        shop = await make_advertiser("Omar Khalil", "Omar Motors")
        await apply_delta(db_session, user, 100, ADMIN_BONUS, "Bonus")
        await apply_delta(db_session, shop, 300, ADMIN_BONUS, "Bonus")
        await apply_delta(db_session, broke, 20, ADMIN_BONUS, "Bonus")
        await apply_delta(db_session, broke, -20, ADMIN_PENALTY, "Penalty")
        await db_session.commit()
        await request_withdrawal(db_session, user, 50, "bank", "JO00")
        await submit_point_request(db_session, shop, "bonus_points", 10, "Please")
        await db_session.commit()

        stats = await compute_points_stats(db_session)
        overview = stats["overview"]
        assert overview["total_accounts"] == 3
        assert overview["total_points_in_circulation"] == 400
        assert overview["total_points_ever_earned"] == 420
        assert overview["total_points_ever_spent"] == 20
        assert overview["accounts_with_balance"] == 2
        assert overview["average_points_per_account"] == pytest.approx(133.33)
        assert stats["pending_withdrawals"] == 1
        assert stats["pending_point_requests"] == 1

        assert [s["points_balance"] for s in stats["top_subjects"]] == [300, 100]
        assert stats["top_subjects"][0]["display_name"] == "Omar Khalil (Omar Motors)"

        assert len(stats["recent_transactions"]) == 4
        assert stats["recent_transactions"][0]["transaction_type"] == ADMIN_PENALTY

        (today,) = stats["daily_trends"]
        assert today["transactions"] == 4
        assert today["points_credited"] == 420
        assert today["points_debited"] == 20

    @pytest.mark.asyncio
    async def test_requests_under_review_count_as_pending(self, db_session: AsyncSession, make_user):
        user = await make_user()
        await submit_point_request(db_session, user, "bonus_points", 10, "Please")
        reviewed = await submit_point_request(db_session, user, "refund", 10, "Please")
        done = await submit_point_request(db_session, user, "other", 10, "Please")
        await db_session.commit()
        await process_point_request(db_session, reviewed.id, "review", 1, "first look")
        await process_point_request(db_session, done.id, "reject", 1, "No")
        await db_session.commit()

        stats = await compute_points_stats(db_session)
        assert stats["pending_point_requests"] == 2

    @pytest.mark.asyncio
    async def test_store_failure_becomes_internal_error(self, db_session: AsyncSession, monkeypatch):
        async def _boom(_db):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(stats_service, "_overview", _boom)
        with pytest.raises(InternalError) as exc_info:
            await compute_points_stats(db_session)
        assert "connection reset" not in exc_info.value.message


class TestStatsCache:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, db_session: AsyncSession, monkeypatch):
        redis = AsyncMock()
        redis.get.return_value = json.dumps({"cached": True})
        compute = AsyncMock()
        monkeypatch.setattr(stats_service, "compute_points_stats", compute)

        assert await get_points_stats(db_session, redis) == {"cached": True}
        compute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_miss_stores_result(self, db_session: AsyncSession):
        redis = AsyncMock()
        redis.get.return_value = None

        stats = await get_points_stats(db_session, redis)

        redis.set.assert_awaited_once()
        key, payload = redis.set.await_args.args
        assert key == STATS_CACHE_KEY
        assert json.loads(payload) == stats
        assert redis.set.await_args.kwargs["ex"] == 30

    @pytest.mark.asyncio
    async def test_cache_errors_fall_back_to_database(self, db_session: AsyncSession):
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        redis.set.side_effect = ConnectionError("redis down")

        stats = await get_points_stats(db_session, redis)
        assert stats["overview"]["total_accounts"] == 0

    @pytest.mark.asyncio
    async def test_without_redis(self, db_session: AsyncSession):
        stats = await get_points_stats(db_session, None)
        assert "generated_at" in stats
