"""Admin adjustment unit tests."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.config import get_settings
from marketpoints.errors import NotFoundError, ValidationError
from marketpoints.points.adjustment_service import ADJUSTMENT_KINDS, admin_adjust
from marketpoints.points.ledger_service import (
    ADMIN_ADJUSTMENT,
    COMPENSATION,
    SPENT_WITHDRAWAL,
    get_account,
    get_recent_transactions,
)


class TestAdminAdjust:
    """Direct credits and debits."""

    @pytest.mark.asyncio
    async def test_credit_advertiser(self, db_session: AsyncSession, make_advertiser):
        advertiser = await make_advertiser()
        result = await admin_adjust(
            db_session, advertiser.subject_id, "advertiser", 120, "Launch promo", COMPENSATION, admin_id=1,
        )
        await db_session.commit()

        assert result.new_balance == 120
        assert result.transaction.transaction_type == COMPENSATION
        assert result.transaction.description == "Launch promo"

    @pytest.mark.asyncio
    async def test_first_adjustment_opens_account(self, db_session: AsyncSession, make_user):
        """No account yet, +200: account created with balance 200, earned 200, spent 0."""
        user = await make_user()
        await admin_adjust(db_session, user.subject_id, "user", 200, "Opening balance")
        await db_session.commit()

        account = await get_account(db_session, user)
        assert (account.points_balance, account.total_earned, account.total_spent) == (200, 200, 0)

    @pytest.mark.asyncio
    async def test_default_kind(self, db_session: AsyncSession, make_user):
        user = await make_user()
        result = await admin_adjust(db_session, user.subject_id, "user", 5, "Goodwill")
        assert result.transaction.transaction_type == ADMIN_ADJUSTMENT

    @pytest.mark.asyncio
    async def test_debit_clamps_at_zero(self, db_session: AsyncSession, make_user):
        """Balance 30, adjustment -50: balance 0, log keeps -50."""
        user = await make_user()
        await admin_adjust(db_session, user.subject_id, "user", 30, "Seed")
        result = await admin_adjust(db_session, user.subject_id, "user", -50, "Correction")
        await db_session.commit()

        assert result.new_balance == 0
        account = await get_account(db_session, user)
        assert account.points_balance == 0
        latest = (await get_recent_transactions(db_session, user, limit=1))[0]
        assert latest.points_change == -50

    @pytest.mark.asyncio
    async def test_withdrawal_kind_reserved(self, db_session: AsyncSession, make_user):
        user = await make_user()
        assert SPENT_WITHDRAWAL not in ADJUSTMENT_KINDS
        with pytest.raises(ValidationError, match="transaction_type"):
            await admin_adjust(db_session, user.subject_id, "user", -5, "Cash out", SPENT_WITHDRAWAL)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("subject_id", "subject_type", "points_change", "reason"),
        [
            (None, "user", 5, "r"),
            (1, None, 5, "r"),
            (1, "user", 0, "r"),
            (1, "user", None, "r"),
            (1, "user", 5, "  "),
        ],
    )
    async def test_required_fields(self, db_session: AsyncSession, subject_id, subject_type, points_change, reason):
        with pytest.raises(ValidationError, match="required"):
            await admin_adjust(db_session, subject_id, subject_type, points_change, reason)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sign", [1, -1])
    async def test_change_above_limit_rejected(self, db_session: AsyncSession, make_user, sign):
        user = await make_user()
        limit = get_settings().admin_points_max
        with pytest.raises(ValidationError, match="between"):
            await admin_adjust(db_session, user.subject_id, "user", sign * (limit + 1), "Too much")
        assert await get_account(db_session, user) is None

    @pytest.mark.asyncio
    async def test_change_at_limit_accepted(self, db_session: AsyncSession, make_user):
        user = await make_user()
        limit = get_settings().admin_points_max
        result = await admin_adjust(db_session, user.subject_id, "user", limit, "Grand prize")
        assert result.new_balance == limit

    @pytest.mark.asyncio
    async def test_admin_is_not_a_subject_type(self, db_session: AsyncSession):
        with pytest.raises(ValidationError, match="subject_type"):
            await admin_adjust(db_session, 1, "admin", 5, "r")

    @pytest.mark.asyncio
    async def test_unknown_subject(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError, match="user 77 not found"):
            await admin_adjust(db_session, 77, "user", 5, "r")
