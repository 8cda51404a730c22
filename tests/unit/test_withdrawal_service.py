"""Withdrawal workflow unit tests."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.database import transaction
from marketpoints.db.models import PointTransaction
from marketpoints.errors import ConflictError, InsufficientBalanceError, InternalError, NotFoundError, ValidationError
from marketpoints.points import withdrawal_service
from marketpoints.points.ledger_service import (
    ADMIN_BONUS,
    ADMIN_PENALTY,
    REF_WITHDRAWAL,
    SPENT_WITHDRAWAL,
    apply_delta,
    get_account,
    get_balance,
)
from marketpoints.points.withdrawal_service import (
    APPROVED,
    DEFAULT_APPROVAL_NOTE,
    PENDING,
    REJECTED,
    VALID_TRANSITIONS,
    approve_withdrawal,
    get_withdrawal,
    list_subject_withdrawals,
    list_withdrawals,
    reject_withdrawal,
    request_withdrawal,
)
from marketpoints.subjects.interfaces import SubjectRef


async def _funded(db: AsyncSession, subject: SubjectRef, points: int) -> SubjectRef:
    await apply_delta(db, subject, points, ADMIN_BONUS, "Seed")
    await db.commit()
    return subject


class TestTransitions:
    def test_pending_is_the_only_open_state(self):
        assert VALID_TRANSITIONS[PENDING] == [APPROVED, REJECTED]
        assert VALID_TRANSITIONS[APPROVED] == []
        assert VALID_TRANSITIONS[REJECTED] == []


class TestRequestWithdrawal:
    """Creating a withdrawal request."""

    @pytest.mark.asyncio
    async def test_creates_pending_without_debit(self, db_session: AsyncSession, make_user):
        """Balance 100, request 40: pending, balance untouched."""
        user = await _funded(db_session, await make_user(), 100)

        withdrawal = await request_withdrawal(db_session, user, 40, "bank", "JO00 1234")
        await db_session.commit()

        assert withdrawal.status == PENDING
        assert withdrawal.points_amount == 40
        assert await get_balance(db_session, user) == 100

    @pytest.mark.asyncio
    async def test_exceeding_balance_rejected(self, db_session: AsyncSession, make_user):
        """Balance 100, request 150: insufficient balance, nothing created."""
        user = await _funded(db_session, await make_user(), 100)

        with pytest.raises(InsufficientBalanceError):
            await request_withdrawal(db_session, user, 150, "bank", "JO00 1234")
        items, total = await list_subject_withdrawals(db_session, user)
        assert total == 0

    @pytest.mark.asyncio
    async def test_no_account_counts_as_zero(self, db_session: AsyncSession, make_user):
        user = await make_user()
        with pytest.raises(InsufficientBalanceError):
            await request_withdrawal(db_session, user, 1, "bank", "JO00 1234")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -10, None])
    async def test_non_positive_amount_rejected(self, db_session: AsyncSession, make_user, amount):
        user = await make_user()
        with pytest.raises(ValidationError, match="positive"):
            await request_withdrawal(db_session, user, amount, "bank", "JO00 1234")

    @pytest.mark.asyncio
    async def test_blank_method_rejected(self, db_session: AsyncSession, make_user):
        user = await _funded(db_session, await make_user(), 100)
        with pytest.raises(ValidationError, match="required"):
            await request_withdrawal(db_session, user, 10, "   ", "JO00 1234")

    @pytest.mark.asyncio
    async def test_unknown_subject_not_found(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await request_withdrawal(db_session, SubjectRef(999, "user"), 10, "bank", "JO00 1234")


class TestApproveWithdrawal:
    """Approval debits the ledger."""

    @pytest.mark.asyncio
    async def test_approve_debits_and_logs(self, db_session: AsyncSession, make_user):
        """Pending 40 on balance 100: approved, balance 60, spent_withdrawal -40."""
        user = await _funded(db_session, await make_user(), 100)
        withdrawal = await request_withdrawal(db_session, user, 40, "bank", "JO00 1234")
        await db_session.commit()

        approved, ledger = await approve_withdrawal(db_session, withdrawal.id, admin_id=1)
        await db_session.commit()

        assert approved.status == APPROVED
        assert approved.admin_notes == DEFAULT_APPROVAL_NOTE
        assert approved.processed_by == 1
        assert approved.processed_at is not None
        assert ledger.new_balance == 60

        account = await get_account(db_session, user)
        assert account.points_balance == 60
        assert account.total_spent == 40

        txn = (
            await db_session.execute(
                select(PointTransaction).where(PointTransaction.transaction_type == SPENT_WITHDRAWAL)
            )
        ).scalar_one()
        assert txn.points_change == -40
        assert txn.reference_type == REF_WITHDRAWAL
        assert txn.reference_id == withdrawal.id
        assert txn.description == "Withdrawal approved: bank"

    @pytest.mark.asyncio
    async def test_approve_keeps_admin_notes(self, db_session: AsyncSession, make_user):
        user = await _funded(db_session, await make_user(), 100)
        withdrawal = await request_withdrawal(db_session, user, 10, "wallet", "0790000000")
        await db_session.commit()

        approved, _ = await approve_withdrawal(db_session, withdrawal.id, 1, "Paid via wallet")
        assert approved.admin_notes == "Paid via wallet"

    @pytest.mark.asyncio
    async def test_second_approval_conflicts(self, db_session: AsyncSession, make_user):
        """Approving twice debits once."""
        user = await _funded(db_session, await make_user(), 100)
        withdrawal = await request_withdrawal(db_session, user, 40, "bank", "JO00 1234")
        await db_session.commit()
        await approve_withdrawal(db_session, withdrawal.id, 1)
        await db_session.commit()

        with pytest.raises(ConflictError, match="already approved"):
            await approve_withdrawal(db_session, withdrawal.id, 1)
        await db_session.rollback()
        assert await get_balance(db_session, user) == 60

    @pytest.mark.asyncio
    async def test_balance_dropped_since_request(self, db_session: AsyncSession, make_user):
        """A balance that no longer covers the amount leaves the request pending."""
        user = await _funded(db_session, await make_user(), 100)
        withdrawal_id = (await request_withdrawal(db_session, user, 80, "bank", "JO00 1234")).id
        await db_session.commit()
        await apply_delta(db_session, user, -50, ADMIN_PENALTY, "Penalty")
        await db_session.commit()

        with pytest.raises(InsufficientBalanceError):
            await approve_withdrawal(db_session, withdrawal_id, 1)
        await db_session.rollback()

        reloaded = await get_withdrawal(db_session, withdrawal_id)
        assert reloaded.status == PENDING
        assert reloaded.processed_at is None
        assert await get_balance(db_session, user) == 50

    @pytest.mark.asyncio
    async def test_ledger_failure_rolls_back_approval(self, db_session: AsyncSession, make_user, monkeypatch):
        """A failed debit leaves the withdrawal pending and writes no transaction."""
        user = await _funded(db_session, await make_user(), 100)
        withdrawal_id = (await request_withdrawal(db_session, user, 40, "bank", "JO00 1234")).id
        await db_session.commit()

        async def _broken(db, *_args, **_kwargs):
            await db.flush()
            raise OperationalError("UPDATE ledger_accounts", {}, Exception("disk I/O error"))

        monkeypatch.setattr(withdrawal_service, "apply_delta", _broken)
        with pytest.raises(InternalError):
            async with transaction(db_session):
                await approve_withdrawal(db_session, withdrawal_id, 1)

        reloaded = await get_withdrawal(db_session, withdrawal_id)
        assert reloaded.status == PENDING
        assert reloaded.processed_at is None
        assert reloaded.processed_by is None
        assert await get_balance(db_session, user) == 100
        debits = (
            await db_session.execute(
                select(func.count())
                .select_from(PointTransaction)
                .where(PointTransaction.transaction_type == SPENT_WITHDRAWAL)
            )
        ).scalar_one()
        assert debits == 0

    @pytest.mark.asyncio
    async def test_missing_withdrawal(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await approve_withdrawal(db_session, 404, 1)


class TestRejectWithdrawal:
    """Rejection has no ledger effect."""

    @pytest.mark.asyncio
    async def test_reject_records_reason(self, db_session: AsyncSession, make_user):
        user = await _funded(db_session, await make_user(), 100)
        withdrawal = await request_withdrawal(db_session, user, 40, "bank", "JO00 1234")
        await db_session.commit()

        rejected = await reject_withdrawal(db_session, withdrawal.id, 7, "Checked account", "IBAN mismatch")
        await db_session.commit()

        assert rejected.status == REJECTED
        assert rejected.admin_notes == "Checked account"
        assert rejected.rejection_reason == "IBAN mismatch"
        assert rejected.processed_by == 7
        assert await get_balance(db_session, user) == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("notes", "reason"), [(None, "r"), ("n", None), ("", ""), ("n", "  ")])
    async def test_notes_and_reason_required(self, db_session: AsyncSession, notes, reason):
        with pytest.raises(ValidationError, match="required"):
            await reject_withdrawal(db_session, 1, 7, notes, reason)

    @pytest.mark.asyncio
    async def test_cannot_reject_after_approval(self, db_session: AsyncSession, make_user):
        user = await _funded(db_session, await make_user(), 100)
        withdrawal = await request_withdrawal(db_session, user, 40, "bank", "JO00 1234")
        await db_session.commit()
        await approve_withdrawal(db_session, withdrawal.id, 1)
        await db_session.commit()

        with pytest.raises(ConflictError):
            await reject_withdrawal(db_session, withdrawal.id, 1, "Too late", "Changed mind")


class TestListings:
    @pytest.mark.asyncio
    async def test_admin_listing_filters_by_status(self, db_session: AsyncSession, make_user):
        user = await _funded(db_session, await make_user(), 100)
        first = await request_withdrawal(db_session, user, 10, "bank", "A")
        second = await request_withdrawal(db_session, user, 20, "bank", "B")
        await db_session.commit()
        await reject_withdrawal(db_session, first.id, 1, "n", "r")
        await db_session.commit()

        pending, total = await list_withdrawals(db_session)
        assert total == 1
        assert pending[0].id == second.id

        everything, total = await list_withdrawals(db_session, status=None)
        assert total == 2

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, db_session: AsyncSession):
        with pytest.raises(ValidationError):
            await list_withdrawals(db_session, status="paid")
