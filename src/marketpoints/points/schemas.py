"""Request/response schemas for points endpoints.

Request bodies keep domain-required fields optional so that missing values
reach the services and come back as structured 400 validation errors.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# ── Ledger ──


class TransactionResponse(BaseModel):
    id: int
    subject_id: int
    subject_type: str
    transaction_type: str
    points_change: int
    description: str
    reference_type: str | None = None
    reference_id: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    subject_id: int
    subject_type: str
    points_balance: int
    total_earned: int
    total_spent: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    recent_transactions: list[TransactionResponse]


class TransactionHistoryResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    page: int
    per_page: int


class AccountResponse(BaseModel):
    subject_id: int
    subject_type: str
    display_name: str | None = None
    points_balance: int
    total_earned: int
    total_spent: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AccountListResponse(BaseModel):
    accounts: list[AccountResponse]
    total: int
    page: int
    per_page: int


# ── Withdrawals ──


class WithdrawalCreateRequest(BaseModel):
    points_amount: int | None = None
    withdrawal_method: str | None = Field(None, max_length=64)
    account_details: str | None = Field(None, max_length=1024)


class WithdrawalApproveRequest(BaseModel):
    admin_notes: str | None = Field(None, max_length=2000)


class WithdrawalRejectRequest(BaseModel):
    admin_notes: str | None = Field(None, max_length=2000)
    reason: str | None = Field(None, max_length=2000)


class WithdrawalResponse(BaseModel):
    id: int
    subject_id: int
    subject_type: str
    display_name: str | None = None
    phone: str | None = None
    store_name: str | None = None
    points_amount: int
    withdrawal_method: str
    account_details: str
    status: str
    admin_notes: str | None = None
    rejection_reason: str | None = None
    processed_by: int | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class WithdrawalListResponse(BaseModel):
    withdrawals: list[WithdrawalResponse]
    total: int
    page: int
    per_page: int


class WithdrawalDecisionResponse(BaseModel):
    withdrawal: WithdrawalResponse
    new_balance: int | None = None


# ── Point requests ──


class PointRequestCreateRequest(BaseModel):
    request_type: str | None = None
    points_amount: int | None = None
    reason: str | None = Field(None, max_length=2000)
    supporting_evidence: str | None = Field(None, max_length=2000)
    additional_details: str | None = Field(None, max_length=2000)


class PointRequestProcessRequest(BaseModel):
    action: str | None = None
    admin_notes: str | None = Field(None, max_length=2000)
    points_adjustment: int | None = None


class PointRequestResponse(BaseModel):
    id: int
    subject_id: int
    subject_type: str
    display_name: str | None = None
    request_type: str
    points_amount: int
    reason: str
    supporting_evidence: str | None = None
    additional_details: str | None = None
    status: str
    admin_notes: str | None = None
    points_awarded: int | None = None
    processed_by: int | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class PointRequestListResponse(BaseModel):
    requests: list[PointRequestResponse]
    total: int
    page: int
    per_page: int


class PointRequestDecisionResponse(BaseModel):
    request: PointRequestResponse
    new_balance: int | None = None


# ── Admin adjustment ──


class AdjustPointsRequest(BaseModel):
    subject_id: int | None = None
    subject_type: str | None = None
    points_change: int | None = None
    reason: str | None = Field(None, max_length=2000)
    transaction_type: str | None = None


class AdjustPointsResponse(BaseModel):
    subject_id: int
    subject_type: str
    points_change: int
    new_balance: int
    reason: str
    transaction_id: int


# ── Stats ──


class StatsOverview(BaseModel):
    total_accounts: int
    total_points_in_circulation: int
    total_points_ever_earned: int
    total_points_ever_spent: int
    average_points_per_account: float
    accounts_with_balance: int


class StatsTransaction(BaseModel):
    id: int
    subject_id: int
    subject_type: str
    display_name: str | None = None
    transaction_type: str
    points_change: int
    description: str
    reference_type: str | None = None
    reference_id: int | None = None
    created_at: datetime | None = None


class DailyTrend(BaseModel):
    date: str
    transactions: int
    points_credited: int
    points_debited: int


class TopSubject(BaseModel):
    subject_id: int
    subject_type: str
    display_name: str | None = None
    points_balance: int
    total_earned: int


class PointsStatsResponse(BaseModel):
    overview: StatsOverview
    pending_withdrawals: int
    pending_point_requests: int
    recent_transactions: list[StatsTransaction]
    daily_trends: list[DailyTrend]
    top_subjects: list[TopSubject]
    generated_at: datetime
