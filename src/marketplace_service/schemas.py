"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    scheduler_last_run_day: str | None


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class TaskResponse(BaseModel):
    """Full task detail response model."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    title: str
    description: str
    category: str
    price: float
    location: str
    schedule_date: str | None
    client_id: str
    tasker_id: str | None
    accepted_offer_id: str | None
    status: Literal["posted", "assigned", "in_progress", "completed", "cancelled"]
    service_fee: float
    payment_method: str
    created_at: str
    updated_at: str
    completed_at: str | None
    cancelled_at: str | None


class OfferResponse(BaseModel):
    """Offer response model."""

    model_config = ConfigDict(extra="forbid")
    offer_id: str
    task_id: str
    tasker_id: str
    client_id: str
    amount: float
    message: str
    status: Literal["pending", "accepted", "rejected", "withdrawn", "cancelled"]
    date_created: str
    date_updated: str | None


class AcceptOfferResponse(BaseModel):
    """Response model for offer acceptance."""

    model_config = ConfigDict(extra="forbid")
    tasker_id: str
    task: TaskResponse
    offer: OfferResponse


class CancelOffersResponse(BaseModel):
    """Response model for cancelling all offers of a task."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    cancelled: int


class PaymentResponse(BaseModel):
    """Payment response model."""

    model_config = ConfigDict(extra="forbid")
    payment_id: str
    task_id: str
    client_id: str
    tasker_id: str
    amount: float
    escrow_held: bool
    status: Literal["pending", "released", "refunded", "disputed"]
    method: str
    created_at: str
    released_at: str | None


class LedgerEntryResponse(BaseModel):
    """Ledger entry response model."""

    model_config = ConfigDict(extra="forbid")
    entry_id: str
    type: Literal["commission", "service_fee", "payout", "subscription", "featured"]
    amount: float
    source_task_id: str
    created_at: str


class EarningsSummaryResponse(BaseModel):
    """Earnings summary response model."""

    model_config = ConfigDict(extra="forbid")
    summary_id: str
    period: str
    type: Literal["daily", "monthly"]
    commission_income: float
    service_fee_income: float
    subscription_income: float
    featured_income: float
    total_income: float
    updated_at: str


class TaskerRatingResponse(BaseModel):
    """Tasker rating aggregate and completion stats."""

    model_config = ConfigDict(extra="forbid")
    tasker_id: str
    rating: float
    review_count: int
    completed_tasks: int
    total_earnings: float
