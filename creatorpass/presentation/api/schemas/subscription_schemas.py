"""Pydantic schemas for subscription API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class SubscribeRequest(BaseModel):
    """Request schema for opening a checkout session."""

    creator_id: str = Field(..., min_length=1, description="Account id of the creator")
    tier: str = Field(..., description="basic, premium or vip")
    billing_cycle: Optional[str] = Field(None, description="monthly (default), quarterly or yearly")


class SubscribeResponse(BaseModel):
    """Response schema for an opened checkout session."""

    session_id: str
    redirect_url: str


class UpdateSubscriptionRequest(BaseModel):
    """Request schema for a tier, cycle or renewal change."""

    tier: Optional[str] = None
    billing_cycle: Optional[str] = None
    auto_renew: Optional[bool] = None


class AutoRenewRequest(BaseModel):
    """Request schema for toggling auto-renewal."""

    enabled: bool


class CancelSubscriptionRequest(BaseModel):
    """Optional body for a cancellation."""

    reason: Optional[str] = Field(None, description="Cancellation reason, user_request when omitted")


class SubscriptionResponse(BaseModel):
    """Response schema for subscription data."""

    id: str
    creator_id: str
    tier: str
    billing_cycle: str
    price: Decimal
    currency: str
    state: str
    start_date: datetime
    end_date: datetime
    renewal_date: datetime
    auto_renew: bool
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    days_remaining: int
    total_paid: Decimal
    has_access: bool


class PaymentResponse(BaseModel):
    """Response schema for a ledger entry."""

    subscription_id: str
    creator_id: str
    tier: str
    amount: Decimal
    currency: str
    status: str
    occurred_at: datetime
    failure_reason: Optional[str]


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PaymentHistoryResponse(BaseModel):
    """Response schema for a page of payment history."""

    items: List[PaymentResponse]
    pagination: PaginationResponse


class PlanPriceResponse(BaseModel):
    billing_cycle: str
    amount: Decimal
    amount_cents: int


class PlanResponse(BaseModel):
    """Response schema for available plans."""

    tier: str
    name: str
    description: str
    features: List[str]
    prices: List[PlanPriceResponse]
