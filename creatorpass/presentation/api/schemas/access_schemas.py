"""Pydantic schemas for access checks and administrative endpoints."""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class AccessCheckResponse(BaseModel):
    """Response schema for an access decision."""

    allowed: bool
    reason: Optional[str] = None


class RefundRequest(BaseModel):
    """Request to refund a recorded payment."""

    payment_id: str = Field(..., min_length=1, description="Ledger payment id")
    amount: Optional[Decimal] = Field(None, gt=0, description="Amount in major units, full refund when omitted")
    reason: Optional[Literal["duplicate", "fraudulent", "requested_by_customer"]] = None


class RefundResponse(BaseModel):
    refund_id: str
    amount: Decimal
    currency: str
    status: str


class WebhookAckResponse(BaseModel):
    received: bool
    outcome: str
