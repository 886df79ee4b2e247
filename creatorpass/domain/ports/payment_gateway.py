from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True, slots=True)
class RefundReceipt:
    refund_id: str
    amount: Decimal
    currency: str
    status: str


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    """Verified event envelope delivered by the payment gateway."""

    id: str
    type: str
    occurred_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """Capabilities the engine needs from an external payment processor.

    Implementations raise ``GatewayUnavailable`` on timeouts or connection
    failures and ``InvalidArgument`` when the processor rejects a request.
    """

    def create_customer(
        self,
        account_id: str,
        email: Optional[str],
        name: Optional[str],
    ) -> str:
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        ...

    def update_external_subscription(
        self,
        external_subscription_id: str,
        *,
        price_id: Optional[str] = None,
        cancel_at_period_end: Optional[bool] = None,
    ) -> None:
        ...

    def cancel_external_subscription(self, external_subscription_id: str, at_period_end: bool = True) -> None:
        ...

    def refund_payment(
        self,
        external_payment_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundReceipt:
        ...

    def verify_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify ``signature`` over ``payload`` before parsing it.

        Raises ``SignatureInvalid`` or ``InvalidArgument`` (unparseable).
        """
        ...
