"""Subscription domain model linking a subscriber to a creator's paid tier."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from .enums import BillingCycle, CancellationReason, PaymentStatus, SubscriptionState, Tier


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    amount: Decimal
    currency: str
    status: PaymentStatus
    external_payment_id: str
    occurred_at: datetime
    failure_reason: Optional[str] = None


class Subscription:
    """
    Subscription entity representing a subscriber's paid access to a creator.

    Attributes:
        id: Opaque identifier, stable for the life of the record
        subscriber_id: Principal paying for access
        creator_id: Principal owning the gated content
        tier: Purchased access tier
        billing_cycle: Billing cycle used to derive period ends
        price: Amount agreed for the current billing period
        currency: ISO currency code of ``price``
        state: Current lifecycle state
        start_date: Start of the current billing period
        end_date: End of the current billing period
        renewal_date: Next renewal instant (equal to ``end_date``)
        auto_renew: Whether the gateway will renew at period end
        external_subscription_id: Gateway subscription handle
        external_customer_id: Gateway customer handle
        external_price_id: Gateway price handle for ``tier``/``billing_cycle``
        payment_ledger: Append-only payment history
        cancelled_at: When cancellation was requested or took effect
        cancellation_reason: Why the subscription was cancelled
        last_event_at: Watermark of the most recently applied gateway event
        version: Compare-and-swap token, bumped on every committed write
        created_at: Record creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: str,
        subscriber_id: str,
        creator_id: str,
        tier: Tier,
        billing_cycle: BillingCycle,
        price: Decimal,
        currency: str,
        state: SubscriptionState,
        start_date: datetime,
        end_date: datetime,
        renewal_date: datetime,
        external_subscription_id: str,
        external_customer_id: str,
        external_price_id: Optional[str] = None,
        auto_renew: bool = True,
        payment_ledger: Tuple[LedgerEntry, ...] = (),
        cancelled_at: Optional[datetime] = None,
        cancellation_reason: Optional[CancellationReason] = None,
        last_event_at: Optional[datetime] = None,
        version: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.subscriber_id = subscriber_id
        self.creator_id = creator_id
        self.tier = tier
        self.billing_cycle = billing_cycle
        self.price = price
        self.currency = currency
        self.state = state
        self.start_date = start_date
        self.end_date = end_date
        self.renewal_date = renewal_date
        self.external_subscription_id = external_subscription_id
        self.external_customer_id = external_customer_id
        self.external_price_id = external_price_id
        self.auto_renew = auto_renew
        self.payment_ledger = tuple(payment_ledger)
        self.cancelled_at = cancelled_at
        self.cancellation_reason = cancellation_reason
        self.last_event_at = last_event_at
        self.version = version
        now = datetime.now(timezone.utc)
        self.created_at = created_at or now
        self.updated_at = updated_at or now

    def is_active(self) -> bool:
        return self.state is SubscriptionState.ACTIVE

    def grants_access_at(self, now: datetime) -> bool:
        """Active and the current period has not lapsed."""
        return self.is_active() and self.end_date > now

    def has_payment(self, external_payment_id: str) -> bool:
        return any(entry.external_payment_id == external_payment_id for entry in self.payment_ledger)

    def record_payment(self, entry: LedgerEntry) -> bool:
        """Append ``entry`` unless its payment id is already in the ledger."""
        if self.has_payment(entry.external_payment_id):
            return False
        self.payment_ledger = self.payment_ledger + (entry,)
        return True

    def mark_cancelled(self, when: datetime, reason: CancellationReason) -> None:
        """Set the cancellation stamp once; later calls keep the first values."""
        if self.cancelled_at is None:
            self.cancelled_at = when
        if self.cancellation_reason is None:
            self.cancellation_reason = reason

    def is_stale(self, occurred_at: datetime) -> bool:
        return self.last_event_at is not None and occurred_at < self.last_event_at

    @property
    def total_paid(self) -> Decimal:
        paid = sum(
            (entry.amount for entry in self.payment_ledger if entry.status is PaymentStatus.SUCCEEDED),
            Decimal("0"),
        )
        refunded = sum(
            (entry.amount for entry in self.payment_ledger if entry.status is PaymentStatus.REFUNDED),
            Decimal("0"),
        )
        return paid - refunded

    def days_remaining(self, now: datetime) -> int:
        seconds = (self.end_date - now).total_seconds()
        return max(0, -int(-seconds // 86400))

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} subscriber_id={self.subscriber_id} "
            f"creator_id={self.creator_id} tier={self.tier.value} state={self.state.value}>"
        )
