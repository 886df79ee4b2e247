"""User and administrator driven changes to existing subscriptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from ..domain.errors import Conflict, Forbidden, InvalidArgument, NotFound
from ..domain.models import (
    BillingCycle,
    CancellationReason,
    LedgerEntry,
    Principal,
    Subscription,
    SubscriptionState,
    Tier,
    get_plan,
)
from ..domain.ports.payment_gateway import PaymentGateway, RefundReceipt
from ..domain.ports.persistence import EntitlementStore
from .clock import Clock, utcnow
from .mutations import mutate_subscription

logger = logging.getLogger(__name__)

_CANCELLABLE = (SubscriptionState.ACTIVE, SubscriptionState.PAST_DUE)
_SUBSCRIBER_REASONS = (CancellationReason.USER_REQUEST, CancellationReason.OTHER)


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    subscription_id: str
    creator_id: str
    tier: Tier
    entry: LedgerEntry


class LifecycleService:
    """Cancel, change and toggle renewal of subscriptions.

    The gateway holds the authoritative billing state: every change is sent
    there first and mirrored locally only once the gateway accepted it.
    Later webhooks reconcile any drift.
    """

    def __init__(self, store: EntitlementStore, gateway: PaymentGateway, clock: Clock = utcnow) -> None:
        self._store = store
        self._gateway = gateway
        self._clock = clock

    # Queries ----------------------------------------------------------------
    def list_subscriptions(self, principal: Principal) -> List[Subscription]:
        return self._store.list_for_subscriber(principal.id)

    def get_subscription(self, principal: Principal, subscription_id: str) -> Subscription:
        return self._owned(principal, subscription_id)

    def payment_history(self, principal: Principal, page: int = 1, limit: int = 20) -> Tuple[List[PaymentRecord], int]:
        """Return one page of the caller's ledger entries, newest first, and the total count."""
        if page < 1 or limit < 1:
            raise InvalidArgument("Page and limit must be positive")
        records = [
            PaymentRecord(
                subscription_id=subscription.id,
                creator_id=subscription.creator_id,
                tier=subscription.tier,
                entry=entry,
            )
            for subscription in self._store.list_for_subscriber(principal.id)
            for entry in subscription.payment_ledger
        ]
        records.sort(key=lambda record: record.entry.occurred_at, reverse=True)
        start = (page - 1) * limit
        return records[start : start + limit], len(records)

    # Subscriber operations ------------------------------------------------
    def cancel(
        self,
        principal: Principal,
        subscription_id: str,
        reason: CancellationReason = CancellationReason.USER_REQUEST,
    ) -> Subscription:
        """
        Stop renewal at period end; access continues until ``end_date``.

        Calling it again while renewal is already off returns the record
        unchanged. After renewal was switched back on, cancelling again
        stops it again and keeps the first ``cancelled_at``.
        """
        if reason not in _SUBSCRIBER_REASONS:
            raise InvalidArgument(f"Invalid cancellation reason: {reason.value!r}")
        subscription = self._owned(principal, subscription_id)
        if _renewal_stopped(subscription):
            return subscription
        if subscription.state not in _CANCELLABLE:
            raise Conflict("Subscription is not active")

        self._gateway.cancel_external_subscription(subscription.external_subscription_id, at_period_end=True)
        now = self._clock()

        def update(record: Subscription) -> bool:
            if _renewal_stopped(record):
                return False
            record.auto_renew = False
            record.mark_cancelled(now, reason)
            return True

        updated = mutate_subscription(self._store, subscription, update)
        logger.info("Subscription %s cancelled by subscriber %s (%s)", updated.id, principal.id, reason.value)
        return updated

    def update(
        self,
        principal: Principal,
        subscription_id: str,
        tier: Optional[object] = None,
        billing_cycle: Optional[object] = None,
        auto_renew: Optional[bool] = None,
    ) -> Subscription:
        """Change tier and/or billing cycle and optionally the renewal flag.

        The new price comes from the plan table; proration is left to the
        gateway. A changed cycle applies from the next renewal.
        """
        if tier is None and billing_cycle is None and auto_renew is None:
            raise InvalidArgument("Nothing to update")
        subscription = self._owned(principal, subscription_id)
        if subscription.state.is_terminal:
            raise Conflict("Subscription is not active")

        new_tier = Tier.parse(tier) if tier is not None else subscription.tier
        new_cycle = BillingCycle.parse(billing_cycle) if billing_cycle is not None else subscription.billing_cycle
        price = get_plan(new_tier).price_for(new_cycle)
        plan_changed = (new_tier, new_cycle) != (subscription.tier, subscription.billing_cycle)
        renew_changed = auto_renew is not None and auto_renew != subscription.auto_renew
        if not plan_changed and not renew_changed:
            return subscription

        self._gateway.update_external_subscription(
            subscription.external_subscription_id,
            price_id=price.price_id if plan_changed else None,
            cancel_at_period_end=(not auto_renew) if renew_changed else None,
        )

        def update(record: Subscription) -> bool:
            if plan_changed:
                record.tier = new_tier
                record.billing_cycle = new_cycle
                record.price = price.amount
                record.external_price_id = price.price_id
            if renew_changed:
                record.auto_renew = bool(auto_renew)
            return True

        updated = mutate_subscription(self._store, subscription, update)
        logger.info(
            "Subscription %s updated by subscriber %s: tier=%s cycle=%s auto_renew=%s",
            updated.id,
            principal.id,
            updated.tier.value,
            updated.billing_cycle.value,
            updated.auto_renew,
        )
        return updated

    def set_auto_renew(self, principal: Principal, subscription_id: str, enabled: bool) -> Subscription:
        return self.update(principal, subscription_id, auto_renew=enabled)

    # Administrative operations --------------------------------------------
    def suspend(self, principal: Principal, subscription_id: str) -> Subscription:
        _require_admin(principal)
        subscription = self._get(subscription_id)
        if subscription.state is SubscriptionState.SUSPENDED:
            return subscription
        if subscription.state.is_terminal:
            raise Conflict("Cancelled subscriptions cannot be suspended")

        def update(record: Subscription) -> bool:
            if record.state is SubscriptionState.SUSPENDED:
                return False
            if record.state.is_terminal:
                raise Conflict("Cancelled subscriptions cannot be suspended")
            record.state = SubscriptionState.SUSPENDED
            return True

        updated = mutate_subscription(self._store, subscription, update)
        logger.info("Subscription %s suspended by administrator %s", updated.id, principal.id)
        return updated

    def reinstate(self, principal: Principal, subscription_id: str) -> Subscription:
        _require_admin(principal)
        subscription = self._get(subscription_id)
        if subscription.state is not SubscriptionState.SUSPENDED:
            raise Conflict("Only suspended subscriptions can be reinstated")

        def update(record: Subscription) -> bool:
            if record.state is not SubscriptionState.SUSPENDED:
                raise Conflict("Only suspended subscriptions can be reinstated")
            record.state = SubscriptionState.ACTIVE
            return True

        updated = mutate_subscription(self._store, subscription, update)
        logger.info("Subscription %s reinstated by administrator %s", updated.id, principal.id)
        return updated

    def refund(
        self,
        principal: Principal,
        external_payment_id: str,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> RefundReceipt:
        """Ask the gateway to refund a recorded payment.

        The ledger entry is appended when the gateway confirms the refund
        through its webhook, not here.
        """
        _require_admin(principal)
        subscription = self._store.get_by_external_payment_id(external_payment_id)
        if subscription is None:
            raise NotFound("Payment not found")
        amount_cents = None
        if amount is not None:
            if amount <= 0:
                raise InvalidArgument("Refund amount must be positive")
            amount_cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        receipt = self._gateway.refund_payment(external_payment_id, amount_cents=amount_cents, reason=reason)
        logger.info(
            "Refund %s requested by administrator %s for subscription %s",
            receipt.refund_id,
            principal.id,
            subscription.id,
        )
        return receipt

    # Helpers ----------------------------------------------------------------
    def _get(self, subscription_id: str) -> Subscription:
        subscription = self._store.get_subscription(subscription_id)
        if subscription is None:
            raise NotFound("Subscription not found")
        return subscription

    def _owned(self, principal: Principal, subscription_id: str) -> Subscription:
        subscription = self._store.get_subscription(subscription_id)
        if subscription is None or subscription.subscriber_id != principal.id:
            raise NotFound("Subscription not found")
        return subscription


def _require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise Forbidden("Administrator access required")


def _renewal_stopped(subscription: Subscription) -> bool:
    return subscription.cancelled_at is not None and not subscription.auto_renew
