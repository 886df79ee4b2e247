"""Reconciles signed gateway events into the entitlement store.

Deliveries are at-least-once and may arrive out of order. Handling is
idempotent on three levels:

* event ids already reconciled are acknowledged without re-running,
* ledger entries are keyed by the gateway payment id,
* state transitions only apply when legal from the current state and when
  the event is not older than the subscription watermark.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..domain.errors import EventDeferred, InvalidArgument, SignatureInvalid
from ..domain.models import (
    BillingCycle,
    CancellationReason,
    LedgerEntry,
    PaymentStatus,
    Subscription,
    SubscriptionState,
    Tier,
    cents_to_amount,
    compute_period_end,
    find_plan_by_price_id,
    get_plan,
)
from ..domain.ports.payment_gateway import GatewayEvent, PaymentGateway
from ..domain.ports.persistence import EntitlementStore
from .clock import Clock, utcnow
from .mutations import mutate_subscription

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    event_id: str
    event_type: str
    outcome: ReconcileOutcome
    subscription_id: Optional[str] = None


# Legal moves driven by payment events. Anything else is a no-op.
_PAYMENT_SUCCEEDED_MOVES = {
    SubscriptionState.ACTIVE: SubscriptionState.ACTIVE,
    SubscriptionState.PAST_DUE: SubscriptionState.ACTIVE,
}
_PAYMENT_FAILED_MOVES = {
    SubscriptionState.ACTIVE: SubscriptionState.PAST_DUE,
}

_Handled = Tuple[ReconcileOutcome, Optional[str]]


class WebhookReconciler:
    """Single entry point for gateway webhooks."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    CHARGE_REFUNDED = "charge.refunded"

    def __init__(
        self,
        store: EntitlementStore,
        gateway: PaymentGateway,
        default_currency: str = "USD",
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._default_currency = default_currency.upper()
        self._clock = clock
        self._handlers: Dict[str, Callable[[GatewayEvent], _Handled]] = {
            self.CHECKOUT_COMPLETED: self._on_checkout_completed,
            self.PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            self.PAYMENT_FAILED: self._on_payment_failed,
            self.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            self.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            self.CHARGE_REFUNDED: self._on_charge_refunded,
        }

    def handle(self, payload: bytes, signature: str) -> ReconcileResult:
        """Verify a raw delivery and reconcile it.

        Raises ``SignatureInvalid`` or ``InvalidArgument`` before anything is
        applied; the sender is expected to treat both as delivery failures.
        """
        try:
            event = self._gateway.verify_event(payload, signature)
        except SignatureInvalid:
            logger.warning("Rejected webhook delivery with an invalid signature (possible forgery attempt)")
            raise
        except InvalidArgument:
            logger.warning("Rejected unparseable webhook delivery")
            raise
        return self.apply(event)

    def apply(self, event: GatewayEvent) -> ReconcileResult:
        if self._store.is_event_processed(event.id):
            logger.info("Event %s (%s) already reconciled", event.id, event.type)
            return ReconcileResult(event.id, event.type, ReconcileOutcome.DUPLICATE)

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Ignoring unhandled event type %s (%s)", event.type, event.id)
            outcome, subscription_id = ReconcileOutcome.IGNORED, None
        else:
            try:
                outcome, subscription_id = handler(event)
            except EventDeferred as exc:
                logger.info("Deferring event %s (%s): %s", event.id, event.type, exc.message)
                raise

        self._store.mark_event_processed(event.id, event.type, outcome.value, self._clock())
        logger.info(
            "Reconciled event %s (%s): %s subscription=%s",
            event.id,
            event.type,
            outcome.value,
            subscription_id,
        )
        return ReconcileResult(event.id, event.type, outcome, subscription_id)

    # Handlers -------------------------------------------------------------
    def _on_checkout_completed(self, event: GatewayEvent) -> _Handled:
        session = event.data
        metadata = session.get("metadata") or {}
        external_subscription_id = session.get("subscription")
        customer_id = session.get("customer")
        subscriber_id = metadata.get("subscriber_id")
        creator_id = metadata.get("creator_id")
        if not (external_subscription_id and customer_id and subscriber_id and creator_id):
            logger.info("Checkout %s carries no subscription metadata; ignoring", session.get("id"))
            return ReconcileOutcome.IGNORED, None
        try:
            tier = Tier.parse(metadata.get("tier"))
            cycle = BillingCycle.parse(metadata.get("billing_cycle") or BillingCycle.MONTHLY)
        except InvalidArgument as exc:
            logger.warning("Checkout %s has invalid plan metadata: %s", session.get("id"), exc.message)
            return ReconcileOutcome.IGNORED, None

        existing = self._store.get_by_external_subscription_id(external_subscription_id)
        if existing is not None:
            return ReconcileOutcome.DUPLICATE, existing.id
        active = self._store.get_active_for_pair(subscriber_id, creator_id)
        if active is not None:
            logger.error(
                "Checkout completed while subscriber %s already holds active subscription %s to %s; "
                "cancelling orphaned external subscription %s",
                subscriber_id,
                active.id,
                creator_id,
                external_subscription_id,
            )
            self._gateway.cancel_external_subscription(external_subscription_id, at_period_end=False)
            return ReconcileOutcome.STALE, active.id

        price = get_plan(tier).price_for(cycle)
        start = event.occurred_at
        end = compute_period_end(start, cycle)
        subscription = Subscription(
            id=uuid.uuid4().hex,
            subscriber_id=subscriber_id,
            creator_id=creator_id,
            tier=tier,
            billing_cycle=cycle,
            price=price.amount,
            currency=str(session.get("currency") or self._default_currency).upper(),
            state=SubscriptionState.ACTIVE,
            start_date=start,
            end_date=end,
            renewal_date=end,
            external_subscription_id=external_subscription_id,
            external_customer_id=customer_id,
            external_price_id=price.price_id,
            last_event_at=event.occurred_at,
        )
        created = self._store.create_if_absent(subscription)
        if created is None:
            logger.warning("Lost creation race for %s; another record already exists", external_subscription_id)
            return ReconcileOutcome.STALE, None
        logger.info(
            "Subscription %s activated: subscriber %s creator %s tier %s",
            created.id,
            subscriber_id,
            creator_id,
            tier.value,
        )
        return ReconcileOutcome.APPLIED, created.id

    def _on_payment_succeeded(self, event: GatewayEvent) -> _Handled:
        invoice = event.data
        entry = LedgerEntry(
            amount=cents_to_amount(invoice.get("amount_paid") or 0),
            currency=self._currency(invoice),
            status=PaymentStatus.SUCCEEDED,
            external_payment_id=_invoice_payment_id(invoice, attempt_scoped=False),
            occurred_at=_timestamp((invoice.get("status_transitions") or {}).get("paid_at")) or event.occurred_at,
        )
        return self._apply_payment(event, invoice, entry, _PAYMENT_SUCCEEDED_MOVES)

    def _on_payment_failed(self, event: GatewayEvent) -> _Handled:
        invoice = event.data
        error = invoice.get("last_finalization_error") or invoice.get("last_payment_error") or {}
        entry = LedgerEntry(
            amount=cents_to_amount(invoice.get("amount_due") or 0),
            currency=self._currency(invoice),
            status=PaymentStatus.FAILED,
            external_payment_id=_invoice_payment_id(invoice, attempt_scoped=True),
            occurred_at=event.occurred_at,
            failure_reason=error.get("message") or "Payment failed",
        )
        return self._apply_payment(event, invoice, entry, _PAYMENT_FAILED_MOVES)

    def _apply_payment(
        self,
        event: GatewayEvent,
        invoice: Mapping[str, Any],
        entry: LedgerEntry,
        moves: Mapping[SubscriptionState, SubscriptionState],
    ) -> _Handled:
        external_subscription_id = _invoice_subscription_id(invoice)
        if not external_subscription_id:
            logger.info("Payment event %s is not for a subscription; ignoring", event.id)
            return ReconcileOutcome.IGNORED, None
        subscription = self._store.get_by_external_subscription_id(external_subscription_id)
        if subscription is None:
            # The invoice can be delivered before its checkout completion.
            raise EventDeferred(f"Subscription {external_subscription_id} is not recorded yet")

        outcome = ReconcileOutcome.APPLIED

        def update(record: Subscription) -> bool:
            nonlocal outcome
            if not record.record_payment(entry):
                outcome = ReconcileOutcome.DUPLICATE
                return False
            if record.is_stale(event.occurred_at):
                # The ledger keeps the fact; state and period stay untouched.
                outcome = ReconcileOutcome.STALE
                return True
            outcome = ReconcileOutcome.APPLIED
            record.last_event_at = event.occurred_at
            target = moves.get(record.state)
            if target is None:
                logger.info(
                    "No transition for %s from state %s on subscription %s",
                    event.type,
                    record.state.value,
                    record.id,
                )
                return True
            if target is not record.state:
                logger.info("Subscription %s: %s -> %s", record.id, record.state.value, target.value)
            record.state = target
            if entry.status is PaymentStatus.SUCCEEDED:
                _advance_period(record, entry.occurred_at)
            return True

        updated = mutate_subscription(self._store, subscription, update)
        return outcome, updated.id

    def _on_subscription_updated(self, event: GatewayEvent) -> _Handled:
        data = event.data
        subscription = self._store.get_by_external_subscription_id(str(data.get("id")))
        if subscription is None:
            return ReconcileOutcome.IGNORED, None

        plan = find_plan_by_price_id(_subscription_price_id(data))
        auto_renew = not bool(data.get("cancel_at_period_end", False))
        outcome = ReconcileOutcome.APPLIED

        def update(record: Subscription) -> bool:
            nonlocal outcome
            if record.is_stale(event.occurred_at):
                outcome = ReconcileOutcome.STALE
                return False
            changed = record.auto_renew != auto_renew
            record.auto_renew = auto_renew
            if plan is not None:
                tier, cycle, price = plan
                if (record.tier, record.billing_cycle, record.external_price_id) != (tier, cycle, price.price_id):
                    record.tier = tier
                    record.billing_cycle = cycle
                    record.price = price.amount
                    record.external_price_id = price.price_id
                    changed = True
            if not changed:
                outcome = ReconcileOutcome.DUPLICATE
                return False
            outcome = ReconcileOutcome.APPLIED
            record.last_event_at = event.occurred_at
            return True

        updated = mutate_subscription(self._store, subscription, update)
        return outcome, updated.id

    def _on_subscription_deleted(self, event: GatewayEvent) -> _Handled:
        subscription = self._store.get_by_external_subscription_id(str(event.data.get("id")))
        if subscription is None:
            return ReconcileOutcome.IGNORED, None

        outcome = ReconcileOutcome.APPLIED

        def update(record: Subscription) -> bool:
            nonlocal outcome
            if record.state.is_terminal:
                outcome = ReconcileOutcome.DUPLICATE
                return False
            if record.is_stale(event.occurred_at):
                outcome = ReconcileOutcome.STALE
                return False
            outcome = ReconcileOutcome.APPLIED
            reason = (
                CancellationReason.PAYMENT_FAILURE
                if record.state is SubscriptionState.PAST_DUE
                else CancellationReason.OTHER
            )
            logger.info("Subscription %s: %s -> cancelled", record.id, record.state.value)
            record.state = SubscriptionState.CANCELLED
            record.auto_renew = False
            record.mark_cancelled(event.occurred_at, reason)
            record.last_event_at = event.occurred_at
            return True

        updated = mutate_subscription(self._store, subscription, update)
        return outcome, updated.id

    def _on_charge_refunded(self, event: GatewayEvent) -> _Handled:
        charge = event.data
        subscription = None
        for payment_id in (charge.get("id"), charge.get("payment_intent")):
            if payment_id:
                subscription = self._store.get_by_external_payment_id(str(payment_id))
            if subscription is not None:
                break
        if subscription is None:
            if charge.get("invoice"):
                # The refunded invoice payment has not been reconciled yet.
                raise EventDeferred(f"Payment {charge.get('id')} is not recorded yet")
            logger.info("Refund event %s does not match a known payment; ignoring", event.id)
            return ReconcileOutcome.IGNORED, None

        listed = self._listed_refunds(event, charge)
        outcome = ReconcileOutcome.APPLIED

        def update(record: Subscription) -> bool:
            nonlocal outcome
            entries = listed if listed else self._cumulative_refund(event, charge, record)
            appended = [entry for entry in entries if record.record_payment(entry)]
            outcome = ReconcileOutcome.APPLIED if appended else ReconcileOutcome.DUPLICATE
            return bool(appended)

        updated = mutate_subscription(self._store, subscription, update)
        return outcome, updated.id

    # Helpers --------------------------------------------------------------
    def _listed_refunds(self, event: GatewayEvent, charge: Mapping[str, Any]) -> List[LedgerEntry]:
        currency = self._currency(charge)
        refunds = (charge.get("refunds") or {}).get("data") or []
        return [
            LedgerEntry(
                amount=cents_to_amount(refund.get("amount") or 0),
                currency=str(refund.get("currency") or currency).upper(),
                status=PaymentStatus.REFUNDED,
                external_payment_id=str(refund["id"]),
                occurred_at=_timestamp(refund.get("created")) or event.occurred_at,
            )
            for refund in refunds
        ]

    def _cumulative_refund(
        self, event: GatewayEvent, charge: Mapping[str, Any], record: Subscription
    ) -> List[LedgerEntry]:
        """Record the part of ``amount_refunded`` not yet in the ledger.

        Without an expanded refunds list the charge only carries a running
        total, so each event contributes the difference under its own id.
        """
        prefix = f"{charge.get('id')}:refund:"
        recorded = sum(
            (
                entry.amount
                for entry in record.payment_ledger
                if entry.status is PaymentStatus.REFUNDED and entry.external_payment_id.startswith(prefix)
            ),
            Decimal("0"),
        )
        delta = cents_to_amount(charge.get("amount_refunded") or 0) - recorded
        if delta <= 0:
            return []
        return [
            LedgerEntry(
                amount=delta,
                currency=self._currency(charge),
                status=PaymentStatus.REFUNDED,
                external_payment_id=f"{prefix}{event.id}",
                occurred_at=event.occurred_at,
            )
        ]

    def _currency(self, obj: Mapping[str, Any]) -> str:
        return str(obj.get("currency") or self._default_currency).upper()


def _advance_period(record: Subscription, paid_at: datetime) -> None:
    # A payment after a lapse starts the new period when it was paid.
    start = max(record.end_date, paid_at)
    record.start_date = start
    record.end_date = compute_period_end(start, record.billing_cycle)
    record.renewal_date = record.end_date


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    direct = invoice.get("subscription")
    if isinstance(direct, str) and direct:
        return direct
    # Newer API versions nest it under parent.subscription_details.
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    nested = details.get("subscription")
    return str(nested) if nested else None


def _invoice_payment_id(invoice: Mapping[str, Any], attempt_scoped: bool) -> str:
    """Identify one payment attempt of an invoice.

    Every attempt gets its own charge. Without a charge id, a failed attempt
    is scoped by the attempt count so a later successful retry on the same
    payment intent is not mistaken for a redelivery.
    """
    charge = invoice.get("charge")
    if charge:
        return str(charge)
    base = str(invoice.get("payment_intent") or invoice.get("id"))
    if attempt_scoped:
        return f"{base}:attempt-{invoice.get('attempt_count') or 1}"
    return base


def _subscription_price_id(data: Mapping[str, Any]) -> Optional[str]:
    items = (data.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id")


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None
