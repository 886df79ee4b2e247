"""Stripe implementation of the payment gateway port."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import stripe

from ...domain.errors import GatewayUnavailable, InvalidArgument, SignatureInvalid
from ...domain.models import cents_to_amount
from ...domain.ports.payment_gateway import CheckoutSession, GatewayEvent, PaymentGateway, RefundReceipt

logger = logging.getLogger(__name__)


def parse_event_envelope(payload: bytes) -> GatewayEvent:
    """Parse a Stripe event body into a ``GatewayEvent``.

    Raises ``InvalidArgument`` for anything that is not a well-formed
    ``{id, type, created, data: {object}}`` envelope.
    """
    try:
        body = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument("Malformed webhook payload") from exc
    if not isinstance(body, dict):
        raise InvalidArgument("Malformed webhook payload")
    event_id = body.get("id")
    event_type = body.get("type")
    created = body.get("created")
    data = body.get("data")
    if (
        not isinstance(event_id, str)
        or not isinstance(event_type, str)
        or not isinstance(created, (int, float))
        or isinstance(created, bool)
        or not isinstance(data, dict)
        or not isinstance(data.get("object"), dict)
    ):
        raise InvalidArgument("Malformed webhook payload")
    return GatewayEvent(
        id=event_id,
        type=event_type,
        occurred_at=datetime.fromtimestamp(created, tz=timezone.utc),
        data=data["object"],
    )


class StripeGateway(PaymentGateway):
    """Wraps the Stripe SDK behind the engine's gateway contract.

    Every call carries the configured API key explicitly, runs with a bounded
    HTTP timeout and no SDK-level retries.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str],
        timeout_seconds: float = 10.0,
        webhook_tolerance_seconds: int = 300,
    ) -> None:
        self._api_key = secret_key
        self._webhook_secret = webhook_secret
        self._tolerance = webhook_tolerance_seconds
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
        if not secret_key:
            logger.warning("STRIPE_SECRET_KEY is not set; gateway calls will fail until it is configured")

    def create_customer(self, account_id: str, email: Optional[str], name: Optional[str]) -> str:
        customer = self._call(
            "create customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"user_id": account_id},
        )
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        session = self._call(
            "create checkout session",
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    def update_external_subscription(
        self,
        external_subscription_id: str,
        *,
        price_id: Optional[str] = None,
        cancel_at_period_end: Optional[bool] = None,
    ) -> None:
        params: Dict[str, Any] = {}
        if price_id is not None:
            current = self._call("retrieve subscription", stripe.Subscription.retrieve, id=external_subscription_id)
            item_id = current["items"]["data"][0]["id"]
            params["items"] = [{"id": item_id, "price": price_id}]
            params["proration_behavior"] = "create_prorations"
        if cancel_at_period_end is not None:
            params["cancel_at_period_end"] = cancel_at_period_end
        if not params:
            return
        self._call("update subscription", stripe.Subscription.modify, external_subscription_id, **params)

    def cancel_external_subscription(self, external_subscription_id: str, at_period_end: bool = True) -> None:
        if at_period_end:
            self._call(
                "cancel subscription at period end",
                stripe.Subscription.modify,
                external_subscription_id,
                cancel_at_period_end=True,
            )
        else:
            self._call("cancel subscription", stripe.Subscription.cancel, external_subscription_id)

    def refund_payment(
        self,
        external_payment_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundReceipt:
        # Ledger payment ids are charge ids when Stripe reports one.
        key = "charge" if external_payment_id.startswith(("ch_", "py_")) else "payment_intent"
        params: Dict[str, Any] = {key: external_payment_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["reason"] = reason
        refund = self._call("create refund", stripe.Refund.create, **params)
        return RefundReceipt(
            refund_id=refund.id,
            amount=cents_to_amount(refund.amount),
            currency=str(refund.currency).upper(),
            status=refund.status,
        )

    def verify_event(self, payload: bytes, signature: str) -> GatewayEvent:
        if not self._webhook_secret:
            logger.error("Rejecting webhook delivery: STRIPE_WEBHOOK_SECRET is not configured")
            raise SignatureInvalid("Webhook signature cannot be verified")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidArgument("Malformed webhook payload") from exc
        try:
            stripe.WebhookSignature.verify_header(body, signature or "", self._webhook_secret, self._tolerance)
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalid("Invalid webhook signature") from exc
        return parse_event_envelope(payload)

    def _call(self, operation: str, method: Callable[..., Any], *args: Any, **params: Any) -> Any:
        try:
            return method(*args, api_key=self._api_key, **params)
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            logger.warning("Stripe %s failed: %s", operation, exc)
            raise GatewayUnavailable("The payment provider is unavailable, please try again shortly") from exc
        except stripe.InvalidRequestError as exc:
            logger.warning("Stripe rejected %s: %s", operation, exc)
            raise InvalidArgument("The payment provider rejected the request") from exc
        except stripe.AuthenticationError as exc:
            logger.error("Stripe authentication failed during %s", operation)
            raise GatewayUnavailable("The payment provider is not configured") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", operation, exc)
            raise GatewayUnavailable("The payment provider is unavailable, please try again shortly") from exc
