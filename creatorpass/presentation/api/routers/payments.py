"""Subscriber-facing payment and subscription endpoints."""

import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool

from ....core.dependencies import (
    get_checkout_service,
    get_clock,
    get_lifecycle_service,
    get_webhook_reconciler,
)
from ....domain.errors import EntitlementError
from ....domain.models import CancellationReason, Plan, Principal, Subscription
from ....services.checkout_service import CheckoutService
from ....services.clock import Clock
from ....services.lifecycle_service import LifecycleService, PaymentRecord
from ....services.webhook_reconciler import WebhookReconciler
from ..dependencies import get_current_principal
from ..errors import to_http_exception
from ..schemas.access_schemas import WebhookAckResponse
from ..schemas.subscription_schemas import (
    AutoRenewRequest,
    CancelSubscriptionRequest,
    PaginationResponse,
    PaymentHistoryResponse,
    PaymentResponse,
    PlanPriceResponse,
    PlanResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionResponse,
    UpdateSubscriptionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


def subscription_to_response(subscription: Subscription, clock: Clock) -> SubscriptionResponse:
    now = clock()
    return SubscriptionResponse(
        id=subscription.id,
        creator_id=subscription.creator_id,
        tier=subscription.tier.value,
        billing_cycle=subscription.billing_cycle.value,
        price=subscription.price,
        currency=subscription.currency,
        state=subscription.state.value,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        renewal_date=subscription.renewal_date,
        auto_renew=subscription.auto_renew,
        cancelled_at=subscription.cancelled_at,
        cancellation_reason=subscription.cancellation_reason.value if subscription.cancellation_reason else None,
        days_remaining=subscription.days_remaining(now),
        total_paid=subscription.total_paid,
        has_access=subscription.grants_access_at(now),
    )


def _plan_to_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        tier=plan.tier.value,
        name=plan.name,
        description=plan.description,
        features=list(plan.features),
        prices=[
            PlanPriceResponse(billing_cycle=cycle.value, amount=price.amount, amount_cents=price.amount_cents)
            for cycle, price in plan.prices.items()
        ],
    )


def _payment_to_response(record: PaymentRecord) -> PaymentResponse:
    entry = record.entry
    return PaymentResponse(
        subscription_id=record.subscription_id,
        creator_id=record.creator_id,
        tier=record.tier.value,
        amount=entry.amount,
        currency=entry.currency,
        status=entry.status.value,
        occurred_at=entry.occurred_at,
        failure_reason=entry.failure_reason,
    )


# ============ WEBHOOK ============

@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookAckResponse:
    """Receive a signed gateway event. The raw body is needed for verification."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        result = await run_in_threadpool(reconciler.handle, payload, signature)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return WebhookAckResponse(received=True, outcome=result.outcome.value)


# ============ PLANS & CHECKOUT ============

@router.get("/plans", response_model=List[PlanResponse])
def get_plans(
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> List[PlanResponse]:
    """List tiers with their prices per billing cycle."""
    return [_plan_to_response(plan) for plan in checkout_service.list_plans()]


@router.post("/subscribe", response_model=SubscribeResponse, status_code=status.HTTP_201_CREATED)
def subscribe(
    payload: SubscribeRequest,
    principal: Principal = Depends(get_current_principal),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> SubscribeResponse:
    """Open a hosted checkout session for a creator subscription."""
    try:
        session = checkout_service.subscribe(
            principal,
            creator_id=payload.creator_id,
            tier=payload.tier,
            billing_cycle=payload.billing_cycle,
        )
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return SubscribeResponse(session_id=session.session_id, redirect_url=session.redirect_url)


# ============ SUBSCRIPTIONS ============

@router.get("/subscriptions", response_model=List[SubscriptionResponse])
def list_subscriptions(
    principal: Principal = Depends(get_current_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> List[SubscriptionResponse]:
    return [
        subscription_to_response(subscription, clock)
        for subscription in lifecycle_service.list_subscriptions(principal)
    ]


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: str,
    principal: Principal = Depends(get_current_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionResponse:
    try:
        subscription = lifecycle_service.get_subscription(principal, subscription_id)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return subscription_to_response(subscription, clock)


@router.put("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: str,
    payload: UpdateSubscriptionRequest,
    principal: Principal = Depends(get_current_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionResponse:
    """Change tier, billing cycle or auto-renewal."""
    try:
        subscription = lifecycle_service.update(
            principal,
            subscription_id,
            tier=payload.tier,
            billing_cycle=payload.billing_cycle,
            auto_renew=payload.auto_renew,
        )
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return subscription_to_response(subscription, clock)


@router.post("/subscriptions/{subscription_id}/auto-renew", response_model=SubscriptionResponse)
def set_auto_renew(
    subscription_id: str,
    payload: AutoRenewRequest,
    principal: Principal = Depends(get_current_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionResponse:
    try:
        subscription = lifecycle_service.set_auto_renew(principal, subscription_id, payload.enabled)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return subscription_to_response(subscription, clock)


@router.delete("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: str,
    payload: Optional[CancelSubscriptionRequest] = Body(None),
    principal: Principal = Depends(get_current_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionResponse:
    """Cancel at period end. Access continues until the paid period ends."""
    try:
        reason = CancellationReason.USER_REQUEST
        if payload is not None and payload.reason:
            reason = CancellationReason.parse(payload.reason)
        subscription = lifecycle_service.cancel(principal, subscription_id, reason=reason)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return subscription_to_response(subscription, clock)


# ============ HISTORY ============

@router.get("/history", response_model=PaymentHistoryResponse)
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
) -> PaymentHistoryResponse:
    """Paginated ledger entries across the caller's subscriptions, newest first."""
    try:
        records, total = lifecycle_service.payment_history(principal, page=page, limit=limit)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return PaymentHistoryResponse(
        items=[_payment_to_response(record) for record in records],
        pagination=PaginationResponse(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )
