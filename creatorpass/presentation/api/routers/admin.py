"""Administrative endpoints for moderation and refunds."""

from fastapi import APIRouter, Depends

from ....core.dependencies import get_clock, get_lifecycle_service
from ....domain.errors import EntitlementError
from ....domain.models import Principal
from ....services.clock import Clock
from ....services.lifecycle_service import LifecycleService
from ..dependencies import require_admin_principal
from ..errors import to_http_exception
from ..schemas.access_schemas import RefundRequest, RefundResponse
from ..schemas.subscription_schemas import SubscriptionResponse
from .payments import subscription_to_response

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/subscriptions/{subscription_id}/suspend", response_model=SubscriptionResponse)
def suspend_subscription(
    subscription_id: str,
    admin: Principal = Depends(require_admin_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionResponse:
    """Suspend a subscription. Access is withheld until reinstated."""
    try:
        subscription = lifecycle_service.suspend(admin, subscription_id)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return subscription_to_response(subscription, clock)


@router.post("/subscriptions/{subscription_id}/reinstate", response_model=SubscriptionResponse)
def reinstate_subscription(
    subscription_id: str,
    admin: Principal = Depends(require_admin_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionResponse:
    try:
        subscription = lifecycle_service.reinstate(admin, subscription_id)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return subscription_to_response(subscription, clock)


@router.post("/refunds", response_model=RefundResponse)
def refund_payment(
    payload: RefundRequest,
    admin: Principal = Depends(require_admin_principal),
    lifecycle_service: LifecycleService = Depends(get_lifecycle_service),
) -> RefundResponse:
    """Request a refund; the ledger records it when the gateway confirms."""
    try:
        receipt = lifecycle_service.refund(admin, payload.payment_id, amount=payload.amount, reason=payload.reason)
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    return RefundResponse(
        refund_id=receipt.refund_id,
        amount=receipt.amount,
        currency=receipt.currency,
        status=receipt.status,
    )
