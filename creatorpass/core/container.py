from dataclasses import dataclass

from ..domain.ports.payment_gateway import PaymentGateway
from ..domain.ports.persistence import EntitlementStore
from ..services.access_control import AccessControlService
from ..services.checkout_service import CheckoutService
from ..services.clock import Clock
from ..services.identity_service import IdentityService
from ..services.lifecycle_service import LifecycleService
from ..services.webhook_reconciler import WebhookReconciler
from .config import Settings


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    store: EntitlementStore
    gateway: PaymentGateway
    identity_service: IdentityService
    checkout_service: CheckoutService
    webhook_reconciler: WebhookReconciler
    access_control: AccessControlService
    lifecycle_service: LifecycleService
    clock: Clock
