from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..domain.ports.payment_gateway import PaymentGateway
from ..infrastructure.gateways.stripe_gateway import StripeGateway
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import access as access_router
from ..presentation.api.routers import admin as admin_router
from ..presentation.api.routers import payments as payments_router
from ..services.access_control import AccessControlService
from ..services.checkout_service import CheckoutService
from ..services.clock import Clock, utcnow
from ..services.identity_service import IdentityService
from ..services.lifecycle_service import LifecycleService
from ..services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


def create_application(
    settings: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="Creator Subscriptions", lifespan=_create_lifespan(settings, gateway, clock))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(payments_router.router)
    app.include_router(admin_router.router)
    app.include_router(access_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True}

    return app


def _create_lifespan(settings: Settings, gateway: Optional[PaymentGateway], clock: Clock):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        store = SQLitePersistence(settings.database_path)
        payment_gateway = gateway or StripeGateway(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.gateway_timeout_seconds,
            webhook_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
        container = ApplicationContainer(
            settings=settings,
            store=store,
            gateway=payment_gateway,
            identity_service=IdentityService(
                settings.principal_token_secret,
                algorithm=settings.principal_token_algorithm,
            ),
            checkout_service=CheckoutService(
                store,
                payment_gateway,
                frontend_base_url=settings.frontend_base_url,
                reservation_ttl_seconds=settings.checkout_reservation_ttl_seconds,
                clock=clock,
            ),
            webhook_reconciler=WebhookReconciler(
                store,
                payment_gateway,
                default_currency=settings.default_currency,
                clock=clock,
            ),
            access_control=AccessControlService(store, clock=clock),
            lifecycle_service=LifecycleService(store, payment_gateway, clock=clock),
            clock=clock,
        )

        app.state.container = container  # type: ignore[attr-defined]
        logger.info("Entitlement store ready at %s", settings.database_path)

        try:
            yield
        finally:
            store.close()

    return lifespan
