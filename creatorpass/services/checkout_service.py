"""Checkout orchestration: turns a subscribe request into a gateway session."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from ..domain.errors import Conflict, InvalidArgument, NotFound
from ..domain.models import Account, BillingCycle, Plan, Principal, Tier, get_plan, list_plans
from ..domain.ports.payment_gateway import CheckoutSession, PaymentGateway
from ..domain.ports.persistence import EntitlementStore
from .clock import Clock, utcnow

logger = logging.getLogger(__name__)


class CheckoutService:
    """Validates subscribe requests and opens checkout sessions.

    No subscription record is written here; the record is created by the
    webhook reconciler once the gateway confirms the checkout.
    """

    def __init__(
        self,
        store: EntitlementStore,
        gateway: PaymentGateway,
        frontend_base_url: str,
        reservation_ttl_seconds: int = 900,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._frontend_base_url = frontend_base_url.rstrip("/")
        self._reservation_ttl = timedelta(seconds=reservation_ttl_seconds)
        self._clock = clock

    def list_plans(self) -> List[Plan]:
        return list_plans()

    def subscribe(
        self,
        principal: Principal,
        creator_id: str,
        tier: object,
        billing_cycle: object = BillingCycle.MONTHLY,
    ) -> CheckoutSession:
        """
        Open a checkout session for ``principal`` to subscribe to a creator.

        Args:
            principal: Authenticated subscriber
            creator_id: Account id of the content owner
            tier: Requested tier (member or raw value)
            billing_cycle: Requested cycle, monthly when omitted

        Returns:
            Session id and redirect URL for the hosted checkout page

        Raises:
            InvalidArgument: Unknown tier/cycle or self-subscription
            NotFound: Unknown creator
            Conflict: An active subscription or a concurrent checkout exists
        """
        parsed_tier = Tier.parse(tier)
        parsed_cycle = BillingCycle.parse(billing_cycle or BillingCycle.MONTHLY)
        if not creator_id:
            raise InvalidArgument("Creator id is required")
        if creator_id == principal.id:
            raise InvalidArgument("You cannot subscribe to yourself")

        creator = self._store.get_account(creator_id)
        if creator is None or not creator.is_creator():
            raise NotFound("Creator not found")

        self._ensure_no_active(principal.id, creator_id)

        now = self._clock()
        if not self._store.reserve_checkout(principal.id, creator_id, now, now - self._reservation_ttl):
            logger.info("Concurrent checkout rejected for subscriber %s creator %s", principal.id, creator_id)
            raise Conflict("A checkout for this creator is already in progress")
        try:
            # Re-check under the reservation: a checkout may have completed meanwhile.
            self._ensure_no_active(principal.id, creator_id)
            price = get_plan(parsed_tier).price_for(parsed_cycle)
            customer_id = self._resolve_customer(principal)
            session = self._gateway.create_checkout_session(
                customer_id=customer_id,
                price_id=price.price_id,
                metadata={
                    "subscriber_id": principal.id,
                    "creator_id": creator_id,
                    "tier": parsed_tier.value,
                    "billing_cycle": parsed_cycle.value,
                },
                success_url=f"{self._frontend_base_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self._frontend_base_url}/subscription/cancel",
            )
        finally:
            self._store.release_checkout(principal.id, creator_id)

        logger.info(
            "Checkout session opened for subscriber %s creator %s tier %s cycle %s",
            principal.id,
            creator_id,
            parsed_tier.value,
            parsed_cycle.value,
        )
        return session

    def _ensure_no_active(self, subscriber_id: str, creator_id: str) -> None:
        if self._store.get_active_for_pair(subscriber_id, creator_id) is not None:
            raise Conflict("You already have an active subscription to this creator")

    def _resolve_customer(self, principal: Principal) -> str:
        account: Optional[Account] = self._store.get_account(principal.id)
        if account is None:
            account = self._store.save_account(Account(id=principal.id, role=principal.role))
        if account.external_customer_id:
            return account.external_customer_id
        customer_id = self._gateway.create_customer(
            account_id=account.id,
            email=account.email,
            name=account.username,
        )
        self._store.set_external_customer_id(account.id, customer_id)
        logger.info("Created payment customer for account %s", account.id)
        return customer_id
