"""Tests for subscribe requests and checkout session creation."""

import threading

import pytest

from conftest import CREATOR_ID, SUBSCRIBER_ID, make_subscription
from creatorpass.domain.errors import Conflict, GatewayUnavailable, InvalidArgument, NotFound
from creatorpass.domain.models import Account, Principal, Role
from creatorpass.services.checkout_service import CheckoutService


@pytest.fixture
def service(store, gateway, clock):
    return CheckoutService(store, gateway, frontend_base_url="https://fans.example/", clock=clock)


class TestSubscribe:
    def test_opens_checkout_session(self, service, gateway, store, creator, subscriber):
        session = service.subscribe(subscriber, CREATOR_ID, "premium", "quarterly")

        assert session.redirect_url.startswith("https://checkout.test/")
        (_, customer_id, price_id, metadata, success_url, cancel_url), = gateway.calls_named("create_checkout_session")
        assert price_id == "price_premium_quarterly"
        assert metadata == {
            "subscriber_id": SUBSCRIBER_ID,
            "creator_id": CREATOR_ID,
            "tier": "premium",
            "billing_cycle": "quarterly",
        }
        assert success_url == "https://fans.example/subscription/success?session_id={CHECKOUT_SESSION_ID}"
        assert cancel_url == "https://fans.example/subscription/cancel"
        assert store.get_account(SUBSCRIBER_ID).external_customer_id == customer_id
        assert store.list_for_subscriber(SUBSCRIBER_ID) == []

    def test_default_cycle_is_monthly(self, service, gateway, creator, subscriber):
        service.subscribe(subscriber, CREATOR_ID, "basic", None)
        assert gateway.calls_named("create_checkout_session")[0][2] == "price_basic_monthly"

    def test_customer_is_created_once(self, service, gateway, creator, subscriber):
        service.subscribe(subscriber, CREATOR_ID, "basic")
        service.subscribe(subscriber, CREATOR_ID, "vip")
        assert len(gateway.calls_named("create_customer")) == 1

    def test_invalid_tier(self, service, gateway, creator, subscriber):
        with pytest.raises(InvalidArgument):
            service.subscribe(subscriber, CREATOR_ID, "platinum")
        assert gateway.calls == []

    def test_self_subscription(self, service, store):
        owner = Principal(id=CREATOR_ID, role=Role.CREATOR)
        store.save_account(Account(id=CREATOR_ID, role=Role.CREATOR))
        with pytest.raises(InvalidArgument):
            service.subscribe(owner, CREATOR_ID, "basic")

    def test_unknown_creator(self, service, subscriber):
        with pytest.raises(NotFound):
            service.subscribe(subscriber, "nobody", "basic")

    def test_non_creator_account(self, service, store, subscriber):
        store.save_account(Account(id="viewer-2", role=Role.VIEWER))
        with pytest.raises(NotFound):
            service.subscribe(subscriber, "viewer-2", "basic")

    def test_existing_active_subscription(self, service, store, gateway, creator, subscriber):
        store.create_if_absent(make_subscription())
        with pytest.raises(Conflict):
            service.subscribe(subscriber, CREATOR_ID, "vip")
        assert gateway.calls == []

    def test_gateway_failure_releases_reservation(self, service, gateway, creator, subscriber):
        gateway.fail_with = GatewayUnavailable("down")
        with pytest.raises(GatewayUnavailable):
            service.subscribe(subscriber, CREATOR_ID, "basic")

        gateway.fail_with = None
        assert service.subscribe(subscriber, CREATOR_ID, "basic").session_id

    def test_concurrent_requests_for_same_pair(self, service, gateway, creator, subscriber):
        gateway.checkout_release = threading.Event()
        results = {}

        def first_request():
            results["first"] = service.subscribe(subscriber, CREATOR_ID, "basic")

        worker = threading.Thread(target=first_request)
        worker.start()
        assert gateway.checkout_entered.wait(timeout=5)

        with pytest.raises(Conflict):
            service.subscribe(subscriber, CREATOR_ID, "basic")

        gateway.checkout_release.set()
        worker.join(timeout=5)
        assert results["first"].session_id
        assert len(gateway.calls_named("create_checkout_session")) == 1


class TestPlans:
    def test_lists_all_tiers(self, service):
        assert [plan.tier.value for plan in service.list_plans()] == ["basic", "premium", "vip"]
