"""Tests for subscriber and administrator lifecycle operations."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import T0, make_subscription
from creatorpass.domain.errors import Conflict, Forbidden, GatewayUnavailable, InvalidArgument, NotFound
from creatorpass.domain.models import (
    BillingCycle,
    CancellationReason,
    LedgerEntry,
    PaymentStatus,
    Principal,
    Role,
    SubscriptionState,
    Tier,
)
from creatorpass.services.lifecycle_service import LifecycleService


@pytest.fixture
def service(store, gateway, clock):
    return LifecycleService(store, gateway, clock=clock)


@pytest.fixture
def active(store):
    return store.create_if_absent(make_subscription())


def _snapshot(subscription):
    return (
        subscription.state,
        subscription.auto_renew,
        subscription.cancelled_at,
        subscription.cancellation_reason,
        subscription.end_date,
        subscription.version,
    )


class TestCancel:
    def test_cancel_keeps_access_until_period_end(self, service, gateway, subscriber, active, clock):
        clock.advance(days=3)
        cancelled = service.cancel(subscriber, active.id)

        assert cancelled.auto_renew is False
        assert cancelled.cancelled_at == clock.now
        assert cancelled.cancellation_reason is CancellationReason.USER_REQUEST
        assert cancelled.state is SubscriptionState.ACTIVE
        assert cancelled.grants_access_at(clock.now)
        assert gateway.calls_named("cancel_external_subscription") == [
            ("cancel_external_subscription", active.external_subscription_id, True)
        ]

    def test_cancel_is_idempotent(self, service, gateway, subscriber, active, clock):
        once = service.cancel(subscriber, active.id)
        clock.advance(hours=1)
        twice = service.cancel(subscriber, active.id)

        assert _snapshot(once) == _snapshot(twice)
        assert len(gateway.calls_named("cancel_external_subscription")) == 1

    def test_cancel_again_after_renewal_re_enabled(self, service, gateway, subscriber, active, clock):
        first = service.cancel(subscriber, active.id)
        clock.advance(days=1)
        resumed = service.set_auto_renew(subscriber, active.id, True)
        assert resumed.auto_renew is True

        clock.advance(days=1)
        again = service.cancel(subscriber, active.id)

        assert again.auto_renew is False
        assert again.cancelled_at == first.cancelled_at
        assert again.version > resumed.version
        assert len(gateway.calls_named("cancel_external_subscription")) == 2

    @pytest.mark.parametrize(
        "reason",
        [CancellationReason.PAYMENT_FAILURE, CancellationReason.POLICY_VIOLATION],
    )
    def test_subscriber_cannot_use_system_reasons(self, service, gateway, subscriber, active, store, reason):
        with pytest.raises(InvalidArgument):
            service.cancel(subscriber, active.id, reason)
        assert store.get_subscription(active.id).cancelled_at is None
        assert gateway.calls_named("cancel_external_subscription") == []

    def test_cancel_with_other_reason(self, service, subscriber, active):
        cancelled = service.cancel(subscriber, active.id, CancellationReason.OTHER)
        assert cancelled.cancellation_reason is CancellationReason.OTHER

    def test_gateway_failure_leaves_record_untouched(self, service, gateway, subscriber, active, store):
        gateway.fail_with = GatewayUnavailable("down")
        with pytest.raises(GatewayUnavailable):
            service.cancel(subscriber, active.id)
        assert store.get_subscription(active.id).cancelled_at is None

    def test_other_subscribers_record_is_hidden(self, service, active):
        intruder = Principal(id="someone-else", role=Role.VIEWER)
        with pytest.raises(NotFound):
            service.cancel(intruder, active.id)

    def test_cancel_suspended_subscription(self, service, store, subscriber):
        suspended = store.create_if_absent(make_subscription(state=SubscriptionState.SUSPENDED))
        with pytest.raises(Conflict):
            service.cancel(subscriber, suspended.id)


class TestUpdate:
    def test_upgrade_tier(self, service, gateway, subscriber, active):
        updated = service.update(subscriber, active.id, tier="vip")

        assert updated.tier is Tier.VIP
        assert updated.price == Decimal("49.99")
        assert updated.external_price_id == "price_vip_monthly"
        assert gateway.calls_named("update_external_subscription") == [
            ("update_external_subscription", active.external_subscription_id, "price_vip_monthly", None)
        ]

    def test_cycle_change_keeps_current_period(self, service, subscriber, active):
        updated = service.update(subscriber, active.id, billing_cycle=BillingCycle.YEARLY)
        assert updated.billing_cycle is BillingCycle.YEARLY
        assert updated.end_date == active.end_date
        assert updated.price == Decimal("99.99")

    def test_nothing_to_update(self, service, subscriber, active):
        with pytest.raises(InvalidArgument):
            service.update(subscriber, active.id)

    def test_invalid_tier(self, service, gateway, subscriber, active):
        with pytest.raises(InvalidArgument):
            service.update(subscriber, active.id, tier="gold")
        assert gateway.calls == []

    def test_unchanged_plan_skips_gateway(self, service, gateway, subscriber, active):
        result = service.update(subscriber, active.id, tier="basic")
        assert result.version == active.version
        assert gateway.calls == []

    def test_toggle_auto_renew(self, service, gateway, subscriber, active):
        updated = service.set_auto_renew(subscriber, active.id, False)
        assert updated.auto_renew is False
        assert gateway.calls_named("update_external_subscription") == [
            ("update_external_subscription", active.external_subscription_id, None, True)
        ]
        assert service.set_auto_renew(subscriber, active.id, True).auto_renew is True

    def test_cancelled_subscription_cannot_change(self, service, store, subscriber):
        cancelled = store.create_if_absent(make_subscription(state=SubscriptionState.CANCELLED))
        with pytest.raises(Conflict):
            service.update(subscriber, cancelled.id, tier="vip")


class TestQueries:
    def test_payment_history_is_paginated(self, service, store, subscriber, active):
        def pay(record):
            for index in range(3):
                record.record_payment(
                    LedgerEntry(
                        amount=Decimal("9.99"),
                        currency="USD",
                        status=PaymentStatus.SUCCEEDED,
                        external_payment_id=f"ch_{index}",
                        occurred_at=T0 + timedelta(days=30 * index),
                    )
                )
            return True

        store.compare_and_swap(active.id, active.version, pay)
        records, total = service.payment_history(subscriber, page=1, limit=2)

        assert total == 3
        assert [record.entry.external_payment_id for record in records] == ["ch_2", "ch_1"]
        assert records[0].creator_id == active.creator_id
        records, _ = service.payment_history(subscriber, page=2, limit=2)
        assert [record.entry.external_payment_id for record in records] == ["ch_0"]

    def test_list_subscriptions(self, service, subscriber, active):
        assert [subscription.id for subscription in service.list_subscriptions(subscriber)] == [active.id]


class TestAdministration:
    def test_suspend_and_reinstate(self, service, admin, active):
        suspended = service.suspend(admin, active.id)
        assert suspended.state is SubscriptionState.SUSPENDED
        assert service.suspend(admin, active.id).version == suspended.version

        reinstated = service.reinstate(admin, active.id)
        assert reinstated.state is SubscriptionState.ACTIVE

    def test_reinstate_requires_suspension(self, service, admin, active):
        with pytest.raises(Conflict):
            service.reinstate(admin, active.id)

    def test_non_admin_rejected(self, service, subscriber, active):
        with pytest.raises(Forbidden):
            service.suspend(subscriber, active.id)
        with pytest.raises(Forbidden):
            service.refund(subscriber, "ch_1")

    def test_refund_known_payment(self, service, store, gateway, admin, active):
        entry = LedgerEntry(
            amount=Decimal("9.99"),
            currency="USD",
            status=PaymentStatus.SUCCEEDED,
            external_payment_id="ch_1",
            occurred_at=T0,
        )
        store.compare_and_swap(active.id, active.version, lambda record: record.record_payment(entry))

        receipt = service.refund(admin, "ch_1", amount=Decimal("5.00"), reason="requested_by_customer")

        assert receipt.amount == Decimal("5")
        assert gateway.calls_named("refund_payment") == [("refund_payment", "ch_1", 500, "requested_by_customer")]
        assert len(store.get_subscription(active.id).payment_ledger) == 1

    def test_refund_unknown_payment(self, service, admin):
        with pytest.raises(NotFound):
            service.refund(admin, "ch_missing")

    def test_reinstate_blocked_by_newer_active_subscription(self, service, store, admin, active):
        service.suspend(admin, active.id)
        store.create_if_absent(make_subscription())

        with pytest.raises(Conflict):
            service.reinstate(admin, active.id)
        assert store.get_subscription(active.id).state is SubscriptionState.SUSPENDED
