"""Tests for the tier price table and billing-period arithmetic."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from creatorpass.domain.errors import InvalidArgument
from creatorpass.domain.models import (
    BillingCycle,
    Tier,
    compute_period_end,
    find_plan_by_price_id,
    get_plan,
    list_plans,
)


class TestPlanTable:
    def test_monthly_prices(self):
        assert get_plan(Tier.BASIC).price_for(BillingCycle.MONTHLY).amount == Decimal("9.99")
        assert get_plan(Tier.PREMIUM).price_for(BillingCycle.MONTHLY).amount == Decimal("19.99")
        assert get_plan(Tier.VIP).price_for(BillingCycle.MONTHLY).amount == Decimal("49.99")

    def test_plans_listed_in_tier_order(self):
        assert [plan.tier for plan in list_plans()] == [Tier.BASIC, Tier.PREMIUM, Tier.VIP]

    def test_price_id_maps_back_to_plan(self):
        tier, cycle, price = find_plan_by_price_id("price_premium_yearly")
        assert (tier, cycle) == (Tier.PREMIUM, BillingCycle.YEARLY)
        assert price.amount == Decimal("199.99")

    def test_unknown_price_id(self):
        assert find_plan_by_price_id("price_unknown") is None
        assert find_plan_by_price_id(None) is None


class TestEnumParsing:
    def test_parse_is_case_insensitive(self):
        assert Tier.parse(" VIP ") is Tier.VIP
        assert BillingCycle.parse("Quarterly") is BillingCycle.QUARTERLY

    def test_unknown_tier_rejected(self):
        with pytest.raises(InvalidArgument) as exc_info:
            Tier.parse("platinum")
        assert "tier" in exc_info.value.message

    def test_unknown_cycle_rejected(self):
        with pytest.raises(InvalidArgument) as exc_info:
            BillingCycle.parse("weekly")
        assert "billing cycle" in exc_info.value.message

    def test_tier_ordinals(self):
        assert Tier.BASIC.ordinal < Tier.PREMIUM.ordinal < Tier.VIP.ordinal


class TestComputePeriodEnd:
    @pytest.mark.parametrize(
        "start, cycle, expected",
        [
            (datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc), BillingCycle.MONTHLY, datetime(2025, 2, 15, 9, 30, tzinfo=timezone.utc)),
            (datetime(2025, 1, 31, tzinfo=timezone.utc), BillingCycle.MONTHLY, datetime(2025, 2, 28, tzinfo=timezone.utc)),
            (datetime(2024, 1, 31, tzinfo=timezone.utc), BillingCycle.MONTHLY, datetime(2024, 2, 29, tzinfo=timezone.utc)),
            (datetime(2025, 11, 30, tzinfo=timezone.utc), BillingCycle.QUARTERLY, datetime(2026, 2, 28, tzinfo=timezone.utc)),
            (datetime(2024, 2, 29, tzinfo=timezone.utc), BillingCycle.YEARLY, datetime(2025, 2, 28, tzinfo=timezone.utc)),
            (datetime(2025, 12, 10, tzinfo=timezone.utc), BillingCycle.MONTHLY, datetime(2026, 1, 10, tzinfo=timezone.utc)),
        ],
    )
    def test_period_end(self, start, cycle, expected):
        assert compute_period_end(start, cycle) == expected

    def test_period_end_is_after_start(self):
        start = datetime(2025, 3, 31, tzinfo=timezone.utc)
        for cycle in BillingCycle:
            assert compute_period_end(start, cycle) > start
