"""Static tier price table and billing-period arithmetic."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..errors import InvalidArgument
from .enums import BillingCycle, Tier

SUPPORTED_CURRENCIES = ("USD", "EUR", "GBP", "CAD", "AUD")


@dataclass(frozen=True, slots=True)
class PlanPrice:
    amount_cents: int
    price_id: str

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


@dataclass(frozen=True, slots=True)
class Plan:
    tier: Tier
    name: str
    description: str
    features: Tuple[str, ...]
    prices: Dict[BillingCycle, PlanPrice] = field(default_factory=dict)

    def price_for(self, cycle: BillingCycle) -> PlanPrice:
        try:
            return self.prices[cycle]
        except KeyError as exc:
            raise InvalidArgument(f"Invalid billing cycle: {cycle.value!r}") from exc


def _prices(monthly: int, quarterly: int, yearly: int, tier: Tier) -> Dict[BillingCycle, PlanPrice]:
    amounts = {
        BillingCycle.MONTHLY: monthly,
        BillingCycle.QUARTERLY: quarterly,
        BillingCycle.YEARLY: yearly,
    }
    return {
        cycle: PlanPrice(amount_cents=amount, price_id=f"price_{tier.value}_{cycle.value}")
        for cycle, amount in amounts.items()
    }


SUBSCRIPTION_PLANS: Dict[Tier, Plan] = {
    Tier.BASIC: Plan(
        tier=Tier.BASIC,
        name="Basic",
        description="Access to basic content",
        features=("Basic content access", "Standard quality streaming"),
        prices=_prices(999, 2699, 9999, Tier.BASIC),
    ),
    Tier.PREMIUM: Plan(
        tier=Tier.PREMIUM,
        name="Premium",
        description="Access to premium content",
        features=("All basic features", "Premium content access", "HD streaming", "Early access"),
        prices=_prices(1999, 5399, 19999, Tier.PREMIUM),
    ),
    Tier.VIP: Plan(
        tier=Tier.VIP,
        name="VIP",
        description="Access to all content plus exclusive perks",
        features=(
            "All premium features",
            "VIP content access",
            "4K streaming",
            "Direct messaging",
            "Custom requests",
        ),
        prices=_prices(4999, 13499, 49999, Tier.VIP),
    ),
}


def get_plan(tier: Tier) -> Plan:
    return SUBSCRIPTION_PLANS[tier]


def list_plans() -> List[Plan]:
    return sorted(SUBSCRIPTION_PLANS.values(), key=lambda plan: plan.tier.ordinal)


def find_plan_by_price_id(price_id: Optional[str]) -> Optional[Tuple[Tier, BillingCycle, PlanPrice]]:
    """Map a gateway price id back to its (tier, cycle, price) entry."""
    if not price_id:
        return None
    for plan in SUBSCRIPTION_PLANS.values():
        for cycle, price in plan.prices.items():
            if price.price_id == price_id:
                return plan.tier, cycle, price
    return None


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(int(cents)) / Decimal(100)).quantize(Decimal("0.01"))


def compute_period_end(start: datetime, cycle: BillingCycle) -> datetime:
    """Return the end of the billing period that begins at ``start``.

    Adds whole calendar months and clamps the day to the length of the target
    month, so a period starting on January 31st ends on the last day of
    February.
    """
    month_index = start.month - 1 + cycle.months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)
