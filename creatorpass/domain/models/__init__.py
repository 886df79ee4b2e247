"""Domain models for the creatorpass entitlement engine."""

from .account import Account
from .enums import BillingCycle, CancellationReason, PaymentStatus, Role, SubscriptionState, Tier
from .plan import (
    SUBSCRIPTION_PLANS,
    Plan,
    PlanPrice,
    cents_to_amount,
    compute_period_end,
    find_plan_by_price_id,
    get_plan,
    list_plans,
)
from .principal import Principal
from .subscription import LedgerEntry, Subscription

__all__ = [
    "Account",
    "BillingCycle",
    "CancellationReason",
    "LedgerEntry",
    "PaymentStatus",
    "Plan",
    "PlanPrice",
    "Principal",
    "Role",
    "SUBSCRIPTION_PLANS",
    "Subscription",
    "SubscriptionState",
    "Tier",
    "cents_to_amount",
    "compute_period_end",
    "find_plan_by_price_id",
    "get_plan",
    "list_plans",
]
