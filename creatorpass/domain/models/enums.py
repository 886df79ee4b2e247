"""Closed value sets for tiers, billing cycles, states and ledger statuses."""

from __future__ import annotations

import re
from enum import Enum
from typing import Type, TypeVar

from ..errors import InvalidArgument

_E = TypeVar("_E", bound="_ParsableEnum")


class _ParsableEnum(str, Enum):
    @classmethod
    def parse(cls: Type[_E], value: object) -> _E:
        """Return the member for ``value`` or raise ``InvalidArgument``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            label = re.sub(r"(?<!^)(?=[A-Z])", " ", cls.__name__).lower()
            raise InvalidArgument(f"Invalid {label}: {value!r}") from exc


class Tier(_ParsableEnum):
    BASIC = "basic"
    PREMIUM = "premium"
    VIP = "vip"

    @property
    def ordinal(self) -> int:
        return _TIER_ORDINALS[self]


_TIER_ORDINALS = {Tier.BASIC: 1, Tier.PREMIUM: 2, Tier.VIP: 3}


class BillingCycle(_ParsableEnum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return _CYCLE_MONTHS[self]


_CYCLE_MONTHS = {BillingCycle.MONTHLY: 1, BillingCycle.QUARTERLY: 3, BillingCycle.YEARLY: 12}


class SubscriptionState(_ParsableEnum):
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"

    @property
    def is_terminal(self) -> bool:
        return self is SubscriptionState.CANCELLED


class PaymentStatus(_ParsableEnum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"
    REFUNDED = "refunded"


class CancellationReason(_ParsableEnum):
    USER_REQUEST = "user_request"
    PAYMENT_FAILURE = "payment_failure"
    POLICY_VIOLATION = "policy_violation"
    CREATOR_SUSPENDED = "creator_suspended"
    OTHER = "other"


class Role(_ParsableEnum):
    VIEWER = "viewer"
    CREATOR = "creator"
    ADMIN = "admin"
