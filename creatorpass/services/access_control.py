"""Access decisions for gated creator content."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..domain.errors import SubscriptionRequired, TierInsufficient
from ..domain.models import Principal, Subscription, Tier
from ..domain.ports.persistence import SubscriptionRepository
from .clock import Clock, utcnow


class DenialReason(str, Enum):
    SUBSCRIPTION_REQUIRED = "subscription_required"
    TIER_INSUFFICIENT = "tier_insufficient"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenialReason) -> "AccessDecision":
        return cls(False, reason)


def evaluate_access(
    principal: Principal,
    owner_id: str,
    required_tier: Optional[Tier],
    subscription: Optional[Subscription],
    now: datetime,
) -> AccessDecision:
    """Decide whether ``principal`` may see content owned by ``owner_id``.

    ``subscription`` is the requester's active record for the owner, if any.
    A record whose period has ended is treated as absent even while its
    stored state still reads active.
    """
    if required_tier is None:
        return AccessDecision.allow()
    if principal.id == owner_id or principal.is_admin:
        return AccessDecision.allow()
    if subscription is None or not subscription.grants_access_at(now):
        return AccessDecision.deny(DenialReason.SUBSCRIPTION_REQUIRED)
    if subscription.tier.ordinal >= required_tier.ordinal:
        return AccessDecision.allow()
    return AccessDecision.deny(DenialReason.TIER_INSUFFICIENT)


class AccessControlService:
    """Reads the latest committed subscription and evaluates access."""

    def __init__(self, subscriptions: SubscriptionRepository, clock: Clock = utcnow) -> None:
        self._subscriptions = subscriptions
        self._clock = clock

    def can_access(self, principal: Principal, owner_id: str, required_tier: Optional[Tier]) -> AccessDecision:
        subscription = None
        if required_tier is not None and principal.id != owner_id and not principal.is_admin:
            subscription = self._subscriptions.get_active_for_pair(principal.id, owner_id)
        return evaluate_access(principal, owner_id, required_tier, subscription, self._clock())

    def require_access(self, principal: Principal, owner_id: str, required_tier: Optional[Tier]) -> None:
        decision = self.can_access(principal, owner_id, required_tier)
        if decision.allowed:
            return
        if decision.reason is DenialReason.TIER_INSUFFICIENT and required_tier is not None:
            raise TierInsufficient(f"{required_tier.value} subscription tier required to access this content")
        raise SubscriptionRequired("Active subscription required to access this premium content")
