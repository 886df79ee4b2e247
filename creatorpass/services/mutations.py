import logging

from ..domain.errors import NotFound, VersionConflict
from ..domain.models import Subscription
from ..domain.ports.persistence import SubscriptionRepository, SubscriptionUpdater

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5


def mutate_subscription(
    store: SubscriptionRepository,
    subscription: Subscription,
    updater: SubscriptionUpdater,
    attempts: int = MAX_CAS_ATTEMPTS,
) -> Subscription:
    """Run ``updater`` through compare-and-swap, re-reading on version conflicts.

    ``updater`` may run more than once and must derive everything it writes
    from the subscription it is given.
    """
    current = subscription
    for attempt in range(1, attempts + 1):
        try:
            return store.compare_and_swap(current.id, current.version, updater)
        except VersionConflict:
            logger.debug("Version conflict on subscription %s (attempt %d)", current.id, attempt)
            refreshed = store.get_subscription(current.id)
            if refreshed is None:
                raise NotFound("Subscription not found")
            current = refreshed
    raise RuntimeError(f"Subscription {subscription.id} kept changing; gave up after {attempts} attempts")
