from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Protocol

from ..models import Account, Subscription

SubscriptionUpdater = Callable[[Subscription], bool]


class SubscriptionRepository(Protocol):
    """Durable storage for subscription records and their payment ledgers."""

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def get_active_for_pair(self, subscriber_id: str, creator_id: str) -> Optional[Subscription]:
        ...

    def get_by_external_subscription_id(self, external_subscription_id: str) -> Optional[Subscription]:
        ...

    def get_by_external_payment_id(self, external_payment_id: str) -> Optional[Subscription]:
        ...

    def create_if_absent(self, subscription: Subscription) -> Optional[Subscription]:
        """Insert ``subscription``; return ``None`` when the pair already has
        an active record or the external subscription id is already known."""
        ...

    def compare_and_swap(
        self,
        subscription_id: str,
        expected_version: int,
        updater: SubscriptionUpdater,
    ) -> Subscription:
        """Apply ``updater`` atomically if the stored version still matches.

        ``updater`` mutates the subscription it receives and returns whether
        anything changed. Raises ``VersionConflict`` on a version mismatch and
        ``Conflict`` when the write would create a second active record for
        the pair.
        """
        ...

    def list_for_subscriber(self, subscriber_id: str) -> List[Subscription]:
        ...


class CheckoutReservationRepository(Protocol):
    """Short-lived per-pair locks guarding checkout session creation."""

    def reserve_checkout(
        self,
        subscriber_id: str,
        creator_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        ...

    def release_checkout(self, subscriber_id: str, creator_id: str) -> None:
        ...


class ProcessedEventRepository(Protocol):
    """Ids of gateway events that were already reconciled."""

    def is_event_processed(self, event_id: str) -> bool:
        ...

    def mark_event_processed(self, event_id: str, event_type: str, outcome: str, processed_at: datetime) -> None:
        ...


class AccountRepository(Protocol):
    """Read access to the identity mirror plus the cached customer handle."""

    def get_account(self, account_id: str) -> Optional[Account]:
        ...

    def save_account(self, account: Account) -> Account:
        ...

    def set_external_customer_id(self, account_id: str, external_customer_id: str) -> Account:
        ...


class EntitlementStore(
    SubscriptionRepository,
    CheckoutReservationRepository,
    ProcessedEventRepository,
    AccountRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    pass
