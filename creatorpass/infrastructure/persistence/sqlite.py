import copy
import sqlite3
import threading
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from ...domain.errors import Conflict, LedgerViolation, NotFound, VersionConflict
from ...domain.models import (
    Account,
    BillingCycle,
    CancellationReason,
    LedgerEntry,
    PaymentStatus,
    Role,
    Subscription,
    SubscriptionState,
    Tier,
)
from ...domain.ports.persistence import EntitlementStore, SubscriptionUpdater


class SQLitePersistence(EntitlementStore):
    """SQLite-backed implementation of the entitlement store."""

    def __init__(self, path: Path) -> None:
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    email TEXT,
                    username TEXT,
                    role TEXT NOT NULL DEFAULT 'viewer',
                    external_customer_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    subscriber_id TEXT NOT NULL,
                    creator_id TEXT NOT NULL,
                    tier TEXT NOT NULL,
                    billing_cycle TEXT NOT NULL,
                    price TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    state TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    renewal_date TEXT NOT NULL,
                    auto_renew INTEGER NOT NULL DEFAULT 1,
                    external_subscription_id TEXT NOT NULL UNIQUE,
                    external_customer_id TEXT NOT NULL,
                    external_price_id TEXT,
                    cancelled_at TEXT,
                    cancellation_reason TEXT,
                    last_event_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS uq_subscriptions_active_pair
                    ON subscriptions(subscriber_id, creator_id)
                    WHERE state = 'active';

                CREATE INDEX IF NOT EXISTS idx_subscriptions_pair
                    ON subscriptions(subscriber_id, creator_id);

                CREATE TABLE IF NOT EXISTS payment_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subscription_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    external_payment_id TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    failure_reason TEXT,
                    UNIQUE(subscription_id, external_payment_id),
                    UNIQUE(subscription_id, position),
                    FOREIGN KEY(subscription_id) REFERENCES subscriptions(id)
                );

                CREATE INDEX IF NOT EXISTS idx_payment_ledger_payment
                    ON payment_ledger(external_payment_id);

                CREATE TABLE IF NOT EXISTS checkout_reservations (
                    subscriber_id TEXT NOT NULL,
                    creator_id TEXT NOT NULL,
                    reserved_at TEXT NOT NULL,
                    PRIMARY KEY (subscriber_id, creator_id)
                );

                CREATE TABLE IF NOT EXISTS processed_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    processed_at TEXT NOT NULL
                );
                """
            )

    def close(self) -> None:
        self._conn.close()

    # SubscriptionRepository API -------------------------------------------
    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            return self._select_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))

    def get_active_for_pair(self, subscriber_id: str, creator_id: str) -> Optional[Subscription]:
        with self._lock:
            return self._select_one(
                """
                SELECT * FROM subscriptions
                WHERE subscriber_id = ? AND creator_id = ? AND state = 'active'
                """,
                (subscriber_id, creator_id),
            )

    def get_by_external_subscription_id(self, external_subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            return self._select_one(
                "SELECT * FROM subscriptions WHERE external_subscription_id = ?",
                (external_subscription_id,),
            )

    def get_by_external_payment_id(self, external_payment_id: str) -> Optional[Subscription]:
        with self._lock:
            return self._select_one(
                """
                SELECT s.* FROM subscriptions s
                JOIN payment_ledger l ON l.subscription_id = s.id
                WHERE l.external_payment_id = ?
                ORDER BY l.id ASC
                LIMIT 1
                """,
                (external_payment_id,),
            )

    def list_for_subscriber(self, subscriber_id: str) -> List[Subscription]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE subscriber_id = ? ORDER BY created_at DESC",
                (subscriber_id,),
            )
            rows = cur.fetchall()
            return [self._row_to_subscription(row) for row in rows]

    def create_if_absent(self, subscription: Subscription) -> Optional[Subscription]:
        now = self._now()
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    "SELECT 1 FROM subscriptions WHERE external_subscription_id = ?",
                    (subscription.external_subscription_id,),
                )
                if cur.fetchone():
                    return None
                self._conn.execute(
                    """
                    INSERT INTO subscriptions (
                        id, subscriber_id, creator_id, tier, billing_cycle, price,
                        currency, state, start_date, end_date, renewal_date,
                        auto_renew, external_subscription_id, external_customer_id,
                        external_price_id, cancelled_at, cancellation_reason,
                        last_event_at, version, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        subscription.id,
                        subscription.subscriber_id,
                        subscription.creator_id,
                        *self._mutable_columns(subscription),
                        now,
                        now,
                    ),
                )
                self._insert_ledger(subscription.id, subscription.payment_ledger, start=0)
                return self._select_one("SELECT * FROM subscriptions WHERE id = ?", (subscription.id,))
        except sqlite3.IntegrityError:
            return None

    def compare_and_swap(
        self,
        subscription_id: str,
        expected_version: int,
        updater: SubscriptionUpdater,
    ) -> Subscription:
        with self._lock, self._conn:
            current = self._select_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            if current is None:
                raise NotFound("Subscription not found")
            if current.version != expected_version:
                raise VersionConflict(
                    f"Subscription {subscription_id} is at version {current.version}, expected {expected_version}"
                )
            candidate = copy.copy(current)
            if not updater(candidate):
                return current
            if (candidate.id, candidate.subscriber_id, candidate.creator_id) != (
                current.id,
                current.subscriber_id,
                current.creator_id,
            ):
                raise ValueError("Subscription identity fields are immutable.")
            persisted = current.payment_ledger
            if candidate.payment_ledger[: len(persisted)] != persisted:
                raise LedgerViolation(f"Ledger of subscription {subscription_id} can only be appended to.")
            try:
                cur = self._conn.execute(
                    """
                    UPDATE subscriptions
                    SET tier = ?, billing_cycle = ?, price = ?, currency = ?, state = ?,
                        start_date = ?, end_date = ?, renewal_date = ?, auto_renew = ?,
                        external_subscription_id = ?, external_customer_id = ?,
                        external_price_id = ?, cancelled_at = ?, cancellation_reason = ?,
                        last_event_at = ?, version = version + 1, updated_at = ?
                    WHERE id = ? AND version = ?
                    """,
                    (*self._mutable_columns(candidate), self._now(), subscription_id, expected_version),
                )
            except sqlite3.IntegrityError as exc:
                raise Conflict("An active subscription to this creator already exists") from exc
            if cur.rowcount != 1:
                raise VersionConflict(f"Subscription {subscription_id} changed during update")
            self._insert_ledger(subscription_id, candidate.payment_ledger[len(persisted):], start=len(persisted))
            updated = self._select_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
        if updated is None:
            raise RuntimeError("Failed to persist subscription.")
        return updated

    # CheckoutReservationRepository API ------------------------------------
    def reserve_checkout(
        self,
        subscriber_id: str,
        creator_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    DELETE FROM checkout_reservations
                    WHERE subscriber_id = ? AND creator_id = ? AND reserved_at < ?
                    """,
                    (subscriber_id, creator_id, self._format(stale_before)),
                )
                self._conn.execute(
                    "INSERT INTO checkout_reservations (subscriber_id, creator_id, reserved_at) VALUES (?, ?, ?)",
                    (subscriber_id, creator_id, self._format(now)),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def release_checkout(self, subscriber_id: str, creator_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM checkout_reservations WHERE subscriber_id = ? AND creator_id = ?",
                (subscriber_id, creator_id),
            )

    # ProcessedEventRepository API -----------------------------------------
    def is_event_processed(self, event_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute("SELECT 1 FROM processed_events WHERE event_id = ?", (event_id,))
            return cur.fetchone() is not None

    def mark_event_processed(self, event_id: str, event_type: str, outcome: str, processed_at: datetime) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO processed_events (event_id, event_type, outcome, processed_at)
                VALUES (?, ?, ?, ?)
                """,
                (event_id, event_type, outcome, self._format(processed_at)),
            )

    # AccountRepository API ------------------------------------------------
    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,))
            row = cur.fetchone()
        return self._row_to_account(row) if row else None

    def save_account(self, account: Account) -> Account:
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO accounts (id, email, username, role, external_customer_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = excluded.email,
                    username = excluded.username,
                    role = excluded.role,
                    external_customer_id = COALESCE(excluded.external_customer_id, accounts.external_customer_id),
                    updated_at = excluded.updated_at
                """,
                (account.id, account.email, account.username, account.role.value, account.external_customer_id, now, now),
            )
            cur = self._conn.execute("SELECT * FROM accounts WHERE id = ?", (account.id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist account.")
        return self._row_to_account(row)

    def set_external_customer_id(self, account_id: str, external_customer_id: str) -> Account:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE accounts SET external_customer_id = ?, updated_at = ? WHERE id = ?",
                (external_customer_id, self._now(), account_id),
            )
            cur = self._conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,))
            row = cur.fetchone()
        if not row:
            raise NotFound("Account not found")
        return self._row_to_account(row)

    # Helpers ----------------------------------------------------------------
    # Everything below expects ``self._lock`` to be held by the caller.
    def _select_one(self, query: str, params: Sequence[Any]) -> Optional[Subscription]:
        cur = self._conn.execute(query, params)
        row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def _insert_ledger(self, subscription_id: str, entries: Sequence[LedgerEntry], start: int) -> None:
        for offset, entry in enumerate(entries):
            self._conn.execute(
                """
                INSERT INTO payment_ledger (
                    subscription_id, position, amount, currency, status,
                    external_payment_id, occurred_at, failure_reason
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subscription_id,
                    start + offset,
                    str(entry.amount),
                    entry.currency,
                    entry.status.value,
                    entry.external_payment_id,
                    self._format(entry.occurred_at),
                    entry.failure_reason,
                ),
            )

    def _load_ledger(self, subscription_id: str) -> Tuple[LedgerEntry, ...]:
        cur = self._conn.execute(
            "SELECT * FROM payment_ledger WHERE subscription_id = ? ORDER BY position ASC",
            (subscription_id,),
        )
        return tuple(
            LedgerEntry(
                amount=Decimal(row["amount"]),
                currency=row["currency"],
                status=PaymentStatus(row["status"]),
                external_payment_id=row["external_payment_id"],
                occurred_at=self._parse_datetime(row["occurred_at"]),
                failure_reason=row["failure_reason"],
            )
            for row in cur.fetchall()
        )

    def _mutable_columns(self, subscription: Subscription) -> Tuple[Any, ...]:
        return (
            subscription.tier.value,
            subscription.billing_cycle.value,
            str(subscription.price),
            subscription.currency,
            subscription.state.value,
            self._format(subscription.start_date),
            self._format(subscription.end_date),
            self._format(subscription.renewal_date),
            int(subscription.auto_renew),
            subscription.external_subscription_id,
            subscription.external_customer_id,
            subscription.external_price_id,
            self._format(subscription.cancelled_at) if subscription.cancelled_at else None,
            subscription.cancellation_reason.value if subscription.cancellation_reason else None,
            self._format(subscription.last_event_at) if subscription.last_event_at else None,
        )

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")

    @staticmethod
    def _format(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        result = datetime.fromisoformat(value)
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            subscriber_id=row["subscriber_id"],
            creator_id=row["creator_id"],
            tier=Tier(row["tier"]),
            billing_cycle=BillingCycle(row["billing_cycle"]),
            price=Decimal(row["price"]),
            currency=row["currency"],
            state=SubscriptionState(row["state"]),
            start_date=self._parse_datetime(row["start_date"]),
            end_date=self._parse_datetime(row["end_date"]),
            renewal_date=self._parse_datetime(row["renewal_date"]),
            auto_renew=bool(row["auto_renew"]),
            external_subscription_id=row["external_subscription_id"],
            external_customer_id=row["external_customer_id"],
            external_price_id=row["external_price_id"],
            payment_ledger=self._load_ledger(row["id"]),
            cancelled_at=self._parse_datetime(row["cancelled_at"]) if row["cancelled_at"] else None,
            cancellation_reason=CancellationReason(row["cancellation_reason"])
            if row["cancellation_reason"]
            else None,
            last_event_at=self._parse_datetime(row["last_event_at"]) if row["last_event_at"] else None,
            version=row["version"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            email=row["email"],
            username=row["username"],
            role=Role(row["role"]),
            external_customer_id=row["external_customer_id"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )
