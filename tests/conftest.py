import json
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import jwt
import pytest

from creatorpass.domain.errors import SignatureInvalid
from creatorpass.domain.models import (
    Account,
    BillingCycle,
    Principal,
    Role,
    Subscription,
    SubscriptionState,
    Tier,
    compute_period_end,
    get_plan,
)
from creatorpass.domain.ports.payment_gateway import CheckoutSession, GatewayEvent, RefundReceipt
from creatorpass.infrastructure.gateways.stripe_gateway import parse_event_envelope
from creatorpass.infrastructure.persistence.sqlite import SQLitePersistence

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
TOKEN_SECRET = "test-token-secret-0123456789abcdef0123"
VALID_SIGNATURE = "t=1,v1=valid"

SUBSCRIBER_ID = "subscriber-a"
CREATOR_ID = "creator-b"
ADMIN_ID = "admin-1"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    """In-memory payment gateway that records every call."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.customers: Dict[str, str] = {}
        self.fail_with: Optional[Exception] = None
        self.checkout_entered = threading.Event()
        self.checkout_release: Optional[threading.Event] = None

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if self.fail_with is not None:
            raise self.fail_with

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def create_customer(self, account_id: str, email: Optional[str], name: Optional[str]) -> str:
        self._record("create_customer", account_id)
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers[account_id] = customer_id
        return customer_id

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        self._record("create_checkout_session", customer_id, price_id, dict(metadata), success_url, cancel_url)
        self.checkout_entered.set()
        if self.checkout_release is not None:
            self.checkout_release.wait(timeout=5)
        session_id = f"cs_{uuid.uuid4().hex[:8]}"
        return CheckoutSession(session_id=session_id, redirect_url=f"https://checkout.test/{session_id}")

    def update_external_subscription(
        self,
        external_subscription_id: str,
        *,
        price_id: Optional[str] = None,
        cancel_at_period_end: Optional[bool] = None,
    ) -> None:
        self._record("update_external_subscription", external_subscription_id, price_id, cancel_at_period_end)

    def cancel_external_subscription(self, external_subscription_id: str, at_period_end: bool = True) -> None:
        self._record("cancel_external_subscription", external_subscription_id, at_period_end)

    def refund_payment(
        self,
        external_payment_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundReceipt:
        self._record("refund_payment", external_payment_id, amount_cents, reason)
        amount = Decimal(amount_cents if amount_cents is not None else 999) / Decimal(100)
        return RefundReceipt(refund_id="re_test", amount=amount, currency="USD", status="pending")

    def verify_event(self, payload: bytes, signature: str) -> GatewayEvent:
        if signature != VALID_SIGNATURE:
            raise SignatureInvalid("Invalid webhook signature")
        return parse_event_envelope(payload)


def make_event(event_type: str, data: Dict[str, Any], occurred_at: datetime, event_id: Optional[str] = None) -> GatewayEvent:
    return GatewayEvent(
        id=event_id or f"evt_{uuid.uuid4().hex[:12]}",
        type=event_type,
        occurred_at=occurred_at,
        data=data,
    )


def event_payload(event_type: str, data: Dict[str, Any], occurred_at: datetime, event_id: Optional[str] = None) -> bytes:
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
            "type": event_type,
            "created": int(occurred_at.timestamp()),
            "data": {"object": data},
        }
    ).encode("utf-8")


def checkout_data(
    subscriber_id: str = SUBSCRIBER_ID,
    creator_id: str = CREATOR_ID,
    tier: str = "basic",
    billing_cycle: str = "monthly",
    external_subscription_id: str = "sub_1",
) -> Dict[str, Any]:
    return {
        "id": "cs_1",
        "object": "checkout.session",
        "subscription": external_subscription_id,
        "customer": "cus_1",
        "currency": "usd",
        "metadata": {
            "subscriber_id": subscriber_id,
            "creator_id": creator_id,
            "tier": tier,
            "billing_cycle": billing_cycle,
        },
    }


def invoice_data(
    invoice_id: str = "in_1",
    external_subscription_id: str = "sub_1",
    charge: Optional[str] = "ch_1",
    amount: int = 999,
    **extra: Any,
) -> Dict[str, Any]:
    data = {
        "id": invoice_id,
        "object": "invoice",
        "subscription": external_subscription_id,
        "charge": charge,
        "amount_paid": amount,
        "amount_due": amount,
        "currency": "usd",
    }
    data.update(extra)
    return data


def make_subscription(**overrides: Any) -> Subscription:
    tier = overrides.pop("tier", Tier.BASIC)
    cycle = overrides.pop("billing_cycle", BillingCycle.MONTHLY)
    start = overrides.pop("start_date", T0)
    end = overrides.pop("end_date", compute_period_end(start, cycle))
    price = get_plan(tier).price_for(cycle)
    values: Dict[str, Any] = dict(
        id=uuid.uuid4().hex,
        subscriber_id=SUBSCRIBER_ID,
        creator_id=CREATOR_ID,
        tier=tier,
        billing_cycle=cycle,
        price=price.amount,
        currency="USD",
        state=SubscriptionState.ACTIVE,
        start_date=start,
        end_date=end,
        renewal_date=end,
        external_subscription_id=f"sub_{uuid.uuid4().hex[:8]}",
        external_customer_id="cus_1",
        external_price_id=price.price_id,
        last_event_at=start,
    )
    values.update(overrides)
    return Subscription(**values)


def issue_token(subject: str, role: str = "viewer", secret: str = TOKEN_SECRET, **claims: Any) -> str:
    payload = {"sub": subject, "role": role}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(tmp_path):
    persistence = SQLitePersistence(tmp_path / "entitlements.db")
    yield persistence
    persistence.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def creator(store) -> Account:
    return store.save_account(Account(id=CREATOR_ID, email="creator@example.com", username="creator", role=Role.CREATOR))


@pytest.fixture
def subscriber() -> Principal:
    return Principal(id=SUBSCRIBER_ID, role=Role.VIEWER)


@pytest.fixture
def admin() -> Principal:
    return Principal(id=ADMIN_ID, role=Role.ADMIN)
