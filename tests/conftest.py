import dataclasses
from datetime import date, timedelta
import hashlib
import hmac
import json
import os
import threading
import time

# Tests never touch the configured database.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from src.api.dependencies import get_container
from src.container import build_container
from src.domain.exceptions import ExternalProviderError, WebhookSignatureError
from src.domain.passengers import AdultPassenger, dump_passengers
from src.domain.providers import (
    OfferSource,
    PaymentLink,
    PaymentProvider,
    PaymentState,
    PaymentStatus,
    PricedOffer,
    TicketingProvider,
    TicketOrder,
    WebhookEvent,
)
from src.domain.timeutils import utc_now
from src.infrastructure.config import settings
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import build_engine
from src.infrastructure.notifications.audit import AuditLog
from src.infrastructure.notifications.notifier import NotificationSink
from src.infrastructure.repositories.booking_repository import BookingRepository, NewBooking
from src.main import app

WEBHOOK_SECRET = "whsec_test"


# ---------------------
# FAKE PROVIDERS
# ---------------------

class FakeOfferSource(OfferSource):
    def __init__(self):
        self.offers = {}

    def add(self, offer_id, amount, currency="USD", expires_in=timedelta(hours=1)):
        self.offers[offer_id] = PricedOffer(
            offer_id=offer_id,
            amount=amount,
            currency=currency,
            expires_at=utc_now() + expires_in,
        )

    def get_offer(self, offer_id):
        return self.offers.get(offer_id)


class FakePaymentProvider(PaymentProvider):
    """In-memory payment links, signed with HMAC-SHA256 like Razorpay webhooks."""

    name = "fakepay"

    def __init__(self):
        self.links = {}
        self.by_key = {}
        self.create_calls = 0
        self.status_calls = 0
        self.refunds = []
        self.fail_create = False
        self.fail_status = False
        self._lock = threading.Lock()

    def create_payment_link(self, request):
        with self._lock:
            self.create_calls += 1
            if self.fail_create:
                raise ExternalProviderError(self.name, "gateway unavailable")
            if request.idempotency_key in self.by_key:
                ref = self.by_key[request.idempotency_key]
            else:
                ref = f"plink_{len(self.links) + 1}"
                self.by_key[request.idempotency_key] = ref
                self.links[ref] = {
                    "state": PaymentState.PENDING,
                    "payment_id": None,
                    "request": request,
                }
        return PaymentLink(url=f"https://pay.example/{ref}", payment_ref=ref)

    def set_state(self, ref, state, payment_id=None):
        self.links[ref]["state"] = state
        self.links[ref]["payment_id"] = payment_id

    def mark_paid(self, ref, payment_id="pay_001"):
        self.set_state(ref, PaymentState.COMPLETED, payment_id)

    def get_payment_status(self, payment_ref):
        with self._lock:
            self.status_calls += 1
        if self.fail_status:
            raise ExternalProviderError(self.name, "status lookup timed out")
        link = self.links[payment_ref]
        return PaymentStatus(
            payment_ref=payment_ref,
            state=link["state"],
            provider_payment_id=link["payment_id"],
            raw_status=link["state"].value,
        )

    def webhook_body(self, ref, event="payment_link.paid", payment_id="pay_001"):
        return json.dumps(
            {
                "event": event,
                "payload": {
                    "payment_link": {"entity": {"id": ref, "status": "paid"}},
                    "payment": {"entity": {"id": payment_id}},
                },
            }
        ).encode("utf-8")

    @staticmethod
    def sign(body):
        return hmac.new(WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def parse_webhook(self, raw_body, signature):
        if not signature or not hmac.compare_digest(self.sign(raw_body), signature):
            raise WebhookSignatureError(self.name)
        payload = json.loads(raw_body)
        entities = payload.get("payload", {})
        return WebhookEvent(
            event_type=payload.get("event", ""),
            payment_ref=entities.get("payment_link", {}).get("entity", {}).get("id"),
            provider_payment_id=entities.get("payment", {}).get("entity", {}).get("id"),
            payload=payload,
        )

    def refund(self, provider_payment_id, amount):
        self.refunds.append((provider_payment_id, amount))
        return f"rfnd_{len(self.refunds)}"


class FakeTicketingProvider(TicketingProvider):
    name = "fakeair"

    def __init__(self):
        self.orders = []
        self.failures_remaining = 0
        self.delay = 0.0
        self._lock = threading.Lock()

    def create_order(self, offer_id, passengers, amount, currency):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            if self.failures_remaining:
                self.failures_remaining -= 1
                raise ExternalProviderError(self.name, "Offer is no longer bookable")
            order_id = f"ord_{len(self.orders) + 1}"
            self.orders.append(
                {
                    "order_id": order_id,
                    "offer_id": offer_id,
                    "passengers": passengers,
                    "amount": amount,
                    "currency": currency,
                }
            )
        return TicketOrder(order_id=order_id, booking_reference="PNR123")


class RecordingNotifier(NotificationSink):
    def __init__(self):
        self.messages = []

    def notify(self, title, content):
        self.messages.append((title, content))
        return True

    def titles(self):
        return [title for title, _ in self.messages]


# ---------------------
# DATA HELPERS
# ---------------------

ADULT = {
    "type": "adult",
    "title": "ms",
    "given_name": "Amelia",
    "family_name": "Earhart",
    "born_on": "1990-07-24",
    "gender": "f",
    "email": "amelia@example.com",
}


def checkout_payload(**overrides):
    payload = {
        "origin": "JFK",
        "destination": "LHR",
        "departureDate": "2030-05-01",
        "adults": 1,
        "travelClass": "economy",
        "offerId": "OFF123",
        "amount": 50000,
        "currency": "USD",
        "passengers": [ADULT],
        "contactEmail": "amelia@example.com",
    }
    payload.update(overrides)
    return payload


def user_headers(email="amelia@example.com", role="user"):
    return {"X-User-Email": email, "X-User-Role": role}


ADMIN_HEADERS = user_headers("ops@example.com", "admin")


def new_booking(**overrides):
    values = dict(
        owner_email="amelia@example.com",
        origin="JFK",
        destination="LHR",
        departure_date="2030-05-01",
        adults=1,
        travel_class="economy",
        offer_id="OFF123",
        flight_amount=50000,
        service_fee=2500,
        currency="USD",
        passenger_details=dump_passengers(
            [
                AdultPassenger(
                    title="ms",
                    given_name="Amelia",
                    family_name="Earhart",
                    born_on=date(1990, 7, 24),
                )
            ]
        ),
        contact_email="amelia@example.com",
        expires_in=timedelta(minutes=30),
    )
    values.update(overrides)
    return NewBooking(**values)


# ---------------------
# FIXTURES
# ---------------------

@pytest.fixture
def session_factory(tmp_path):
    # File-backed so concurrent threads get real, separate connections.
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return BookingRepository(session_factory)


@pytest.fixture
def audit(session_factory):
    return AuditLog(session_factory)


@pytest.fixture
def offers():
    source = FakeOfferSource()
    source.add("OFF123", 50000, "USD")
    return source


@pytest.fixture
def payments():
    return FakePaymentProvider()


@pytest.fixture
def ticketing():
    return FakeTicketingProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def test_settings():
    return dataclasses.replace(
        settings,
        public_base_url="http://testserver",
        service_fee_minor=2500,
        price_tolerance_minor=0,
        booking_expiry_minutes=30,
        ticketing_lease_seconds=300,
    )


@pytest.fixture
def container(test_settings, session_factory, payments, ticketing, offers, notifier):
    return build_container(
        config=test_settings,
        session_factory=session_factory,
        payments=payments,
        ticketing=ticketing,
        offer_source=offers,
        notifier=notifier,
    )


@pytest.fixture
def client(container):
    app.dependency_overrides[get_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_booking(store):
    def _make(**overrides):
        return store.create_pending(new_booking(**overrides))

    return _make
