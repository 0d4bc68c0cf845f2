from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PaymentState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass(frozen=True)
class PaymentLink:
    url: str
    payment_ref: str


@dataclass(frozen=True)
class PaymentStatus:
    payment_ref: str
    state: PaymentState
    provider_payment_id: str | None = None
    raw_status: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    payment_ref: str | None
    provider_payment_id: str | None = None
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentLinkRequest:
    idempotency_key: str
    amount: int
    currency: str
    description: str
    customer_email: str
    customer_phone: str | None
    callback_url: str
    expires_at: datetime
    notes: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PricedOffer:
    offer_id: str
    amount: int
    currency: str
    expires_at: datetime | None


@dataclass(frozen=True)
class TicketOrder:
    order_id: str
    booking_reference: str | None = None


class PaymentProvider(ABC):
    name: str = "payment"

    @abstractmethod
    def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        """Creates a hosted payment page; the same idempotency key yields the same link."""

    @abstractmethod
    def get_payment_status(self, payment_ref: str) -> PaymentStatus:
        """Authoritative status of a payment link."""

    @abstractmethod
    def parse_webhook(self, raw_body: bytes, signature: str | None) -> WebhookEvent:
        """Verifies and decodes a webhook delivery. Raises WebhookSignatureError."""

    @abstractmethod
    def refund(self, provider_payment_id: str, amount: int) -> str:
        """Refunds a captured payment and returns the provider refund id."""


class TicketingProvider(ABC):
    name: str = "ticketing"

    @abstractmethod
    def create_order(
        self,
        offer_id: str,
        passengers: list[dict],
        amount: int,
        currency: str,
    ) -> TicketOrder:
        """Issues a ticket for an offer and passenger manifest."""


class OfferSource(ABC):
    @abstractmethod
    def get_offer(self, offer_id: str) -> PricedOffer | None:
        """Current price of an offer, or None when the offer no longer exists."""
