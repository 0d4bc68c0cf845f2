from datetime import date, datetime
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from src.application.booking_service import CheckoutCommand
from src.domain.passengers import Passenger, load_passengers
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking

logger = logging.getLogger(__name__)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutRequest(CamelModel):
    origin: str = Field(min_length=3, max_length=3)
    origin_name: str | None = None
    destination: str = Field(min_length=3, max_length=3)
    destination_name: str | None = None
    departure_date: date
    return_date: date | None = None
    adults: int = Field(ge=1, le=9)
    children: int = Field(default=0, ge=0, le=9)
    infants: int = Field(default=0, ge=0, le=9)
    travel_class: Literal["economy", "premium_economy", "business", "first"] = "economy"
    offer_id: str = Field(min_length=1, max_length=128)
    flight_offer: dict[str, Any] | None = None
    amount: int = Field(gt=0, description="Claimed flight price in minor units")
    currency: str = Field(min_length=3, max_length=3)
    passengers: list[Passenger] = Field(min_length=1)
    contact_email: str = Field(pattern=EMAIL_PATTERN, max_length=320)
    contact_phone: str | None = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def _check_itinerary(self) -> "CheckoutRequest":
        if self.origin.upper() == self.destination.upper():
            raise ValueError("origin and destination must differ")
        if self.return_date is not None and self.return_date < self.departure_date:
            raise ValueError("return_date must not be before departure_date")
        return self

    def to_command(self) -> CheckoutCommand:
        return CheckoutCommand(**dict(self))


class CheckoutResponse(CamelModel):
    booking_id: str
    checkout_url: str
    payment_ref: str
    locked_price: int
    currency: str
    expires_at: datetime


class BookingResponse(CamelModel):
    id: str
    status: BookingStatus
    display_status: str
    cancel_reason: str | None = None
    origin: str
    origin_name: str | None = None
    destination: str
    destination_name: str | None = None
    departure_date: str
    return_date: str | None = None
    adults: int
    children: int
    infants: int
    travel_class: str
    offer_id: str
    flight_amount: int
    service_fee: int
    total_amount: int
    currency: str
    passengers: list[Passenger]
    contact_email: str
    contact_phone: str | None = None
    checkout_url: str | None = None
    payment_ref: str | None = None
    ticket_reference: str | None = None
    ticket_booking_reference: str | None = None
    error_message: str | None = None
    created_at: datetime
    expires_at: datetime
    paid_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            status=booking.status,
            display_status=display_status(booking),
            cancel_reason=booking.cancel_reason.value if booking.cancel_reason else None,
            origin=booking.origin,
            origin_name=booking.origin_name,
            destination=booking.destination,
            destination_name=booking.destination_name,
            departure_date=booking.departure_date,
            return_date=booking.return_date,
            adults=booking.adults,
            children=booking.children,
            infants=booking.infants,
            travel_class=booking.travel_class,
            offer_id=booking.offer_id,
            flight_amount=booking.flight_amount,
            service_fee=booking.service_fee,
            total_amount=booking.total_amount,
            currency=booking.currency,
            passengers=_stored_passengers(booking),
            contact_email=booking.contact_email,
            contact_phone=booking.contact_phone,
            checkout_url=booking.checkout_url,
            payment_ref=booking.payment_reference,
            ticket_reference=booking.ticket_reference,
            ticket_booking_reference=booking.ticket_booking_reference,
            error_message=booking.error_message,
            created_at=booking.created_at,
            expires_at=booking.expires_at,
            paid_at=booking.paid_at,
            completed_at=booking.completed_at,
        )


def display_status(booking: Booking) -> str:
    """Customer-facing label; a paid booking without a ticket reads as pending ticket."""
    if booking.status == BookingStatus.PAID and booking.ticket_reference is None:
        return "payment_received_ticket_pending"
    return booking.status.value


def _stored_passengers(booking: Booking) -> list:
    try:
        return load_passengers(booking.passenger_details)
    except ValidationError as exc:
        logger.warning(
            "Stored passenger manifest is unreadable. booking_id=%s errors=%s",
            booking.id,
            exc.error_count(),
        )
        return []


class VerifyPaymentResponse(CamelModel):
    status: BookingStatus
    booking: BookingResponse


class PaymentLinkResponse(CamelModel):
    booking_id: str
    checkout_url: str
    payment_ref: str


class WebhookAckResponse(CamelModel):
    received: bool = True
    action: str
    booking_id: str | None = None


class SweepResponse(CamelModel):
    cancelled: list[str]
    count: int


class ErrorResponse(BaseModel):
    error: bool = True
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
