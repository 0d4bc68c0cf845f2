from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Literal
import json
import logging

from src.application.payment_links import PaymentLinkIssuer
from src.application.price_validation import PriceValidationGate
from src.domain.exceptions import (
    AccessDeniedError,
    BookingAccessDeniedError,
    BookingStateError,
    BookingValidationError,
    ExternalProviderError,
    InvalidStateTransitionError,
)
from src.domain.money import format_amount
from src.domain.passengers import Passenger, count_by_type, dump_passengers
from src.domain.providers import PaymentLink, PaymentProvider
from src.domain.state_machine import BookingStateMachine, BookingStatus, CancelReason
from src.infrastructure.db.models import Booking
from src.infrastructure.notifications.audit import AuditLog
from src.infrastructure.notifications.notifier import NotificationSink
from src.infrastructure.repositories.booking_repository import BookingRepository, NewBooking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The acting user, as supplied by the authentication layer."""

    email: str
    is_admin: bool = False


@dataclass(frozen=True)
class CheckoutCommand:
    """A validated checkout request, independent of the HTTP wire format."""

    origin: str
    destination: str
    departure_date: date
    adults: int
    offer_id: str
    amount: int
    currency: str
    passengers: list[Passenger]
    contact_email: str
    origin_name: str | None = None
    destination_name: str | None = None
    return_date: date | None = None
    children: int = 0
    infants: int = 0
    travel_class: Literal["economy", "premium_economy", "business", "first"] = "economy"
    flight_offer: dict[str, Any] | None = None
    contact_phone: str | None = None


@dataclass(frozen=True)
class CheckoutResult:
    booking_id: str
    checkout_url: str
    payment_ref: str
    locked_price: int
    currency: str
    expires_at: datetime


class BookingService:
    """Application service coordinating the booking workflow."""

    def __init__(
        self,
        store: BookingRepository,
        price_gate: PriceValidationGate,
        link_issuer: PaymentLinkIssuer,
        payments: PaymentProvider,
        notifier: NotificationSink,
        audit: AuditLog,
        service_fee_minor: int = 0,
        booking_expiry: timedelta = timedelta(minutes=30),
    ):
        self._store = store
        self._price_gate = price_gate
        self._link_issuer = link_issuer
        self._payments = payments
        self._notifier = notifier
        self._audit = audit
        self._service_fee_minor = service_fee_minor
        self._booking_expiry = booking_expiry

    # -----------------------------
    # Checkout
    # -----------------------------
    def checkout(self, request: CheckoutCommand, actor: Actor) -> CheckoutResult:
        self._check_passenger_counts(request)

        offer = self._price_gate.validate(request.offer_id, request.amount, request.currency)

        booking_id = self._store.create_pending(
            NewBooking(
                owner_email=actor.email,
                origin=request.origin.upper(),
                origin_name=request.origin_name,
                destination=request.destination.upper(),
                destination_name=request.destination_name,
                departure_date=request.departure_date.isoformat(),
                return_date=request.return_date.isoformat() if request.return_date else None,
                adults=request.adults,
                children=request.children,
                infants=request.infants,
                travel_class=request.travel_class,
                offer_id=offer.offer_id,
                flight_offer=json.dumps(request.flight_offer) if request.flight_offer else None,
                flight_amount=offer.amount,
                service_fee=self._service_fee_minor,
                currency=offer.currency.upper(),
                passenger_details=dump_passengers(request.passengers),
                contact_email=request.contact_email,
                contact_phone=request.contact_phone,
                expires_in=self._booking_expiry,
            )
        )
        booking = self._store.require(booking_id)

        try:
            link = self._link_issuer.create_link(booking)
        except ExternalProviderError as exc:
            # The booking stays pending; the caller can retry the link for it.
            exc.details["booking_id"] = booking_id
            raise

        self._audit.record(
            "booking_created",
            "booking",
            booking_id,
            details={
                "offer_id": offer.offer_id,
                "total_amount": booking.total_amount,
                "currency": booking.currency,
            },
            actor=actor.email,
        )
        logger.info(
            "Checkout created. booking_id=%s total=%s",
            booking_id,
            format_amount(booking.total_amount, booking.currency),
        )
        return CheckoutResult(
            booking_id=booking_id,
            checkout_url=link.url,
            payment_ref=link.payment_ref,
            locked_price=booking.total_amount,
            currency=booking.currency,
            expires_at=booking.expires_at,
        )

    @staticmethod
    def _check_passenger_counts(request: CheckoutCommand) -> None:
        counts = count_by_type(request.passengers)
        expected = {
            "adult": request.adults,
            "child": request.children,
            "infant": request.infants,
        }
        if counts != expected:
            raise BookingValidationError(
                "Passenger details do not match passenger counts",
                details={"expected": expected, "received": counts},
            )
        if request.infants > request.adults:
            raise BookingValidationError("Each infant must travel with an adult")

    # -----------------------------
    # Reads
    # -----------------------------
    def get_booking(self, booking_id: str, actor: Actor) -> Booking:
        booking = self._store.require(booking_id)
        if not actor.is_admin and booking.owner_email != actor.email:
            raise BookingAccessDeniedError(booking_id)
        return booking

    def list_bookings(
        self,
        actor: Actor,
        status: BookingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        owner = None if actor.is_admin else actor.email
        return self._store.list_bookings(owner_email=owner, status=status, limit=limit, offset=offset)

    # -----------------------------
    # Customer actions
    # -----------------------------
    def retry_payment_link(self, booking_id: str, actor: Actor) -> PaymentLink:
        booking = self.get_booking(booking_id, actor)
        return self._link_issuer.create_link(booking)

    def cancel_booking(self, booking_id: str, actor: Actor) -> Booking:
        booking = self.get_booking(booking_id, actor)
        if not self._store.cancel_pending(booking_id, CancelReason.CUSTOMER):
            current = self._store.require(booking_id)
            raise InvalidStateTransitionError(current.status.value, BookingStatus.CANCELLED.value)

        self._audit.record("booking_cancelled", "booking", booking_id, actor=actor.email)
        logger.info("Booking cancelled by customer. booking_id=%s", booking.id)
        return self._store.require(booking_id)

    # -----------------------------
    # Admin actions
    # -----------------------------
    def refund_booking(self, booking_id: str, actor: Actor) -> Booking:
        self._require_admin(actor)
        booking = self._store.require(booking_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.REFUNDED)

        payment_id = booking.provider_payment_id
        if not payment_id and booking.payment_reference:
            payment_id = self._payments.get_payment_status(booking.payment_reference).provider_payment_id
        if not payment_id:
            raise BookingStateError(
                "No captured payment found for this booking",
                details={"booking_id": booking_id},
            )

        refund_id = self._payments.refund(payment_id, booking.total_amount)

        if not self._store.mark_refunded(booking_id):
            current = self._store.require(booking_id)
            logger.error(
                "Refund issued but booking could not be marked refunded. booking_id=%s status=%s refund_id=%s",
                booking_id,
                current.status.value,
                refund_id,
            )
            self._notifier.notify(
                "Refund anomaly",
                f"Refund {refund_id} issued for booking {booking_id} in status {current.status.value}.",
            )
            raise InvalidStateTransitionError(current.status.value, BookingStatus.REFUNDED.value)

        self._audit.record(
            "booking_refunded",
            "booking",
            booking_id,
            details={"refund_id": refund_id, "amount": booking.total_amount},
            actor=actor.email,
        )
        self._notifier.notify(
            "Booking refunded",
            f"Booking {booking_id} refunded {format_amount(booking.total_amount, booking.currency)}.",
        )
        return self._store.require(booking_id)

    def complete_booking(self, booking_id: str, actor: Actor) -> Booking:
        self._require_admin(actor)
        if not self._store.mark_completed(booking_id):
            current = self._store.require(booking_id)
            raise InvalidStateTransitionError(current.status.value, BookingStatus.COMPLETED.value)

        self._audit.record("booking_completed", "booking", booking_id, actor=actor.email)
        return self._store.require(booking_id)

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise AccessDeniedError("Admin role required")
