import logging

from pydantic import ValidationError

from src.domain.exceptions import ExternalProviderError
from src.domain.money import format_amount
from src.domain.passengers import load_passengers
from src.domain.providers import TicketingProvider
from src.infrastructure.db.models import Booking
from src.infrastructure.notifications.audit import AuditLog
from src.infrastructure.notifications.notifier import NotificationSink
from src.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)


class TicketIssuer:
    """
    Issues the ticket for a paid booking.

    A short lease on the booking row lets exactly one worker talk to the
    ticketing provider at a time. A failure releases the lease and records
    ``error_message``; the next webhook or status poll retries.
    """

    def __init__(
        self,
        store: BookingRepository,
        ticketing: TicketingProvider,
        notifier: NotificationSink,
        audit: AuditLog,
        lease_seconds: int = 300,
    ):
        self._store = store
        self._ticketing = ticketing
        self._notifier = notifier
        self._audit = audit
        self._lease_seconds = lease_seconds

    def issue(self, booking: Booking) -> str | None:
        """
        Returns the booking's ticket reference, or None while issuance is
        still outstanding (claimed elsewhere, or failed on this attempt).
        """
        if not self._store.claim_ticket_issuance(booking.id, self._lease_seconds):
            logger.info("Ticket issuance already claimed or not applicable. booking_id=%s", booking.id)
            return self._store.require(booking.id).ticket_reference

        try:
            return self._issue_claimed(booking)
        except Exception as exc:
            # The lease must not outlive this attempt, whatever went wrong.
            logger.exception("Unexpected error during ticket issuance. booking_id=%s", booking.id)
            self._record_failure(booking, f"Unexpected ticketing error: {type(exc).__name__}: {exc}")
            raise

    def _issue_claimed(self, booking: Booking) -> str | None:
        try:
            passengers = load_passengers(booking.passenger_details)
        except ValidationError as exc:
            self._record_failure(booking, f"Stored passenger manifest is invalid: {exc.error_count()} error(s)")
            return None
        if not passengers:
            self._record_failure(booking, "Passenger manifest is missing")
            return None

        try:
            order = self._ticketing.create_order(
                offer_id=booking.offer_id,
                passengers=[passenger.to_provider_payload() for passenger in passengers],
                amount=booking.flight_amount,
                currency=booking.currency,
            )
        except ExternalProviderError as exc:
            self._record_failure(booking, exc.message)
            return None

        if not self._store.attach_ticket_reference(
            booking.id,
            order.order_id,
            order.booking_reference,
        ):
            logger.warning(
                "Ticket issued but another reference was attached first. booking_id=%s order_id=%s",
                booking.id,
                order.order_id,
            )
            self._notifier.notify(
                "Duplicate ticket order",
                f"Booking {booking.id} received extra ticketing order {order.order_id}. "
                "Cancel it with the ticketing provider.",
            )
            self._audit.record(
                "ticket_duplicate",
                "booking",
                booking.id,
                details={"order_id": order.order_id},
            )
            return self._store.require(booking.id).ticket_reference

        logger.info(
            "Ticket issued. booking_id=%s order_id=%s booking_reference=%s",
            booking.id,
            order.order_id,
            order.booking_reference,
        )
        self._notifier.notify(
            "Booking confirmed",
            f"Booking {booking.id} {booking.origin}-{booking.destination} "
            f"on {booking.departure_date} confirmed "
            f"({format_amount(booking.total_amount, booking.currency)}). "
            f"PNR: {order.booking_reference or 'n/a'}",
        )
        self._audit.record(
            "ticket_issued",
            "booking",
            booking.id,
            details={
                "order_id": order.order_id,
                "booking_reference": order.booking_reference,
            },
        )
        return order.order_id

    def _record_failure(self, booking: Booking, message: str) -> None:
        logger.error("Ticket issuance failed. booking_id=%s error=%s", booking.id, message)
        self._store.mark_processing_error(booking.id, message)
        self._notifier.notify(
            "Ticketing failed",
            f"Booking {booking.id} is paid but has no ticket yet: {message}",
        )
        self._audit.record(
            "ticket_failed",
            "booking",
            booking.id,
            details={"error": message},
        )
