from datetime import timedelta
import logging

from src.domain.exceptions import BookingStateError
from src.domain.providers import PaymentLink, PaymentLinkRequest, PaymentProvider
from src.domain.state_machine import BookingStatus
from src.domain.timeutils import ensure_utc, utc_now
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)

# Razorpay refuses links that expire sooner than 15 minutes from now.
MIN_LINK_LIFETIME = timedelta(minutes=16)


class PaymentLinkIssuer:
    """Creates at most one live payment link per booking."""

    def __init__(
        self,
        store: BookingRepository,
        payments: PaymentProvider,
        public_base_url: str,
    ):
        self._store = store
        self._payments = payments
        self._public_base_url = public_base_url.rstrip("/")

    def create_link(self, booking: Booking) -> PaymentLink:
        if booking.status != BookingStatus.PENDING:
            raise BookingStateError(
                f"Cannot create a payment link for a {booking.status.value} booking",
                details={"booking_id": booking.id},
            )

        if booking.payment_reference and booking.checkout_url:
            return PaymentLink(url=booking.checkout_url, payment_ref=booking.payment_reference)

        request = PaymentLinkRequest(
            idempotency_key=booking.idempotency_key,
            amount=booking.total_amount,
            currency=booking.currency,
            description=self._describe(booking),
            customer_email=booking.contact_email,
            customer_phone=booking.contact_phone,
            callback_url=f"{self._public_base_url}/booking/success?booking_id={booking.id}",
            expires_at=max(ensure_utc(booking.expires_at), utc_now() + MIN_LINK_LIFETIME),
            notes={
                "booking_id": booking.id,
                "offer_id": booking.offer_id,
            },
        )
        # Provider errors propagate; nothing has been written yet.
        link = self._payments.create_payment_link(request)

        attached = self._store.attach_payment_reference(booking.id, link.payment_ref, link.url)
        if attached:
            logger.info(
                "Payment link attached. booking_id=%s payment_ref=%s",
                booking.id,
                link.payment_ref,
            )
        else:
            logger.info(
                "Payment link already attached by a concurrent request. booking_id=%s",
                booking.id,
            )
        return link

    @staticmethod
    def _describe(booking: Booking) -> str:
        route = f"Flight {booking.origin} -> {booking.destination} on {booking.departure_date}"
        if booking.return_date:
            route += f", return {booking.return_date}"
        passengers = booking.adults + booking.children + booking.infants
        return f"{route} ({passengers} passenger(s), {booking.travel_class})"
