from dataclasses import dataclass
from enum import Enum
import logging

from src.application.ticket_issuer import TicketIssuer
from src.domain.exceptions import ExternalProviderError, WebhookSignatureError
from src.domain.money import format_amount
from src.domain.providers import PaymentProvider, PaymentState, PaymentStatus
from src.domain.state_machine import BookingStateMachine, BookingStatus, CancelReason
from src.domain.timeutils import ensure_utc, utc_now
from src.infrastructure.db.models import Booking
from src.infrastructure.notifications.audit import AuditLog
from src.infrastructure.notifications.notifier import NotificationSink
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.webhook_event_repository import WebhookEventRepository

logger = logging.getLogger(__name__)

PAYMENT_LINK_EVENT_PREFIX = "payment_link."

# Statuses that no provider status can move any further.
_SETTLED = {
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.REFUNDED,
    BookingStatus.FAILED,
}

# Statuses that mean the customer's payment is already recorded.
_PAYMENT_RECORDED = {
    BookingStatus.PAID,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.REFUNDED,
}


class ReconcileAction(str, Enum):
    IGNORED = "ignored"
    UNKNOWN_BOOKING = "unknown_booking"
    NO_PAYMENT_LINK = "no_payment_link"
    AWAITING_PAYMENT = "awaiting_payment"
    ALREADY_SETTLED = "already_settled"
    TICKET_ISSUED = "ticket_issued"
    TICKET_PENDING = "ticket_pending"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_EXPIRED = "payment_expired"
    ANOMALY = "anomaly"


@dataclass(frozen=True)
class ReconcileOutcome:
    action: ReconcileAction
    booking_id: str | None = None
    status: BookingStatus | None = None
    ticket_reference: str | None = None
    late_payment: bool = False


class Reconciler:
    """
    Aligns local booking state with the payment provider.

    Webhooks and status polls both end in :meth:`reconcile`, which is safe
    to run concurrently for the same booking: every write goes through a
    conditional update in the booking store.
    """

    def __init__(
        self,
        store: BookingRepository,
        payments: PaymentProvider,
        ticket_issuer: TicketIssuer,
        webhook_events: WebhookEventRepository,
        notifier: NotificationSink,
        audit: AuditLog,
    ):
        self._store = store
        self._payments = payments
        self._ticket_issuer = ticket_issuer
        self._webhook_events = webhook_events
        self._notifier = notifier
        self._audit = audit

    # -----------------------------
    # Webhook path
    # -----------------------------
    def handle_event(self, raw_body: bytes, signature: str | None) -> ReconcileOutcome:
        try:
            event = self._payments.parse_webhook(raw_body, signature)
        except WebhookSignatureError as exc:
            logger.warning(
                "SECURITY: rejected %s webhook delivery. reason=%s",
                self._payments.name,
                exc.message,
            )
            self._audit.record(
                "webhook_rejected",
                "payment_webhook",
                details={"provider": self._payments.name, "reason": exc.message},
            )
            raise

        previous = self._webhook_events.record_delivery(
            self._payments.name,
            event.event_type,
            event.payment_ref,
            raw_body,
        )
        if previous:
            logger.info(
                "Duplicate webhook delivery. event=%s payment_ref=%s previous=%s",
                event.event_type,
                event.payment_ref,
                previous,
            )

        if not event.event_type.startswith(PAYMENT_LINK_EVENT_PREFIX) or not event.payment_ref:
            logger.info("Ignoring webhook event. event=%s", event.event_type)
            return ReconcileOutcome(action=ReconcileAction.IGNORED)

        booking = self._store.get_by_payment_reference(event.payment_ref)
        if booking is None:
            logger.warning("Webhook for unknown payment reference. payment_ref=%s", event.payment_ref)
            return ReconcileOutcome(action=ReconcileAction.UNKNOWN_BOOKING)

        # Provider errors propagate so the delivery is retried.
        return self.reconcile(booking)

    # -----------------------------
    # Poll path
    # -----------------------------
    def poll_status(self, booking_id: str) -> Booking:
        booking = self._store.require(booking_id)
        try:
            self.reconcile(booking)
        except ExternalProviderError as exc:
            logger.warning(
                "Payment status poll failed; returning stored state. booking_id=%s error=%s",
                booking_id,
                exc.message,
            )
        return self._store.require(booking_id)

    # -----------------------------
    # Shared reconciliation
    # -----------------------------
    def reconcile(self, booking: Booking) -> ReconcileOutcome:
        if booking.status in _SETTLED:
            return self._outcome(ReconcileAction.ALREADY_SETTLED, booking)

        if booking.status == BookingStatus.PAID:
            # Payment is already recorded; only the ticket can be missing.
            return self._ensure_ticket(booking)

        if not booking.payment_reference:
            return self._outcome(ReconcileAction.NO_PAYMENT_LINK, booking)

        status = self._payments.get_payment_status(booking.payment_reference)

        if status.state == PaymentState.COMPLETED:
            return self._on_payment_completed(booking, status)

        if status.state == PaymentState.CANCELLED:
            if self._store.mark_failed(booking.id):
                logger.info("Payment link cancelled; booking failed. booking_id=%s", booking.id)
                self._audit.record(
                    "payment_failed",
                    "booking",
                    booking.id,
                    details={"provider_status": status.raw_status},
                )
            return self._outcome(ReconcileAction.PAYMENT_FAILED, self._store.require(booking.id))

        if status.state == PaymentState.EXPIRED:
            if self._store.cancel_pending(booking.id, CancelReason.EXPIRED):
                logger.info("Payment link expired; booking cancelled. booking_id=%s", booking.id)
                self._audit.record("booking_expired", "booking", booking.id)
            return self._outcome(ReconcileAction.PAYMENT_EXPIRED, self._store.require(booking.id))

        return self._outcome(ReconcileAction.AWAITING_PAYMENT, booking)

    def _on_payment_completed(self, booking: Booking, status: PaymentStatus) -> ReconcileOutcome:
        late = BookingStateMachine.accepts_late_payment(
            booking.status, booking.cancel_reason
        ) or (
            booking.status == BookingStatus.PENDING
            and ensure_utc(booking.expires_at) < utc_now()
        )

        if self._store.advance_to_paid(booking.id, status.provider_payment_id):
            logger.info(
                "Payment confirmed. booking_id=%s payment_ref=%s payment_id=%s",
                booking.id,
                status.payment_ref,
                status.provider_payment_id,
            )
            self._notifier.notify(
                "Payment received",
                f"Booking {booking.id} paid "
                f"{format_amount(booking.total_amount, booking.currency)}.",
            )
            self._audit.record(
                "payment_confirmed",
                "booking",
                booking.id,
                details={
                    "payment_ref": status.payment_ref,
                    "provider_payment_id": status.provider_payment_id,
                    "late": late,
                },
            )
            if late:
                self._report_anomaly(
                    booking,
                    "late_payment",
                    "Payment arrived after the checkout window closed; booking revived to paid.",
                )
        else:
            current = self._store.require(booking.id)
            if current.status not in _PAYMENT_RECORDED:
                # Money moved for a booking that cannot take it.
                self._report_anomaly(
                    current,
                    "orphan_payment",
                    f"Payment captured for a {current.status.value} booking; refund or rebook manually.",
                )
                return self._outcome(ReconcileAction.ANOMALY, current)
            late = False

        outcome = self._ensure_ticket(self._store.require(booking.id))
        if late:
            return ReconcileOutcome(
                action=outcome.action,
                booking_id=outcome.booking_id,
                status=outcome.status,
                ticket_reference=outcome.ticket_reference,
                late_payment=True,
            )
        return outcome

    def _ensure_ticket(self, booking: Booking) -> ReconcileOutcome:
        if booking.status == BookingStatus.PAID and booking.ticket_reference is None:
            self._ticket_issuer.issue(booking)
            booking = self._store.require(booking.id)

        if booking.ticket_reference:
            return self._outcome(ReconcileAction.TICKET_ISSUED, booking)
        return self._outcome(ReconcileAction.TICKET_PENDING, booking)

    def _report_anomaly(self, booking: Booking, action: str, message: str) -> None:
        logger.warning("ANOMALY %s. booking_id=%s %s", action, booking.id, message)
        self._notifier.notify(
            "Payment anomaly",
            f"Booking {booking.id}: {message}",
        )
        self._audit.record(
            action,
            "booking",
            booking.id,
            details={"message": message},
        )

    @staticmethod
    def _outcome(action: ReconcileAction, booking: Booking) -> ReconcileOutcome:
        return ReconcileOutcome(
            action=action,
            booking_id=booking.id,
            status=booking.status,
            ticket_reference=booking.ticket_reference,
        )
