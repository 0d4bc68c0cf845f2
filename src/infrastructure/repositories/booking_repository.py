# src/infrastructure/repositories/booking_repository.py

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from uuid import uuid4

from sqlalchemy import and_, or_, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from src.domain.exceptions import BookingNotFoundError, IdempotencyConflictError
from src.domain.idempotency import payment_idempotency_key
from src.domain.state_machine import BookingStateMachine, BookingStatus, CancelReason
from src.domain.timeutils import utc_now
from src.infrastructure.db.models import Booking
from src.infrastructure.db.session import SessionLocal, session_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewBooking:
    owner_email: str
    origin: str
    destination: str
    departure_date: str
    adults: int
    travel_class: str
    offer_id: str
    flight_amount: int
    service_fee: int
    currency: str
    passenger_details: str
    contact_email: str
    expires_in: timedelta
    origin_name: str | None = None
    destination_name: str | None = None
    return_date: str | None = None
    children: int = 0
    infants: int = 0
    flight_offer: str | None = None
    contact_phone: str | None = None

    @property
    def total_amount(self) -> int:
        return self.flight_amount + self.service_fee


class BookingRepository:
    """
    Durable booking store.

    Every method runs in its own short transaction. State changes are
    single conditional UPDATE statements whose rowcount reports whether
    this caller's write took effect.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def _session(self):
        return session_scope(self._session_factory)

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, booking_id: str) -> Booking | None:
        with self._session() as db:
            return db.get(Booking, booking_id)

    def require(self, booking_id: str) -> Booking:
        booking = self.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def get_by_payment_reference(self, payment_reference: str) -> Booking | None:
        stmt = select(Booking).where(Booking.payment_reference == payment_reference)
        with self._session() as db:
            return db.execute(stmt).scalar_one_or_none()

    def list_bookings(
        self,
        owner_email: str | None = None,
        status: BookingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        stmt = select(Booking).order_by(Booking.created_at.desc(), Booking.id)
        if owner_email is not None:
            stmt = stmt.where(Booking.owner_email == owner_email)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.limit(limit).offset(offset)
        with self._session() as db:
            return list(db.execute(stmt).scalars().all())

    # -----------------------------
    # Creation
    # -----------------------------
    def create_pending(self, data: NewBooking) -> str:
        booking_id = str(uuid4())
        now = utc_now()
        booking = Booking(
            id=booking_id,
            idempotency_key=payment_idempotency_key(booking_id),
            owner_email=data.owner_email,
            origin=data.origin,
            origin_name=data.origin_name,
            destination=data.destination,
            destination_name=data.destination_name,
            departure_date=data.departure_date,
            return_date=data.return_date,
            adults=data.adults,
            children=data.children,
            infants=data.infants,
            travel_class=data.travel_class,
            offer_id=data.offer_id,
            flight_offer=data.flight_offer,
            flight_amount=data.flight_amount,
            service_fee=data.service_fee,
            total_amount=data.total_amount,
            currency=data.currency,
            passenger_details=data.passenger_details,
            contact_email=data.contact_email,
            contact_phone=data.contact_phone,
            status=BookingStatus.PENDING,
            created_at=now,
            updated_at=now,
            expires_at=now + data.expires_in,
        )
        try:
            with self._session() as db:
                db.add(booking)
        except IntegrityError as exc:
            raise IdempotencyConflictError(
                "Duplicate idempotency key for booking"
            ) from exc

        logger.info("Booking created in pending state. booking_id=%s", booking_id)
        return booking_id

    # -----------------------------
    # Conditional transitions
    # -----------------------------
    def _conditional_update(self, booking_id: str, condition, **values) -> bool:
        values.setdefault("updated_at", utc_now())
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(condition)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as db:
            applied = db.execute(stmt).rowcount == 1
        return applied

    def _status_in(self, to_status: BookingStatus):
        return Booking.status.in_(list(BookingStateMachine.sources_for(to_status)))

    def attach_payment_reference(
        self,
        booking_id: str,
        payment_reference: str,
        checkout_url: str,
    ) -> bool:
        """
        Links the provider's payment reference to the booking, once.
        Returns False when the same reference is already attached.

        Status is not checked: a link created just before a concurrent
        cancel still gets recorded, so a payment made through it can be
        traced back to this booking.
        """
        attached = self._conditional_update(
            booking_id,
            Booking.payment_reference.is_(None),
            payment_reference=payment_reference,
            checkout_url=checkout_url,
        )
        if attached:
            return True

        booking = self.require(booking_id)
        if booking.payment_reference and booking.payment_reference != payment_reference:
            raise IdempotencyConflictError(
                "Booking already linked to a different payment reference",
                details={"booking_id": booking_id},
            )
        return False

    def advance_to_paid(
        self,
        booking_id: str,
        provider_payment_id: str | None = None,
    ) -> bool:
        """
        pending -> paid, also accepting bookings cancelled only by expiry.
        Returns False if the booking was already paid (or beyond).
        """
        values = {
            "status": BookingStatus.PAID,
            "paid_at": utc_now(),
            "cancel_reason": None,
        }
        if provider_payment_id:
            values["provider_payment_id"] = provider_payment_id

        return self._conditional_update(
            booking_id,
            or_(
                self._status_in(BookingStatus.PAID),
                and_(
                    Booking.status == BookingStatus.CANCELLED,
                    Booking.cancel_reason == CancelReason.EXPIRED,
                ),
            ),
            **values,
        )

    def claim_ticket_issuance(
        self,
        booking_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> bool:
        now = now or utc_now()
        stale_before = now - timedelta(seconds=lease_seconds)
        return self._conditional_update(
            booking_id,
            and_(
                Booking.status == BookingStatus.PAID,
                Booking.ticket_reference.is_(None),
                or_(
                    Booking.ticketing_claimed_at.is_(None),
                    Booking.ticketing_claimed_at < stale_before,
                ),
            ),
            ticketing_claimed_at=now,
        )

    def attach_ticket_reference(
        self,
        booking_id: str,
        ticket_reference: str,
        ticket_booking_reference: str | None = None,
    ) -> bool:
        """
        paid -> confirmed. Succeeds at most once per booking; any later
        call returns False and leaves the first reference in place.
        """
        return self._conditional_update(
            booking_id,
            and_(
                self._status_in(BookingStatus.CONFIRMED),
                Booking.ticket_reference.is_(None),
            ),
            status=BookingStatus.CONFIRMED,
            ticket_reference=ticket_reference,
            ticket_booking_reference=ticket_booking_reference,
            error_message=None,
            ticketing_claimed_at=None,
        )

    def mark_processing_error(self, booking_id: str, message: str) -> None:
        """Records a partial failure; the booking state is left as is."""
        updated = self._conditional_update(
            booking_id,
            true(),
            error_message=message,
            ticketing_claimed_at=None,
        )
        if not updated:
            raise BookingNotFoundError(booking_id)

    def mark_failed(self, booking_id: str) -> bool:
        return self._conditional_update(
            booking_id,
            self._status_in(BookingStatus.FAILED),
            status=BookingStatus.FAILED,
        )

    def cancel_pending(self, booking_id: str, reason: CancelReason) -> bool:
        return self._conditional_update(
            booking_id,
            self._status_in(BookingStatus.CANCELLED),
            status=BookingStatus.CANCELLED,
            cancel_reason=reason,
        )

    def cancel_expired(self, now: datetime | None = None) -> list[str]:
        now = now or utc_now()
        stmt = (
            select(Booking.id)
            .where(Booking.status == BookingStatus.PENDING)
            .where(Booking.expires_at < now)
        )
        with self._session() as db:
            candidates = list(db.execute(stmt).scalars().all())

        cancelled = []
        for booking_id in candidates:
            # Re-checks expiry in the UPDATE so a payment landing in between wins.
            if self._conditional_update(
                booking_id,
                and_(
                    Booking.status == BookingStatus.PENDING,
                    Booking.expires_at < now,
                ),
                status=BookingStatus.CANCELLED,
                cancel_reason=CancelReason.EXPIRED,
            ):
                cancelled.append(booking_id)
        return cancelled

    def mark_refunded(self, booking_id: str) -> bool:
        return self._conditional_update(
            booking_id,
            self._status_in(BookingStatus.REFUNDED),
            status=BookingStatus.REFUNDED,
        )

    def mark_completed(self, booking_id: str) -> bool:
        return self._conditional_update(
            booking_id,
            self._status_in(BookingStatus.COMPLETED),
            status=BookingStatus.COMPLETED,
            completed_at=utc_now(),
        )
