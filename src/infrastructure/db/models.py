# src/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.state_machine import BookingStatus, CancelReason


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )
    owner_email: Mapped[str] = mapped_column(String(320), nullable=False)

    # Itinerary
    origin: Mapped[str] = mapped_column(String(10), nullable=False)
    origin_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    destination: Mapped[str] = mapped_column(String(10), nullable=False)
    destination_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    departure_date: Mapped[str] = mapped_column(String(20), nullable=False)
    return_date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    adults: Mapped[int] = mapped_column(Integer, nullable=False)
    children: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    infants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    travel_class: Mapped[str] = mapped_column(String(50), nullable=False)
    offer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    flight_offer: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing, integer minor units
    flight_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    service_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    passenger_details: Mapped[str] = mapped_column(Text, nullable=False)
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Payment provider linkage
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    provider_payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Ticketing provider linkage
    ticket_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ticket_booking_reference: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ticketing_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    status: Mapped[BookingStatus] = mapped_column(
        Enum(
            BookingStatus,
            name="booking_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    cancel_reason: Mapped[CancelReason | None] = mapped_column(
        Enum(
            CancelReason,
            name="booking_cancel_reason",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "idempotency_key",
            name="uq_booking_idempotency_key",
        ),
        UniqueConstraint(
            "payment_reference",
            name="uq_booking_payment_reference",
        ),
        UniqueConstraint(
            "ticket_reference",
            name="uq_booking_ticket_reference",
        ),
        CheckConstraint("adults >= 1", name="ck_booking_adults_positive"),
        CheckConstraint("children >= 0", name="ck_booking_children_nonnegative"),
        CheckConstraint("infants >= 0", name="ck_booking_infants_nonnegative"),
        CheckConstraint("flight_amount >= 0", name="ck_booking_flight_amount_nonnegative"),
        CheckConstraint("service_fee >= 0", name="ck_booking_service_fee_nonnegative"),
        CheckConstraint("total_amount > 0", name="ck_booking_total_amount_positive"),
        Index("ix_booking_owner_email", "owner_email"),
        Index("ix_booking_status_expires_at", "status", "expires_at"),
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_webhook_payload_hash", "payload_hash"),
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor: Mapped[str] = mapped_column(String(320), nullable=False, default="system")
    details: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
