from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import sessionmaker

from src.application.booking_service import BookingService
from src.application.expiry_sweeper import ExpirySweeper
from src.application.payment_links import PaymentLinkIssuer
from src.application.price_validation import PriceValidationGate
from src.application.reconciler import Reconciler
from src.application.ticket_issuer import TicketIssuer
from src.domain.providers import OfferSource, PaymentProvider, TicketingProvider
from src.infrastructure.config import Settings, settings as default_settings
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.notifications.audit import AuditLog
from src.infrastructure.notifications.notifier import NotificationSink, WebhookNotifier
from src.infrastructure.providers.duffel_ticketing import DuffelClient
from src.infrastructure.providers.razorpay_payments import RazorpayPaymentProvider
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.webhook_event_repository import WebhookEventRepository


@dataclass
class Container:
    store: BookingRepository
    webhook_events: WebhookEventRepository
    audit: AuditLog
    notifier: NotificationSink
    payments: PaymentProvider
    ticketing: TicketingProvider
    price_gate: PriceValidationGate
    link_issuer: PaymentLinkIssuer
    ticket_issuer: TicketIssuer
    reconciler: Reconciler
    bookings: BookingService
    sweeper: ExpirySweeper


def build_container(
    config: Settings = default_settings,
    session_factory: sessionmaker = SessionLocal,
    payments: PaymentProvider | None = None,
    ticketing: TicketingProvider | None = None,
    offer_source: OfferSource | None = None,
    notifier: NotificationSink | None = None,
) -> Container:
    """Wires the booking pipeline. Provider arguments replace the real adapters."""
    store = BookingRepository(session_factory)
    webhook_events = WebhookEventRepository(session_factory)
    audit = AuditLog(session_factory)

    if notifier is None:
        notifier = WebhookNotifier(config.notification_webhook_url)
    if payments is None:
        payments = RazorpayPaymentProvider(
            key_id=config.razorpay_key_id,
            key_secret=config.razorpay_key_secret,
            webhook_secret=config.razorpay_webhook_secret,
        )
    if ticketing is None or offer_source is None:
        duffel = DuffelClient(
            api_key=config.duffel_api_key,
            base_url=config.duffel_base_url,
            timeout=config.provider_timeout_seconds,
        )
        ticketing = ticketing or duffel
        offer_source = offer_source or duffel

    price_gate = PriceValidationGate(offer_source, config.price_tolerance_minor)
    link_issuer = PaymentLinkIssuer(store, payments, config.public_base_url)
    ticket_issuer = TicketIssuer(
        store,
        ticketing,
        notifier,
        audit,
        lease_seconds=config.ticketing_lease_seconds,
    )
    reconciler = Reconciler(store, payments, ticket_issuer, webhook_events, notifier, audit)
    bookings = BookingService(
        store,
        price_gate,
        link_issuer,
        payments,
        notifier,
        audit,
        service_fee_minor=config.service_fee_minor,
        booking_expiry=timedelta(minutes=config.booking_expiry_minutes),
    )
    return Container(
        store=store,
        webhook_events=webhook_events,
        audit=audit,
        notifier=notifier,
        payments=payments,
        ticketing=ticketing,
        price_gate=price_gate,
        link_issuer=link_issuer,
        ticket_issuer=ticket_issuer,
        reconciler=reconciler,
        bookings=bookings,
        sweeper=ExpirySweeper(store, audit),
    )
