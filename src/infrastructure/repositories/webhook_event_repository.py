# src/infrastructure/repositories/webhook_event_repository.py

import hashlib

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from src.infrastructure.db.models import PaymentWebhookEvent
from src.infrastructure.db.session import SessionLocal, session_scope


def hash_webhook_payload(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


class WebhookEventRepository:
    """Receipts of authenticated webhook deliveries. Never gates state changes."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def record_delivery(
        self,
        provider: str,
        event_type: str,
        payment_reference: str | None,
        raw_body: bytes,
    ) -> int:
        """
        Stores the receipt and returns how many times this exact payload
        had already been delivered.
        """
        payload_hash = hash_webhook_payload(raw_body)
        with session_scope(self._session_factory) as db:
            previous = db.execute(
                select(func.count())
                .select_from(PaymentWebhookEvent)
                .where(PaymentWebhookEvent.provider == provider)
                .where(PaymentWebhookEvent.payload_hash == payload_hash)
            ).scalar_one()
            db.add(
                PaymentWebhookEvent(
                    provider=provider,
                    event_type=event_type,
                    payment_reference=payment_reference,
                    payload_hash=payload_hash,
                )
            )
        return previous
