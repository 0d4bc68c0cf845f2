# src/infrastructure/notifications/audit.py

import json
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.domain.timeutils import utc_now
from src.infrastructure.db.models import AuditEvent
from src.infrastructure.db.session import SessionLocal, session_scope

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class AuditLog:
    """
    Append-only audit trail of sensitive booking changes.

    Writes are best-effort: a failed write is logged and dropped, and never
    reaches the booking pipeline.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def record(
        self,
        action: str,
        resource: str,
        resource_id: str | None = None,
        details: dict | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> None:
        event = AuditEvent(
            action=action,
            resource=resource,
            resource_id=resource_id,
            actor=actor,
            details=json.dumps(details or {}, sort_keys=True, default=str),
            created_at=utc_now(),
        )
        try:
            with session_scope(self._session_factory) as db:
                db.add(event)
        except SQLAlchemyError:
            logger.exception(
                "Audit write failed. action=%s resource=%s resource_id=%s",
                action,
                resource,
                resource_id,
            )

    def for_resource(self, resource: str, resource_id: str | None) -> list[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.resource == resource)
            .where(AuditEvent.resource_id == resource_id)
            .order_by(AuditEvent.created_at, AuditEvent.id)
        )
        with session_scope(self._session_factory) as db:
            return list(db.execute(stmt).scalars().all())
