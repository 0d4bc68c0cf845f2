from datetime import datetime
import logging

from src.infrastructure.notifications.audit import AuditLog
from src.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Cancels pending bookings whose checkout window has lapsed.

    A payment that lands after the sweep still wins: the reconciler moves
    expiry-cancelled bookings to paid and reports the late payment.
    """

    def __init__(self, store: BookingRepository, audit: AuditLog):
        self._store = store
        self._audit = audit

    def sweep(self, now: datetime | None = None) -> list[str]:
        cancelled = self._store.cancel_expired(now)
        for booking_id in cancelled:
            self._audit.record("booking_expired", "booking", booking_id)
        if cancelled:
            logger.info("Expired %s pending booking(s).", len(cancelled))
        return cancelled


def main() -> None:
    from src.container import build_container
    from src.infrastructure.config import settings

    logging.basicConfig(level=settings.log_level)
    cancelled = build_container().sweeper.sweep()
    print(f"Sweep complete: {len(cancelled)} booking(s) cancelled.")


if __name__ == "__main__":
    main()
