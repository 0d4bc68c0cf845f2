import logging
from typing import Callable
from datetime import datetime

from src.domain.exceptions import InvalidOfferError
from src.domain.providers import OfferSource, PricedOffer
from src.domain.timeutils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class PriceValidationGate:
    """
    Re-prices an offer before any booking row or payment link exists.

    The claimed amount must match the current price within
    ``tolerance_minor`` minor units, in the same currency, and the offer
    must not have expired.
    """

    def __init__(
        self,
        offer_source: OfferSource,
        tolerance_minor: int = 0,
        clock: Callable[[], datetime] = utc_now,
    ):
        if tolerance_minor < 0:
            raise ValueError("tolerance_minor must be >= 0")
        self._offer_source = offer_source
        self._tolerance_minor = tolerance_minor
        self._clock = clock

    def validate(self, offer_id: str, claimed_amount: int, currency: str) -> PricedOffer:
        if not offer_id:
            raise InvalidOfferError("Offer id is required")
        if claimed_amount <= 0:
            raise InvalidOfferError("Claimed amount must be positive")

        offer = self._offer_source.get_offer(offer_id)
        if offer is None:
            raise InvalidOfferError(
                "Offer is no longer available",
                details={"offer_id": offer_id},
            )

        expires_at = ensure_utc(offer.expires_at)
        if expires_at is not None and expires_at <= self._clock():
            raise InvalidOfferError(
                "Offer has expired",
                details={"offer_id": offer_id, "expires_at": expires_at.isoformat()},
            )

        if offer.currency.upper() != currency.upper():
            raise InvalidOfferError(
                "Offer currency does not match",
                details={"offer_currency": offer.currency, "claimed_currency": currency},
            )

        if abs(offer.amount - claimed_amount) > self._tolerance_minor:
            logger.info(
                "Offer price changed. offer_id=%s claimed=%s current=%s",
                offer_id,
                claimed_amount,
                offer.amount,
            )
            raise InvalidOfferError(
                "Offer price has changed",
                details={
                    "offer_id": offer_id,
                    "claimed_amount": claimed_amount,
                    "current_amount": offer.amount,
                },
            )

        return offer
