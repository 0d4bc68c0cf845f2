# src/infrastructure/providers/duffel_ticketing.py

from datetime import datetime
import logging

import requests

from src.domain.exceptions import ExternalProviderError
from src.domain.money import from_minor_units, to_minor_units
from src.domain.providers import OfferSource, PricedOffer, TicketingProvider, TicketOrder

logger = logging.getLogger(__name__)

PROVIDER_NAME = "duffel"
DUFFEL_API_VERSION = "v2"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _error_message(response: requests.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        errors = []
    if errors:
        first = errors[0]
        return first.get("message") or first.get("title") or f"HTTP {response.status_code}"
    return f"HTTP {response.status_code}"


class DuffelClient(TicketingProvider, OfferSource):
    """Offer re-pricing and order issuance against the Duffel Air API."""

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.duffel.com",
        timeout: float = 20.0,
        session: requests.Session | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> dict:
        if not self._api_key:
            raise ExternalProviderError(
                PROVIDER_NAME,
                "Duffel API key not configured. Set DUFFEL_API_KEY.",
            )
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Duffel-Version": DUFFEL_API_VERSION,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            return self._session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self._timeout,
                **kwargs,
            )
        except requests.exceptions.RequestException as exc:
            logger.error("Duffel request failed. method=%s path=%s error=%s", method, path, exc)
            raise ExternalProviderError(PROVIDER_NAME, str(exc)) from exc

    def get_offer(self, offer_id: str) -> PricedOffer | None:
        response = self._request("GET", f"/air/offers/{offer_id}")
        if response.status_code == 404:
            return None
        if not response.ok:
            raise ExternalProviderError(PROVIDER_NAME, _error_message(response))

        try:
            data = response.json()["data"]
            currency = data["total_currency"]
            return PricedOffer(
                offer_id=data["id"],
                amount=to_minor_units(data["total_amount"], currency),
                currency=currency,
                expires_at=_parse_timestamp(data.get("expires_at")),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Duffel offer response unreadable. offer_id=%s error=%r", offer_id, exc)
            raise ExternalProviderError(PROVIDER_NAME, "Unreadable offer response") from exc

    def create_order(
        self,
        offer_id: str,
        passengers: list[dict],
        amount: int,
        currency: str,
    ) -> TicketOrder:
        body = {
            "data": {
                "type": "instant",
                "selected_offers": [offer_id],
                "passengers": passengers,
                "payments": [
                    {
                        "type": "balance",
                        "currency": currency,
                        "amount": str(from_minor_units(amount, currency)),
                    }
                ],
            }
        }
        response = self._request("POST", "/air/orders", json=body)
        if not response.ok:
            message = _error_message(response)
            logger.error(
                "Duffel order creation rejected. offer_id=%s status=%s message=%s",
                offer_id,
                response.status_code,
                message,
            )
            raise ExternalProviderError(PROVIDER_NAME, message)

        try:
            data = response.json()["data"]
            return TicketOrder(
                order_id=data["id"],
                booking_reference=data.get("booking_reference"),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error(
                "Duffel order response unreadable. offer_id=%s status=%s error=%r",
                offer_id,
                response.status_code,
                exc,
            )
            raise ExternalProviderError(PROVIDER_NAME, "Unreadable order response") from exc
