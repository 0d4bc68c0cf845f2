# src/infrastructure/providers/razorpay_payments.py

import json
import logging

import razorpay
import requests

from src.domain.exceptions import ExternalProviderError, WebhookSignatureError
from src.domain.providers import (
    PaymentLink,
    PaymentLinkRequest,
    PaymentProvider,
    PaymentState,
    PaymentStatus,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "razorpay"

_RAZORPAY_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.exceptions.RequestException,
)

_LINK_STATES = {
    "created": PaymentState.PENDING,
    "partially_paid": PaymentState.PENDING,
    "paid": PaymentState.COMPLETED,
    "cancelled": PaymentState.CANCELLED,
    "expired": PaymentState.EXPIRED,
}


class RazorpayPaymentProvider(PaymentProvider):
    """Payment links, status lookups, webhooks and refunds through Razorpay."""

    name = PROVIDER_NAME

    def __init__(
        self,
        key_id: str | None,
        key_secret: str | None,
        webhook_secret: str | None,
        client: razorpay.Client | None = None,
    ):
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._client = client

    def _razorpay_client(self) -> razorpay.Client:
        if self._client is None:
            if not self._key_id or not self._key_secret:
                raise ExternalProviderError(
                    PROVIDER_NAME,
                    "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
                )
            self._client = razorpay.Client(auth=(self._key_id, self._key_secret))
        return self._client

    def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        client = self._razorpay_client()
        customer = {"email": request.customer_email}
        if request.customer_phone:
            customer["contact"] = request.customer_phone

        payload = {
            "amount": request.amount,
            "currency": request.currency.upper(),
            "accept_partial": False,
            "reference_id": request.idempotency_key,
            "description": request.description[:2048],
            "customer": customer,
            "notify": {"sms": False, "email": True},
            "reminder_enable": False,
            "callback_url": request.callback_url,
            "callback_method": "get",
            "expire_by": int(request.expires_at.timestamp()),
            "notes": {key: str(value) for key, value in request.notes.items()},
        }

        try:
            link = client.payment_link.create(payload)
        except razorpay.errors.BadRequestError as exc:
            if "reference_id" not in str(exc).lower():
                raise ExternalProviderError(PROVIDER_NAME, str(exc)) from exc
            # The provider already holds a link for this key; hand that one back.
            logger.info(
                "Payment link already exists for reference. reference_id=%s",
                request.idempotency_key,
            )
            link = self._find_link_by_reference(request.idempotency_key)
        except _RAZORPAY_ERRORS as exc:
            logger.error("Razorpay payment link creation failed: %s", exc)
            raise ExternalProviderError(PROVIDER_NAME, str(exc)) from exc

        if not link.get("id") or not link.get("short_url"):
            raise ExternalProviderError(
                PROVIDER_NAME,
                "Invalid payment link response from Razorpay",
            )
        return PaymentLink(url=link["short_url"], payment_ref=link["id"])

    def _find_link_by_reference(self, reference_id: str) -> dict:
        try:
            response = self._razorpay_client().payment_link.all(
                {"reference_id": reference_id}
            )
        except _RAZORPAY_ERRORS as exc:
            raise ExternalProviderError(PROVIDER_NAME, str(exc)) from exc

        for link in response.get("payment_links", []):
            if link.get("reference_id") == reference_id:
                return link
        raise ExternalProviderError(
            PROVIDER_NAME,
            f"Duplicate reference {reference_id} reported but no link found",
        )

    def get_payment_status(self, payment_ref: str) -> PaymentStatus:
        try:
            link = self._razorpay_client().payment_link.fetch(payment_ref)
        except _RAZORPAY_ERRORS as exc:
            logger.error(
                "Razorpay payment link lookup failed. payment_ref=%s error=%s",
                payment_ref,
                exc,
            )
            raise ExternalProviderError(PROVIDER_NAME, str(exc)) from exc

        raw_status = link.get("status", "")
        captured = [
            payment.get("payment_id")
            for payment in link.get("payments") or []
            if payment.get("status") == "captured"
        ]
        return PaymentStatus(
            payment_ref=payment_ref,
            state=_LINK_STATES.get(raw_status, PaymentState.PENDING),
            provider_payment_id=captured[0] if captured else None,
            raw_status=raw_status,
        )

    def parse_webhook(self, raw_body: bytes, signature: str | None) -> WebhookEvent:
        if not self._webhook_secret:
            raise WebhookSignatureError(
                PROVIDER_NAME,
                "Webhook secret not configured; delivery cannot be verified",
            )
        if not signature:
            raise WebhookSignatureError(PROVIDER_NAME, "Missing webhook signature")

        try:
            body = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WebhookSignatureError(PROVIDER_NAME, "Webhook body is not UTF-8") from exc
        # Signature checks need only the webhook secret, not API keys.
        verifier = (self._client or razorpay.Client()).utility
        try:
            verifier.verify_webhook_signature(
                body,
                signature,
                self._webhook_secret,
            )
        except razorpay.errors.SignatureVerificationError as exc:
            raise WebhookSignatureError(PROVIDER_NAME) from exc

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise WebhookSignatureError(PROVIDER_NAME, "Webhook body is not JSON") from exc

        entities = payload.get("payload") or {}
        link_entity = (entities.get("payment_link") or {}).get("entity") or {}
        payment_entity = (entities.get("payment") or {}).get("entity") or {}
        return WebhookEvent(
            event_type=payload.get("event", ""),
            payment_ref=link_entity.get("id"),
            provider_payment_id=payment_entity.get("id"),
            payload=payload,
        )

    def refund(self, provider_payment_id: str, amount: int) -> str:
        try:
            refund = self._razorpay_client().payment.refund(
                provider_payment_id,
                {"amount": amount},
            )
        except _RAZORPAY_ERRORS as exc:
            logger.error(
                "Razorpay refund failed. payment_id=%s error=%s",
                provider_payment_id,
                exc,
            )
            raise ExternalProviderError(PROVIDER_NAME, str(exc)) from exc
        return refund["id"]
