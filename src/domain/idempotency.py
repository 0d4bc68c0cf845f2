IDEMPOTENCY_PREFIX = "booking-"


def payment_idempotency_key(booking_id: str) -> str:
    """Key sent with every payment-link request for ``booking_id``.

    Depends on the booking id only, so a retried request always carries
    the same key. Dashes are dropped to fit the provider's 40 character
    reference limit.
    """
    if not booking_id:
        raise ValueError("booking_id is required")
    return f"{IDEMPOTENCY_PREFIX}{booking_id.replace('-', '')}"
