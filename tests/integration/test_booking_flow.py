from datetime import timedelta
import threading

from conftest import ADMIN_HEADERS, checkout_payload, new_booking, user_headers
from src.domain.state_machine import BookingStatus


def _checkout(client, **overrides):
    response = client.post(
        "/bookings/checkout",
        json=checkout_payload(**overrides),
        headers=user_headers(),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _send_webhook(client, payments, ref):
    body = payments.webhook_body(ref)
    return client.post(
        "/webhooks/razorpay",
        content=body,
        headers={"X-Razorpay-Signature": payments.sign(body), "Content-Type": "application/json"},
    )


# ---------------------
# HAPPY PATH
# ---------------------

def test_booking_flow(client, payments, ticketing):
    checkout = _checkout(client)

    assert checkout["bookingId"]
    assert checkout["checkoutUrl"] == f"https://pay.example/{checkout['paymentRef']}"
    assert checkout["lockedPrice"] == 52500
    assert checkout["currency"] == "USD"

    pending = client.get(f"/bookings/{checkout['bookingId']}", headers=user_headers()).json()
    assert pending["status"] == "pending"

    payments.mark_paid(checkout["paymentRef"])
    webhook = _send_webhook(client, payments, checkout["paymentRef"])

    assert webhook.status_code == 200
    assert webhook.json() == {
        "received": True,
        "action": "ticket_issued",
        "bookingId": checkout["bookingId"],
    }

    booking = client.get(f"/bookings/{checkout['bookingId']}", headers=user_headers()).json()
    assert booking["status"] == "confirmed"
    assert booking["ticketReference"] == "ord_1"
    assert booking["ticketBookingReference"] == "PNR123"
    assert len(ticketing.orders) == 1
    assert "idempotencyKey" not in booking
    assert "ticketingClaimedAt" not in booking


def test_ticketing_failure_then_poll_recovers(client, payments, ticketing):
    checkout = _checkout(client)
    ticketing.failures_remaining = 1

    payments.mark_paid(checkout["paymentRef"])
    assert _send_webhook(client, payments, checkout["paymentRef"]).status_code == 200

    booking = client.get(f"/bookings/{checkout['bookingId']}", headers=user_headers()).json()
    assert booking["status"] == "paid"
    assert booking["displayStatus"] == "payment_received_ticket_pending"
    assert booking["errorMessage"]

    verify = client.post(
        f"/bookings/{checkout['bookingId']}/verify-payment",
        headers=user_headers(),
    )

    assert verify.status_code == 200
    assert verify.json()["status"] == "confirmed"
    assert verify.json()["booking"]["ticketReference"] == "ord_1"
    assert verify.json()["booking"]["errorMessage"] is None


def test_verify_payment_before_payment(client):
    checkout = _checkout(client)

    verify = client.post(f"/bookings/{checkout['bookingId']}/verify-payment", headers=user_headers())

    assert verify.json()["status"] == "pending"


# ---------------------
# CONCURRENCY
# ---------------------

def test_concurrent_webhook_and_poll_issue_one_ticket(container, payments, ticketing):
    for _ in range(5):
        booking_id = container.store.create_pending(new_booking())
        link = container.link_issuer.create_link(container.store.require(booking_id))
        payments.mark_paid(link.payment_ref)
        ticketing.delay = 0.05

        body = payments.webhook_body(link.payment_ref)
        barrier = threading.Barrier(3)
        errors = []

        def run(action):
            try:
                barrier.wait()
                action()
            except Exception as exc:  # surfaced to the test thread below
                errors.append(exc)

        threads = [
            threading.Thread(target=run, args=(lambda: container.reconciler.handle_event(body, payments.sign(body)),)),
            threading.Thread(target=run, args=(lambda: container.reconciler.poll_status(booking_id),)),
            threading.Thread(target=run, args=(lambda: container.reconciler.poll_status(booking_id),)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        booking = container.store.require(booking_id)
        assert booking.status == BookingStatus.CONFIRMED
        issued = [order for order in ticketing.orders if order["order_id"] == booking.ticket_reference]
        assert len(issued) == 1

    assert len(ticketing.orders) == 5


# ---------------------
# VALIDATION
# ---------------------

def test_stale_price_creates_nothing(client, container, payments):
    response = client.post(
        "/bookings/checkout",
        json=checkout_payload(amount=49000),
        headers=user_headers(),
    )

    assert response.status_code == 400
    assert response.json()["error"] is True
    assert response.json()["code"] == "validation"
    assert container.store.list_bookings() == []
    assert payments.create_calls == 0


def test_unknown_offer_rejected(client, container):
    response = client.post(
        "/bookings/checkout",
        json=checkout_payload(offerId="OFF999"),
        headers=user_headers(),
    )

    assert response.status_code == 400
    assert container.store.list_bookings() == []


def test_passenger_counts_must_match(client, container):
    response = client.post(
        "/bookings/checkout",
        json=checkout_payload(adults=2),
        headers=user_headers(),
    )

    assert response.status_code == 400
    assert response.json()["details"]["expected"]["adult"] == 2
    assert container.store.list_bookings() == []


def test_malformed_request_uses_error_envelope(client):
    response = client.post(
        "/bookings/checkout",
        json={"origin": "JFK"},
        headers=user_headers(),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation"
    assert response.json()["details"]["errors"]


# ---------------------
# PROVIDER FAILURES
# ---------------------

def test_payment_provider_outage_is_retryable(client, payments):
    payments.fail_create = True

    response = client.post("/bookings/checkout", json=checkout_payload(), headers=user_headers())

    assert response.status_code == 502
    assert response.json()["code"] == "external_provider"
    booking_id = response.json()["details"]["booking_id"]

    payments.fail_create = False
    retry = client.post(f"/bookings/{booking_id}/payment-link", headers=user_headers())

    assert retry.status_code == 200
    assert retry.json()["paymentRef"]
    again = client.post(f"/bookings/{booking_id}/payment-link", headers=user_headers())
    assert again.json()["paymentRef"] == retry.json()["paymentRef"]


def test_forged_webhook_rejected(client, container, payments):
    checkout = _checkout(client)
    payments.mark_paid(checkout["paymentRef"])

    response = client.post(
        "/webhooks/razorpay",
        content=payments.webhook_body(checkout["paymentRef"]),
        headers={"X-Razorpay-Signature": "forged"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "authenticity"
    assert container.store.require(checkout["bookingId"]).status == BookingStatus.PENDING


def test_webhook_status_outage_asks_for_redelivery(client, payments):
    checkout = _checkout(client)
    payments.fail_status = True

    response = _send_webhook(client, payments, checkout["paymentRef"])

    assert response.status_code == 502


# ---------------------
# ACCESS
# ---------------------

def test_bookings_are_owner_scoped(client):
    checkout = _checkout(client)

    other = client.get(
        f"/bookings/{checkout['bookingId']}",
        headers=user_headers("mallory@example.com"),
    )
    admin = client.get(f"/bookings/{checkout['bookingId']}", headers=ADMIN_HEADERS)

    assert other.status_code == 403
    assert other.json()["code"] == "authorization"
    assert admin.status_code == 200


def test_missing_identity_rejected(client):
    assert client.get("/bookings").status_code == 403


def test_unknown_booking_is_404(client):
    response = client.get("/bookings/does-not-exist", headers=user_headers())

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_unreadable_manifest_still_renders(client, container):
    booking_id = container.store.create_pending(new_booking(passenger_details='[{"type": "alien"}]'))

    response = client.get(f"/bookings/{booking_id}", headers=user_headers())

    assert response.status_code == 200
    assert response.json()["passengers"] == []


def test_list_bookings(client):
    mine = _checkout(client)
    client.post(
        "/bookings/checkout",
        json=checkout_payload(contactEmail="bob@example.com"),
        headers=user_headers("bob@example.com"),
    )

    own = client.get("/bookings", headers=user_headers()).json()
    everything = client.get("/bookings", headers=ADMIN_HEADERS).json()
    pending = client.get("/bookings?status=pending", headers=ADMIN_HEADERS).json()

    assert [b["id"] for b in own] == [mine["bookingId"]]
    assert len(everything) == 2
    assert len(pending) == 2


# ---------------------
# CUSTOMER & ADMIN ACTIONS
# ---------------------

def test_customer_cancel(client):
    checkout = _checkout(client)

    first = client.post(f"/bookings/{checkout['bookingId']}/cancel", headers=user_headers())
    second = client.post(f"/bookings/{checkout['bookingId']}/cancel", headers=user_headers())

    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"
    assert first.json()["cancelReason"] == "customer"
    assert second.status_code == 409
    assert second.json()["code"] == "invalid_state"


def test_cancelled_booking_gets_no_payment_link(client):
    checkout = _checkout(client)
    client.post(f"/bookings/{checkout['bookingId']}/cancel", headers=user_headers())

    response = client.post(f"/bookings/{checkout['bookingId']}/payment-link", headers=user_headers())

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state"
    assert "checkoutUrl" not in response.json()


def test_admin_sweep_expires_stale_bookings(client, container):
    stale = container.store.create_pending(new_booking(expires_in=timedelta(minutes=-1)))

    forbidden = client.post("/admin/bookings/sweep-expired", headers=user_headers())
    response = client.post("/admin/bookings/sweep-expired", headers=ADMIN_HEADERS)

    assert forbidden.status_code == 403
    assert response.json() == {"cancelled": [stale], "count": 1}


def test_admin_refund_and_complete(client, payments):
    refunded = _checkout(client)
    payments.mark_paid(refunded["paymentRef"], "pay_r")
    _send_webhook(client, payments, refunded["paymentRef"])

    response = client.post(f"/admin/bookings/{refunded['bookingId']}/refund", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "refunded"
    assert payments.refunds == [("pay_r", 52500)]

    completed = _checkout(client)
    payments.mark_paid(completed["paymentRef"], "pay_c")
    _send_webhook(client, payments, completed["paymentRef"])

    response = client.post(f"/admin/bookings/{completed['bookingId']}/complete", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["completedAt"]


def test_pending_booking_cannot_be_refunded(client, payments):
    checkout = _checkout(client)

    response = client.post(f"/admin/bookings/{checkout['bookingId']}/refund", headers=ADMIN_HEADERS)

    assert response.status_code == 409
    assert payments.refunds == []


def test_health(client):
    assert client.get("/health").status_code == 200


def test_error_envelope_is_documented(client):
    schema = client.get("/openapi.json").json()

    checkout = schema["paths"]["/bookings/checkout"]["post"]["responses"]
    assert checkout["409"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
    assert "ErrorResponse" in schema["components"]["schemas"]
