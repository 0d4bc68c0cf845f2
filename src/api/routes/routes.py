import logging

from fastapi import APIRouter, Depends, Header, Query, Request, status
from starlette.concurrency import run_in_threadpool

from src.api.dependencies import (
    get_booking_service,
    get_current_user,
    get_reconciler,
    get_sweeper,
    require_admin,
)
from src.api.schemas.schemas import (
    BookingResponse,
    CheckoutRequest,
    CheckoutResponse,
    ErrorResponse,
    PaymentLinkResponse,
    SweepResponse,
    VerifyPaymentResponse,
    WebhookAckResponse,
)
from src.application.booking_service import Actor, BookingService
from src.application.expiry_sweeper import ExpirySweeper
from src.application.reconciler import Reconciler
from src.domain.state_machine import BookingStatus


router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    }
)
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    return {"message": "Flight booking reconciliation engine is running"}


# -----------------------------
# Checkout
# -----------------------------
@router.post(
    "/bookings/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
def checkout(
    request: CheckoutRequest,
    actor: Actor = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
):
    result = bookings.checkout(request.to_command(), actor)
    return CheckoutResponse(
        booking_id=result.booking_id,
        checkout_url=result.checkout_url,
        payment_ref=result.payment_ref,
        locked_price=result.locked_price,
        currency=result.currency,
        expires_at=result.expires_at,
    )


# -----------------------------
# Payment provider webhook
# -----------------------------
@router.post("/webhooks/razorpay", response_model=WebhookAckResponse)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    reconciler: Reconciler = Depends(get_reconciler),
):
    raw_body = await request.body()
    outcome = await run_in_threadpool(reconciler.handle_event, raw_body, x_razorpay_signature)
    return WebhookAckResponse(action=outcome.action.value, booking_id=outcome.booking_id)


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings/{booking_id}/verify-payment", response_model=VerifyPaymentResponse)
def verify_payment(
    booking_id: str,
    actor: Actor = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
    reconciler: Reconciler = Depends(get_reconciler),
):
    bookings.get_booking(booking_id, actor)
    booking = reconciler.poll_status(booking_id)
    return VerifyPaymentResponse(
        status=booking.status,
        booking=BookingResponse.from_booking(booking),
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(bookings.get_booking(booking_id, actor))


@router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
):
    rows = bookings.list_bookings(actor, status=status_filter, limit=limit, offset=offset)
    return [BookingResponse.from_booking(row) for row in rows]


@router.post("/bookings/{booking_id}/payment-link", response_model=PaymentLinkResponse)
def retry_payment_link(
    booking_id: str,
    actor: Actor = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
):
    link = bookings.retry_payment_link(booking_id, actor)
    return PaymentLinkResponse(
        booking_id=booking_id,
        checkout_url=link.url,
        payment_ref=link.payment_ref,
    )


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(bookings.cancel_booking(booking_id, actor))


# -----------------------------
# Admin
# -----------------------------
@router.post("/admin/bookings/sweep-expired", response_model=SweepResponse)
def sweep_expired(
    actor: Actor = Depends(require_admin),
    sweeper: ExpirySweeper = Depends(get_sweeper),
):
    cancelled = sweeper.sweep()
    logger.info("Expiry sweep requested by %s cancelled %s booking(s).", actor.email, len(cancelled))
    return SweepResponse(cancelled=cancelled, count=len(cancelled))


@router.post("/admin/bookings/{booking_id}/refund", response_model=BookingResponse)
def refund_booking(
    booking_id: str,
    actor: Actor = Depends(require_admin),
    bookings: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(bookings.refund_booking(booking_id, actor))


@router.post("/admin/bookings/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
    booking_id: str,
    actor: Actor = Depends(require_admin),
    bookings: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_booking(bookings.complete_booking(booking_id, actor))
