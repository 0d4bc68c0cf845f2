from functools import lru_cache

from fastapi import Depends, Header

from src.application.booking_service import Actor, BookingService
from src.application.expiry_sweeper import ExpirySweeper
from src.application.reconciler import Reconciler
from src.container import Container, build_container
from src.domain.exceptions import AccessDeniedError

ROLE_USER = "user"
ROLE_ADMIN = "admin"


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container()


def get_booking_service(container: Container = Depends(get_container)) -> BookingService:
    return container.bookings


def get_reconciler(container: Container = Depends(get_container)) -> Reconciler:
    return container.reconciler


def get_sweeper(container: Container = Depends(get_container)) -> ExpirySweeper:
    return container.sweeper


def get_current_user(
    x_user_email: str | None = Header(default=None),
    x_user_role: str = Header(default=ROLE_USER),
) -> Actor:
    # Identity is asserted by the authentication proxy in front of this service.
    if not x_user_email:
        raise AccessDeniedError("Authentication required")
    role = x_user_role.strip().lower()
    if role not in (ROLE_USER, ROLE_ADMIN):
        raise AccessDeniedError(f"Unknown role: {x_user_role}")
    return Actor(email=x_user_email.strip().lower(), is_admin=role == ROLE_ADMIN)


def require_admin(actor: Actor = Depends(get_current_user)) -> Actor:
    if not actor.is_admin:
        raise AccessDeniedError("Admin role required")
    return actor
