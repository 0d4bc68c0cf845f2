# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from src.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    COMPLETED = "completed"


class CancelReason(str, Enum):
    EXPIRED = "expired"
    CUSTOMER = "customer"


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.

    The repository enforces these edges with conditional updates; this
    class is the single place the edges are written down.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.PAID,
            BookingStatus.FAILED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.PAID: {
            BookingStatus.CONFIRMED,
            BookingStatus.REFUNDED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.COMPLETED,
            BookingStatus.REFUNDED,
        },
        BookingStatus.FAILED: set(),
        BookingStatus.CANCELLED: set(),
        BookingStatus.REFUNDED: set(),
        BookingStatus.COMPLETED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        """
        Returns allowed next states from current state.
        """
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def sources_for(cls, to_status: BookingStatus) -> Set[BookingStatus]:
        """
        Returns every state from which ``to_status`` may be entered.
        """
        cls._ensure_valid_status(to_status)
        return {
            source
            for source, targets in cls._ALLOWED_TRANSITIONS.items()
            if to_status in targets
        }

    @staticmethod
    def accepts_late_payment(
        status: BookingStatus,
        cancel_reason: CancelReason | None,
    ) -> bool:
        """
        A booking cancelled only because its checkout window lapsed can
        still be moved to paid: the customer's money has already moved.
        """
        return (
            status == BookingStatus.CANCELLED
            and cancel_reason == CancelReason.EXPIRED
        )

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
