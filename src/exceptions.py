"""
Booking domain errors.

Every business-rule failure raised by the fare, trip, booking and payment
services is a ``BookingError``. They subclass ``ValueError`` so callers that
only distinguish "the request was refused" from "the system failed" can keep
catching ``ValueError``; the API layer maps them to the response envelope
using ``code`` and ``status_code``.
"""

from typing import Any, Dict, Optional


class BookingError(ValueError):
    """Base class for caller-recoverable booking failures."""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


# ================================
# Trips & seats
# ================================
class TripNotFound(BookingError):
    status_code = 404


class TripDeparted(BookingError):
    status_code = 409


class TripNotBookable(BookingError):
    status_code = 409


class InvalidTripTransition(BookingError):
    status_code = 409


class SeatUnavailable(BookingError):
    status_code = 409


# ================================
# Routes & fares
# ================================
class RouteNotFound(BookingError):
    status_code = 404


class InvalidStopSelection(BookingError):
    status_code = 400


class FareNotDefined(BookingError):
    status_code = 422


# ================================
# Bookings
# ================================
class DuplicateBookingId(BookingError):
    status_code = 503


class BookingNotFound(BookingError):
    status_code = 404


class AlreadyPaid(BookingError):
    status_code = 409


class AlreadyCancelled(BookingError):
    status_code = 409


class NotCancellable(BookingError):
    status_code = 409


class InvalidBookingState(BookingError):
    status_code = 409


# ================================
# Payments & tickets
# ================================
class InsufficientFunds(BookingError):
    status_code = 402


class PaymentProviderError(BookingError):
    status_code = 502


class TicketNotFound(BookingError):
    status_code = 404
