"""
Booking & Ticketing Module

Seat bookings on intercity trips and the travel credentials issued for them:

- Booking lifecycle (create, pay, cancel, check in) on top of atomic seat claims
- Transactional envelope with a compensating fallback for engines without transactions
- Time-based refunds on cancellation
- Expiry sweep for abandoned unpaid bookings
- HMAC-signed tickets with QR codes and boarding validation, including scans uploaded by offline devices

Key Components:
- booking_service.py: booking lifecycle, queries and the expiry sweep
- transactions.py: AtomicExecutor / CompensatingExecutor / FallbackExecutor
- ticket_service.py: ticket issue, signature checks, validation and QR rendering
- router.py: FastAPI endpoints for bookings and tickets
- schemas.py: Pydantic models and status enumerations
"""

from .router import router
from .booking_service import BookingService, generate_booking_code
from .ticket_service import TicketService
from .transactions import (
    TransactionalExecutor, AtomicExecutor, CompensatingExecutor, FallbackExecutor,
    get_transaction_executor, is_transaction_unsupported, probe_transaction_support
)
from .schemas import (
    BookingCreateRequest, BookingDetail, BookingStatus, PaymentStatus, PaymentMethod,
    BookingChannel, TicketStatus, TicketDetail, CancellationResult, ExpirySweepResult
)

__all__ = [
    "router",
    "BookingService",
    "generate_booking_code",
    "TicketService",
    "TransactionalExecutor",
    "AtomicExecutor",
    "CompensatingExecutor",
    "FallbackExecutor",
    "get_transaction_executor",
    "is_transaction_unsupported",
    "probe_transaction_support",
    "BookingCreateRequest",
    "BookingDetail",
    "BookingStatus",
    "PaymentStatus",
    "PaymentMethod",
    "BookingChannel",
    "TicketStatus",
    "TicketDetail",
    "CancellationResult",
    "ExpirySweepResult"
]
