from fastapi import APIRouter, Depends, status, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from src.database import get_db
from src.events import EventChannel, get_event_channel
from src.exceptions import TicketNotFound
from src.responses import envelope
from src.bookings.schemas import (
    BookingCreateRequest, BookingDetail, BookingSearchFilters, CancelRequest, CheckInRequest,
    OfflineValidationSyncRequest, PaymentConfirmation, PaymentRequest, TicketDetail, TicketValidationRequest
)
from src.bookings.booking_service import BookingService
from src.bookings.ticket_service import TicketService

router = APIRouter()

def get_booking_service(
    db: Session = Depends(get_db),
    events: EventChannel = Depends(get_event_channel)
) -> BookingService:
    return BookingService(db, events=events)

# Booking Management Endpoints
@router.post("/", status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreateRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Book one seat on a trip; the booking stays PENDING until paid"""
    booking = booking_service.create_booking(request)
    return envelope(BookingDetail.model_validate(booking), "Booking created")

@router.post("/maintenance/expire-stale")
def expire_stale_bookings(
    booking_service: BookingService = Depends(get_booking_service)
):
    """Cancel unpaid bookings older than the pending TTL and free their seats"""
    result = booking_service.expire_stale_bookings()
    return envelope(result, f"Expired {result.expired_count} bookings")

@router.get("/user/{user_id}")
def get_user_bookings(
    user_id: str,
    filters: BookingSearchFilters = Depends(),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Get all bookings for a user"""
    bookings = booking_service.get_user_bookings(user_id, **filters.model_dump())
    return envelope([BookingDetail.model_validate(b) for b in bookings])

@router.get("/tenant/{tenant_id}")
def get_tenant_bookings(
    tenant_id: str,
    filters: BookingSearchFilters = Depends(),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Get an operator's recent bookings, filtered by branch, status and departure date"""
    bookings = booking_service.get_tenant_bookings(tenant_id, filters)
    return envelope([BookingDetail.model_validate(b) for b in bookings])

@router.get("/trip/{trip_id}")
def get_trip_bookings(
    trip_id: str,
    include_cancelled: bool = Query(False, description="Include cancelled bookings"),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Get the passenger list for a trip"""
    bookings = booking_service.get_trip_bookings(trip_id, include_cancelled)
    return envelope([BookingDetail.model_validate(b) for b in bookings])

# Ticket Endpoints
@router.post("/tickets/validate")
def validate_ticket(
    request: TicketValidationRequest,
    db: Session = Depends(get_db)
):
    """Validate a travel credential at boarding"""
    ticket_service = TicketService(db)
    result = ticket_service.validate_ticket(request.ticket_id, request.signature, request.validated_by)
    return envelope(result, result.message)

@router.post("/tickets/sync-offline")
def sync_offline_validation(
    request: OfflineValidationSyncRequest,
    db: Session = Depends(get_db)
):
    """Upload a boarding scan recorded while the validator device was offline"""
    result = TicketService(db).sync_offline_validation(
        request.ticket_id, request.signature, request.validated_by, request.validated_at
    )
    return envelope(result, result.message)

@router.get("/tickets/{ticket_id}")
def get_ticket(
    ticket_id: str,
    db: Session = Depends(get_db)
):
    """Get ticket details"""
    ticket = TicketService(db).get_ticket(ticket_id)
    if not ticket:
        raise TicketNotFound(f"Ticket {ticket_id} not found")
    return envelope(TicketDetail.model_validate(ticket))

@router.get("/tickets/{ticket_id}/qr")
def get_ticket_qr_code(
    ticket_id: str,
    db: Session = Depends(get_db)
):
    """Get the ticket's QR code as a PNG image"""
    ticket_service = TicketService(db)
    ticket = ticket_service.get_ticket(ticket_id)
    if not ticket:
        raise TicketNotFound(f"Ticket {ticket_id} not found")
    return Response(content=ticket_service.render_qr_png(ticket), media_type="image/png")

@router.get("/{booking_id}")
def get_booking(
    booking_id: str,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Get booking details"""
    booking = booking_service.require_booking(booking_id)
    return envelope(BookingDetail.model_validate(booking))

@router.post("/{booking_id}/pay")
def pay_booking(
    booking_id: str,
    request: PaymentRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Confirm a booking with payment and issue its ticket"""
    booking, ticket = booking_service.process_payment(
        booking_id, request.payment_method, request.payment_reference
    )
    confirmation = PaymentConfirmation(
        booking=BookingDetail.model_validate(booking),
        ticket=TicketDetail.model_validate(ticket)
    )
    return envelope(confirmation, "Payment confirmed")

@router.post("/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    request: CancelRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Cancel a booking and release its seat"""
    result = booking_service.cancel_booking(booking_id, request.cancelled_by, request.reason)
    return envelope(result, "Booking cancelled")

@router.post("/{booking_id}/check-in")
def check_in_booking(
    booking_id: str,
    request: CheckInRequest,
    booking_service: BookingService = Depends(get_booking_service)
):
    """Check a confirmed passenger in"""
    booking = booking_service.check_in_booking(booking_id, request.checked_in_by)
    return envelope(BookingDetail.model_validate(booking), "Passenger checked in")
