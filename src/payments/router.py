from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.config import settings
from src.database import get_db
from src.events import EventChannel, get_event_channel
from src.responses import envelope
from src.bookings.booking_service import BookingService
from src.bookings.schemas import MobileMoneyRequest, PosBookingRequest
from src.payments.schemas import DepositCallback, MockCallbackRequest
from src.payments.pos_service import PointOfSaleService
from src.payments.settlement_service import PaymentSettlementService

router = APIRouter()

# Booking-scoped payment endpoints, mounted under the bookings prefix
booking_payments_router = APIRouter()

def get_settlement_service(
    db: Session = Depends(get_db),
    events: EventChannel = Depends(get_event_channel)
) -> PaymentSettlementService:
    return PaymentSettlementService(db, booking_service=BookingService(db, events=events))

def get_pos_service(
    db: Session = Depends(get_db),
    events: EventChannel = Depends(get_event_channel)
) -> PointOfSaleService:
    return PointOfSaleService(db, booking_service=BookingService(db, events=events))

@router.post("/webhook")
def handle_webhook(
    callback: DepositCallback,
    settlement: PaymentSettlementService = Depends(get_settlement_service)
):
    """Provider deposit status callback; safe to deliver more than once"""
    outcome = settlement.handle_deposit_callback(callback.model_dump())
    return envelope(outcome)

@router.post("/mock-callback")
def handle_mock_callback(
    request: MockCallbackRequest,
    settlement: PaymentSettlementService = Depends(get_settlement_service)
):
    """Simulate a provider callback (TEST payment mode only)"""
    if settings.PAYMENT_MODE != "TEST":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Mock callback only available in TEST mode"
        )

    if not settlement.find_booking_for_deposit(request.depositId):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found for this transaction"
        )

    outcome = settlement.handle_deposit_callback(request.model_dump())
    return envelope(outcome, f"Transaction {request.status}")

@booking_payments_router.post("/{booking_id}/mobile-money")
def initiate_mobile_money_payment(
    booking_id: str,
    request: MobileMoneyRequest,
    settlement: PaymentSettlementService = Depends(get_settlement_service)
):
    """Start a mobile-money collection for a booking"""
    result = settlement.initiate_mobile_money_payment(booking_id, request.phone_number, request.provider)
    return envelope(result, result.message)

@booking_payments_router.get("/{booking_id}/payment-status")
def poll_payment_status(
    booking_id: str,
    settlement: PaymentSettlementService = Depends(get_settlement_service)
):
    """Poll the provider when no webhook has arrived"""
    return envelope(settlement.poll_payment_status(booking_id))

@booking_payments_router.post("/pos", status_code=status.HTTP_201_CREATED)
def create_pos_booking(
    request: PosBookingRequest,
    pos: PointOfSaleService = Depends(get_pos_service)
):
    """Counter sale by an operator: cash is taken at once, mobile money sends a prompt"""
    result = pos.create_pos_booking(request)
    return envelope(result, result.message)
