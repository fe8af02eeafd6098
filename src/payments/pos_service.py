from typing import Optional
from sqlalchemy.orm import Session
import logging
import re

from src.exceptions import InsufficientFunds, PaymentProviderError
from src.bookings.booking_service import BookingService
from src.bookings.schemas import (
    BookingChannel, BookingCreateRequest, BookingDetail, PaymentMethod, PosBookingRequest, TicketDetail
)
from src.payments.schemas import PosBookingResult
from src.payments.settlement_service import PaymentSettlementService

logger = logging.getLogger(__name__)

GUEST_USER_PREFIX = "GUEST-"

def guest_user_id(phone: str) -> str:
    """Walk-in passengers are keyed by their phone number"""
    return GUEST_USER_PREFIX + re.sub(r"\D", "", phone or "")

class PointOfSaleService:
    """Counter sales: book the seat and collect payment in one request"""

    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        settlement: Optional[PaymentSettlementService] = None
    ):
        self.db = db
        self.booking_service = booking_service or BookingService(db)
        self.settlement = settlement or PaymentSettlementService(db, booking_service=self.booking_service)

    def create_pos_booking(self, request: PosBookingRequest) -> PosBookingResult:
        """Create a POS booking, then take cash or send a mobile-money prompt to the passenger"""

        data = request.model_dump(exclude={"payment_method", "payment_provider"})
        data["user_id"] = request.user_id or guest_user_id(request.passenger_phone)
        data["booking_channel"] = BookingChannel.POS
        booking = self.booking_service.create_booking(BookingCreateRequest(**data))
        booking_id = booking.booking_id

        if request.payment_method == PaymentMethod.MOBILE_MONEY:
            try:
                initiation = self.settlement.initiate_mobile_money_payment(
                    booking_id, request.passenger_phone, request.payment_provider
                )
            except (InsufficientFunds, PaymentProviderError) as exc:
                # The booking stays PENDING; the expiry sweep frees the seat if nobody pays
                logger.warning("Mobile money prompt for POS booking %s failed: %s", booking_id, exc.message)
                return PosBookingResult(
                    booking=BookingDetail.model_validate(self.booking_service.require_booking(booking_id)),
                    payment_status="FAILED",
                    message=f"Booking created but payment failed: {exc.message}"
                )

            logger.info("POS booking %s awaiting mobile money deposit %s", booking_id, initiation.deposit_id)
            return PosBookingResult(
                booking=BookingDetail.model_validate(self.booking_service.require_booking(booking_id)),
                payment_status="PENDING_AUTHORIZATION",
                deposit_id=initiation.deposit_id,
                message="Payment prompt sent to passenger phone"
            )

        booking, ticket = self.booking_service.process_payment(booking_id, PaymentMethod.CASH, f"POS-{booking_id}")
        logger.info("POS booking %s paid in cash by operator %s", booking_id, request.booked_by)
        return PosBookingResult(
            booking=BookingDetail.model_validate(booking),
            ticket=TicketDetail.model_validate(ticket),
            payment_status="PAID",
            message="POS booking created successfully"
        )
