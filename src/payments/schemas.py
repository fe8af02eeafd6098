from pydantic import BaseModel, Field
from typing import Any, Optional, Literal

from src.bookings.schemas import BookingDetail, TicketDetail

SettlementAction = Literal[
    "confirmed", "duplicate", "failed", "pending", "not_found", "ignored", "cancelled_booking"
]

class DepositCallback(BaseModel):
    """Deposit status callback as sent by the provider"""
    depositId: Optional[str] = None
    status: Optional[str] = None
    metadata: Optional[Any] = None

    class Config:
        extra = "allow"

class MockCallbackRequest(BaseModel):
    """Simulated provider callback (TEST payment mode only)"""
    depositId: str
    status: Literal["COMPLETED", "FAILED", "CANCELLED"] = "COMPLETED"

class MobileMoneyInitiation(BaseModel):
    """Mobile-money collection started for a booking"""
    booking_id: str
    deposit_id: str
    status: str
    amount: int
    currency: str
    message: str = "Please approve the payment on your phone"

class SettlementOutcome(BaseModel):
    """What a deposit callback or status poll did to the booking"""
    received: bool = True
    action: SettlementAction
    deposit_id: Optional[str] = None
    booking_id: Optional[str] = None
    provider_status: Optional[str] = None
    ticket_id: Optional[str] = Field(None, description="Issued when the callback confirmed the booking")

class PosBookingResult(BaseModel):
    """Counter sale: the booking plus what happened to its payment"""
    booking: BookingDetail
    ticket: Optional[TicketDetail] = None
    payment_status: Literal["PAID", "PENDING_AUTHORIZATION", "FAILED"]
    deposit_id: Optional[str] = None
    message: str
