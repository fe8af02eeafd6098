from pydantic import BaseModel, Field, validator
from typing import List, Optional, Dict, Any
from datetime import datetime, date
from enum import Enum

class BookingStatus(str, Enum):
    """Booking status enumeration"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"

class PaymentStatus(str, Enum):
    """Payment status enumeration"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"

class PaymentMethod(str, Enum):
    """Accepted payment methods"""
    CASH = "CASH"
    MOMO = "MOMO"
    CARD = "CARD"
    WALLET = "WALLET"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_MONEY = "MOBILE_MONEY"

class BookingChannel(str, Enum):
    """Channel the booking was made through"""
    WEB = "WEB"
    MOBILE = "MOBILE"
    POS = "POS"
    USSD = "USSD"
    API = "API"

class TicketStatus(str, Enum):
    """Travel credential status enumeration"""
    ISSUED = "ISSUED"
    VALIDATED = "VALIDATED"
    USED = "USED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

# Booking Request Models
class BookingCreateRequest(BaseModel):
    """Request to book one seat on a trip"""
    trip_id: str
    user_id: str
    from_stop_id: str
    to_stop_id: str
    seat_number: str
    passenger_name: str
    passenger_phone: str
    passenger_email: Optional[str] = None
    passenger_id_number: Optional[str] = None
    discount: int = Field(0, ge=0, description="Discount in minor currency units")
    booked_by: Optional[str] = None
    booked_by_role: Optional[str] = None
    booking_channel: BookingChannel = BookingChannel.WEB
    tenant_id: Optional[str] = None
    branch_id: Optional[str] = None

    @validator('seat_number')
    def validate_seat_number(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Seat number is required')
        if ',' in v:
            raise ValueError('Seat number may not contain a comma')
        if len(v) > 16:
            raise ValueError('Seat number is too long')
        return v.upper()

    @validator('passenger_name', 'passenger_phone')
    def validate_required_text(cls, v):
        if not v or not v.strip():
            raise ValueError('Field is required')
        return v.strip()

class PosBookingRequest(BookingCreateRequest):
    """Counter sale made by an operator; paid in cash on the spot or by a mobile-money prompt"""
    user_id: Optional[str] = Field(None, description="Defaults to a guest account keyed by the passenger phone")
    booked_by: str = Field(..., description="Operator making the sale")
    booking_channel: BookingChannel = BookingChannel.POS
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_provider: str = Field("MTN_MOMO_GHA", description="Correspondent code for the mobile-money prompt")

    @validator('payment_method')
    def validate_payment_method(cls, v):
        if v not in (PaymentMethod.CASH, PaymentMethod.MOBILE_MONEY):
            raise ValueError('Counter sales are paid in CASH or by MOBILE_MONEY')
        return v

class PaymentRequest(BaseModel):
    """Request to confirm a booking with payment"""
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None

class CancelRequest(BaseModel):
    """Request to cancel a booking"""
    cancelled_by: str
    reason: Optional[str] = None

class CheckInRequest(BaseModel):
    """Request to check a passenger in at boarding"""
    checked_in_by: str

class MobileMoneyRequest(BaseModel):
    """Request to collect a booking's fare via mobile money"""
    phone_number: str
    provider: str = Field(..., description="Provider correspondent code, e.g. MTN_MOMO_GHA")

class TicketValidationRequest(BaseModel):
    """Request to validate a travel credential at boarding"""
    ticket_id: str
    signature: str
    validated_by: Optional[str] = None

class OfflineValidationSyncRequest(BaseModel):
    """Boarding scan recorded by a validator device while it was offline"""
    ticket_id: str
    signature: str
    validated_by: str = Field(..., description="Validator device ID")
    validated_at: datetime

# Booking Response Models
class BookingDetail(BaseModel):
    """Booking as returned by the API; money in minor currency units"""
    booking_id: str
    user_id: str
    trip_id: str
    route_id: str
    route_name: Optional[str] = None
    from_stop_id: str
    from_stop_name: str
    to_stop_id: str
    to_stop_name: str
    scheduled_departure_date: date
    scheduled_departure_time: str
    passenger_name: str
    passenger_phone: str
    passenger_email: Optional[str] = None
    seat_number: str
    base_fare: int
    discount: int
    tax_amount: int
    total_amount: int
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    booked_by: str
    booking_channel: BookingChannel
    status: BookingStatus
    checked_in_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[int] = None
    ticket_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class TicketDetail(BaseModel):
    """Travel credential"""
    ticket_id: str
    booking_id: str
    trip_id: str
    route_id: str
    seat_number: str
    qr_code: str
    price: int
    signature: str
    expires_at: datetime
    status: TicketStatus
    validated_at: Optional[datetime] = None
    validated_by: Optional[str] = None
    sync_status: Optional[str] = None

    class Config:
        from_attributes = True

class PaymentConfirmation(BaseModel):
    """Result of a successful payment"""
    booking: BookingDetail
    ticket: TicketDetail

class CancellationResult(BaseModel):
    """Result of a booking cancellation"""
    booking: BookingDetail
    refund_amount: int
    seat_released: bool

class TicketValidationResponse(BaseModel):
    """Outcome of a boarding validation"""
    ticket_id: str
    is_valid: bool
    status: TicketStatus
    message: str
    booking_id: Optional[str] = None
    seat_number: Optional[str] = None

class ExpirySweepResult(BaseModel):
    """Outcome of a stale-booking expiry sweep"""
    expired_count: int
    booking_ids: List[str] = []
    cutoff: datetime

class BookingSearchFilters(BaseModel):
    """Listing filters; departure dates are inclusive"""
    status: Optional[BookingStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    branch_id: Optional[str] = None

class OfflineSyncResult(BaseModel):
    """Outcome of syncing an offline boarding scan"""
    ticket_id: str
    synced: bool
    duplicate: bool = False
    status: TicketStatus
    message: str
    validated_at: Optional[datetime] = None
    validated_by: Optional[str] = None

class BookingEvent(BaseModel):
    """Payload published on the booking event channel"""
    booking_id: str
    trip_id: str
    seat_number: str
    status: BookingStatus
    payment_status: PaymentStatus
    total_amount: int
    extra: Dict[str, Any] = {}
