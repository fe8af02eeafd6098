from typing import Any, Dict, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

from src.config import settings
from src.exceptions import AlreadyCancelled, AlreadyPaid, InvalidBookingState
from src.models import Booking
from src.bookings.booking_service import BookingService
from src.bookings.schemas import BookingStatus, PaymentMethod, PaymentStatus
from src.payments.pawapay_service import PawaPayClient
from src.payments.schemas import MobileMoneyInitiation, SettlementOutcome

logger = logging.getLogger(__name__)

SETTLED_BOOKING_STATUSES = (
    BookingStatus.CONFIRMED.value,
    BookingStatus.CHECKED_IN.value,
    BookingStatus.COMPLETED.value,
)
FAILED_PROVIDER_STATUSES = ("FAILED", "CANCELLED", "REJECTED")

def extract_order_id(metadata: Any) -> Optional[str]:
    """Booking ID embedded in provider metadata (list of fieldName/fieldValue pairs or a mapping)"""
    if isinstance(metadata, dict):
        return metadata.get("orderId")
    if isinstance(metadata, list):
        for field in metadata:
            if isinstance(field, dict) and field.get("fieldName") == "orderId":
                return field.get("fieldValue")
    return None

class PaymentSettlementService:
    """Mobile-money collection and idempotent settlement of provider callbacks"""

    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        client: Optional[PawaPayClient] = None
    ):
        self.db = db
        self.booking_service = booking_service or BookingService(db)
        self.client = client or PawaPayClient()

    def initiate_mobile_money_payment(
        self,
        booking_id: str,
        phone_number: str,
        provider: str
    ) -> MobileMoneyInitiation:
        """Request the fare from the passenger's wallet and remember the deposit ID"""

        booking = self.booking_service.require_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise AlreadyCancelled(f"Booking {booking_id} is cancelled")
        if booking.payment_status == PaymentStatus.PAID.value:
            raise AlreadyPaid(f"Booking {booking_id} is already paid")

        deposit = self.client.initiate_deposit(
            amount_minor=booking.total_amount,
            currency=settings.CURRENCY,
            phone_number=phone_number,
            correspondent=provider,
            description=f"Ticket {booking_id}",
            order_id=booking_id
        )

        # A failed earlier attempt goes back to PENDING for the new deposit
        self.db.execute(
            update(Booking)
            .where(Booking.booking_id == booking_id, Booking.payment_status != PaymentStatus.PAID.value)
            .values(
                payment_reference=deposit.deposit_id,
                payment_method=PaymentMethod.MOBILE_MONEY.value,
                payment_status=PaymentStatus.PENDING.value
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Mobile money deposit %s initiated for booking %s", deposit.deposit_id, booking_id)

        return MobileMoneyInitiation(
            booking_id=booking_id,
            deposit_id=deposit.deposit_id,
            status=deposit.status,
            amount=booking.total_amount,
            currency=settings.CURRENCY
        )

    def find_booking_for_deposit(self, deposit_id: str, metadata: Any = None) -> Optional[Booking]:
        """Provider reference first, then the order ID carried in metadata"""
        booking = self.db.query(Booking).populate_existing().filter(
            Booking.payment_reference == deposit_id
        ).first()
        if booking:
            return booking

        order_id = extract_order_id(metadata)
        if order_id:
            return self.booking_service.get_booking(order_id)
        return None

    def handle_deposit_callback(self, payload: Dict[str, Any]) -> SettlementOutcome:
        """Apply a provider status notification; repeated notifications are no-ops"""

        deposit_id = payload.get("depositId")
        status = (payload.get("status") or "").upper()
        if not deposit_id:
            return SettlementOutcome(action="ignored", provider_status=status or None)

        logger.info("Deposit callback received for %s: %s", deposit_id, status)

        booking = self.find_booking_for_deposit(deposit_id, payload.get("metadata"))
        if not booking:
            logger.warning("Booking not found for deposit %s", deposit_id)
            return SettlementOutcome(action="not_found", deposit_id=deposit_id, provider_status=status)

        outcome = SettlementOutcome(
            action="pending",
            deposit_id=deposit_id,
            booking_id=booking.booking_id,
            provider_status=status
        )

        if status == "COMPLETED":
            if booking.status in SETTLED_BOOKING_STATUSES or booking.payment_status == PaymentStatus.PAID.value:
                logger.info("Duplicate completion for booking %s ignored", booking.booking_id)
                outcome.action = "duplicate"
                return outcome
            try:
                _, ticket = self.booking_service.process_payment(
                    booking.booking_id, PaymentMethod.MOBILE_MONEY, deposit_id
                )
            except AlreadyPaid:
                logger.info("Booking %s was confirmed concurrently", booking.booking_id)
                outcome.action = "duplicate"
                return outcome
            except AlreadyCancelled:
                logger.warning(
                    "Deposit %s completed for cancelled booking %s; manual refund needed",
                    deposit_id, booking.booking_id
                )
                outcome.action = "cancelled_booking"
                return outcome

            logger.info("Booking %s confirmed via deposit %s", booking.booking_id, deposit_id)
            outcome.action = "confirmed"
            outcome.ticket_id = ticket.ticket_id
            return outcome

        if status in FAILED_PROVIDER_STATUSES:
            # Only the deposit currently on the booking may fail it
            result = self.db.execute(
                update(Booking)
                .where(
                    Booking.booking_id == booking.booking_id,
                    Booking.payment_reference == deposit_id,
                    Booking.payment_status == PaymentStatus.PENDING.value
                )
                .values(payment_status=PaymentStatus.FAILED.value)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if result.rowcount == 0 and booking.payment_reference != deposit_id:
                logger.info(
                    "Stale %s callback for deposit %s ignored; booking %s is on deposit %s",
                    status.lower(), deposit_id, booking.booking_id, booking.payment_reference
                )
                outcome.action = "ignored"
                return outcome
            logger.info("Payment %s for booking %s", status.lower(), booking.booking_id)
            outcome.action = "failed"

        return outcome

    def poll_payment_status(self, booking_id: str) -> SettlementOutcome:
        """Ask the provider for the deposit status when no webhook has arrived"""

        booking = self.booking_service.require_booking(booking_id)
        if booking.payment_status == PaymentStatus.PAID.value:
            return SettlementOutcome(
                action="duplicate",
                deposit_id=booking.payment_reference,
                booking_id=booking_id,
                provider_status="COMPLETED"
            )
        if not booking.payment_reference:
            raise InvalidBookingState(
                f"Booking {booking_id} has no pending mobile money payment",
                details={"payment_status": booking.payment_status}
            )

        status = self.client.check_status(booking.payment_reference)
        return self.handle_deposit_callback({"depositId": booking.payment_reference, "status": status})
