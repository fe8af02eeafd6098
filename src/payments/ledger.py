from typing import Optional
from sqlalchemy.orm import Session
import logging
import uuid

from src.models import Booking, LedgerEntry

logger = logging.getLogger(__name__)

SYSTEM_REVENUE_ACCOUNT = "SYSTEM_REVENUE"

class LedgerService:
    """Append-only revenue ledger used for reporting"""

    def __init__(self, db: Session):
        self.db = db

    def record_revenue_entry(self, booking: Booking) -> LedgerEntry:
        """CREDIT the booking total to the operator's revenue account"""
        return self._append(
            booking,
            amount=booking.total_amount,
            entry_type="CREDIT",
            description=f"Ticket Revenue: {booking.booking_id}"
        )

    def record_refund_entry(self, booking: Booking, refund_amount: int) -> LedgerEntry:
        """DEBIT the full booking total when a paid booking is cancelled"""
        return self._append(
            booking,
            amount=booking.total_amount,
            entry_type="DEBIT",
            description=f"Ticket Cancellation: {booking.booking_id}",
            refund_amount=refund_amount
        )

    def entries_for_booking(self, booking_id: str):
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.entry_metadata["booking_id"].as_string() == booking_id
        ).order_by(LedgerEntry.id).all()

    def _append(
        self,
        booking: Booking,
        amount: int,
        entry_type: str,
        description: str,
        refund_amount: Optional[int] = None
    ) -> LedgerEntry:
        metadata = {
            "booking_id": booking.booking_id,
            "trip_id": booking.trip_id,
            "route_id": booking.route_id,
            "operator_id": booking.tenant_id
        }
        if refund_amount is not None:
            metadata["refund_amount"] = refund_amount

        entry = LedgerEntry(
            transaction_id=f"TXN-{uuid.uuid4()}",
            account_id=booking.tenant_id or SYSTEM_REVENUE_ACCOUNT,
            amount=amount,
            entry_type=entry_type,
            description=description,
            entry_metadata=metadata
        )
        self.db.add(entry)
        self.db.commit()
        logger.info("Ledger %s %s for booking %s", entry_type, amount, booking.booking_id)
        return entry
