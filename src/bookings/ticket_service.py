from typing import Callable, Optional
from datetime import datetime, timedelta
from sqlalchemy import update
from sqlalchemy.orm import Session
import uuid
import hmac
import hashlib
import json
import base64
import logging
import qrcode
from qrcode import constants
from io import BytesIO

from src.config import settings
from src.exceptions import TicketNotFound
from src.models import Booking, Ticket
from src.bookings.schemas import OfflineSyncResult, TicketStatus, TicketValidationResponse

logger = logging.getLogger(__name__)

CANCELLABLE_TICKET_STATUSES = (TicketStatus.ISSUED.value, TicketStatus.VALIDATED.value)
ALREADY_BOARDED_TICKET_STATUSES = (TicketStatus.VALIDATED.value, TicketStatus.USED.value)
SYNCED = "SYNCED"

class TicketService:
    """Service for issuing and validating signed travel credentials"""

    def __init__(self, db: Session, now: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._now = now or datetime.now
        self._signing_key = settings.TICKET_SIGNING_KEY.encode()

    def generate_ticket(self, booking: Booking, departure: datetime) -> Ticket:
        """Issue the credential for a paid booking; the caller commits"""

        ticket_id = f"TKT-{uuid.uuid4()}"
        signature = self.sign(booking.booking_id, booking.trip_id, booking.seat_number)
        expires_at = departure + timedelta(minutes=settings.TICKET_GRACE_MINUTES)

        ticket = Ticket(
            ticket_id=ticket_id,
            booking_id=booking.booking_id,
            user_id=booking.user_id,
            route_id=booking.route_id,
            trip_id=booking.trip_id,
            seat_number=booking.seat_number,
            qr_code=self._generate_qr_code_data(ticket_id, booking, signature, expires_at),
            price=booking.total_amount,
            signature=signature,
            expires_at=expires_at,
            status=TicketStatus.ISSUED.value
        )
        self.db.add(ticket)
        return ticket

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID"""
        return self.db.query(Ticket).populate_existing().filter(Ticket.ticket_id == ticket_id).first()

    def sign(self, booking_id: str, trip_id: str, seat_number: str) -> str:
        payload = f"{booking_id}:{trip_id}:{seat_number}"
        return hmac.new(self._signing_key, payload.encode(), hashlib.sha256).hexdigest()

    def verify_signature(self, ticket: Ticket, signature: str) -> bool:
        expected = self.sign(ticket.booking_id, ticket.trip_id, ticket.seat_number)
        return hmac.compare_digest(expected, signature or "")

    def validate_ticket(
        self,
        ticket_id: str,
        signature: str,
        validated_by: Optional[str] = None
    ) -> TicketValidationResponse:
        """Validate a credential at boarding; a valid ticket moves to VALIDATED"""

        ticket = self.get_ticket(ticket_id)
        if not ticket:
            raise TicketNotFound(f"Ticket {ticket_id} not found")

        if not self.verify_signature(ticket, signature):
            logger.warning("Ticket %s presented with an invalid signature", ticket_id)
            return self._rejection(ticket, "Ticket signature is invalid")

        if ticket.status != TicketStatus.ISSUED.value:
            return self._rejection(ticket, f"Ticket is {ticket.status.lower()}")

        now = self._now()
        if now > ticket.expires_at:
            ticket.status = TicketStatus.EXPIRED.value
            self.db.commit()
            return self._rejection(ticket, f"Ticket expired at {ticket.expires_at.strftime('%Y-%m-%d %H:%M')}")

        result = self.db.execute(
            update(Ticket)
            .where(Ticket.ticket_id == ticket_id, Ticket.status == TicketStatus.ISSUED.value)
            .values(status=TicketStatus.VALIDATED.value, validated_at=now, validated_by=validated_by)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        ticket = self.get_ticket(ticket_id)

        if result.rowcount == 0:
            return self._rejection(ticket, f"Ticket is {ticket.status.lower()}")

        return TicketValidationResponse(
            ticket_id=ticket.ticket_id,
            is_valid=True,
            status=TicketStatus(ticket.status),
            message="Ticket validated successfully",
            booking_id=ticket.booking_id,
            seat_number=ticket.seat_number
        )

    def sync_offline_validation(
        self,
        ticket_id: str,
        signature: str,
        validated_by: str,
        validated_at: datetime
    ) -> OfflineSyncResult:
        """
        Record a boarding scan made by a validator device while offline.

        The scan time is the one reported by the device, so a ticket that has
        since passed its expiry is still accepted if it was scanned in time.
        Uploading the same scan again is a no-op.
        """

        ticket = self.get_ticket(ticket_id)
        if not ticket:
            raise TicketNotFound(f"Ticket {ticket_id} not found")

        if validated_at.tzinfo is not None:
            validated_at = validated_at.astimezone().replace(tzinfo=None)

        if not self.verify_signature(ticket, signature):
            logger.warning("Offline scan of ticket %s from %s has an invalid signature", ticket_id, validated_by)
            return self._sync_result(ticket, False, "Ticket signature is invalid")

        if ticket.status in ALREADY_BOARDED_TICKET_STATUSES:
            logger.warning("Duplicate sync for ticket %s", ticket_id)
            return self._sync_result(ticket, False, "Ticket validation already synced", duplicate=True)

        if ticket.status != TicketStatus.ISSUED.value:
            return self._sync_result(ticket, False, f"Ticket is {ticket.status.lower()}")

        if validated_at > ticket.expires_at:
            return self._sync_result(
                ticket, False, f"Ticket was scanned after it expired at {ticket.expires_at.strftime('%Y-%m-%d %H:%M')}"
            )

        result = self.db.execute(
            update(Ticket)
            .where(Ticket.ticket_id == ticket_id, Ticket.status == TicketStatus.ISSUED.value)
            .values(
                status=TicketStatus.VALIDATED.value,
                validated_at=validated_at,
                validated_by=validated_by,
                sync_status=SYNCED
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        ticket = self.get_ticket(ticket_id)

        if result.rowcount == 0:
            if ticket.status in ALREADY_BOARDED_TICKET_STATUSES:
                return self._sync_result(ticket, False, "Ticket validation already synced", duplicate=True)
            return self._sync_result(ticket, False, f"Ticket is {ticket.status.lower()}")

        logger.info("Offline validation of ticket %s by %s synced", ticket_id, validated_by)
        return self._sync_result(ticket, True, "Offline validation synced")

    def cancel_ticket(self, ticket_id: Optional[str]) -> bool:
        """Cancel a ticket that has not been used or expired; the caller commits"""
        if not ticket_id:
            return False
        result = self.db.execute(
            update(Ticket)
            .where(Ticket.ticket_id == ticket_id, Ticket.status.in_(CANCELLABLE_TICKET_STATUSES))
            .values(status=TicketStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def render_qr_png(self, ticket: Ticket, box_size: int = 10, border: int = 4) -> bytes:
        """Render the ticket's QR payload as a PNG image"""

        qr = qrcode.QRCode(
            version=None,
            error_correction=constants.ERROR_CORRECT_H,
            box_size=box_size,
            border=border,
        )
        qr.add_data(ticket.qr_code)
        qr.make(fit=True)

        qr_image = qr.make_image(fill_color="black", back_color="white")
        buffer = BytesIO()
        qr_image.save(buffer, format="PNG")
        return buffer.getvalue()

    def _generate_qr_code_data(
        self,
        ticket_id: str,
        booking: Booking,
        signature: str,
        expires_at: datetime
    ) -> str:
        """Generate QR code data payload"""

        qr_data = {
            "v": "1",
            "tid": ticket_id,
            "bid": booking.booking_id,
            "trip": booking.trip_id,
            "seat": booking.seat_number,
            "sig": signature,
            "exp": expires_at.isoformat()
        }

        json_data = json.dumps(qr_data, separators=(',', ':'))
        return base64.b64encode(json_data.encode()).decode()

    def _rejection(self, ticket: Ticket, message: str) -> TicketValidationResponse:
        return TicketValidationResponse(
            ticket_id=ticket.ticket_id,
            is_valid=False,
            status=TicketStatus(ticket.status),
            message=message,
            booking_id=ticket.booking_id,
            seat_number=ticket.seat_number
        )

    def _sync_result(
        self,
        ticket: Ticket,
        synced: bool,
        message: str,
        duplicate: bool = False
    ) -> OfflineSyncResult:
        return OfflineSyncResult(
            ticket_id=ticket.ticket_id,
            synced=synced,
            duplicate=duplicate,
            status=TicketStatus(ticket.status),
            message=message,
            validated_at=ticket.validated_at,
            validated_by=ticket.validated_by
        )
