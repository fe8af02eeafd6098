from typing import Callable, List, Optional, Tuple
from datetime import date, datetime, timedelta
from decimal import Decimal
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging
import secrets
import uuid

from src.config import settings
from src.events import (
    BOOKING_CANCELLED, BOOKING_CHECKED_IN, BOOKING_CONFIRMED, BOOKING_CREATED, EventChannel
)
from src.exceptions import (
    AlreadyCancelled, AlreadyPaid, BookingNotFound, DuplicateBookingId,
    InvalidBookingState, InvalidStopSelection, NotCancellable, SeatUnavailable,
    TripDeparted, TripNotBookable
)
from src.models import Booking, Ticket, Trip
from src.notifications import LoggingNotifier, Notifier
from src.payments.ledger import LedgerService
from src.routes.fare_service import FareCalculationService, round_minor_units
from src.routes.service import RouteDirectory
from src.trips.schemas import BOOKABLE_TRIP_STATUSES, TripStatus
from src.trips.service import SeatInventory, TripService, departure_at
from src.bookings.schemas import (
    BookingCreateRequest, BookingEvent, BookingSearchFilters, BookingStatus, CancellationResult,
    BookingDetail, ExpirySweepResult, PaymentMethod, PaymentStatus, TicketStatus
)
from src.bookings.ticket_service import TicketService
from src.bookings.transactions import TransactionalExecutor, UnitOfWork, get_transaction_executor

logger = logging.getLogger(__name__)

# No 0/O or 1/I: codes are read out over the phone and typed at the counter
BOOKING_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
BOOKING_CODE_LENGTH = 6

NON_CANCELLABLE_STATUSES = (BookingStatus.COMPLETED.value, BookingStatus.NO_SHOW.value)
EXPIRABLE_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)
TENANT_BOOKING_LIST_LIMIT = 100

def generate_booking_code() -> str:
    return settings.BOOKING_ID_PREFIX + "".join(
        secrets.choice(BOOKING_CODE_ALPHABET) for _ in range(BOOKING_CODE_LENGTH)
    )

class BookingService:
    """Service for the seat booking lifecycle: create, pay, cancel, check in"""

    def __init__(
        self,
        db: Session,
        executor: Optional[TransactionalExecutor] = None,
        fare_service: Optional[FareCalculationService] = None,
        tickets: Optional[TicketService] = None,
        ledger: Optional[LedgerService] = None,
        notifier: Optional[Notifier] = None,
        events: Optional[EventChannel] = None,
        now: Optional[Callable[[], datetime]] = None,
        code_factory: Optional[Callable[[], str]] = None
    ):
        self.db = db
        self._now = now or datetime.now
        self.executor = executor or get_transaction_executor(db.get_bind())
        self.seats = SeatInventory(db)
        self.trips = TripService(db, now=self._now)
        self.fare_service = fare_service or FareCalculationService(db, now=self._now)
        self.tickets = tickets or TicketService(db, now=self._now)
        self.ledger = ledger or LedgerService(db)
        self.notifier = notifier or LoggingNotifier()
        self.events = events or EventChannel()
        self._code_factory = code_factory or generate_booking_code

    # ================================
    # Create
    # ================================
    def create_booking(self, request: BookingCreateRequest) -> Booking:
        """Claim the seat, price the journey and persist a PENDING booking"""

        booking = self.executor.run(self.db, lambda uow: self._create_booking(uow, request))
        logger.info(
            "Booking %s created for seat %s on trip %s (%s)",
            booking.booking_id, booking.seat_number, booking.trip_id, self.executor.mode
        )
        self._publish(BOOKING_CREATED, booking)
        return booking

    def _create_booking(self, uow: UnitOfWork, request: BookingCreateRequest) -> Booking:
        trip = self.trips.require_trip(request.trip_id)
        self._ensure_bookable(trip)

        trip_id = trip.trip_id
        seat_number = request.seat_number
        if not self.seats.claim_seat(trip_id, seat_number):
            raise SeatUnavailable(
                f"Seat {seat_number} is not available on trip {trip_id}",
                details={"trip_id": trip_id, "seat_number": seat_number}
            )
        uow.checkpoint()
        uow.add_compensation(lambda: self._release_claim(trip_id, seat_number))

        quote = self.fare_service.resolve_fare(trip.route_id, request.from_stop_id, request.to_stop_id)

        from_name = RouteDirectory.resolve_name(self.db, trip.stops, request.from_stop_id)
        to_name = RouteDirectory.resolve_name(self.db, trip.stops, request.to_stop_id)
        if not from_name or not to_name:
            raise InvalidStopSelection(
                "Invalid stop selection for this trip",
                details={
                    "from_stop_id": request.from_stop_id,
                    "to_stop_id": request.to_stop_id
                }
            )

        route = RouteDirectory.get_route(self.db, trip.route_id)
        base_fare = quote.amount
        discount = min(request.discount or 0, base_fare)
        tax_amount = round_minor_units(Decimal(base_fare) * Decimal(str(settings.TAX_RATE)))

        booking = Booking(
            booking_id=self._generate_booking_id(),
            user_id=request.user_id,
            trip_id=trip_id,
            route_id=trip.route_id,
            route_name=route.name if route else None,
            from_stop_id=request.from_stop_id,
            from_stop_name=from_name,
            to_stop_id=request.to_stop_id,
            to_stop_name=to_name,
            scheduled_departure_date=trip.scheduled_departure_date,
            scheduled_departure_time=trip.scheduled_departure_time,
            passenger_name=request.passenger_name,
            passenger_phone=request.passenger_phone,
            passenger_email=request.passenger_email,
            passenger_id_number=request.passenger_id_number,
            seat_number=seat_number,
            base_fare=base_fare,
            discount=discount,
            tax_amount=tax_amount,
            total_amount=base_fare - discount + tax_amount,
            payment_status=PaymentStatus.PENDING.value,
            booked_by=request.booked_by or request.user_id,
            booked_by_role=request.booked_by_role,
            booking_channel=request.booking_channel.value,
            status=BookingStatus.PENDING.value,
            tenant_id=request.tenant_id or trip.tenant_id,
            branch_id=request.branch_id or trip.branch_id,
            created_at=self._now()
        )
        self.db.add(booking)
        self.db.flush()
        return booking

    def _ensure_bookable(self, trip: Trip) -> None:
        if trip.status in (TripStatus.IN_PROGRESS.value, TripStatus.COMPLETED.value):
            raise TripDeparted(
                f"Trip {trip.trip_id} has already departed",
                details={"trip_id": trip.trip_id, "status": trip.status}
            )
        if trip.status not in [s.value for s in BOOKABLE_TRIP_STATUSES]:
            raise TripNotBookable(
                f"Trip {trip.trip_id} is {trip.status} and cannot be booked",
                details={"trip_id": trip.trip_id, "status": trip.status}
            )

        departure = departure_at(trip)
        if departure <= self._now():
            raise TripDeparted(
                f"Trip {trip.trip_id} departed at {departure.strftime('%Y-%m-%d %H:%M')}",
                details={"trip_id": trip.trip_id, "status": trip.status}
            )

    def _generate_booking_id(self) -> str:
        for _ in range(settings.BOOKING_ID_MAX_ATTEMPTS):
            candidate = self._code_factory()
            taken = self.db.query(Booking.id).filter(Booking.booking_id == candidate).first()
            if not taken:
                return candidate
        raise DuplicateBookingId(
            f"Could not generate a unique booking ID after {settings.BOOKING_ID_MAX_ATTEMPTS} attempts"
        )

    def _release_claim(self, trip_id: str, seat_number: str) -> None:
        """Undo a committed seat claim after a failed booking"""
        released = self.seats.release_seat(trip_id, seat_number)
        self.db.commit()
        if released:
            logger.info("Released seat %s on trip %s after failed booking", seat_number, trip_id)
        else:
            logger.warning("Seat %s on trip %s was not held when compensating", seat_number, trip_id)

    # ================================
    # Pay
    # ================================
    def process_payment(
        self,
        booking_id: str,
        payment_method: PaymentMethod,
        payment_reference: Optional[str] = None
    ) -> Tuple[Booking, Ticket]:
        """Mark a booking paid, credit the trip and issue its travel credential"""

        booking = self.require_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise AlreadyCancelled(f"Booking {booking_id} is cancelled")
        if booking.payment_status == PaymentStatus.PAID.value:
            raise AlreadyPaid(f"Booking {booking_id} is already paid")

        now = self._now()
        try:
            result = self.db.execute(
                update(Booking)
                .where(
                    Booking.booking_id == booking_id,
                    Booking.payment_status != PaymentStatus.PAID.value,
                    Booking.status != BookingStatus.CANCELLED.value
                )
                .values(
                    payment_status=PaymentStatus.PAID.value,
                    payment_method=PaymentMethod(payment_method).value,
                    payment_reference=payment_reference or f"PAY-{uuid.uuid4()}",
                    paid_at=now,
                    status=BookingStatus.CONFIRMED.value
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                booking = self.require_booking(booking_id)
                if booking.status == BookingStatus.CANCELLED.value:
                    raise AlreadyCancelled(f"Booking {booking_id} is cancelled")
                raise AlreadyPaid(f"Booking {booking_id} is already paid")

            booking = self.require_booking(booking_id)
            self.seats.add_revenue(booking.trip_id, booking.total_amount)

            ticket = self.tickets.generate_ticket(booking, departure_at(booking))
            booking.ticket_id = ticket.ticket_id
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        try:
            self.ledger.record_revenue_entry(booking)
        except Exception:
            self.db.rollback()
            logger.exception("Failed to record ledger entry for booking %s", booking_id)

        self._notify_confirmation(booking)
        logger.info("Payment confirmed for booking %s (%s)", booking_id, booking.payment_reference)
        self._publish(BOOKING_CONFIRMED, booking, ticket_id=ticket.ticket_id)
        return booking, ticket

    def _notify_confirmation(self, booking: Booking) -> None:
        try:
            self.notifier.send_booking_confirmation(booking.passenger_phone, {
                "booking_id": booking.booking_id,
                "passenger_name": booking.passenger_name,
                "route_name": booking.route_name,
                "from": booking.from_stop_name,
                "to": booking.to_stop_name,
                "seat_number": booking.seat_number,
                "departure_date": booking.scheduled_departure_date.isoformat(),
                "departure_time": booking.scheduled_departure_time,
                "total_amount": booking.total_amount,
                "ticket_id": booking.ticket_id
            })
        except Exception:
            logger.exception("Failed to send confirmation for booking %s", booking.booking_id)

    # ================================
    # Cancel
    # ================================
    def cancel_booking(
        self,
        booking_id: str,
        cancelled_by: str,
        reason: Optional[str] = None
    ) -> CancellationResult:
        """Cancel a booking, release its seat and refund by time to departure"""

        booking = self.require_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            raise AlreadyCancelled(f"Booking {booking_id} is already cancelled")
        if booking.status in NON_CANCELLABLE_STATUSES:
            raise NotCancellable(
                f"Booking {booking_id} is {booking.status} and cannot be cancelled",
                details={"status": booking.status}
            )

        was_paid = booking.payment_status == PaymentStatus.PAID.value
        refund_amount = self.calculate_refund(booking)
        payment_status = booking.payment_status
        if was_paid and refund_amount > 0:
            payment_status = (
                PaymentStatus.REFUNDED.value if refund_amount == booking.total_amount
                else PaymentStatus.PARTIALLY_REFUNDED.value
            )

        try:
            result = self.db.execute(
                update(Booking)
                .where(
                    Booking.booking_id == booking_id,
                    Booking.status == booking.status,
                    Booking.payment_status == booking.payment_status
                )
                .values(
                    status=BookingStatus.CANCELLED.value,
                    payment_status=payment_status,
                    cancelled_at=self._now(),
                    cancelled_by=cancelled_by,
                    cancellation_reason=reason,
                    refund_amount=refund_amount
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                current = self.require_booking(booking_id)
                if current.status == BookingStatus.CANCELLED.value:
                    raise AlreadyCancelled(f"Booking {booking_id} is already cancelled")
                raise InvalidBookingState(
                    f"Booking {booking_id} changed while cancelling; retry",
                    details={"status": current.status, "payment_status": current.payment_status}
                )

            seat_released = self.seats.release_seat(booking.trip_id, booking.seat_number)
            if was_paid:
                self.seats.add_revenue(booking.trip_id, -booking.total_amount)
            self.tickets.cancel_ticket(booking.ticket_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        booking = self.require_booking(booking_id)
        if was_paid:
            try:
                self.ledger.record_refund_entry(booking, refund_amount)
            except Exception:
                self.db.rollback()
                logger.exception("Failed to record refund ledger entry for booking %s", booking_id)

        logger.info("Booking %s cancelled by %s, refund %s", booking_id, cancelled_by, refund_amount)
        self._publish(BOOKING_CANCELLED, booking, refund_amount=refund_amount)
        return CancellationResult(
            booking=BookingDetail.model_validate(booking),
            refund_amount=refund_amount,
            seat_released=seat_released
        )

    def calculate_refund(self, booking: Booking) -> int:
        """Refund for cancelling now: early, late or none depending on hours to departure"""
        if booking.payment_status != PaymentStatus.PAID.value:
            return 0

        hours_to_departure = (departure_at(booking) - self._now()).total_seconds() / 3600
        if hours_to_departure >= settings.REFUND_FULL_WINDOW_HOURS:
            percent = settings.REFUND_EARLY_PERCENT
        elif hours_to_departure > 0:
            percent = settings.REFUND_LATE_PERCENT
        else:
            percent = 0
        return round_minor_units(Decimal(booking.total_amount) * Decimal(percent) / Decimal(100))

    # ================================
    # Check-in
    # ================================
    def check_in_booking(self, booking_id: str, checked_in_by: str) -> Booking:
        """Board a confirmed passenger"""

        result = self.db.execute(
            update(Booking)
            .where(Booking.booking_id == booking_id, Booking.status == BookingStatus.CONFIRMED.value)
            .values(
                status=BookingStatus.CHECKED_IN.value,
                checked_in_at=self._now(),
                checked_in_by=checked_in_by
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            booking = self.require_booking(booking_id)
            raise InvalidBookingState(
                f"Only confirmed bookings can be checked in; booking {booking_id} is {booking.status}",
                details={"status": booking.status}
            )

        booking = self.require_booking(booking_id)
        if booking.ticket_id:
            self.db.execute(
                update(Ticket)
                .where(
                    Ticket.ticket_id == booking.ticket_id,
                    Ticket.status.in_([TicketStatus.ISSUED.value, TicketStatus.VALIDATED.value])
                )
                .values(status=TicketStatus.USED.value)
                .execution_options(synchronize_session=False)
            )
        self.db.commit()

        booking = self.require_booking(booking_id)
        self._publish(BOOKING_CHECKED_IN, booking, checked_in_by=checked_in_by)
        return booking

    # ================================
    # Queries
    # ================================
    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Get booking by ID"""
        return self.db.query(Booking).populate_existing().filter(Booking.booking_id == booking_id).first()

    def require_booking(self, booking_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if not booking:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    def get_user_bookings(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        branch_id: Optional[str] = None
    ) -> List[Booking]:
        """Get bookings for a user, newest first"""
        filters = BookingSearchFilters(status=status, date_from=date_from, date_to=date_to, branch_id=branch_id)
        query = self._apply_filters(self.db.query(Booking).filter(Booking.user_id == user_id), filters)
        return query.order_by(Booking.created_at.desc()).all()

    def get_tenant_bookings(
        self,
        tenant_id: str,
        filters: Optional[BookingSearchFilters] = None
    ) -> List[Booking]:
        """Get an operator's most recent bookings, optionally narrowed to one branch"""
        query = self._apply_filters(
            self.db.query(Booking).filter(Booking.tenant_id == tenant_id),
            filters or BookingSearchFilters()
        )
        return query.order_by(Booking.created_at.desc()).limit(TENANT_BOOKING_LIST_LIMIT).all()

    @staticmethod
    def _apply_filters(query, filters: BookingSearchFilters):
        if filters.status:
            query = query.filter(Booking.status == BookingStatus(filters.status).value)
        if filters.branch_id:
            query = query.filter(Booking.branch_id == filters.branch_id)
        if filters.date_from:
            query = query.filter(Booking.scheduled_departure_date >= filters.date_from)
        if filters.date_to:
            query = query.filter(Booking.scheduled_departure_date <= filters.date_to)
        return query

    def get_trip_bookings(self, trip_id: str, include_cancelled: bool = False) -> List[Booking]:
        """Get the passenger list for a trip"""
        query = self.db.query(Booking).filter(Booking.trip_id == trip_id)
        if not include_cancelled:
            query = query.filter(Booking.status != BookingStatus.CANCELLED.value)
        return query.order_by(Booking.seat_number).all()

    # ================================
    # Reconciliation
    # ================================
    def expire_stale_bookings(self, now: Optional[datetime] = None) -> ExpirySweepResult:
        """Cancel unpaid PENDING bookings older than the TTL and free their seats"""

        now = now or self._now()
        cutoff = now - timedelta(minutes=settings.PENDING_BOOKING_TTL_MINUTES)
        candidates = self.db.query(Booking).filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.payment_status.in_(EXPIRABLE_PAYMENT_STATUSES),
            Booking.created_at < cutoff
        ).all()

        expired = []
        for candidate in candidates:
            booking_id, trip_id, seat_number = candidate.booking_id, candidate.trip_id, candidate.seat_number
            try:
                # Re-checked in the UPDATE so a payment landing mid-sweep wins
                result = self.db.execute(
                    update(Booking)
                    .where(
                        Booking.booking_id == booking_id,
                        Booking.status == BookingStatus.PENDING.value,
                        Booking.payment_status.in_(EXPIRABLE_PAYMENT_STATUSES)
                    )
                    .values(
                        status=BookingStatus.CANCELLED.value,
                        cancelled_at=now,
                        cancelled_by="system",
                        cancellation_reason="expired",
                        refund_amount=0
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    self.seats.release_seat(trip_id, seat_number)
                    expired.append(booking_id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        for booking_id in expired:
            booking = self.get_booking(booking_id)
            self._publish(BOOKING_CANCELLED, booking, refund_amount=0, reason="expired")

        logger.info("Expired %d stale pending bookings (cutoff %s)", len(expired), cutoff.isoformat())
        return ExpirySweepResult(expired_count=len(expired), booking_ids=expired, cutoff=cutoff)

    def _publish(self, topic: str, booking: Booking, **extra) -> None:
        event = BookingEvent(
            booking_id=booking.booking_id,
            trip_id=booking.trip_id,
            seat_number=booking.seat_number,
            status=booking.status,
            payment_status=booking.payment_status,
            total_amount=booking.total_amount,
            extra=extra
        )
        self.events.publish(topic, event.model_dump(mode="json"))
