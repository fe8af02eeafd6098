from typing import Callable, List, Optional
from datetime import date, datetime, time
from sqlalchemy import func, update
from sqlalchemy.orm import Session
import logging
import uuid

from src.exceptions import InvalidTripTransition, RouteNotFound, TripNotFound
from src.models import Booking, EMPTY_SEAT_SET, Trip
from src.routes.service import RouteDirectory
from src.trips.schemas import TripAvailability, TripStatus

logger = logging.getLogger(__name__)


def parse_departure_time(value: str) -> time:
    """Parse an HH:MM departure time"""
    hours, minutes = (int(part) for part in (value or "00:00").split(":"))
    return time(hours, minutes)


def departure_at(trip) -> datetime:
    """Scheduled departure instant: departure date combined with the HH:MM time"""
    return datetime.combine(trip.scheduled_departure_date, parse_departure_time(trip.scheduled_departure_time))


class SeatInventory:
    """
    Atomic seat primitives for a trip.

    Each operation is one filtered UPDATE on the trip row. The WHERE clause
    re-checks the precondition, so two concurrent claims of the same seat
    cannot both match: the storage engine picks exactly one winner. Callers
    get False (not an exception) when the precondition does not hold.

    Seats are encoded in ``Trip.booked_seats`` as ``",1A,2B,"`` so that
    membership, append and removal are all expressible inside the UPDATE.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def canonical_seat(seat_number: str) -> str:
        """Seat labels are stored upper-cased so membership and removal agree on every engine"""
        label = (seat_number or "").strip().upper()
        if not label or "," in label:
            raise ValueError(f"Invalid seat label: {seat_number!r}")
        return label

    @classmethod
    def seat_token(cls, seat_number: str) -> str:
        return f",{cls.canonical_seat(seat_number)},"

    def claim_seat(self, trip_id: str, seat_number: str) -> bool:
        """Claim a seat if the trip has capacity and the seat is free"""
        label = self.canonical_seat(seat_number)
        token = self.seat_token(label)
        result = self.db.execute(
            update(Trip)
            .where(
                Trip.trip_id == trip_id,
                Trip.available_seats > 0,
                ~Trip.booked_seats.contains(token, autoescape=True)
            )
            .values(
                available_seats=Trip.available_seats - 1,
                passengers=Trip.passengers + 1,
                booked_seats=Trip.booked_seats + f"{label},"
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def release_seat(self, trip_id: str, seat_number: str) -> bool:
        """Release a claimed seat; False if the seat was not booked"""
        token = self.seat_token(seat_number)
        result = self.db.execute(
            update(Trip)
            .where(
                Trip.trip_id == trip_id,
                Trip.booked_seats.contains(token, autoescape=True)
            )
            .values(
                available_seats=Trip.available_seats + 1,
                passengers=Trip.passengers - 1,
                booked_seats=func.replace(Trip.booked_seats, token, EMPTY_SEAT_SET)
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def add_revenue(self, trip_id: str, amount: int) -> None:
        """Atomically adjust the trip's running revenue (negative for reversals)"""
        self.db.execute(
            update(Trip)
            .where(Trip.trip_id == trip_id)
            .values(revenue=Trip.revenue + int(amount))
            .execution_options(synchronize_session=False)
        )


class TripService:
    """Service for trip lookup, availability and status transitions"""

    def __init__(self, db: Session, now: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._now = now or datetime.now

    def create_trip(
        self,
        route_id: str,
        departure_date: date,
        departure_time: str,
        total_seats: int = 40,
        trip_id: Optional[str] = None,
        **refs
    ) -> Trip:
        """Create a scheduled trip with a frozen copy of the route's stops"""
        route = RouteDirectory.get_route(self.db, route_id)
        if not route:
            raise RouteNotFound(f"Route {route_id} not found")

        trip = Trip(
            trip_id=trip_id or f"TRIP-{uuid.uuid4()}",
            route_id=route_id,
            branch_id=route.origin_branch_id,
            scheduled_departure_date=departure_date,
            scheduled_departure_time=departure_time,
            status=TripStatus.SCHEDULED.value,
            total_seats=total_seats,
            available_seats=total_seats,
            booked_seats=EMPTY_SEAT_SET,
            stops=[stop.snapshot() for stop in route.stops],
            passengers=0,
            revenue=0,
            **refs
        )
        self.db.add(trip)
        self.db.commit()
        self.db.refresh(trip)
        return trip

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        """Get trip by ID, bypassing stale identity-map state"""
        return self.db.query(Trip).populate_existing().filter(Trip.trip_id == trip_id).first()

    def require_trip(self, trip_id: str) -> Trip:
        trip = self.get_trip(trip_id)
        if not trip:
            raise TripNotFound(f"Trip {trip_id} not found")
        return trip

    def get_trip_availability(self, trip_id: str) -> TripAvailability:
        """Booked seats, free numbered seats and occupancy for a trip"""
        trip = self.require_trip(trip_id)
        booked = trip.booked_seat_list
        free_seats = [str(n) for n in range(1, trip.total_seats + 1) if str(n) not in booked]

        return TripAvailability(
            trip_id=trip.trip_id,
            status=trip.status,
            total_seats=trip.total_seats,
            available_seats=trip.available_seats,
            booked_seats=booked,
            booked_seats_count=len(booked),
            free_seat_numbers=free_seats,
            occupancy_rate=round(len(booked) / trip.total_seats * 100, 2) if trip.total_seats else 0.0,
            departure_at=departure_at(trip)
        )

    def start_boarding(self, trip_id: str) -> Trip:
        return self._transition(
            trip_id, [TripStatus.SCHEDULED, TripStatus.DELAYED], TripStatus.BOARDING
        )

    def mark_delayed(self, trip_id: str) -> Trip:
        return self._transition(
            trip_id, [TripStatus.SCHEDULED, TripStatus.BOARDING], TripStatus.DELAYED
        )

    def start_trip(self, trip_id: str) -> Trip:
        """Driver departs; bookings are no longer accepted"""
        return self._transition(
            trip_id,
            [TripStatus.SCHEDULED, TripStatus.BOARDING, TripStatus.DELAYED],
            TripStatus.IN_PROGRESS,
            actual_departure_time=self._now()
        )

    def complete_trip(self, trip_id: str) -> Trip:
        """Finish the trip and settle boarded / missing passengers"""
        trip = self._transition(
            trip_id, [TripStatus.IN_PROGRESS], TripStatus.COMPLETED,
            actual_arrival_time=self._now(), commit=False
        )

        from src.bookings.schemas import BookingStatus

        self.db.execute(
            update(Booking)
            .where(Booking.trip_id == trip_id, Booking.status == BookingStatus.CHECKED_IN.value)
            .values(status=BookingStatus.COMPLETED.value)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            update(Booking)
            .where(Booking.trip_id == trip_id, Booking.status == BookingStatus.CONFIRMED.value)
            .values(status=BookingStatus.NO_SHOW.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return self.require_trip(trip.trip_id)

    def cancel_trip(self, trip_id: str) -> Trip:
        return self._transition(
            trip_id,
            [TripStatus.SCHEDULED, TripStatus.BOARDING, TripStatus.DELAYED],
            TripStatus.CANCELLED
        )

    def _transition(
        self,
        trip_id: str,
        allowed_from: List[TripStatus],
        new_status: TripStatus,
        commit: bool = True,
        **values
    ) -> Trip:
        """Filtered status update; the current status is re-checked by the UPDATE itself"""
        result = self.db.execute(
            update(Trip)
            .where(
                Trip.trip_id == trip_id,
                Trip.status.in_([s.value for s in allowed_from])
            )
            .values(status=new_status.value, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            self.db.rollback()
            trip = self.require_trip(trip_id)
            raise InvalidTripTransition(
                f"Cannot move trip {trip_id} from {trip.status} to {new_status.value}",
                details={"current_status": trip.status}
            )

        if commit:
            self.db.commit()
        logger.info("Trip %s moved to %s", trip_id, new_status.value)
        return self.require_trip(trip_id)
