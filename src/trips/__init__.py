"""
Trips Module

Dated departures and their seat inventory.

Key Components:
- service.py: SeatInventory (atomic claim / release / revenue primitives) and
  TripService (lookup, availability, status transitions)
- router.py: FastAPI endpoints for trip details and status changes
- schemas.py: Pydantic models and the trip status enumeration
"""

from .router import router
from .service import SeatInventory, TripService, departure_at, parse_departure_time
from .schemas import TripStatus, TripCreate, TripDetail, TripAvailability, TripStop, BOOKABLE_TRIP_STATUSES

__all__ = [
    "router",
    "SeatInventory",
    "TripService",
    "departure_at",
    "parse_departure_time",
    "TripStatus",
    "TripCreate",
    "TripDetail",
    "TripAvailability",
    "TripStop",
    "BOOKABLE_TRIP_STATUSES"
]
