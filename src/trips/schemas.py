from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import date, datetime
from enum import Enum

class TripStatus(str, Enum):
    """Trip lifecycle status"""
    SCHEDULED = "SCHEDULED"
    BOARDING = "BOARDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DELAYED = "DELAYED"

BOOKABLE_TRIP_STATUSES = (TripStatus.SCHEDULED, TripStatus.DELAYED)

class TripStop(BaseModel):
    """Stop as frozen on the trip at creation time"""
    stop_id: str
    branch_id: Optional[str] = None
    name: str
    sequence: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    estimated_arrival_minutes: Optional[int] = None
    price: Optional[int] = None

class TripCreate(BaseModel):
    """Request to create a dated departure for a route"""
    route_id: str
    scheduled_departure_date: date
    scheduled_departure_time: str = Field(..., description="Departure time as HH:MM")
    total_seats: int = Field(40, ge=1, le=120)
    schedule_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    operator_id: Optional[str] = None
    tenant_id: Optional[str] = None
    created_by: Optional[str] = None

    @validator('scheduled_departure_time')
    def validate_departure_time(cls, v):
        parts = v.split(':')
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError('Departure time must be HH:MM')
        hours, minutes = int(parts[0]), int(parts[1])
        if hours > 23 or minutes > 59:
            raise ValueError('Departure time must be HH:MM')
        return f"{hours:02d}:{minutes:02d}"

class TripDetail(BaseModel):
    """Trip with seat inventory counters"""
    trip_id: str
    route_id: str
    schedule_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    scheduled_departure_date: date
    scheduled_departure_time: str
    status: TripStatus
    total_seats: int
    available_seats: int
    booked_seats: List[str] = Field(default_factory=list, validation_alias="booked_seat_list")
    stops: List[TripStop] = []
    passengers: int
    revenue: int
    actual_departure_time: Optional[datetime] = None
    actual_arrival_time: Optional[datetime] = None

    class Config:
        from_attributes = True

class TripAvailability(BaseModel):
    """Seat availability snapshot for a trip"""
    trip_id: str
    status: TripStatus
    total_seats: int
    available_seats: int
    booked_seats: List[str]
    booked_seats_count: int
    free_seat_numbers: List[str]
    occupancy_rate: float
    departure_at: datetime
