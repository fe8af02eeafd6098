from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from src.database import get_db
from src.responses import envelope
from src.trips.schemas import TripCreate, TripDetail
from src.trips.service import TripService

router = APIRouter()

@router.post("/", status_code=status.HTTP_201_CREATED)
def create_trip(
    request: TripCreate,
    db: Session = Depends(get_db)
):
    """Create a dated departure with a snapshot of the route's stops"""
    trip_service = TripService(db)
    trip = trip_service.create_trip(
        route_id=request.route_id,
        departure_date=request.scheduled_departure_date,
        departure_time=request.scheduled_departure_time,
        total_seats=request.total_seats,
        schedule_id=request.schedule_id,
        vehicle_id=request.vehicle_id,
        driver_id=request.driver_id,
        operator_id=request.operator_id,
        tenant_id=request.tenant_id,
        created_by=request.created_by
    )
    return envelope(TripDetail.model_validate(trip), "Trip created")

@router.get("/{trip_id}")
def get_trip(
    trip_id: str,
    db: Session = Depends(get_db)
):
    """Get trip details with seat counters"""
    trip = TripService(db).require_trip(trip_id)
    return envelope(TripDetail.model_validate(trip))

@router.get("/{trip_id}/availability")
def get_trip_availability(
    trip_id: str,
    db: Session = Depends(get_db)
):
    """Get booked and free seats for a trip"""
    return envelope(TripService(db).get_trip_availability(trip_id))

@router.post("/{trip_id}/boarding")
def start_boarding(trip_id: str, db: Session = Depends(get_db)):
    """Open boarding for a trip"""
    trip = TripService(db).start_boarding(trip_id)
    return envelope(TripDetail.model_validate(trip), "Boarding started")

@router.post("/{trip_id}/delay")
def mark_delayed(trip_id: str, db: Session = Depends(get_db)):
    """Mark a trip as delayed"""
    trip = TripService(db).mark_delayed(trip_id)
    return envelope(TripDetail.model_validate(trip), "Trip marked as delayed")

@router.post("/{trip_id}/start")
def start_trip(trip_id: str, db: Session = Depends(get_db)):
    """Depart the trip"""
    trip = TripService(db).start_trip(trip_id)
    return envelope(TripDetail.model_validate(trip), "Trip started")

@router.post("/{trip_id}/complete")
def complete_trip(trip_id: str, db: Session = Depends(get_db)):
    """Complete the trip and settle passenger bookings"""
    trip = TripService(db).complete_trip(trip_id)
    return envelope(TripDetail.model_validate(trip), "Trip completed")

@router.post("/{trip_id}/cancel")
def cancel_trip(trip_id: str, db: Session = Depends(get_db)):
    """Cancel a trip that has not departed"""
    trip = TripService(db).cancel_trip(trip_id)
    return envelope(TripDetail.model_validate(trip), "Trip cancelled")
