from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from src.database import get_db
from src.responses import envelope
from src.routes.schemas import RouteSummary
from src.routes.service import RouteDirectory
from src.routes.fare_service import FareCalculationService

router = APIRouter()

@router.get("/{route_id}")
def get_route(
    route_id: str,
    db: Session = Depends(get_db)
):
    """Get route details with ordered stops"""
    route = RouteDirectory.get_route(db, route_id)
    if not route:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Route not found"
        )

    return envelope(RouteSummary.model_validate(route))

@router.get("/{route_id}/fare")
def quote_fare(
    route_id: str,
    from_stop_id: str = Query(..., description="Boarding stop or branch ID"),
    to_stop_id: str = Query(..., description="Alighting stop or branch ID"),
    db: Session = Depends(get_db)
):
    """Resolve the fare between two stops and report which pricing tier produced it"""
    fare_service = FareCalculationService(db)
    quote = fare_service.resolve_fare(route_id, from_stop_id, to_stop_id)
    return envelope(quote)
