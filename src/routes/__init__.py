"""
Routes & Fares Module

Read-only route/stop/branch directory and the fare resolution cascade used
when pricing a booking.

Key Components:
- service.py: route, stop and branch lookups (names, coordinates)
- fare_service.py: fare cascade (stop price, matrix, rule, reverse matrix, base price)
- router.py: FastAPI endpoints for route details and fare quotes
- schemas.py: Pydantic models for fare rules and quotes
"""

from .router import router
from .service import RouteDirectory
from .fare_service import FareCalculationService, haversine_km
from .schemas import FareQuote, FareRule, FareTier, ZoneDefinition, RouteSummary, StopSummary

__all__ = [
    "router",
    "RouteDirectory",
    "FareCalculationService",
    "haversine_km",
    "FareQuote",
    "FareRule",
    "FareTier",
    "ZoneDefinition",
    "RouteSummary",
    "StopSummary"
]
