from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Literal
from enum import Enum

class FareTier(str, Enum):
    """Which step of the fare cascade produced a price"""
    SAME_STOP = "SAME_STOP"
    STOP_PRICE = "STOP_PRICE"
    MATRIX = "MATRIX"
    RULE_FLAT = "RULE_FLAT"
    RULE_DISTANCE = "RULE_DISTANCE"
    RULE_ZONE = "RULE_ZONE"
    REVERSE_MATRIX = "REVERSE_MATRIX"
    BASE_PRICE = "BASE_PRICE"

class ZoneDefinition(BaseModel):
    """Group of stops sharing an intra-city price"""
    zone_id: str
    stop_ids: List[str] = []
    intra_city_price: Optional[int] = None

class FareRule(BaseModel):
    """Rule evaluated when the fare matrix has no direct entry"""
    type: Literal["FLAT", "DISTANCE", "ZONE", "MATRIX"]
    base_rate: Optional[float] = None
    per_km_rate: Optional[float] = None
    zone_definitions: List[ZoneDefinition] = []

class FareQuote(BaseModel):
    """Resolved fare; amount is in minor currency units"""
    amount: int
    tier: FareTier
    currency: str
    breakdown: Dict[str, Any] = Field(default_factory=dict)

class StopSummary(BaseModel):
    """Route stop as exposed to clients"""
    stop_id: str
    branch_id: Optional[str] = None
    name: str
    sequence: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    price: Optional[int] = None

    class Config:
        from_attributes = True

class RouteSummary(BaseModel):
    """Route with its ordered stops"""
    route_id: str
    name: str
    origin_branch_id: str
    destination_branch_id: str
    base_price: int
    estimated_duration_minutes: Optional[int] = None
    is_active: bool
    stops: List[StopSummary] = []

    class Config:
        from_attributes = True
