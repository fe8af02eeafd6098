from typing import Callable, Optional
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload
from src.config import settings
from src.exceptions import FareNotDefined, RouteNotFound
from src.models import Route, RoutePricing
from src.routes.schemas import FareQuote, FareRule, FareTier
from src.routes.service import RouteDirectory
import math

EARTH_RADIUS_KM = 6371

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in kilometres"""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat/2) * math.sin(dlat/2) +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon/2) * math.sin(dlon/2))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))
    return EARTH_RADIUS_KM * c

def round_minor_units(value) -> int:
    """Round half-up to a whole minor currency unit"""
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

class FareCalculationService:
    """
    Resolves the price of a journey between two stops of a route.

    Tiers are tried in strict priority order and the first match wins:
    same stop, destination stop fixed price, active fare matrix entry,
    fare rule, reverse matrix entry, route base price (origin/destination
    in either direction). Anything else is a FareNotDefined error naming
    both endpoints.
    """

    def __init__(self, db: Session, now: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._now = now or datetime.now
        self.currency = settings.CURRENCY

    def resolve_fare(self, route_id: str, from_stop_id: str, to_stop_id: str) -> FareQuote:
        """Resolve the fare for a journey on a route"""

        route = RouteDirectory.get_route(self.db, route_id)
        if not route:
            raise RouteNotFound(f"Route {route_id} not found")

        if from_stop_id == to_stop_id:
            return self._quote(0, FareTier.SAME_STOP)

        # Fixed price to the destination stop, measured from the route origin
        to_stop = RouteDirectory.find_stop(route.stops, to_stop_id)
        if to_stop is not None and to_stop.price is not None:
            return self._quote(to_stop.price, FareTier.STOP_PRICE, stop_name=to_stop.name)

        pricing = self.get_active_pricing(route_id)
        if pricing:
            fare = self._find_matrix_fare(pricing, from_stop_id, to_stop_id)
            if fare:
                return self._quote(
                    fare.price, FareTier.MATRIX,
                    from_stop=fare.from_stop_name, to_stop=fare.to_stop_name
                )

            if pricing.fare_rule:
                quote = self._calculate_fare_by_rule(
                    FareRule(**pricing.fare_rule), route, from_stop_id, to_stop_id
                )
                if quote:
                    return quote

            # TODO: honour one-way pricing once matrices can mark entries as directional
            reverse_fare = self._find_matrix_fare(pricing, to_stop_id, from_stop_id)
            if reverse_fare:
                return self._quote(
                    reverse_fare.price, FareTier.REVERSE_MATRIX,
                    note="Using reverse direction pricing"
                )

        if {from_stop_id, to_stop_id} == {route.origin_branch_id, route.destination_branch_id}:
            return self._quote(
                route.base_price, FareTier.BASE_PRICE,
                note="Route base price (bidirectional)"
            )

        from_name = RouteDirectory.resolve_name(self.db, route.stops, from_stop_id) or from_stop_id
        to_name = RouteDirectory.resolve_name(self.db, route.stops, to_stop_id) or to_stop_id
        raise FareNotDefined(
            f'No fare defined for journey from "{from_name}" to "{to_name}". '
            f'Please configure pricing for this route.',
            details={"route_id": route_id, "from_stop_id": from_stop_id, "to_stop_id": to_stop_id},
        )

    def get_active_pricing(self, route_id: str) -> Optional[RoutePricing]:
        """Current pricing record; the most recent effective_from wins"""
        now = self._now()
        return self.db.query(RoutePricing).options(
            joinedload(RoutePricing.fares)
        ).filter(
            RoutePricing.route_id == route_id,
            RoutePricing.is_active.is_(True),
            RoutePricing.effective_from <= now,
            or_(RoutePricing.effective_to.is_(None), RoutePricing.effective_to >= now)
        ).order_by(RoutePricing.effective_from.desc()).first()

    def _find_matrix_fare(self, pricing: RoutePricing, from_stop_id: str, to_stop_id: str):
        for fare in pricing.fares:
            if fare.from_stop_id == from_stop_id and fare.to_stop_id == to_stop_id:
                return fare
        return None

    def _calculate_fare_by_rule(
        self,
        rule: FareRule,
        route: Route,
        from_stop_id: str,
        to_stop_id: str
    ) -> Optional[FareQuote]:
        """Evaluate a fare rule; None means the rule does not cover this pair"""

        if rule.type == "FLAT":
            return self._quote(route.base_price, FareTier.RULE_FLAT, base_price=route.base_price)

        if rule.type == "DISTANCE":
            origin = RouteDirectory.resolve_coordinates(self.db, route.stops, from_stop_id)
            destination = RouteDirectory.resolve_coordinates(self.db, route.stops, to_stop_id)
            if origin is None or destination is None:
                return None

            distance = haversine_km(origin[0], origin[1], destination[0], destination[1])
            price = (rule.base_rate or 0) + distance * (rule.per_km_rate or 0)
            return self._quote(
                round_minor_units(price), FareTier.RULE_DISTANCE,
                distance_km=round(distance, 3),
                base_rate=rule.base_rate,
                per_km_rate=rule.per_km_rate
            )

        if rule.type == "ZONE":
            from_zone = next((z for z in rule.zone_definitions if from_stop_id in z.stop_ids), None)
            to_zone = next((z for z in rule.zone_definitions if to_stop_id in z.stop_ids), None)
            if (from_zone and to_zone and from_zone.zone_id == to_zone.zone_id
                    and from_zone.intra_city_price is not None):
                return self._quote(from_zone.intra_city_price, FareTier.RULE_ZONE, zone=from_zone.zone_id)

        return None

    def _quote(self, amount: int, tier: FareTier, **breakdown) -> FareQuote:
        return FareQuote(amount=int(amount), tier=tier, currency=self.currency, breakdown=breakdown)
