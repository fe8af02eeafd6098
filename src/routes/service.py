from sqlalchemy.orm import Session, joinedload
from typing import Iterable, Optional, Tuple
from src.models import Branch, Route

class RouteDirectory:
    """Read-only lookups for routes, stops and branches"""

    @staticmethod
    def get_route(db: Session, route_id: str) -> Optional[Route]:
        """Get route by ID with its stops"""
        return db.query(Route).options(
            joinedload(Route.stops)
        ).filter(Route.route_id == route_id).first()

    @staticmethod
    def get_branch(db: Session, branch_id: str) -> Optional[Branch]:
        """Get branch by ID"""
        return db.query(Branch).filter(Branch.branch_id == branch_id).first()

    @staticmethod
    def find_stop(stops: Iterable, stop_id: str):
        """Find a stop by ID in route stops or a trip stop snapshot"""
        for stop in stops or []:
            current_id = stop.get("stop_id") if isinstance(stop, dict) else stop.stop_id
            if current_id == stop_id:
                return stop
        return None

    @staticmethod
    def stop_name(stop) -> Optional[str]:
        if stop is None:
            return None
        return stop.get("name") if isinstance(stop, dict) else stop.name

    @staticmethod
    def resolve_name(db: Session, stops: Iterable, stop_or_branch_id: str) -> Optional[str]:
        """Stop name first, then branch name for direct origin/destination travel"""
        name = RouteDirectory.stop_name(RouteDirectory.find_stop(stops, stop_or_branch_id))
        if name:
            return name
        branch = RouteDirectory.get_branch(db, stop_or_branch_id)
        return branch.name if branch else None

    @staticmethod
    def resolve_coordinates(
        db: Session,
        stops: Iterable,
        stop_or_branch_id: str
    ) -> Optional[Tuple[float, float]]:
        """Latitude/longitude of a stop or branch, if known"""
        stop = RouteDirectory.find_stop(stops, stop_or_branch_id)
        if stop is not None:
            lat = stop.get("lat") if isinstance(stop, dict) else stop.lat
            lng = stop.get("lng") if isinstance(stop, dict) else stop.lng
            if lat is not None and lng is not None:
                return float(lat), float(lng)

        branch = RouteDirectory.get_branch(db, stop_or_branch_id)
        if branch and branch.lat is not None and branch.lng is not None:
            return float(branch.lat), float(branch.lng)
        return None
