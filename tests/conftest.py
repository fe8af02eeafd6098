"""
Shared fixtures: a file-backed SQLite database per test, a controllable
clock, a small route network (four stops, one pricing record) and a
TestClient bound to the test session.
"""

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from src.database import Base, build_engine, get_db
from src.main import app
from src.models import Branch, Route, RouteStop, RoutePricing, RouteFare
from src.events import EventChannel
from src.trips.service import TripService
from src.bookings.booking_service import BookingService
from src.bookings.schemas import BookingCreateRequest
from src.bookings.transactions import AtomicExecutor

FIXED_NOW = datetime(2025, 3, 10, 8, 0, 0)
DEPARTURE_DATE = date(2025, 3, 11)
DEPARTURE_TIME = "10:00"
DEPARTURE_AT = datetime(2025, 3, 11, 10, 0, 0)


class Clock:
    """Callable clock the services read through their ``now`` argument"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'ticketing.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return Clock(FIXED_NOW)


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def network(db: Session):
    """
    Route R1: Alpha Terminal (BR-A) -> Delta Terminal (BR-D), base price 10000.

    Stops S1 Alpha Stop, S2 Bravo, S3 Charlie (fixed price 3000), S4 Delta Stop.
    Matrix: S1->S2 2000, S2->S4 7000, S1->S3 4500.
    """
    db.add_all([
        Branch(branch_id="BR-A", name="Alpha Terminal", lat=5.60, lng=-0.19),
        Branch(branch_id="BR-D", name="Delta Terminal", lat=6.69, lng=-1.62),
    ])
    route = Route(
        route_id="R1",
        name="Alpha - Delta Express",
        operator_id="OP-1",
        origin_branch_id="BR-A",
        destination_branch_id="BR-D",
        base_price=10000,
        estimated_duration_minutes=240
    )
    db.add(route)
    db.flush()
    db.add_all([
        RouteStop(route_id="R1", stop_id="S1", branch_id="BR-A", name="Alpha Stop",
                  lat=5.60, lng=-0.19, sequence=1, estimated_arrival_minutes=0),
        RouteStop(route_id="R1", stop_id="S2", name="Bravo",
                  lat=5.81, lng=-0.35, sequence=2, estimated_arrival_minutes=45),
        RouteStop(route_id="R1", stop_id="S3", name="Charlie",
                  lat=6.28, lng=-0.47, sequence=3, estimated_arrival_minutes=120, price=3000),
        RouteStop(route_id="R1", stop_id="S4", branch_id="BR-D", name="Delta Stop",
                  lat=6.69, lng=-1.62, sequence=4, estimated_arrival_minutes=240),
    ])
    pricing = RoutePricing(
        route_pricing_id="RP-1",
        route_id="R1",
        version=1,
        effective_from=FIXED_NOW - timedelta(days=1),
        is_active=True
    )
    db.add(pricing)
    db.flush()
    db.add_all([
        RouteFare(route_pricing_id="RP-1", from_stop_id="S1", from_stop_name="Alpha Stop",
                  to_stop_id="S2", to_stop_name="Bravo", price=2000),
        RouteFare(route_pricing_id="RP-1", from_stop_id="S2", from_stop_name="Bravo",
                  to_stop_id="S4", to_stop_name="Delta Stop", price=7000),
        RouteFare(route_pricing_id="RP-1", from_stop_id="S1", from_stop_name="Alpha Stop",
                  to_stop_id="S3", to_stop_name="Charlie", price=4500),
    ])
    db.commit()
    return SimpleNamespace(route=route, pricing=pricing)


@pytest.fixture
def trip(db, network, clock):
    """40-seat trip departing 26 hours after the fixed clock"""
    return TripService(db, now=clock).create_trip(
        "R1", DEPARTURE_DATE, DEPARTURE_TIME, total_seats=40, trip_id="TRIP-1", tenant_id="OP-1"
    )


@pytest.fixture
def booking_service(db, clock, events):
    return BookingService(db, executor=AtomicExecutor(), now=clock, events=events)


@pytest.fixture
def make_request():
    def _make_request(seat_number="1A", from_stop_id="S1", to_stop_id="S2", **overrides):
        data = dict(
            trip_id="TRIP-1",
            user_id="USER-1",
            from_stop_id=from_stop_id,
            to_stop_id=to_stop_id,
            seat_number=seat_number,
            passenger_name="Ama Mensah",
            passenger_phone="+233200000001",
        )
        data.update(overrides)
        return BookingCreateRequest(**data)
    return _make_request


@pytest.fixture
def client(db: Session):
    """TestClient sharing the test session"""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # No context manager: the lifespan would create tables on the default engine
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()
