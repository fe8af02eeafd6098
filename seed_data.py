#!/usr/bin/env python3

from datetime import date, datetime, timedelta

from sqlalchemy.orm import sessionmaker
from src.database import Base, engine
from src.models import (
    Branch, Route, RouteStop, RoutePricing, RouteFare, Trip, Booking, Ticket, LedgerEntry
)
from src.trips.service import TripService

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def create_seed_data():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        print("🚀 Creating seed data for the intercity bus network...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        db.query(LedgerEntry).delete()
        db.query(Ticket).delete()
        db.query(Booking).delete()
        db.query(Trip).delete()
        db.query(RouteFare).delete()
        db.query(RoutePricing).delete()
        db.query(RouteStop).delete()
        db.query(Route).delete()
        db.query(Branch).delete()

        # 1. Create Branches (terminals)
        print("Creating branches...")
        branches = [
            Branch(branch_id="BR-ACC", name="Accra Central Terminal", lat=5.5560, lng=-0.1969),
            Branch(branch_id="BR-KSI", name="Kumasi Kejetia Terminal", lat=6.6959, lng=-1.6163),
            Branch(branch_id="BR-CCT", name="Cape Coast Terminal", lat=5.1053, lng=-1.2466),
        ]
        db.add_all(branches)
        db.flush()

        # 2. Create Routes with ordered stops (prices in pesewas)
        print("Creating routes and stops...")
        accra_kumasi = Route(
            route_id="RT-ACC-KSI",
            name="Accra - Kumasi Express",
            operator_id="OP-STC",
            origin_branch_id="BR-ACC",
            destination_branch_id="BR-KSI",
            base_price=12000,
            estimated_duration_minutes=300
        )
        accra_cape_coast = Route(
            route_id="RT-ACC-CCT",
            name="Accra - Cape Coast Coastal",
            operator_id="OP-STC",
            origin_branch_id="BR-ACC",
            destination_branch_id="BR-CCT",
            base_price=8000,
            estimated_duration_minutes=180
        )
        db.add_all([accra_kumasi, accra_cape_coast])
        db.flush()

        stops = [
            RouteStop(route_id="RT-ACC-KSI", stop_id="ST-ACC", branch_id="BR-ACC", name="Accra Central",
                      lat=5.5560, lng=-0.1969, sequence=1, estimated_arrival_minutes=0),
            RouteStop(route_id="RT-ACC-KSI", stop_id="ST-NSW", name="Nsawam",
                      lat=5.8089, lng=-0.3503, sequence=2, estimated_arrival_minutes=45),
            RouteStop(route_id="RT-ACC-KSI", stop_id="ST-BUN", name="Bunso Junction",
                      lat=6.2833, lng=-0.4667, sequence=3, estimated_arrival_minutes=120, price=6000),
            RouteStop(route_id="RT-ACC-KSI", stop_id="ST-KSI", branch_id="BR-KSI", name="Kumasi Kejetia",
                      lat=6.6959, lng=-1.6163, sequence=4, estimated_arrival_minutes=300),
            RouteStop(route_id="RT-ACC-CCT", stop_id="ST-ACC", branch_id="BR-ACC", name="Accra Central",
                      lat=5.5560, lng=-0.1969, sequence=1, estimated_arrival_minutes=0),
            RouteStop(route_id="RT-ACC-CCT", stop_id="ST-WNB", name="Winneba Junction",
                      lat=5.3511, lng=-0.6231, sequence=2, estimated_arrival_minutes=75),
            RouteStop(route_id="RT-ACC-CCT", stop_id="ST-CCT", branch_id="BR-CCT", name="Cape Coast",
                      lat=5.1053, lng=-1.2466, sequence=3, estimated_arrival_minutes=180),
        ]
        db.add_all(stops)
        db.flush()

        # 3. Create Pricing (fare matrix for one route, distance rule for the other)
        print("Creating route pricing...")
        effective_from = datetime.now() - timedelta(days=1)
        pricings = [
            RoutePricing(
                route_pricing_id="RP-ACC-KSI-1",
                route_id="RT-ACC-KSI",
                version=1,
                effective_from=effective_from,
                fare_rule={"type": "MATRIX"},
                created_by="seed"
            ),
            RoutePricing(
                route_pricing_id="RP-ACC-CCT-1",
                route_id="RT-ACC-CCT",
                version=1,
                effective_from=effective_from,
                fare_rule={"type": "DISTANCE", "base_rate": 1500, "per_km_rate": 45},
                created_by="seed"
            ),
        ]
        db.add_all(pricings)
        db.flush()

        fares = [
            RouteFare(route_pricing_id="RP-ACC-KSI-1", from_stop_id="ST-ACC", from_stop_name="Accra Central",
                      to_stop_id="ST-NSW", to_stop_name="Nsawam", price=2500, distance_km=32.0),
            RouteFare(route_pricing_id="RP-ACC-KSI-1", from_stop_id="ST-NSW", from_stop_name="Nsawam",
                      to_stop_id="ST-KSI", to_stop_name="Kumasi Kejetia", price=10000, distance_km=215.0),
            RouteFare(route_pricing_id="RP-ACC-KSI-1", from_stop_id="ST-BUN", from_stop_name="Bunso Junction",
                      to_stop_id="ST-KSI", to_stop_name="Kumasi Kejetia", price=7000, distance_km=140.0),
        ]
        db.add_all(fares)
        db.commit()

        # 4. Create Trips for the next three days
        print("Creating trips...")
        trip_service = TripService(db)
        trips = []
        for day_offset in range(1, 4):
            departure_date = date.today() + timedelta(days=day_offset)
            for route_id, departure_time in [("RT-ACC-KSI", "06:30"), ("RT-ACC-KSI", "14:00"), ("RT-ACC-CCT", "08:00")]:
                trips.append(trip_service.create_trip(
                    route_id=route_id,
                    departure_date=departure_date,
                    departure_time=departure_time,
                    total_seats=40,
                    operator_id="OP-STC",
                    created_by="seed"
                ))

        print("✅ Successfully created seed data!")
        print(f"Created:")
        print(f"  - {len(branches)} branches")
        print(f"  - 2 routes with {len(stops)} stops")
        print(f"  - {len(pricings)} pricing records with {len(fares)} matrix fares")
        print(f"  - {len(trips)} trips")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    create_seed_data()
