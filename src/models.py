from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Date, Float, Text, ForeignKey, JSON, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from src.database import Base

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

# Empty seat set in the delimited Trip.booked_seats encoding
EMPTY_SEAT_SET = ","

# ================================
# Branches (terminals / stations)
# ================================
class Branch(Base):
    __tablename__ = "branches"

    id = Column(BigIntPK, primary_key=True, index=True)
    branch_id = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    lat = Column(Float)
    lng = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

# ================================
# Routes & Stops
# ================================
class Route(Base):
    __tablename__ = "routes"

    id = Column(BigIntPK, primary_key=True, index=True)
    route_id = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    operator_id = Column(String(64), index=True)
    origin_branch_id = Column(String(64), ForeignKey("branches.branch_id"), nullable=False, index=True)
    destination_branch_id = Column(String(64), ForeignKey("branches.branch_id"), nullable=False, index=True)
    base_price = Column(Integer, nullable=False)  # minor units
    estimated_duration_minutes = Column(Integer)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    origin_branch = relationship("Branch", foreign_keys=[origin_branch_id])
    destination_branch = relationship("Branch", foreign_keys=[destination_branch_id])
    stops = relationship("RouteStop", back_populates="route", order_by="RouteStop.sequence")
    pricings = relationship("RoutePricing", back_populates="route")

class RouteStop(Base):
    __tablename__ = "route_stops"

    id = Column(BigIntPK, primary_key=True, index=True)
    route_id = Column(String(64), ForeignKey("routes.route_id"), nullable=False, index=True)
    stop_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64))
    name = Column(String(255), nullable=False)
    lat = Column(Float)
    lng = Column(Float)
    sequence = Column(Integer, nullable=False)
    estimated_arrival_minutes = Column(Integer, default=0)
    price = Column(Integer)  # fixed price from route origin to this stop

    # Relationships
    route = relationship("Route", back_populates="stops")

    def snapshot(self) -> dict:
        """Frozen copy stored on trips created from this route"""
        return {
            "stop_id": self.stop_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "lat": self.lat,
            "lng": self.lng,
            "sequence": self.sequence,
            "estimated_arrival_minutes": self.estimated_arrival_minutes,
            "price": self.price,
        }

# ================================
# Fare Matrix & Rules
# ================================
class RoutePricing(Base):
    __tablename__ = "route_pricing"

    id = Column(BigIntPK, primary_key=True, index=True)
    route_pricing_id = Column(String(64), unique=True, nullable=False)
    route_id = Column(String(64), ForeignKey("routes.route_id"), nullable=False, index=True)
    version = Column(Integer, default=1)
    effective_from = Column(DateTime, nullable=False)
    effective_to = Column(DateTime)
    is_active = Column(Boolean, default=True)
    fare_rule = Column(JSON)
    created_by = Column(String(64))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    route = relationship("Route", back_populates="pricings")
    fares = relationship("RouteFare", back_populates="pricing")

    __table_args__ = (
        Index("ix_route_pricing_active", "route_id", "is_active", "effective_from"),
    )

class RouteFare(Base):
    __tablename__ = "route_fares"

    id = Column(BigIntPK, primary_key=True, index=True)
    route_pricing_id = Column(String(64), ForeignKey("route_pricing.route_pricing_id"), nullable=False, index=True)
    from_stop_id = Column(String(64), nullable=False)
    from_stop_name = Column(String(255))
    to_stop_id = Column(String(64), nullable=False)
    to_stop_name = Column(String(255))
    price = Column(Integer, nullable=False)
    distance_km = Column(Float)

    # Relationships
    pricing = relationship("RoutePricing", back_populates="fares")

    __table_args__ = (
        Index("ix_route_fares_pair", "route_pricing_id", "from_stop_id", "to_stop_id"),
    )

# ================================
# Trips (dated departures)
# ================================
class Trip(Base):
    __tablename__ = "trips"

    id = Column(BigIntPK, primary_key=True, index=True)
    trip_id = Column(String(64), unique=True, nullable=False, index=True)
    schedule_id = Column(String(64), index=True)
    route_id = Column(String(64), ForeignKey("routes.route_id"), nullable=False, index=True)
    vehicle_id = Column(String(64))
    driver_id = Column(String(64))
    operator_id = Column(String(64))
    branch_id = Column(String(64))
    tenant_id = Column(String(64))

    scheduled_departure_date = Column(Date, nullable=False, index=True)
    scheduled_departure_time = Column(String(5), nullable=False)  # HH:MM
    actual_departure_time = Column(DateTime)
    actual_arrival_time = Column(DateTime)
    status = Column(String(20), nullable=False, default="SCHEDULED", index=True)

    # Seat fields are only mutated through SeatInventory's filtered updates
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    booked_seats = Column(Text, nullable=False, default=EMPTY_SEAT_SET)

    stops = Column(JSON, default=list)

    passengers = Column(Integer, nullable=False, default=0)
    revenue = Column(BigInteger, nullable=False, default=0)
    created_by = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    route = relationship("Route")
    bookings = relationship("Booking", back_populates="trip")

    @property
    def booked_seat_list(self) -> list:
        return [seat for seat in (self.booked_seats or "").split(",") if seat]

# ================================
# Bookings
# ================================
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(BigIntPK, primary_key=True, index=True)
    booking_id = Column(String(16), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    trip_id = Column(String(64), ForeignKey("trips.trip_id"), nullable=False, index=True)

    # Journey
    route_id = Column(String(64), nullable=False, index=True)
    route_name = Column(String(255))
    from_stop_id = Column(String(64), nullable=False)
    from_stop_name = Column(String(255), nullable=False)
    to_stop_id = Column(String(64), nullable=False)
    to_stop_name = Column(String(255), nullable=False)
    scheduled_departure_date = Column(Date, nullable=False, index=True)
    scheduled_departure_time = Column(String(5), nullable=False)

    # Passenger
    passenger_name = Column(String(255), nullable=False)
    passenger_phone = Column(String(32), nullable=False)
    passenger_email = Column(String(255))
    passenger_id_number = Column(String(64))
    seat_number = Column(String(16), nullable=False)

    # Fare (minor currency units)
    base_fare = Column(Integer, nullable=False)
    discount = Column(Integer, nullable=False, default=0)
    tax_amount = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False)

    # Payment
    payment_status = Column(String(20), nullable=False, default="PENDING", index=True)
    payment_method = Column(String(20))
    payment_reference = Column(String(128), index=True)
    paid_at = Column(DateTime)

    # Actor
    booked_by = Column(String(64), nullable=False, index=True)
    booked_by_role = Column(String(32))
    booking_channel = Column(String(10), nullable=False)

    status = Column(String(20), nullable=False, default="PENDING", index=True)

    checked_in_at = Column(DateTime)
    checked_in_by = Column(String(64))

    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(64))
    cancellation_reason = Column(Text)
    refund_amount = Column(Integer)

    tenant_id = Column(String(64), index=True)
    branch_id = Column(String(64), index=True)
    ticket_id = Column(String(64), index=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    trip = relationship("Trip", back_populates="bookings")

    __table_args__ = (
        # One live booking per seat; cancelled rows do not block re-sale
        Index(
            "uq_bookings_live_seat", "trip_id", "seat_number",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
        Index("ix_bookings_trip_status", "trip_id", "status"),
    )

# ================================
# Travel Credentials
# ================================
class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(BigIntPK, primary_key=True, index=True)
    ticket_id = Column(String(64), unique=True, nullable=False, index=True)
    booking_id = Column(String(16), ForeignKey("bookings.booking_id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    route_id = Column(String(64), nullable=False)
    trip_id = Column(String(64), nullable=False)
    seat_number = Column(String(16), nullable=False)
    qr_code = Column(Text, nullable=False)
    price = Column(Integer, nullable=False)
    signature = Column(String(64), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="ISSUED", index=True)
    validated_at = Column(DateTime)
    validated_by = Column(String(64))
    sync_status = Column(String(20))  # SYNCED once an offline scan is uploaded
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# ================================
# Revenue Ledger
# ================================
class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(BigIntPK, primary_key=True, index=True)
    transaction_id = Column(String(64), unique=True, nullable=False)
    account_id = Column(String(64), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    entry_type = Column(String(10), nullable=False)  # CREDIT | DEBIT
    description = Column(Text)
    entry_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
