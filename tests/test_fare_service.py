from datetime import timedelta

import pytest

from src.exceptions import FareNotDefined, RouteNotFound
from src.models import RouteFare, RoutePricing
from src.routes.fare_service import FareCalculationService, haversine_km, round_minor_units
from src.routes.schemas import FareTier

from tests.conftest import FIXED_NOW


@pytest.fixture
def fares(db, network, clock):
    return FareCalculationService(db, now=clock)


def set_rule(db, pricing, rule):
    pricing.fare_rule = rule
    db.commit()


def test_same_stop_is_free(fares):
    quote = fares.resolve_fare("R1", "S2", "S2")
    assert quote.amount == 0
    assert quote.tier == FareTier.SAME_STOP


def test_stop_price_wins_over_matrix_entry(fares):
    quote = fares.resolve_fare("R1", "S1", "S3")
    assert quote.amount == 3000
    assert quote.tier == FareTier.STOP_PRICE


def test_direct_matrix_entry(fares):
    quote = fares.resolve_fare("R1", "S1", "S2")
    assert quote.amount == 2000
    assert quote.tier == FareTier.MATRIX
    assert quote.currency == "GHS"


def test_reverse_matrix_entry_when_no_rule(fares):
    quote = fares.resolve_fare("R1", "S2", "S1")
    assert quote.amount == 2000
    assert quote.tier == FareTier.REVERSE_MATRIX


def test_base_price_for_origin_and_destination_in_either_direction(fares):
    forward = fares.resolve_fare("R1", "BR-A", "BR-D")
    backward = fares.resolve_fare("R1", "BR-D", "BR-A")
    assert forward.amount == backward.amount == 10000
    assert forward.tier == backward.tier == FareTier.BASE_PRICE


def test_flat_rule_beats_reverse_matrix(db, network, fares):
    set_rule(db, network.pricing, {"type": "FLAT"})
    quote = fares.resolve_fare("R1", "S2", "S1")
    assert quote.amount == 10000
    assert quote.tier == FareTier.RULE_FLAT


def test_distance_rule_rounds_half_up(db, network, fares):
    set_rule(db, network.pricing, {"type": "DISTANCE", "base_rate": 500, "per_km_rate": 37.5})
    quote = fares.resolve_fare("R1", "S2", "S1")

    expected = round_minor_units(500 + haversine_km(5.81, -0.35, 5.60, -0.19) * 37.5)
    assert quote.tier == FareTier.RULE_DISTANCE
    assert quote.amount == expected
    assert quote.breakdown["distance_km"] > 0


def test_zone_rule_applies_inside_a_zone_only(db, network, fares):
    set_rule(db, network.pricing, {
        "type": "ZONE",
        "zone_definitions": [{"zone_id": "CITY", "stop_ids": ["S1", "S2"], "intra_city_price": 1500}]
    })

    inside = fares.resolve_fare("R1", "S2", "S1")
    assert inside.amount == 1500
    assert inside.tier == FareTier.RULE_ZONE

    # No shared zone: the cascade continues to the reverse matrix
    outside = fares.resolve_fare("R1", "S4", "S2")
    assert outside.amount == 7000
    assert outside.tier == FareTier.REVERSE_MATRIX


def test_matrix_beats_rule(db, network, fares):
    set_rule(db, network.pricing, {"type": "FLAT"})
    quote = fares.resolve_fare("R1", "S2", "S4")
    assert quote.amount == 7000
    assert quote.tier == FareTier.MATRIX


def test_resolution_is_deterministic(fares):
    quotes = {fares.resolve_fare("R1", "S1", "S2").model_dump_json() for _ in range(5)}
    assert len(quotes) == 1


def test_missing_fare_names_both_stops(fares):
    with pytest.raises(FareNotDefined) as exc_info:
        fares.resolve_fare("R1", "S1", "S4")

    message = exc_info.value.message
    assert '"Alpha Stop"' in message
    assert '"Delta Stop"' in message
    assert exc_info.value.details["route_id"] == "R1"


def test_missing_fare_falls_back_to_branch_names(fares):
    with pytest.raises(FareNotDefined) as exc_info:
        fares.resolve_fare("R1", "S2", "BR-A")
    assert '"Alpha Terminal"' in exc_info.value.message


def test_unknown_route(fares):
    with pytest.raises(RouteNotFound):
        fares.resolve_fare("NOPE", "S1", "S2")


def test_expired_pricing_is_ignored(db, network, fares):
    network.pricing.effective_to = FIXED_NOW - timedelta(hours=1)
    db.commit()

    with pytest.raises(FareNotDefined):
        fares.resolve_fare("R1", "S1", "S2")


def test_most_recent_pricing_wins(db, network, fares):
    db.add(RoutePricing(
        route_pricing_id="RP-2",
        route_id="R1",
        version=2,
        effective_from=FIXED_NOW - timedelta(hours=2),
        is_active=True
    ))
    db.flush()
    db.add(RouteFare(route_pricing_id="RP-2", from_stop_id="S1", to_stop_id="S2", price=2600))
    db.commit()

    assert fares.resolve_fare("R1", "S1", "S2").amount == 2600


def test_future_pricing_not_yet_effective(db, network, fares, clock):
    db.add(RoutePricing(
        route_pricing_id="RP-3",
        route_id="R1",
        version=3,
        effective_from=FIXED_NOW + timedelta(days=1),
        is_active=True
    ))
    db.flush()
    db.add(RouteFare(route_pricing_id="RP-3", from_stop_id="S1", to_stop_id="S2", price=9999))
    db.commit()

    assert fares.resolve_fare("R1", "S1", "S2").amount == 2000
    clock.advance(days=2)
    assert fares.resolve_fare("R1", "S1", "S2").amount == 9999


def test_haversine_one_degree_of_longitude_at_equator():
    assert haversine_km(0, 0, 0, 1) == pytest.approx(111.19, abs=0.01)


def test_round_minor_units_half_up():
    assert round_minor_units(2.5) == 3
    assert round_minor_units(3.5) == 4
    assert round_minor_units(104.49) == 104
