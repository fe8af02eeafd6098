from concurrent.futures import ThreadPoolExecutor

import pytest

from src.trips.service import SeatInventory, TripService

from tests.conftest import DEPARTURE_DATE


def reload_trip(db, trip_id="TRIP-1"):
    return TripService(db).require_trip(trip_id)


def assert_inventory_consistent(trip):
    assert trip.available_seats + len(trip.booked_seat_list) == trip.total_seats
    assert trip.passengers == len(trip.booked_seat_list)


def test_claim_marks_seat_booked(db, trip):
    seats = SeatInventory(db)
    assert seats.claim_seat("TRIP-1", "1A") is True
    db.commit()

    refreshed = reload_trip(db)
    assert refreshed.available_seats == 39
    assert refreshed.passengers == 1
    assert refreshed.booked_seat_list == ["1A"]


def test_claiming_a_booked_seat_returns_false(db, trip):
    seats = SeatInventory(db)
    assert seats.claim_seat("TRIP-1", "1A") is True
    assert seats.claim_seat("TRIP-1", "1A") is False
    db.commit()
    assert reload_trip(db).available_seats == 39


def test_claim_on_unknown_trip_returns_false(db, trip):
    assert SeatInventory(db).claim_seat("TRIP-404", "1A") is False


def test_claim_fails_when_trip_is_full(db, network, clock):
    TripService(db, now=clock).create_trip("R1", DEPARTURE_DATE, "09:00", total_seats=2, trip_id="SMALL")
    seats = SeatInventory(db)

    assert seats.claim_seat("SMALL", "1") is True
    assert seats.claim_seat("SMALL", "2") is True
    assert seats.claim_seat("SMALL", "3") is False
    db.commit()

    small = reload_trip(db, "SMALL")
    assert small.available_seats == 0
    assert_inventory_consistent(small)


def test_seat_membership_is_exact(db, trip):
    seats = SeatInventory(db)
    assert seats.claim_seat("TRIP-1", "11A") is True
    assert seats.claim_seat("TRIP-1", "1A") is True
    # LIKE wildcards in labels are matched literally
    assert seats.claim_seat("TRIP-1", "AB1") is True
    assert seats.claim_seat("TRIP-1", "A_1") is True
    assert seats.claim_seat("TRIP-1", "A%") is True
    assert seats.claim_seat("TRIP-1", "A_1") is False
    db.commit()

    assert sorted(reload_trip(db).booked_seat_list) == sorted(["11A", "1A", "AB1", "A_1", "A%"])


def test_release_reverses_claim(db, trip):
    seats = SeatInventory(db)
    seats.claim_seat("TRIP-1", "1A")
    seats.claim_seat("TRIP-1", "11A")

    assert seats.release_seat("TRIP-1", "1A") is True
    db.commit()

    refreshed = reload_trip(db)
    assert refreshed.booked_seat_list == ["11A"]
    assert refreshed.available_seats == 39
    assert_inventory_consistent(refreshed)


def test_release_of_free_seat_returns_false(db, trip):
    seats = SeatInventory(db)
    assert seats.release_seat("TRIP-1", "5C") is False
    db.commit()
    assert reload_trip(db).available_seats == 40


def test_seat_labels_are_case_insensitive(db, trip):
    seats = SeatInventory(db)
    assert seats.claim_seat("TRIP-1", "1A") is True
    assert seats.claim_seat("TRIP-1", "1a") is False
    assert seats.claim_seat("TRIP-1", " 2b ") is True
    db.commit()
    assert reload_trip(db).booked_seat_list == ["1A", "2B"]

    assert seats.release_seat("TRIP-1", "1a") is True
    assert seats.release_seat("TRIP-1", "2B") is True
    db.commit()

    refreshed = reload_trip(db)
    assert refreshed.available_seats == 40
    assert refreshed.booked_seat_list == []
    assert_inventory_consistent(refreshed)


def test_inventory_invariant_over_claims_and_releases(db, trip):
    seats = SeatInventory(db)
    operations = [
        ("claim", "1A"), ("claim", "2A"), ("claim", "3A"), ("release", "2A"),
        ("claim", "2A"), ("release", "9Z"), ("claim", "1A"), ("release", "1A"),
        ("release", "1A"), ("claim", "4D"),
    ]
    for operation, seat in operations:
        if operation == "claim":
            seats.claim_seat("TRIP-1", seat)
        else:
            seats.release_seat("TRIP-1", seat)
        db.commit()
        assert_inventory_consistent(reload_trip(db))

    assert sorted(reload_trip(db).booked_seat_list) == ["2A", "3A", "4D"]


@pytest.mark.parametrize("label", ["", "1,2"])
def test_invalid_seat_labels_rejected(db, trip, label):
    with pytest.raises(ValueError):
        SeatInventory(db).claim_seat("TRIP-1", label)


def test_add_revenue_adjusts_in_both_directions(db, trip):
    seats = SeatInventory(db)
    seats.add_revenue("TRIP-1", 2100)
    seats.add_revenue("TRIP-1", 900)
    seats.add_revenue("TRIP-1", -2100)
    db.commit()
    assert reload_trip(db).revenue == 900


def test_concurrent_claims_for_one_seat_have_a_single_winner(session_factory, trip):
    def attempt(_):
        session = session_factory()
        try:
            claimed = SeatInventory(session).claim_seat("TRIP-1", "1A")
            session.commit()
            return claimed
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(attempt, range(10)))

    assert results.count(True) == 1
    assert results.count(False) == 9

    session = session_factory()
    try:
        refreshed = reload_trip(session)
        assert refreshed.available_seats == 39
        assert refreshed.booked_seat_list == ["1A"]
    finally:
        session.close()
