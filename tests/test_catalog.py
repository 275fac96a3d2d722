import pytest

import catalog
from database import create_document
from errors import NotFoundError


@pytest.fixture
def locations(db, settings):
    rows = [
        ("Riverside Parking Lot", ["Outdoor", "Guarded", "Car Wash"]),
        ("Downtown Garage", ["Covered", "Security", "EV Charging", "CCTV"]),
        ("Central Mall Parking", ["Indoor", "CCTV", "24/7"]),
        ("Airport Long Stay", ["ev charging", "Shuttle"]),
    ]
    for name, amenities in rows:
        create_document(
            db,
            "parkinglocation",
            {"name": name, "address": "somewhere", "hourly_rate": 50.0, "amenities": amenities, "total_slots": 8},
            settings,
        )


def test_normalize_amenity():
    assert catalog.normalize_amenity("EV Charging") == "ev-charging"
    assert catalog.normalize_amenity("Car\tWash") == "car-wash"
    assert catalog.normalize_amenity(" Car Wash ") == "-car-wash-"
    assert catalog.normalize_amenity("24/7") == "24/7"


def test_locations_are_ordered_by_name(db, locations):
    names = [loc.name for loc in catalog.list_locations(db)]
    assert names == sorted(names)
    assert len(names) == 4


@pytest.mark.parametrize("amenity", ["ev-charging", "EV Charging", "EV-CHARGING"])
def test_amenity_filter_is_case_insensitive(db, locations, amenity):
    names = [loc.name for loc in catalog.list_locations(db, amenity)]
    assert names == ["Airport Long Stay", "Downtown Garage"]


def test_all_disables_filter(db, locations):
    assert len(catalog.list_locations(db, "all")) == 4


def test_unmatched_filter_returns_nothing(db, locations):
    assert catalog.list_locations(db, "valet") == []


def test_listing_is_idempotent(db, locations):
    assert catalog.list_locations(db, "cctv") == catalog.list_locations(db, "cctv")


def test_slots_and_availability(db, settings, location_id, slot_id):
    slots = catalog.list_slots(db, location_id)

    assert [s.slot_number for s in slots] == ["A1", "A2"]
    assert catalog.count_available_slots(db, location_id) == 2
    assert catalog.get_slot(db, slot_id).slot_number == "A1"


def test_missing_location(db):
    with pytest.raises(NotFoundError):
        catalog.get_location(db, "65a000000000000000000000")
    with pytest.raises(NotFoundError):
        catalog.list_slots(db, "bogus")
