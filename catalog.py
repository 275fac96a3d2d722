"""Read path over parking locations and their slots."""
import re
from typing import List, Optional

from pymongo.database import Database

from config import Settings
from database import object_id, storage_guard
from errors import NotFoundError
from schemas import ParkingLocation, ParkingSlot

ALL_AMENITIES = "all"


def normalize_amenity(value: str) -> str:
    """'EV Charging' -> 'ev-charging'"""
    return re.sub(r"\s", "-", value.lower())


def location_has_amenity(location, amenity):
    key = normalize_amenity(amenity)
    return any(normalize_amenity(a) == key for a in location.amenities)


def list_locations(database: Database, amenity: Optional[str] = None) -> List[ParkingLocation]:
    with storage_guard("list parking locations"):
        docs = list(database["parkinglocation"].find().sort([("name", 1), ("_id", 1)]))
    locations = [ParkingLocation.from_document(d) for d in docs]
    if not amenity or normalize_amenity(amenity) == ALL_AMENITIES:
        return locations
    return [loc for loc in locations if location_has_amenity(loc, amenity)]


def get_location(database: Database, location_id: str) -> ParkingLocation:
    oid = object_id(location_id, "Parking location")
    with storage_guard("load parking location"):
        doc = database["parkinglocation"].find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Parking location not found")
    return ParkingLocation.from_document(doc)


def list_slots(database: Database, location_id: str) -> List[ParkingSlot]:
    get_location(database, location_id)
    with storage_guard("list parking slots"):
        docs = list(database["parkingslot"].find({"location_id": location_id}).sort("slot_number", 1))
    return [ParkingSlot.from_document(d) for d in docs]


def get_slot(database: Database, slot_id: str, settings: Optional[Settings] = None) -> ParkingSlot:
    oid = object_id(slot_id, "Parking slot")
    with storage_guard("load parking slot", settings):
        doc = database["parkingslot"].find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Parking slot not found")
    return ParkingSlot.from_document(doc)


def count_available_slots(database: Database, location_id: str) -> int:
    with storage_guard("count available slots"):
        return database["parkingslot"].count_documents({"location_id": location_id, "is_available": True})
