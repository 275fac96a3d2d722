"""
Slot availability.

Two notions live here:

* `is_available` on the slot document, the flag the UI shows. A booking in an
  active status marks the slot unavailable regardless of its time range; a
  cancelled or completed booking re-opens the slot unless some other active
  booking still references it. Because the flag is recomputed rather than
  toggled, applying the same update twice is harmless.
* `is_slot_available`, the interval predicate: does any active booking overlap
  `[start, end)`. This is what decides whether a new booking may be created.

Reconciliation failures seen by the ledger are parked in the `slotoutbox`
collection and replayed by `drain_outbox`.
"""
import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from config import Settings
from database import object_id, slot_lock, storage_guard, to_storage_time, utcnow
from errors import BookingError, NotFoundError, ValidationError
from schemas import ACTIVE_STATUSES, BOOKING_STATUSES

logger = logging.getLogger(__name__)

OUTBOX = "slotoutbox"


def overlap_filter(slot_id, start_time, end_time):
    # Half-open ranges: back-to-back bookings do not overlap.
    return {
        "parking_slot_id": slot_id,
        "status": {"$in": list(ACTIVE_STATUSES)},
        "start_time": {"$lt": to_storage_time(end_time)},
        "end_time": {"$gt": to_storage_time(start_time)},
    }


def find_overlapping_booking(
    database: Database,
    slot_id: str,
    start_time: datetime,
    end_time: datetime,
    settings: Optional[Settings] = None,
) -> Optional[dict]:
    with storage_guard("check for overlapping bookings", settings):
        return database["booking"].find_one(overlap_filter(slot_id, start_time, end_time))


def is_slot_available(
    database: Database,
    slot_id: str,
    start_time: datetime,
    end_time: datetime,
    settings: Optional[Settings] = None,
) -> bool:
    if to_storage_time(start_time) >= to_storage_time(end_time):
        raise ValidationError("Start time must be before end time")
    oid = object_id(slot_id, "Parking slot")
    with storage_guard("load parking slot", settings):
        if database["parkingslot"].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFoundError("Parking slot not found")
    return find_overlapping_booking(database, slot_id, start_time, end_time, settings=settings) is None


def update_slot_availability_by_booking(
    database: Database,
    slot_id: str,
    start_time: datetime,
    end_time: datetime,
    status: str,
    settings: Optional[Settings] = None,
) -> bool:
    """Bring the slot's availability flag in line with a booking's new status.

    Returns the flag that was written.
    """
    if status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status: {status}")
    oid = object_id(slot_id, "Parking slot")

    with storage_guard("update slot availability", settings):
        if status in ACTIVE_STATUSES:
            is_available = False
        else:
            still_held = database["booking"].find_one(
                {"parking_slot_id": slot_id, "status": {"$in": list(ACTIVE_STATUSES)}},
                {"_id": 1},
            )
            is_available = still_held is None
        result = database["parkingslot"].update_one(
            {"_id": oid},
            {"$set": {"is_available": is_available, "updated_at": utcnow()}},
        )
    if result.matched_count == 0:
        raise NotFoundError("Parking slot not found")

    logger.debug(
        "Slot %s marked %s after %s booking %s - %s",
        slot_id, "available" if is_available else "unavailable", status, start_time, end_time,
    )
    return is_available


def enqueue(
    database: Database,
    slot_id: str,
    start_time: datetime,
    end_time: datetime,
    status: str,
    booking_id: str,
    error: str,
    settings: Optional[Settings] = None,
) -> None:
    now = utcnow()
    with storage_guard("queue slot reconciliation", settings):
        database[OUTBOX].insert_one({
            "slot_id": slot_id,
            "booking_id": booking_id,
            "start_time": to_storage_time(start_time),
            "end_time": to_storage_time(end_time),
            "status": status,
            "attempts": 0,
            "last_error": error,
            "created_at": now,
            "updated_at": now,
        })


def drain_outbox(database: Database, limit: int = 100, settings: Optional[Settings] = None) -> int:
    """Replay queued reconciliations, oldest first. Returns how many succeeded.

    Entries that fail again stay queued with their attempt count bumped.
    """
    with storage_guard("read reconciliation queue", settings):
        entries = list(database[OUTBOX].find().sort([("created_at", 1), ("_id", 1)]).limit(limit))

    done = 0
    for entry in entries:
        try:
            # Replay with the booking's current status; it may have moved on
            # since the entry was queued.
            status = entry["status"]
            if ObjectId.is_valid(entry.get("booking_id") or ""):
                with storage_guard("load booking", settings):
                    booking = database["booking"].find_one({"_id": ObjectId(entry["booking_id"])}, {"status": 1})
                if booking:
                    status = booking["status"]
            with slot_lock(database, object_id(entry["slot_id"], "Parking slot"), settings):
                update_slot_availability_by_booking(
                    database, entry["slot_id"], entry["start_time"], entry["end_time"], status, settings
                )
        except NotFoundError:
            logger.warning("Dropping reconciliation for missing slot %s", entry["slot_id"])
        except BookingError as exc:
            logger.warning("Reconciliation of slot %s failed again: %s", entry["slot_id"], exc.message)
            with storage_guard("update reconciliation queue", settings):
                database[OUTBOX].update_one(
                    {"_id": entry["_id"]},
                    {"$inc": {"attempts": 1}, "$set": {"last_error": exc.message, "updated_at": utcnow()}},
                )
            continue
        else:
            done += 1
        with storage_guard("update reconciliation queue", settings):
            database[OUTBOX].delete_one({"_id": entry["_id"]})
    if entries:
        logger.info("Reconciled %d of %d queued slot updates", done, len(entries))
    return done
