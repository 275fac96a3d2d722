"""
Booking ledger: create, list and transition bookings.

Every mutation runs under the booked slot's lease (`database.slot_lock`), so
the overlap check and the insert cannot interleave with another create for the
same slot. Status changes follow ALLOWED_TRANSITIONS; repeating the current
status is accepted and writes nothing, which makes cancellation idempotent.

Slot availability is updated after each write. Its failures are logged and
queued for `reconciler.drain_outbox`, never surfaced: the booking write stands.
"""
import logging
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from pymongo.database import Database

import catalog
import reconciler
from auth import AuthContext
from config import Settings, get_settings
from database import object_id, slot_lock, storage_guard, to_storage_time, utcnow
from errors import BookingError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from schemas import ACTIVE_STATUSES, BOOKING_STATUSES, Booking

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("cancelled", "completed"),
    "cancelled": (),
    "completed": (),
}


def _reconcile(database, booking, settings):
    try:
        reconciler.update_slot_availability_by_booking(
            database, booking.parking_slot_id, booking.start_time, booking.end_time, booking.status, settings
        )
    except BookingError as exc:
        logger.warning(
            "Slot availability update failed for booking %s, queueing it: %s", booking.id, exc.message, exc_info=True
        )
        try:
            reconciler.enqueue(
                database,
                booking.parking_slot_id,
                booking.start_time,
                booking.end_time,
                booking.status,
                booking.id,
                exc.message,
                settings,
            )
        except BookingError as queue_exc:
            logger.error("Could not queue reconciliation for booking %s: %s", booking.id, queue_exc.message)


def _slot_display_name(database, slot, settings):
    location = None
    if ObjectId.is_valid(slot.location_id):
        with storage_guard("load parking location", settings):
            location = database["parkinglocation"].find_one({"_id": ObjectId(slot.location_id)}, {"name": 1})
    if location:
        return f"{slot.slot_number} - {location.get('name')}"
    return slot.slot_number


def _checkout_enabled(settings):
    return bool((settings or get_settings()).checkout_key_secret)


def create_booking(
    database: Database,
    auth: AuthContext,
    slot_id: str,
    start_time: datetime,
    end_time: datetime,
    total_amount: float,
    slot_name: Optional[str] = None,
    status: str = "pending",
    settings: Optional[Settings] = None,
) -> Booking:
    if not auth or not auth.user_id:
        raise ValidationError("An authenticated user is required to book")
    if not slot_id:
        raise ValidationError("Parking slot is required")
    if start_time is None or end_time is None:
        raise ValidationError("Start and end time are required")
    start_time = to_storage_time(start_time)
    end_time = to_storage_time(end_time)
    if start_time >= end_time:
        raise ValidationError("Start time must be before end time")
    if total_amount is None or total_amount < 0:
        raise ValidationError("Total amount must not be negative")
    if status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status: {status}")
    if status not in ACTIVE_STATUSES:
        raise ValidationError(f"A new booking cannot start as {status}")
    if status == "confirmed" and _checkout_enabled(settings):
        raise ValidationError("A new booking is confirmed once its payment is verified")

    slot_oid = object_id(slot_id, "Parking slot")
    with slot_lock(database, slot_oid, settings):
        slot = catalog.get_slot(database, slot_id, settings)
        if not slot_name:
            slot_name = _slot_display_name(database, slot, settings)

        clash = reconciler.find_overlapping_booking(database, slot_id, start_time, end_time, settings=settings)
        if clash is not None:
            logger.info("Rejected booking on slot %s overlapping booking %s", slot_id, clash["_id"])
            raise ConflictError("This slot is already booked for the selected time")

        now = utcnow()
        doc = {
            "user_id": auth.user_id,
            "parking_slot_id": slot_id,
            "parking_slot_name": slot_name,
            "start_time": start_time,
            "end_time": end_time,
            "total_amount": float(total_amount),
            "status": status,
            "payment_reference": None,
            "payment_order_id": None,
            "payment_amount": None,
            "created_at": now,
            "updated_at": now,
        }
        with storage_guard("create booking", settings):
            result = database["booking"].insert_one(doc)
        doc["_id"] = result.inserted_id
        booking = Booking.from_document(doc)
        logger.info("Booking %s created for user %s on slot %s (%s)", booking.id, auth.user_id, slot_id, status)

        _reconcile(database, booking, settings)
    return booking


def _find_owned(database, auth, booking_id, settings):
    oid = object_id(booking_id, "Booking")
    with storage_guard("load booking", settings):
        doc = database["booking"].find_one({"_id": oid, "user_id": auth.user_id})
    if not doc:
        raise NotFoundError("Booking not found")
    return doc


def get_booking(database: Database, auth: AuthContext, booking_id: str, settings: Optional[Settings] = None) -> Booking:
    return Booking.from_document(_find_owned(database, auth, booking_id, settings))


def list_user_bookings(database: Database, auth: AuthContext, settings: Optional[Settings] = None) -> List[Booking]:
    """Bookings of the caller, newest first."""
    with storage_guard("list bookings", settings):
        docs = list(database["booking"].find({"user_id": auth.user_id}).sort([("created_at", -1), ("_id", -1)]))
    return [Booking.from_document(d) for d in docs]


def update_booking_status(
    database: Database,
    auth: AuthContext,
    booking_id: str,
    new_status: str,
    settings: Optional[Settings] = None,
    fields: Optional[dict] = None,
) -> Booking:
    """Move one of the caller's bookings to `new_status`.

    `fields` are extra values written together with the status change. While
    checkout is configured, only a change carrying a `payment_reference` may
    confirm a booking.
    """
    if new_status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status: {new_status}")

    doc = _find_owned(database, auth, booking_id, settings)
    slot_oid = object_id(doc["parking_slot_id"], "Parking slot")
    with slot_lock(database, slot_oid, settings):
        doc = _find_owned(database, auth, booking_id, settings)
        current = doc["status"]
        if current == new_status and not fields:
            return Booking.from_document(doc)
        if current != new_status and new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Cannot change a {current} booking to {new_status}")
        if (
            new_status == "confirmed"
            and current != "confirmed"
            and not (fields or {}).get("payment_reference")
            and _checkout_enabled(settings)
        ):
            raise InvalidTransitionError("Bookings are confirmed by a verified payment")

        changes = dict(fields or {})
        changes.update({"status": new_status, "updated_at": utcnow()})
        with storage_guard("update booking", settings):
            result = database["booking"].update_one(
                {"_id": doc["_id"], "user_id": auth.user_id, "status": current},
                {"$set": changes},
            )
        if result.matched_count == 0:
            raise ConflictError("Booking was changed by another request, please reload")
        doc.update(changes)
        booking = Booking.from_document(doc)
        logger.info("Booking %s moved from %s to %s by user %s", booking.id, current, new_status, auth.user_id)

        if current != new_status:
            _reconcile(database, booking, settings)
    return booking


def cancel_booking(database: Database, auth: AuthContext, booking_id: str, settings: Optional[Settings] = None) -> Booking:
    return update_booking_status(database, auth, booking_id, "cancelled", settings)


def record_payment_order(
    database: Database,
    auth: AuthContext,
    booking_id: str,
    order_id: str,
    amount: int,
    settings: Optional[Settings] = None,
) -> Booking:
    """Bind a checkout order and its amount (minor units) to an active booking."""
    oid = object_id(booking_id, "Booking")
    with storage_guard("record payment order", settings):
        result = database["booking"].update_one(
            {"_id": oid, "user_id": auth.user_id, "status": {"$in": list(ACTIVE_STATUSES)}},
            {"$set": {"payment_order_id": order_id, "payment_amount": amount, "updated_at": utcnow()}},
        )
    if result.matched_count == 0:
        # Either not the caller's booking or no longer payable.
        booking = get_booking(database, auth, booking_id, settings)
        raise InvalidTransitionError(f"A {booking.status} booking cannot be paid")
    return get_booking(database, auth, booking_id, settings)


def payment_reference_in_use(
    database: Database, payment_id: str, booking_id: str, settings: Optional[Settings] = None
) -> bool:
    """Whether `payment_id` already settles a booking other than `booking_id`."""
    with storage_guard("check payment reference", settings):
        other = database["booking"].find_one(
            {"payment_reference": payment_id, "_id": {"$ne": object_id(booking_id, "Booking")}},
            {"_id": 1},
        )
    return other is not None
