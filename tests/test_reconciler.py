from datetime import timedelta

import pytest

import ledger
import reconciler
from conftest import T0, T1, slot_doc
from errors import BookingError, NotFoundError, ValidationError


def test_active_status_marks_slot_unavailable(db, settings, slot_id):
    assert reconciler.update_slot_availability_by_booking(db, slot_id, T0, T1, "confirmed", settings) is False
    assert slot_doc(db, slot_id)["is_available"] is False


def test_terminal_status_reopens_unreferenced_slot(db, settings, slot_id):
    reconciler.update_slot_availability_by_booking(db, slot_id, T0, T1, "pending", settings)

    assert reconciler.update_slot_availability_by_booking(db, slot_id, T0, T1, "completed", settings) is True
    assert slot_doc(db, slot_id)["is_available"] is True


def test_flag_ignores_time_range(db, settings, alice, slot_id):
    # A booking far in the future still takes the slot off the board.
    start = T0 + timedelta(days=365)
    ledger.create_booking(db, alice, slot_id, start, start + timedelta(hours=2), 300, settings=settings)

    assert slot_doc(db, slot_id)["is_available"] is False
    assert reconciler.is_slot_available(db, slot_id, T0, T1, settings) is True


def test_interval_predicate(db, settings, alice, slot_id):
    ledger.create_booking(db, alice, slot_id, T0, T1, 100, settings=settings)

    assert reconciler.is_slot_available(db, slot_id, T0 + timedelta(minutes=59), T1 + timedelta(hours=1), settings) is False
    assert reconciler.is_slot_available(db, slot_id, T0 - timedelta(hours=1), T0, settings) is True
    assert reconciler.is_slot_available(db, slot_id, T1, T1 + timedelta(hours=1), settings) is True


def test_interval_predicate_validates_input(db, settings, slot_id):
    with pytest.raises(ValidationError):
        reconciler.is_slot_available(db, slot_id, T1, T0, settings)
    with pytest.raises(NotFoundError):
        reconciler.is_slot_available(db, "65a000000000000000000000", T0, T1, settings)


def test_missing_slot_is_not_found(db, settings):
    with pytest.raises(NotFoundError):
        reconciler.update_slot_availability_by_booking(db, "65a000000000000000000000", T0, T1, "pending", settings)


def test_unknown_status_is_rejected(db, settings, slot_id):
    with pytest.raises(ValidationError):
        reconciler.update_slot_availability_by_booking(db, slot_id, T0, T1, "reserved", settings)


def test_drain_replays_current_booking_status(db, settings, alice, slot_id):
    booking = ledger.create_booking(db, alice, slot_id, T0, T1, 100, settings=settings)
    # A stale queued entry for the booking, which has since been cancelled.
    reconciler.enqueue(db, slot_id, T0, T1, "pending", booking.id, "timed out", settings)
    ledger.cancel_booking(db, alice, booking.id, settings)

    assert reconciler.drain_outbox(db, settings=settings) == 1
    assert slot_doc(db, slot_id)["is_available"] is True


def test_drain_keeps_entries_that_fail_again(db, settings, slot_id, monkeypatch):
    reconciler.enqueue(db, slot_id, T0, T1, "pending", "no-such-booking", "timed out", settings)

    def broken(*args, **kwargs):
        raise BookingError("still down")

    monkeypatch.setattr(reconciler, "update_slot_availability_by_booking", broken)

    assert reconciler.drain_outbox(db, settings=settings) == 0
    entry = db[reconciler.OUTBOX].find_one()
    assert entry["attempts"] == 1
    assert entry["last_error"] == "still down"


def test_drain_drops_entries_for_missing_slots(db, settings):
    reconciler.enqueue(db, "65a000000000000000000000", T0, T1, "cancelled", "", "timed out", settings)

    assert reconciler.drain_outbox(db, settings=settings) == 0
    assert db[reconciler.OUTBOX].count_documents({}) == 0
