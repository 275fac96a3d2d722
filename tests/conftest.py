from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import AuthContext
from config import Settings, get_settings
from database import create_document, get_db, utcnow

T0 = datetime(2025, 1, 10, 10, 0, tzinfo=timezone.utc)
T1 = datetime(2025, 1, 10, 11, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    return mongomock.MongoClient().parking


@pytest.fixture
def settings():
    return Settings(
        slot_lock_wait=0.1,
        checkout_key_id="rzp_test_key",
        checkout_key_secret="rzp_test_secret",
    )


@pytest.fixture
def no_checkout():
    return Settings(slot_lock_wait=0.1)


@pytest.fixture
def location_id(db, settings):
    return create_document(
        db,
        "parkinglocation",
        {
            "name": "Downtown Garage",
            "address": "123 Main St, Downtown",
            "hourly_rate": 150.0,
            "amenities": ["Covered", "Security", "EV Charging", "CCTV"],
            "total_slots": 2,
        },
        settings,
    )


@pytest.fixture
def slot_id(db, location_id, settings):
    create_document(db, "parkingslot", {"location_id": location_id, "slot_number": "A2", "is_available": True}, settings)
    return create_document(
        db, "parkingslot", {"location_id": location_id, "slot_number": "A1", "is_available": True}, settings
    )


@pytest.fixture
def alice():
    return AuthContext(user_id="user-alice", session_token="token-alice")


@pytest.fixture
def bob():
    return AuthContext(user_id="user-bob", session_token="token-bob")


def slot_doc(db, slot_id):
    return db["parkingslot"].find_one({"_id": ObjectId(slot_id)})


@pytest.fixture
def client(db, settings):
    from main import app

    expires = utcnow() + timedelta(hours=1)
    for name in ("alice", "bob"):
        db["user"].insert_one({"_id": f"user-{name}", "email": f"{name}@example.com", "display_name": name.title()})
        db["session"].insert_one({"token": f"token-{name}", "user_id": f"user-{name}", "expires_at": expires})

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def bearer(name):
    return {"Authorization": f"Bearer token-{name}"}
