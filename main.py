import logging
import os
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import catalog
import ledger
import payments
import reconciler
from auth import AuthContext, IdentityProvider, SessionStoreIdentityProvider, authenticate, get_profile, update_profile
from config import Settings, get_settings
from database import create_document, get_db, storage_guard
from errors import (
    BookingError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RetryableError,
    StorageError,
    ValidationError,
)
from schemas import Booking, BookingStatus, ParkingLocation, ParkingSlot, User

app_settings = get_settings()
logging.basicConfig(level=app_settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Parking Reservation API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

RETRY_MESSAGE = "Something went wrong on our side. Please try again in a moment."


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.message})
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})
    if isinstance(exc, ConflictError):
        return JSONResponse(status_code=409, content={"detail": exc.message})
    if isinstance(exc, RetryableError):
        return JSONResponse(status_code=503, content={"detail": RETRY_MESSAGE}, headers={"Retry-After": "1"})
    if isinstance(exc, (StorageError, ConfigurationError)):
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=503, content={"detail": RETRY_MESSAGE})
    logger.error("Unhandled booking error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=500, content={"detail": RETRY_MESSAGE})


def get_identity_provider(database=Depends(get_db)) -> IdentityProvider:
    return SessionStoreIdentityProvider(database)


def get_auth_context(
    authorization: Optional[str] = Header(None),
    provider: IdentityProvider = Depends(get_identity_provider),
) -> AuthContext:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Sign in to continue")
    auth = authenticate(provider, token.strip())
    if auth is None:
        raise HTTPException(status_code=401, detail="Session expired, please sign in again")
    return auth


@app.get("/")
def read_root():
    return {"message": "Parking Reservation API is running"}


SEED_LOCATIONS = [
    ("Central Mall Parking", "456 Shopping Ave, Central", 75.0, ["Indoor", "CCTV", "24/7"]),
    ("Downtown Garage", "123 Main St, Downtown", 150.0, ["Covered", "Security", "EV Charging", "CCTV"]),
    ("Riverside Parking Lot", "789 River Rd, Eastside", 50.0, ["Outdoor", "Guarded", "Car Wash"]),
]
SEED_SLOT_NUMBERS = ["A1", "A2", "A3", "A4", "B1", "B2", "B3", "B4"]


# Seed demo data for quick testing
@app.post("/seed")
def seed_demo_data(database=Depends(get_db)):
    with storage_guard("check existing locations"):
        existing = database["parkinglocation"].count_documents({})
    if existing:
        return {"status": "ok", "seeded": False}

    location_ids = []
    for name, address, rate, amenities in SEED_LOCATIONS:
        location_id = create_document(
            database,
            "parkinglocation",
            ParkingLocation(
                name=name,
                address=address,
                hourly_rate=rate,
                amenities=amenities,
                total_slots=len(SEED_SLOT_NUMBERS),
            ).model_dump(exclude={"id"}),
        )
        for number in SEED_SLOT_NUMBERS:
            create_document(
                database,
                "parkingslot",
                ParkingSlot(location_id=location_id, slot_number=number).model_dump(exclude={"id"}),
            )
        location_ids.append(location_id)

    return {"status": "ok", "seeded": True, "location_ids": location_ids}


class LocationWithAvailability(ParkingLocation):
    available_slots: int


@app.get("/locations", response_model=List[LocationWithAvailability])
def list_locations(amenity: Optional[str] = None, database=Depends(get_db)):
    results: List[LocationWithAvailability] = []
    for location in catalog.list_locations(database, amenity):
        results.append(
            LocationWithAvailability(
                **location.model_dump(),
                available_slots=catalog.count_available_slots(database, location.id),
            )
        )
    return results


@app.get("/locations/{location_id}", response_model=LocationWithAvailability)
def read_location(location_id: str, database=Depends(get_db)):
    location = catalog.get_location(database, location_id)
    return LocationWithAvailability(
        **location.model_dump(),
        available_slots=catalog.count_available_slots(database, location.id),
    )


@app.get("/locations/{location_id}/slots", response_model=List[ParkingSlot])
def read_location_slots(location_id: str, database=Depends(get_db)):
    return catalog.list_slots(database, location_id)


class SlotAvailability(BaseModel):
    slot_id: str
    start_time: datetime
    end_time: datetime
    available: bool


@app.get("/slots/{slot_id}/availability", response_model=SlotAvailability)
def read_slot_availability(slot_id: str, start_time: datetime, end_time: datetime, database=Depends(get_db)):
    available = reconciler.is_slot_available(database, slot_id, start_time, end_time)
    return SlotAvailability(slot_id=slot_id, start_time=start_time, end_time=end_time, available=available)


@app.get("/me", response_model=User)
def read_profile(auth: AuthContext = Depends(get_auth_context), database=Depends(get_db)):
    return get_profile(database, auth.user_id)


class ProfileUpdate(BaseModel):
    display_name: str


@app.patch("/me", response_model=User)
def edit_profile(req: ProfileUpdate, auth: AuthContext = Depends(get_auth_context), database=Depends(get_db)):
    return update_profile(database, auth.user_id, req.display_name)


@app.get("/bookings", response_model=List[Booking])
def list_bookings(auth: AuthContext = Depends(get_auth_context), database=Depends(get_db)):
    return ledger.list_user_bookings(database, auth)


class CreateBookingRequest(BaseModel):
    parking_slot_id: str
    parking_slot_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    total_amount: float = Field(..., ge=0)
    status: BookingStatus = "pending"


@app.post("/bookings", response_model=Booking, status_code=201)
def create_booking(
    req: CreateBookingRequest,
    auth: AuthContext = Depends(get_auth_context),
    database=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ledger.create_booking(
        database,
        auth,
        req.parking_slot_id,
        req.start_time,
        req.end_time,
        req.total_amount,
        slot_name=req.parking_slot_name,
        status=req.status,
        settings=settings,
    )


@app.patch("/bookings/{booking_id}/cancel", response_model=Booking)
def cancel_booking(
    booking_id: str,
    auth: AuthContext = Depends(get_auth_context),
    database=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ledger.cancel_booking(database, auth, booking_id, settings)


class StatusUpdateRequest(BaseModel):
    status: BookingStatus


@app.patch("/bookings/{booking_id}/status", response_model=Booking)
def update_booking_status(
    booking_id: str,
    req: StatusUpdateRequest,
    auth: AuthContext = Depends(get_auth_context),
    database=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ledger.update_booking_status(database, auth, booking_id, req.status, settings)


@app.post("/bookings/{booking_id}/payment", response_model=payments.PaymentIntent)
def start_payment(
    booking_id: str,
    auth: AuthContext = Depends(get_auth_context),
    database=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return payments.open_checkout(database, auth, booking_id, settings)


class PaymentVerificationRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str


@app.post("/bookings/{booking_id}/payment/verify", response_model=Booking)
def verify_payment(
    booking_id: str,
    req: PaymentVerificationRequest,
    auth: AuthContext = Depends(get_auth_context),
    database=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return payments.verify_payment(
        database, auth, booking_id, req.order_id, req.payment_id, req.signature, settings
    )


@app.post("/reconcile")
def reconcile_slots(limit: int = 100, database=Depends(get_db), settings: Settings = Depends(get_settings)):
    return {"reconciled": reconciler.drain_outbox(database, limit, settings)}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "✅ Connected",
    }
    try:
        database = get_db()
        response["collections"] = database.list_collection_names()
    except ConfigurationError:
        response["database"] = "❌ Not Available"
        response["collections"] = []
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
