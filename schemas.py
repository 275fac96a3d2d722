"""
Database Schemas for the Parking Reservation API

Each Pydantic model corresponds to a MongoDB collection (collection name is the
lowercased class name). Stored documents keep their id in `_id`; the models
expose it as `id` through `from_document`.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from database import as_utc

BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]

BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed")
# Active bookings occupy their slot.
ACTIVE_STATUSES = ("pending", "confirmed")
TERMINAL_STATUSES = ("cancelled", "completed")


class User(BaseModel):
    id: str = Field(..., description="Identifier issued by the identity provider")
    email: str = Field(..., description="Email address")
    display_name: Optional[str] = Field(None, description="Name shown in the UI")

    @classmethod
    def from_document(cls, doc: dict) -> "User":
        return cls(id=str(doc["_id"]), email=doc.get("email", ""), display_name=doc.get("display_name"))


class ParkingLocation(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., description="Display name of the parking location")
    address: str = Field(..., description="Street address")
    hourly_rate: float = Field(..., ge=0, description="Price per hour in rupees")
    amenities: List[str] = Field(default_factory=list, description="Amenity labels, e.g. 'EV Charging'")
    total_slots: int = Field(..., ge=0, description="Number of slots at the location")

    @classmethod
    def from_document(cls, doc: dict) -> "ParkingLocation":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name"),
            address=doc.get("address"),
            hourly_rate=doc.get("hourly_rate", 0),
            amenities=doc.get("amenities") or [],
            total_slots=doc.get("total_slots", 0),
        )


class ParkingSlot(BaseModel):
    id: Optional[str] = None
    location_id: str = Field(..., description="ID of the location this slot belongs to")
    slot_number: str = Field(..., description="Human-readable slot label, e.g. 'A1'")
    is_available: bool = Field(True, description="Whether the slot is open for booking")

    @classmethod
    def from_document(cls, doc: dict) -> "ParkingSlot":
        return cls(
            id=str(doc["_id"]),
            location_id=doc.get("location_id"),
            slot_number=doc.get("slot_number"),
            is_available=doc.get("is_available", True),
        )


class Booking(BaseModel):
    id: Optional[str] = None
    user_id: str = Field(..., description="Owner of the booking")
    parking_slot_id: str = Field(..., description="ID of the booked slot")
    parking_slot_name: str = Field(..., description="Slot label kept for display")
    start_time: datetime
    end_time: datetime
    total_amount: float = Field(..., ge=0, description="Amount due in rupees")
    status: BookingStatus = "pending"
    payment_reference: Optional[str] = Field(None, description="Provider payment id once verified")
    payment_order_id: Optional[str] = Field(None, description="Checkout order the booking is being paid with")
    payment_amount: Optional[int] = Field(None, description="Amount of that order in the smallest currency unit")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict) -> "Booking":
        return cls(
            id=str(doc["_id"]),
            user_id=doc["user_id"],
            parking_slot_id=doc["parking_slot_id"],
            parking_slot_name=doc.get("parking_slot_name", ""),
            start_time=as_utc(doc["start_time"]),
            end_time=as_utc(doc["end_time"]),
            total_amount=doc.get("total_amount", 0),
            status=doc.get("status", "pending"),
            payment_reference=doc.get("payment_reference"),
            payment_order_id=doc.get("payment_order_id"),
            payment_amount=doc.get("payment_amount"),
            created_at=as_utc(doc.get("created_at")),
            updated_at=as_utc(doc.get("updated_at")),
        )
