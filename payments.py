"""
Checkout widget integration.

`initiate_payment` prepares what the browser hands to the hosted checkout
widget, including the order id the payment is bound to. `open_checkout` also
records that order and its amount on the booking. The widget's client-side
success callback proves nothing by itself: the browser must post the order id,
payment id and signature to `verify_payment`, which checks the signature with
the server-held secret, checks that the order is the one recorded for this
booking at its current amount, and only then confirms the booking.
"""
import hashlib
import hmac
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from pydantic import BaseModel, Field
from pymongo.database import Database

import ledger
from auth import AuthContext
from config import Settings, get_settings
from errors import ConfigurationError, InvalidTransitionError, NotFoundError, PaymentVerificationError, ValidationError
from schemas import TERMINAL_STATUSES, Booking

logger = logging.getLogger(__name__)

MERCHANT_NAME = "ParkEase"


class PaymentIntent(BaseModel):
    booking_id: str
    order_id: str = Field(..., description="Order the widget must report back on verification")
    amount: int = Field(..., ge=0, description="Amount in the smallest currency unit (paise for INR)")
    currency: str
    key_id: str = Field(..., description="Public key the checkout widget is opened with")
    name: str = MERCHANT_NAME
    description: str


def to_minor_units(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def new_order_id() -> str:
    return f"order_{uuid.uuid4().hex[:14]}"


def initiate_payment(bookings: Sequence[Booking], booking_id: str, settings: Optional[Settings] = None) -> PaymentIntent:
    """Build the checkout request for one of the already loaded bookings.

    A booking that already has an order for the same amount keeps it, so
    reopening the widget does not orphan a payment in flight.
    """
    settings = settings or get_settings()
    booking = next((b for b in bookings if b.id == booking_id), None)
    if booking is None:
        raise NotFoundError("Booking not found")
    if not settings.checkout_key_id:
        raise ConfigurationError("Checkout is not available right now")
    if booking.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"A {booking.status} booking cannot be paid")

    amount = to_minor_units(booking.total_amount)
    order_id = booking.payment_order_id
    if not order_id or booking.payment_amount != amount:
        order_id = new_order_id()
    return PaymentIntent(
        booking_id=booking.id,
        order_id=order_id,
        amount=amount,
        currency=settings.currency,
        key_id=settings.checkout_key_id,
        description=f"Parking Booking - {booking.parking_slot_name}",
    )


def open_checkout(
    database: Database, auth: AuthContext, booking_id: str, settings: Optional[Settings] = None
) -> PaymentIntent:
    bookings = ledger.list_user_bookings(database, auth, settings)
    intent = initiate_payment(bookings, booking_id, settings)
    ledger.record_payment_order(database, auth, booking_id, intent.order_id, intent.amount, settings)
    logger.info("Checkout order %s opened for booking %s (%d)", intent.order_id, booking_id, intent.amount)
    return intent


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_payment(
    database: Database,
    auth: AuthContext,
    booking_id: str,
    order_id: str,
    payment_id: str,
    signature: str,
    settings: Optional[Settings] = None,
) -> Booking:
    settings = settings or get_settings()
    if not settings.checkout_key_secret:
        raise ConfigurationError("Payment verification is not configured")
    if not (order_id and payment_id and signature):
        raise ValidationError("Order id, payment id and signature are required")

    expected = payment_signature(settings.checkout_key_secret, order_id, payment_id)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Payment signature mismatch for booking %s (payment %s)", booking_id, payment_id)
        raise PaymentVerificationError("Payment could not be verified")

    booking = ledger.get_booking(database, auth, booking_id, settings)
    if booking.payment_order_id != order_id:
        logger.warning("Payment %s for booking %s names order %s, expected %s",
                       payment_id, booking_id, order_id, booking.payment_order_id)
        raise PaymentVerificationError("Payment does not belong to this booking")
    if booking.status == "confirmed" and booking.payment_reference == payment_id:
        return booking
    if booking.payment_amount != to_minor_units(booking.total_amount):
        raise PaymentVerificationError("Payment amount does not match the booking, please pay again")
    if ledger.payment_reference_in_use(database, payment_id, booking_id, settings):
        logger.warning("Payment %s already settles another booking, refusing it for %s", payment_id, booking_id)
        raise PaymentVerificationError("Payment was already used for another booking")

    booking = ledger.update_booking_status(
        database, auth, booking_id, "confirmed", settings, fields={"payment_reference": payment_id}
    )
    logger.info("Payment %s verified, booking %s confirmed", payment_id, booking_id)
    return booking
