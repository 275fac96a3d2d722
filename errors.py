"""
Error taxonomy for the booking service.

Every error carries a message that is safe to show to the user. Storage and
configuration errors are shown with a generic retry hint instead.
"""


class BookingError(Exception):
    """Base class for errors raised by the booking core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Malformed input: missing field, start_time >= end_time, unknown status."""


class InvalidTransitionError(ValidationError):
    """A status change the booking state machine does not allow."""


class PaymentVerificationError(ValidationError):
    """The payment signature did not match the server-held secret."""


class NotFoundError(BookingError):
    """Booking, slot or location does not exist or is not owned by the caller."""


class ConflictError(BookingError):
    """An active booking already overlaps the requested slot and time range."""


class StorageError(BookingError):
    """The persistence collaborator failed."""


class RetryableError(StorageError):
    """A storage call timed out or a slot lease was not obtained in time."""


class ConfigurationError(BookingError):
    """A required external collaborator is not configured."""
