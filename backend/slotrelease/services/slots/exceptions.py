# backend/slotrelease/services/slots/exceptions.py
"""
Exception hierarchy for slot generation, release and booking.
"""


class SlotReleaseError(Exception):
    """Base class for all scheduler errors."""


class ConfigurationError(SlotReleaseError):
    """Working-hours data for a device cannot be interpreted."""


class StoreUnavailable(SlotReleaseError):
    """The slot store could not be reached or the statement failed. Retryable."""


class PromotionConflict(SlotReleaseError):
    """Promotion kept losing races to concurrent promoters."""

    def __init__(self, key, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"Could not promote a slot for {key} after {attempts} attempts")


class BookingError(SlotReleaseError):
    """Base class for errors returned synchronously by book/cancel."""

    user_message = "The booking could not be completed."


class SlotNoLongerAvailable(BookingError):
    """
    The slot was taken or is not open yet.

    Normal outcome under contention: the caller re-reads the pool and
    tries the new earliest slot.
    """

    user_message = "This slot has just been taken, please pick again."

    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        super().__init__(f"Slot {slot_id} is no longer available")


class SlotNotFound(BookingError):
    user_message = "The selected slot does not exist."

    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        super().__init__(f"Slot {slot_id} not found")


class AppointmentNotFound(BookingError):
    user_message = "The appointment does not exist."

    def __init__(self, appointment_id: int):
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")


class BookingValidationError(BookingError):
    """The request is well-formed but not acceptable for this slot/appointment."""
