from __future__ import annotations

from datetime import date


class BookingError(Exception):
    """Base class for errors the booking core reports to callers."""

    code = "booking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SlotNotFoundError(BookingError):
    code = "slot_not_found"


class SlotClosedError(BookingError):
    code = "slot_closed"


class DateRangeOutOfBoundsError(BookingError):
    code = "date_range_out_of_bounds"


class MinimumStayViolationError(BookingError):
    code = "minimum_stay_violation"

    def __init__(self, message: str, *, minimum_stay: int, requested_days: int) -> None:
        super().__init__(message)
        self.minimum_stay = minimum_stay
        self.requested_days = requested_days


class _DayError(BookingError):
    def __init__(self, message: str, *, day: date) -> None:
        super().__init__(message)
        self.day = day


class CapacityRecordMissingError(_DayError):
    code = "capacity_record_missing"


class CapacityExceededError(_DayError):
    code = "capacity_exceeded"


class StorageUnavailableError(BookingError):
    code = "storage_unavailable"


class OpportunityNotFoundError(BookingError):
    code = "opportunity_not_found"


class ApplicationNotFoundError(BookingError):
    code = "application_not_found"


class DuplicateApplicationError(BookingError):
    code = "duplicate_application"


class InvalidTransitionError(BookingError):
    code = "invalid_transition"


class PermissionDeniedError(BookingError):
    code = "permission_denied"


class VersionConflictError(BookingError):
    code = "version_conflict"


class InvalidTimeSlotError(BookingError):
    code = "invalid_time_slot"


class CapacityBelowBookedError(_DayError):
    code = "capacity_below_booked"


class SlotInUseError(BookingError):
    code = "time_slot_in_use"
