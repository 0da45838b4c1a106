"""Scheduling error taxonomy.

Routes translate these into HTTP responses; lower-level exceptions are
wrapped before they leave the scheduling package.
"""

REASON_NOT_AVAILABLE = "not_available"
REASON_OUTSIDE_HOURS = "outside_hours"
REASON_BOOKING_CONFLICT = "booking_conflict"
REASON_CALENDAR_CONFLICT = "calendar_conflict"
REASON_CALENDAR_UNAVAILABLE = "calendar_unavailable"

REASON_MESSAGES = {
    REASON_NOT_AVAILABLE: "The operator is not available on this day.",
    REASON_OUTSIDE_HOURS: "This time is outside of available hours.",
    REASON_BOOKING_CONFLICT: "This time slot is no longer available.",
    REASON_CALENDAR_CONFLICT: "This time slot is no longer available.",
    REASON_CALENDAR_UNAVAILABLE: "Calendar availability could not be confirmed. Please try again.",
}


class SchedulingError(Exception):
    """Base class for availability and booking failures."""


class NotFoundError(SchedulingError):
    """Unknown widget token or user."""


class SlotValidationError(SchedulingError):
    """Malformed input interval, date or schedule."""


class SlotConflictError(SchedulingError):
    """The requested slot cannot be booked."""

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        self.message = message or REASON_MESSAGES.get(reason, "This time slot is not available.")
        super().__init__(self.message)


class PersistenceConflictError(SlotConflictError):
    """A concurrent insert claimed the slot first."""

    def __init__(self, message: str | None = None):
        super().__init__(REASON_BOOKING_CONFLICT, message)


class UpstreamUnavailableError(SchedulingError):
    """The remote calendar could not be queried."""


class SlotResolutionError(SchedulingError):
    """Slots could not be resolved because a required query failed."""
