"""Error taxonomy for the scheduling core"""

from typing import List, Optional


class SchedulingError(Exception):
    """Base class for scheduling errors"""


class ConflictReason:
    ALREADY_BOOKED = 'ALREADY_BOOKED'
    BLOCKED = 'BLOCKED'
    PAST_DATE = 'PAST_DATE'


class ConflictError(SchedulingError):
    """A requested slot cannot be booked. Returned as a value, not raised past the guard."""

    def __init__(self, reason: str, message: str = None, conflicts: Optional[List] = None):
        self.reason = reason
        self.message = message or reason
        self.conflicts = conflicts or []
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            'error': self.message,
            'reason': self.reason,
            'conflicts': [c.to_dict() for c in self.conflicts]
        }


class InvalidTransitionError(SchedulingError):
    """A booking status change not allowed by the lifecycle graph"""

    def __init__(self, current, requested, message: str = None):
        self.current = getattr(current, 'value', current)
        self.requested = getattr(requested, 'value', requested)
        self.message = message or f"Cannot move booking from {self.current} to {self.requested}"
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'error': self.message, 'current': self.current, 'requested': self.requested}


class BookingValidationError(SchedulingError):
    """Malformed booking request"""


class NotFoundError(SchedulingError):
    """Referenced cleaner, owner, property or booking does not exist"""


class CalendarAuthError(SchedulingError):
    """External calendar token expired or was revoked"""


class TransientIOError(SchedulingError):
    """Network or database blip; the caller may re-request"""


class CalendarProviderError(SchedulingError):
    """External calendar rejected a request in a way retrying will not fix"""
