from datetime import datetime
from typing import Dict, Set

from app.database import get_db
from app.models import Booking, BookingEvent, Cleaner
from app.models.booking import BookingStatus
from app.services.availability_service import AvailabilityStore, bump_schedule_version, lock_cleaner
from app.services.exceptions import BookingValidationError, InvalidTransitionError, NotFoundError
from app.services.notification_service import NotificationService
from app.utils.logger import get_logger
from app.utils.time_utils import today_in

logger = get_logger(__name__)

# pending -> confirmed -> completed, pending|confirmed -> cancelled
TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set()
}

# Dashboard actions and the statuses they may be applied from
ACTIONS = {
    'accept': (BookingStatus.CONFIRMED, {BookingStatus.PENDING}),
    'decline': (BookingStatus.CANCELLED, {BookingStatus.PENDING}),
    'complete': (BookingStatus.COMPLETED, {BookingStatus.CONFIRMED}),
    'cancel': (BookingStatus.CANCELLED, {BookingStatus.PENDING, BookingStatus.CONFIRMED})
}


def parse_status(value) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(str(value).strip().lower())
    except ValueError:
        raise BookingValidationError(f"Unknown booking status: {value}")


def can_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in TRANSITIONS[current]


class BookingLifecycle:
    """State machine for booking status and the side effects of each move"""

    def __init__(self, store: AvailabilityStore = None,
                 notification_service: NotificationService = None):
        self.store = store or AvailabilityStore()
        self._notification_service = notification_service

    @property
    def notification_service(self) -> NotificationService:
        if self._notification_service is None:
            self._notification_service = NotificationService()
        return self._notification_service

    def get_booking(self, booking_id: int) -> Booking:
        with get_db() as db:
            booking = db.query(Booking).filter_by(id=booking_id).first()
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            return booking

    def transition(self, booking_id: int, to, actor: str = None, notify: bool = True,
                   allowed_from: Set[BookingStatus] = None, action: str = None) -> Booking:
        """Move a booking to a new status, failing loudly on moves the graph forbids"""
        requested = parse_status(to)

        with get_db() as db:
            booking = db.query(Booking).filter_by(id=booking_id).first()
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")

            # Same lock order as the booking guard: cleaner row first
            cleaner = lock_cleaner(db, booking.cleaner_id)
            booking = db.query(Booking).filter_by(id=booking_id).with_for_update().first()
            db.refresh(booking)
            current = booking.status

            if allowed_from is not None and current not in allowed_from:
                raise InvalidTransitionError(
                    current, requested, f"Cannot {action or requested.value} a {current.value} booking"
                )
            if not can_transition(current, requested):
                raise InvalidTransitionError(current, requested)

            if requested == BookingStatus.COMPLETED and today_in(cleaner.timezone) < booking.date:
                raise InvalidTransitionError(
                    current, requested,
                    f"Booking cannot be completed before {booking.date.isoformat()}"
                )

            self._apply(booking, cleaner, requested, actor)
            db.add(BookingEvent(
                booking_id=booking.id,
                from_status=current,
                to_status=requested,
                actor=actor
            ))
            bump_schedule_version(cleaner)
            db.flush()
            db.refresh(booking)

        # Cancelled and completed bookings stop counting as busy
        self.store.invalidate(booking.cleaner_id)
        logger.info(f"Booking {booking_id} moved {current.value} -> {requested.value} by {actor or 'system'}")

        if notify:
            self.notification_service.send_status_change(booking_id, requested, actor)

        return booking

    def apply_action(self, booking_id: int, action: str, actor: str = None) -> Booking:
        """Run a dashboard action such as accept or decline"""
        if action not in ACTIONS:
            raise BookingValidationError(
                f"Invalid action. Use one of: {', '.join(sorted(ACTIONS))}"
            )
        requested, allowed_from = ACTIONS[action]
        return self.transition(booking_id, requested, actor=actor, allowed_from=allowed_from, action=action)

    def _apply(self, booking: Booking, cleaner: Cleaner, requested: BookingStatus, actor: str):
        now = datetime.utcnow()
        booking.status = requested

        if requested == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        elif requested == BookingStatus.COMPLETED:
            booking.completed_at = now
            cleaner.completed_bookings = (cleaner.completed_bookings or 0) + 1
        elif requested == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancelled_by = actor
