"""
Transactional gate for booking creation.

Every booking, whether a human request or an agent tool call, is created here.
The availability re-check and the insert share one transaction that holds
the cleaner's row lock, so two concurrent requests for overlapping time on
the same cleaner are serialized and the second one sees the first booking.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import DBAPIError

from app.database import get_db
from app.models import Booking, BookingEvent, Owner, Property
from app.models.booking import BookingStatus
from app.services.availability_service import (
    AvailabilityStore, bump_schedule_version, evaluate_slot, lock_cleaner
)
from app.services.exceptions import (
    BookingValidationError, ConflictError, NotFoundError, TransientIOError
)
from app.services.notification_service import NotificationService
from app.utils.logger import get_logger
from app.utils.time_utils import format_minutes, hours_to_minutes, parse_date, parse_time, today_in
from app.utils.validators import validate_slot

logger = get_logger(__name__)

INITIAL_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


@dataclass
class BookingResult:
    """Either the created booking or the conflict that blocked it"""

    booking: Optional[Booking] = None
    conflict: Optional[ConflictError] = None

    @property
    def ok(self) -> bool:
        return self.booking is not None


class BookingConflictGuard:
    def __init__(self, store: AvailabilityStore = None,
                 notification_service: NotificationService = None):
        self.store = store or AvailabilityStore()
        self._notification_service = notification_service

    @property
    def notification_service(self) -> NotificationService:
        if self._notification_service is None:
            self._notification_service = NotificationService()
        return self._notification_service

    def try_create_booking(self, cleaner_id: int, owner_id: int, property_id: int,
                           service: str, date, time: str, hours: float, price: float,
                           created_by_ai: bool = False,
                           status: BookingStatus = BookingStatus.CONFIRMED,
                           notes: str = None, notify: bool = True) -> BookingResult:
        """Re-check the slot and insert the booking atomically"""
        if status not in INITIAL_STATUSES:
            raise BookingValidationError(f"Bookings cannot be created as {status.value}")
        if not service:
            raise BookingValidationError("Service is required")

        valid, error = validate_slot(time, hours)
        if not valid:
            raise BookingValidationError(error)
        try:
            day = parse_date(date)
        except ValueError as e:
            raise BookingValidationError(str(e))

        start = parse_time(time)
        end = start + hours_to_minutes(hours)

        try:
            with get_db() as db:
                cleaner = lock_cleaner(db, cleaner_id)

                owner = db.query(Owner).filter(Owner.id == owner_id).first()
                if not owner:
                    raise NotFoundError(f"Owner {owner_id} not found")
                prop = db.query(Property).filter(Property.id == property_id).first()
                if not prop:
                    raise NotFoundError(f"Property {property_id} not found")
                if prop.owner_id != owner.id:
                    raise BookingValidationError("Property does not belong to this owner")

                # Read inside the locked transaction; rows written by a concurrent
                # calendar sync or booking are either fully visible or not at all
                intervals = self.store.load_intervals(db, cleaner_id, day)
                check = evaluate_slot(intervals, day, start, end, today_in(cleaner.timezone))
                if not check.available:
                    conflict = check.to_conflict()
                    logger.info(
                        f"Booking rejected for cleaner {cleaner_id} on {day} at {time}: {conflict.reason}"
                    )
                    return BookingResult(conflict=conflict)

                booking = Booking(
                    cleaner_id=cleaner_id,
                    owner_id=owner.id,
                    property_id=prop.id,
                    status=status,
                    service=service,
                    date=day,
                    time=format_minutes(start),
                    hours=float(hours),
                    price=float(price),
                    notes=notes,
                    created_by_ai=created_by_ai
                )
                db.add(booking)
                db.add(BookingEvent(
                    booking=booking,
                    from_status=None,
                    to_status=status,
                    actor='agent' if created_by_ai else 'owner'
                ))

                cleaner.total_bookings = (cleaner.total_bookings or 0) + 1
                owner.total_bookings = (owner.total_bookings or 0) + 1
                bump_schedule_version(cleaner)

                db.flush()
                db.refresh(booking)

        except DBAPIError as e:
            # Outcome unknown; the caller re-requests and the check runs again
            logger.error(f"Database error creating booking for cleaner {cleaner_id}: {str(e)}")
            raise TransientIOError("Booking could not be saved, please retry") from e

        self.store.invalidate(cleaner_id)
        logger.info(
            f"Created {status.value} booking {booking.id} for cleaner {cleaner_id} "
            f"on {day} at {time} ({'AI' if created_by_ai else 'owner'})"
        )

        if notify:
            self.notification_service.send_booking_created(booking.id)

        return BookingResult(booking=booking)
