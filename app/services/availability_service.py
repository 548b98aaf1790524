from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError

from app.database import get_db
from app.models import AvailabilityBlock, Booking, Cleaner
from app.models.availability import AvailabilitySource
from app.models.booking import ACTIVE_STATUSES
from app.services.exceptions import (
    BookingValidationError, ConflictError, ConflictReason, NotFoundError
)
from app.utils.cache import AvailabilityCache, availability_cache
from app.utils.logger import get_logger
from app.utils.time_utils import (
    Interval, hours_to_minutes, parse_date, parse_time, format_minutes, today_in, MINUTES_PER_DAY
)
from config.config import Config

logger = get_logger(__name__)

BOOKING_SOURCE = AvailabilitySource.BOOKING.value
MAX_RANGE_DAYS = 62


@dataclass
class SlotCheck:
    """Outcome of checking one requested slot"""

    available: bool
    reason: Optional[str] = None
    conflicts: List[Interval] = field(default_factory=list)

    def to_conflict(self) -> Optional[ConflictError]:
        if self.available:
            return None
        return ConflictError(self.reason, conflict_message(self.reason), self.conflicts)


def conflict_message(reason: str) -> str:
    return {
        ConflictReason.PAST_DATE: 'Date is in the past',
        ConflictReason.ALREADY_BOOKED: 'Already booked',
        ConflictReason.BLOCKED: 'Cleaner is unavailable at that time'
    }.get(reason, 'Unavailable')


def evaluate_slot(intervals: List[Interval], day: date, start: int, end: int,
                  today: date) -> SlotCheck:
    """
    Decide whether [start, end) on day is free given the occupied intervals.

    Reasons are reported in a fixed order: a past date first, then an
    overlapping booking, then an overlapping calendar or manual block.
    """
    if day < today:
        return SlotCheck(False, ConflictReason.PAST_DATE)

    overlapping = [i for i in intervals if i.overlaps(start, end)]
    if not overlapping:
        return SlotCheck(True)

    if any(i.source == BOOKING_SOURCE for i in overlapping):
        return SlotCheck(False, ConflictReason.ALREADY_BOOKED, overlapping)
    return SlotCheck(False, ConflictReason.BLOCKED, overlapping)


def has_free_slot(intervals: List[Interval], hours: float = None) -> bool:
    """True if the default working day has room for one slot of the given length"""
    length = hours_to_minutes(hours or Config.DEFAULT_SLOT_HOURS)
    day_start = Config.WORKING_HOURS_START * 60
    day_end = Config.WORKING_HOURS_END * 60
    for start in range(day_start, day_end - length + 1, 60):
        if not any(i.overlaps(start, start + length) for i in intervals):
            return True
    return False


def lock_cleaner(db, cleaner_id: int) -> Cleaner:
    """Load the cleaner row with a write lock held until the transaction ends"""
    cleaner = db.query(Cleaner).filter(Cleaner.id == cleaner_id).with_for_update().first()
    if not cleaner:
        raise NotFoundError(f"Cleaner {cleaner_id} not found")
    return cleaner


def bump_schedule_version(cleaner: Cleaner):
    cleaner.schedule_version = (cleaner.schedule_version or 0) + 1


class AvailabilityStore:
    """Reads and writes the rows that make up a cleaner's unavailable time"""

    def __init__(self, cache: AvailabilityCache = None):
        self.cache = cache or availability_cache

    def load_range(self, db, cleaner_id: int, start: date, end: date) -> Dict[date, List[Interval]]:
        """Unavailable intervals per date from blocks and active bookings, within one session"""
        result = defaultdict(list)

        blocks = db.query(AvailabilityBlock).filter(
            AvailabilityBlock.cleaner_id == cleaner_id,
            AvailabilityBlock.date >= start,
            AvailabilityBlock.date <= end,
            AvailabilityBlock.is_available == False  # noqa: E712
        ).all()

        for block in blocks:
            try:
                block_start = parse_time(block.start_time)
                block_end = parse_time(block.end_time, allow_end_of_day=True)
            except ValueError:
                logger.warning(f"Skipping malformed availability block {block.id}")
                continue
            result[block.date].append(Interval(
                start=block_start,
                end=block_end,
                source=block.source.value,
                title=block.title
            ))

        bookings = db.query(Booking).filter(
            Booking.cleaner_id == cleaner_id,
            Booking.date >= start,
            Booking.date <= end,
            Booking.status.in_(ACTIVE_STATUSES)
        ).all()

        for booking in bookings:
            booking_start = parse_time(booking.time)
            booking_end = min(booking_start + hours_to_minutes(booking.hours), MINUTES_PER_DAY)
            result[booking.date].append(Interval(
                start=booking_start,
                end=booking_end,
                source=BOOKING_SOURCE,
                title=booking.service,
                booking_id=booking.id
            ))

        for intervals in result.values():
            intervals.sort(key=lambda i: (i.start, i.end))
        return dict(result)

    def load_intervals(self, db, cleaner_id: int, day: date) -> List[Interval]:
        return self.load_range(db, cleaner_id, day, day).get(day, [])

    def add_manual_block(self, cleaner_id: int, day, start_time: str, end_time: str,
                         title: str = None) -> AvailabilityBlock:
        """Mark a stretch of a day as unavailable by hand"""
        day = parse_date(day)
        try:
            start = parse_time(start_time)
            end = parse_time(end_time, allow_end_of_day=True)
        except ValueError as e:
            raise BookingValidationError(str(e))
        if end <= start:
            raise BookingValidationError("End time must be after start time")

        try:
            with get_db() as db:
                cleaner = lock_cleaner(db, cleaner_id)
                block = AvailabilityBlock(
                    cleaner_id=cleaner_id,
                    date=day,
                    start_time=format_minutes(start),
                    end_time=format_minutes(end),
                    is_available=False,
                    source=AvailabilitySource.MANUAL,
                    title=title,
                    generation=''
                )
                db.add(block)
                bump_schedule_version(cleaner)
                db.flush()
                db.refresh(block)
        except IntegrityError:
            raise BookingValidationError("That time is already blocked")

        self.invalidate(cleaner_id)
        logger.info(f"Added manual block {block.id} for cleaner {cleaner_id} on {day}")
        return block

    def remove_manual_block(self, cleaner_id: int, block_id: int) -> bool:
        """Delete a manual block; calendar rows are only replaced by sync"""
        with get_db() as db:
            cleaner = lock_cleaner(db, cleaner_id)
            block = db.query(AvailabilityBlock).filter(
                AvailabilityBlock.id == block_id,
                AvailabilityBlock.cleaner_id == cleaner_id,
                AvailabilityBlock.source == AvailabilitySource.MANUAL
            ).first()
            if not block:
                return False
            db.delete(block)
            bump_schedule_version(cleaner)

        self.invalidate(cleaner_id)
        logger.info(f"Removed manual block {block_id} for cleaner {cleaner_id}")
        return True

    def invalidate(self, cleaner_id: int):
        self.cache.invalidate(cleaner_id)


class NextAvailableDates:
    """
    Lazy, finite sequence of dates with room for a default slot.

    Each iteration starts over from from_date and re-reads availability, so
    the same object can be iterated again after the schedule changes.
    """

    def __init__(self, resolver: 'AvailabilityResolver', cleaner_id: int, from_date: date,
                 count: int, horizon_days: int, hours: float = None):
        self.resolver = resolver
        self.cleaner_id = cleaner_id
        self.from_date = from_date
        self.count = count
        self.horizon_days = horizon_days
        self.hours = hours

    def __iter__(self) -> Iterator[date]:
        found = 0
        today = self.resolver.cleaner_today(self.cleaner_id)
        for offset in range(self.horizon_days):
            if found >= self.count:
                return
            day = self.from_date + timedelta(days=offset)
            if day < today:
                continue
            intervals = self.resolver.get_unavailable_intervals(self.cleaner_id, day)
            if has_free_slot(intervals, self.hours):
                found += 1
                yield day


class AvailabilityResolver:
    """Answers availability queries; never writes"""

    def __init__(self, store: AvailabilityStore = None):
        self.store = store or AvailabilityStore()

    def get_unavailable_intervals(self, cleaner_id: int, day) -> List[Interval]:
        """Ordered unavailable intervals for one date"""
        day = parse_date(day)
        with get_db() as db:
            cleaner = db.query(Cleaner).filter(Cleaner.id == cleaner_id).first()
            if not cleaner:
                raise NotFoundError(f"Cleaner {cleaner_id} not found")
            # Version is read before the rows, so a cached entry is never older than its key
            version = cleaner.schedule_version or 0

            cached = self.store.cache.get(cleaner_id, version, day)
            if cached is not None:
                return [Interval.from_dict(item) for item in cached]

            intervals = self.store.load_intervals(db, cleaner_id, day)

        self.store.cache.set(cleaner_id, version, day, [i.to_dict() for i in intervals])
        return intervals

    def get_range(self, cleaner_id: int, start_date, end_date) -> Dict[date, List[Interval]]:
        start_date, end_date = parse_date(start_date), parse_date(end_date)
        if end_date < start_date:
            raise BookingValidationError("End date must not be before start date")
        if (end_date - start_date).days > MAX_RANGE_DAYS:
            raise BookingValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")

        with get_db() as db:
            if not db.query(Cleaner.id).filter(Cleaner.id == cleaner_id).first():
                raise NotFoundError(f"Cleaner {cleaner_id} not found")
            by_date = self.store.load_range(db, cleaner_id, start_date, end_date)

        days = (end_date - start_date).days + 1
        return {
            start_date + timedelta(days=i): by_date.get(start_date + timedelta(days=i), [])
            for i in range(days)
        }

    def cleaner_today(self, cleaner_id: int) -> date:
        with get_db() as db:
            cleaner = db.query(Cleaner).filter(Cleaner.id == cleaner_id).first()
            if not cleaner:
                raise NotFoundError(f"Cleaner {cleaner_id} not found")
            return today_in(cleaner.timezone)

    def check_slot(self, cleaner_id: int, day, start_time: str, end_time: str) -> SlotCheck:
        day = parse_date(day)
        start = parse_time(start_time)
        end = parse_time(end_time, allow_end_of_day=True)
        if end <= start:
            raise BookingValidationError("End time must be after start time")

        today = self.cleaner_today(cleaner_id)
        intervals = self.get_unavailable_intervals(cleaner_id, day)
        return evaluate_slot(intervals, day, start, end, today)

    def is_available(self, cleaner_id: int, day, start_time: str, end_time: str) -> bool:
        return self.check_slot(cleaner_id, day, start_time, end_time).available

    def find_next_available(self, cleaner_id: int, from_date=None, count: int = None,
                            horizon_days: int = None, hours: float = None) -> NextAvailableDates:
        from_date = parse_date(from_date) if from_date else self.cleaner_today(cleaner_id)
        return NextAvailableDates(
            self,
            cleaner_id,
            from_date,
            count if count is not None else Config.NEXT_AVAILABLE_COUNT,
            horizon_days if horizon_days is not None else Config.NEXT_AVAILABLE_HORIZON_DAYS,
            hours
        )

    def day_slots(self, cleaner_id: int, day) -> List[dict]:
        """Hourly working-hours grid for booking pickers"""
        intervals = self.get_unavailable_intervals(cleaner_id, day)
        slots = []
        for hour in range(Config.WORKING_HOURS_START, Config.WORKING_HOURS_END):
            start, end = hour * 60, (hour + 1) * 60
            conflict = next((i for i in intervals if i.overlaps(start, end)), None)
            slot = {'time': format_minutes(start), 'available': conflict is None}
            if conflict:
                slot['reason'] = 'Already booked' if conflict.source == BOOKING_SOURCE else 'Unavailable'
            slots.append(slot)
        return slots
