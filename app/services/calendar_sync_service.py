"""
Google Calendar → AvailabilityBlock synchronization.

A sync fetches FreeBusy data for a forward window, converts each busy
interval into per-day blocks in the cleaner's timezone, and swaps the
cleaner's GOOGLE_CALENDAR blocks for the new set. New rows are written
under a fresh generation id and the rows of every other generation are
deleted in the same transaction, so readers never see an empty calendar
and no stale block survives a successful sync.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Set, Tuple

from app.database import get_db
from app.integrations.google_calendar_client import GoogleCalendarClient, parse_google_datetime
from app.models import AvailabilityBlock, Cleaner
from app.models.availability import AvailabilitySource
from app.models.cleaner import SyncStatus
from app.services.availability_service import AvailabilityStore, bump_schedule_version, lock_cleaner
from app.services.exceptions import (
    CalendarAuthError, CalendarProviderError, NotFoundError, TransientIOError
)
from app.utils.logger import get_logger
from app.utils.time_utils import MINUTES_PER_DAY, format_minutes, get_zone
from config.config import Config

logger = get_logger(__name__)

CALENDAR_BLOCK_TITLE = 'Busy (Google Calendar)'

DayBlock = Tuple[date, int, int]


@dataclass
class SyncResult:
    synced_count: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data = {'synced': self.synced_count}
        if self.error:
            data['error'] = self.error
        return data


def _minute_of(value: datetime, round_up: bool = False) -> int:
    minutes = value.hour * 60 + value.minute
    if round_up and (value.second or value.microsecond):
        minutes += 1
    return minutes


def split_busy_interval(start: datetime, end: datetime, zone) -> List[DayBlock]:
    """Split an aware busy interval into (date, start_min, end_min) pieces per local day"""
    local_start = start.astimezone(zone)
    local_end = end.astimezone(zone)
    if local_end <= local_start:
        raise ValueError(f"Busy interval ends before it starts: {start} - {end}")

    pieces = []
    cursor = local_start
    while cursor < local_end:
        day = cursor.date()
        next_midnight = datetime.combine(day + timedelta(days=1), time(0), tzinfo=zone)
        piece_end = min(local_end, next_midnight)

        start_min = _minute_of(cursor)
        end_min = MINUTES_PER_DAY if piece_end >= next_midnight else _minute_of(piece_end, round_up=True)
        if end_min > start_min:
            pieces.append((day, start_min, end_min))
        cursor = piece_end
    return pieces


def normalize_busy_times(busy: List[Dict], zone) -> Set[DayBlock]:
    """Convert raw FreeBusy entries to a de-duplicated set of day blocks, skipping bad ones"""
    blocks = set()
    for entry in busy:
        start = parse_google_datetime((entry or {}).get('start'))
        end = parse_google_datetime((entry or {}).get('end'))
        if not start or not end:
            logger.warning(f"Skipping malformed busy interval: {entry!r}")
            continue
        try:
            blocks.update(split_busy_interval(start, end, zone))
        except ValueError as e:
            logger.warning(f"Skipping malformed busy interval: {str(e)}")
    return blocks


class CalendarSyncService:
    """Pulls busy time from a cleaner's Google Calendar into availability blocks"""

    def __init__(self, client: GoogleCalendarClient = None, store: AvailabilityStore = None):
        self._client = client
        self.store = store or AvailabilityStore()

    @property
    def client(self) -> GoogleCalendarClient:
        if self._client is None:
            self._client = GoogleCalendarClient()
        return self._client

    def connect(self, cleaner_id: int, access_token: str, refresh_token: str = None,
                expires_in: int = 3600) -> bool:
        """Store tokens from the OAuth callback"""
        with get_db() as db:
            cleaner = db.query(Cleaner).filter_by(id=cleaner_id).first()
            if not cleaner:
                return False
            cleaner.google_access_token = access_token
            if refresh_token:
                cleaner.google_refresh_token = refresh_token
            cleaner.google_token_expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
            cleaner.calendar_connected = True
            cleaner.sync_status = SyncStatus.IDLE
            cleaner.sync_error = None
        logger.info(f"Google Calendar connected for cleaner {cleaner_id}")
        return True

    def connect_with_code(self, cleaner_id: int, code: str) -> SyncResult:
        """Finish the OAuth flow: exchange the code, store tokens, run the first sync"""
        with get_db() as db:
            if not db.query(Cleaner.id).filter(Cleaner.id == cleaner_id).first():
                raise NotFoundError(f"Cleaner {cleaner_id} not found")

        tokens = self.client.exchange_code(code)
        self.connect(
            cleaner_id,
            tokens['access_token'],
            tokens.get('refresh_token'),
            expires_in=int(tokens.get('expires_in', 3600))
        )
        return self.sync(cleaner_id)

    def disconnect(self, cleaner_id: int) -> bool:
        """Forget tokens and drop every calendar-sourced block"""
        with get_db() as db:
            cleaner = lock_cleaner(db, cleaner_id)
            cleaner.google_access_token = None
            cleaner.google_refresh_token = None
            cleaner.google_token_expires_at = None
            cleaner.calendar_connected = False
            cleaner.calendar_generation = None
            cleaner.sync_status = SyncStatus.IDLE
            db.query(AvailabilityBlock).filter(
                AvailabilityBlock.cleaner_id == cleaner_id,
                AvailabilityBlock.source == AvailabilitySource.GOOGLE_CALENDAR
            ).delete(synchronize_session=False)
            bump_schedule_version(cleaner)

        self.store.invalidate(cleaner_id)
        logger.info(f"Google Calendar disconnected for cleaner {cleaner_id}")
        return True

    def connection_status(self, cleaner_id: int) -> Optional[dict]:
        with get_db() as db:
            cleaner = db.query(Cleaner).filter_by(id=cleaner_id).first()
            if not cleaner:
                return None
            event_count = db.query(AvailabilityBlock).filter(
                AvailabilityBlock.cleaner_id == cleaner_id,
                AvailabilityBlock.source == AvailabilitySource.GOOGLE_CALENDAR
            ).count()
            return {
                'connected': cleaner.calendar_connected,
                'last_synced': cleaner.calendar_synced_at.isoformat() if cleaner.calendar_synced_at else None,
                'sync_status': cleaner.sync_status.value,
                'sync_error': cleaner.sync_error,
                'event_count': event_count
            }

    def sync(self, cleaner_id: int, days: int = None) -> SyncResult:
        """Replace the cleaner's calendar blocks with fresh busy data. Failures are recorded, never raised."""
        days = days or Config.CALENDAR_SYNC_DAYS
        full_sync = days >= Config.CALENDAR_SYNC_DAYS

        with get_db() as db:
            cleaner = db.query(Cleaner).filter_by(id=cleaner_id).first()
            if not cleaner:
                return SyncResult(0, 'Cleaner not found')
            if not cleaner.calendar_connected:
                return SyncResult(0, 'Google Calendar not connected')
            cleaner.sync_status = SyncStatus.SYNCING
            zone = get_zone(cleaner.timezone)

        window_start = datetime.combine(datetime.now(zone).date(), time(0), tzinfo=zone)
        window_end = window_start + timedelta(days=days)

        # No transaction is held across the network calls
        try:
            busy = self._fetch_with_refresh(cleaner_id, window_start, window_end)
            blocks = normalize_busy_times(busy, zone)
            synced = self._replace_blocks(
                cleaner_id, blocks,
                window=None if full_sync else (window_start.date(), window_end.date())
            )
        except CalendarAuthError as e:
            logger.warning(f"Calendar auth failed for cleaner {cleaner_id}: {str(e)}")
            self._mark_failed(cleaner_id, str(e), disconnect=True)
            return SyncResult(0, 'Google tokens expired or invalid')
        except TransientIOError as e:
            logger.error(f"Calendar sync failed for cleaner {cleaner_id}: {str(e)}")
            self._mark_failed(cleaner_id, str(e))
            return SyncResult(0, 'Could not reach Google Calendar')
        except CalendarProviderError as e:
            logger.error(f"Google Calendar rejected sync for cleaner {cleaner_id}: {str(e)}")
            self._mark_failed(cleaner_id, str(e))
            return SyncResult(0, 'Google Calendar rejected the sync request')
        except Exception as e:
            logger.error(f"Unexpected calendar sync error for cleaner {cleaner_id}: {str(e)}")
            self._mark_failed(cleaner_id, str(e) or e.__class__.__name__)
            return SyncResult(0, 'Calendar sync failed')

        if synced is None:
            return SyncResult(0, 'Google Calendar disconnected during sync')

        logger.info(f"Synced {synced} calendar blocks for cleaner {cleaner_id} ({days} days)")
        return SyncResult(synced)

    def sync_all_connected(self, days: int = None) -> Dict[int, SyncResult]:
        with get_db() as db:
            cleaner_ids = [
                row.id for row in db.query(Cleaner.id).filter(Cleaner.calendar_connected == True).all()  # noqa: E712
            ]

        results = {}
        for cleaner_id in cleaner_ids:
            # One cleaner's failure must not stop the rest of the run
            try:
                results[cleaner_id] = self.sync(cleaner_id, days=days)
            except Exception as e:
                logger.error(f"Calendar sync crashed for cleaner {cleaner_id}: {str(e)}")
                results[cleaner_id] = SyncResult(0, 'Calendar sync failed')
        failed = sum(1 for r in results.values() if not r.ok)
        logger.info(f"Calendar sync run finished: {len(results)} cleaners, {failed} failed")
        return results

    def _replace_blocks(self, cleaner_id: int, blocks: Set[DayBlock],
                        window: Optional[Tuple[date, date]]) -> Optional[int]:
        """Write the new generation and delete older ones in one transaction"""
        generation = uuid.uuid4().hex

        with get_db() as db:
            cleaner = lock_cleaner(db, cleaner_id)
            if not cleaner.calendar_connected:
                return None

            for day, start, end in sorted(blocks):
                db.add(AvailabilityBlock(
                    cleaner_id=cleaner_id,
                    date=day,
                    start_time=format_minutes(start),
                    end_time=format_minutes(end),
                    is_available=False,
                    source=AvailabilitySource.GOOGLE_CALENDAR,
                    title=CALENDAR_BLOCK_TITLE,
                    generation=generation
                ))
            db.flush()

            stale = db.query(AvailabilityBlock).filter(
                AvailabilityBlock.cleaner_id == cleaner_id,
                AvailabilityBlock.source == AvailabilitySource.GOOGLE_CALENDAR,
                AvailabilityBlock.generation != generation
            )
            if window:
                # Partial syncs only own the days they fetched
                stale = stale.filter(
                    AvailabilityBlock.date >= window[0],
                    AvailabilityBlock.date < window[1]
                )
            stale.delete(synchronize_session=False)

            cleaner.calendar_generation = generation
            cleaner.calendar_synced_at = datetime.utcnow()
            cleaner.sync_status = SyncStatus.SYNCED
            cleaner.sync_error = None
            bump_schedule_version(cleaner)

        self.store.invalidate(cleaner_id)
        return len(blocks)

    def _fetch_with_refresh(self, cleaner_id: int, time_min: datetime, time_max: datetime) -> List[Dict]:
        access_token = self._valid_access_token(cleaner_id)
        try:
            return self.client.fetch_busy_times(access_token, time_min, time_max)
        except CalendarAuthError:
            # Rejected before its recorded expiry; refresh once and retry once
            logger.info(f"Access token rejected for cleaner {cleaner_id}, refreshing")
            access_token = self._refresh(cleaner_id)
            return self.client.fetch_busy_times(access_token, time_min, time_max)

    def _valid_access_token(self, cleaner_id: int) -> str:
        with get_db() as db:
            cleaner = db.query(Cleaner).filter_by(id=cleaner_id).first()
            access_token = cleaner.google_access_token
            expires_at = cleaner.google_token_expires_at

        buffer = timedelta(minutes=Config.TOKEN_REFRESH_BUFFER_MINUTES)
        if not access_token or (expires_at and expires_at <= datetime.utcnow() + buffer):
            return self._refresh(cleaner_id)
        return access_token

    def _refresh(self, cleaner_id: int) -> str:
        with get_db() as db:
            refresh_token = db.query(Cleaner).filter_by(id=cleaner_id).first().google_refresh_token

        access_token, expires_at = self.client.refresh_access_token(refresh_token)

        with get_db() as db:
            cleaner = db.query(Cleaner).filter_by(id=cleaner_id).first()
            cleaner.google_access_token = access_token
            cleaner.google_token_expires_at = expires_at
        logger.info(f"Refreshed Google access token for cleaner {cleaner_id}")
        return access_token

    def _mark_failed(self, cleaner_id: int, error: str, disconnect: bool = False):
        # Existing blocks and calendar_synced_at stay as they were
        with get_db() as db:
            cleaner = db.query(Cleaner).filter_by(id=cleaner_id).first()
            if not cleaner:
                return
            cleaner.sync_status = SyncStatus.ERROR
            cleaner.sync_error = error[:500]
            if disconnect:
                cleaner.calendar_connected = False
