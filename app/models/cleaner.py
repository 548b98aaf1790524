from sqlalchemy import Column, String, Float, Boolean, Enum, JSON, Integer, DateTime
from sqlalchemy.orm import relationship
import enum
from config.config import Config
from .base import BaseModel


class CleanerStatus(enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class SyncStatus(enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class Cleaner(BaseModel):
    __tablename__ = 'cleaners'

    # Identity (owned by the profile service, mirrored here)
    user_id = Column(Integer, unique=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20))
    status = Column(Enum(CleanerStatus), default=CleanerStatus.ACTIVE, nullable=False)

    # Pricing and coverage
    hourly_rate = Column(Float, nullable=False, default=18.0)
    service_areas = Column(JSON, default=list)
    timezone = Column(String(64), default=Config.DEFAULT_TIMEZONE, nullable=False)

    # Running counters
    total_bookings = Column(Integer, default=0, nullable=False)
    completed_bookings = Column(Integer, default=0, nullable=False)

    # Bumped on every write to this cleaner's schedule; part of the cache key
    schedule_version = Column(Integer, default=0, nullable=False)

    # Google Calendar connection
    calendar_connected = Column(Boolean, default=False, nullable=False)
    calendar_synced_at = Column(DateTime)
    sync_status = Column(Enum(SyncStatus), default=SyncStatus.IDLE, nullable=False)
    sync_error = Column(String(500))
    calendar_generation = Column(String(32))
    google_access_token = Column(String(2048))
    google_refresh_token = Column(String(512))
    google_token_expires_at = Column(DateTime)

    # Relationships
    availability_blocks = relationship(
        "AvailabilityBlock", back_populates="cleaner", lazy='dynamic', cascade="all, delete-orphan"
    )
    bookings = relationship("Booking", back_populates="cleaner", lazy='dynamic')
