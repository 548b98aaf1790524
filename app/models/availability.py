from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Date, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class AvailabilitySource(enum.Enum):
    GOOGLE_CALENDAR = "GOOGLE_CALENDAR"
    MANUAL = "MANUAL"
    BOOKING = "BOOKING"


class AvailabilityBlock(BaseModel):
    __tablename__ = 'availability_blocks'
    __table_args__ = (
        UniqueConstraint(
            'cleaner_id', 'date', 'start_time', 'end_time', 'source', 'generation',
            name='uq_availability_block_natural_key'
        ),
    )

    cleaner_id = Column(Integer, ForeignKey('cleaners.id'), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    # "HH:MM" in the cleaner's timezone; end_time may be "24:00"
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)

    is_available = Column(Boolean, default=False, nullable=False)
    source = Column(Enum(AvailabilitySource), nullable=False, index=True)
    title = Column(String(255))

    # Sync batch id for calendar rows; manual rows use the empty string
    generation = Column(String(32), default='', nullable=False)

    # Relationships
    cleaner = relationship("Cleaner", back_populates="availability_blocks")
