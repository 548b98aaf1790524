from sqlalchemy import Column, String, Integer, Float, Boolean, ForeignKey, Date, DateTime, Enum
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class BookingStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that hold the cleaner's time
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(BaseModel):
    __tablename__ = 'bookings'

    cleaner_id = Column(Integer, ForeignKey('cleaners.id'), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey('owners.id'), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey('properties.id'), nullable=False)

    # Status
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True)

    # Service
    service = Column(String(100), nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(String(5), nullable=False)  # "HH:MM" in the cleaner's timezone
    hours = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    notes = Column(String(1000))
    created_by_ai = Column(Boolean, default=False, nullable=False)

    # Timing
    confirmed_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(50))

    # Relationships
    cleaner = relationship("Cleaner", back_populates="bookings")
    owner = relationship("Owner", back_populates="bookings")
    property = relationship("Property", back_populates="bookings")
    events = relationship("BookingEvent", back_populates="booking", lazy='dynamic',
                          order_by="BookingEvent.id")

    def to_dict(self):
        return {
            'id': self.id,
            'cleaner_id': self.cleaner_id,
            'owner_id': self.owner_id,
            'property_id': self.property_id,
            'status': self.status.value,
            'service': self.service,
            'date': self.date.isoformat(),
            'time': self.time,
            'hours': self.hours,
            'price': self.price,
            'notes': self.notes,
            'created_by_ai': self.created_by_ai,
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancelled_by': self.cancelled_by
        }


class BookingEvent(BaseModel):
    __tablename__ = 'booking_events'

    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    from_status = Column(Enum(BookingStatus))
    to_status = Column(Enum(BookingStatus), nullable=False)
    actor = Column(String(50))

    booking = relationship("Booking", back_populates="events")
