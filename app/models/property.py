from sqlalchemy import Column, String, Integer, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from .base import BaseModel


class Property(BaseModel):
    __tablename__ = 'properties'

    owner_id = Column(Integer, ForeignKey('owners.id'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=False)
    bedrooms = Column(Integer, default=2)
    bathrooms = Column(Integer, default=1)
    notes = Column(String(1000))

    # Created from a chat address with default room counts; the cleaner should verify
    is_placeholder = Column(Boolean, default=False, nullable=False)

    # Relationships
    owner = relationship("Owner", back_populates="properties")
    bookings = relationship("Booking", back_populates="property", lazy='dynamic')
