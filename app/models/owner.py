from sqlalchemy import Column, String, Integer
from sqlalchemy.orm import relationship
from .base import BaseModel


class Owner(BaseModel):
    __tablename__ = 'owners'

    user_id = Column(Integer, unique=True, index=True)
    name = Column(String(255))
    phone = Column(String(20))
    total_bookings = Column(Integer, default=0, nullable=False)

    # Relationships
    properties = relationship("Property", back_populates="owner", lazy='dynamic')
    bookings = relationship("Booking", back_populates="owner", lazy='dynamic')
