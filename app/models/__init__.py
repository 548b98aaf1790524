from .cleaner import Cleaner
from .owner import Owner
from .property import Property
from .availability import AvailabilityBlock
from .booking import Booking, BookingEvent
from .handoff import AgentHandoff

__all__ = [
    'Cleaner', 'Owner', 'Property', 'AvailabilityBlock',
    'Booking', 'BookingEvent', 'AgentHandoff'
]
