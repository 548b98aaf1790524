from .logger import setup_logger, get_logger
from .security import generate_token, verify_token
from .validators import validate_phone, validate_time, validate_slot, validate_booking_request
from .time_utils import Interval, parse_time, format_minutes, parse_date, intervals_overlap

__all__ = [
    'setup_logger', 'get_logger',
    'generate_token', 'verify_token',
    'validate_phone', 'validate_time', 'validate_slot', 'validate_booking_request',
    'Interval', 'parse_time', 'format_minutes', 'parse_date', 'intervals_overlap'
]
