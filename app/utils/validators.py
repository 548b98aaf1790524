import re
from typing import Optional, Tuple
from app.utils.time_utils import parse_time, parse_date, hours_to_minutes, MINUTES_PER_DAY

BOOKING_REQUIRED_FIELDS = [
    'cleaner_id', 'owner_id', 'property_id', 'service', 'date', 'time', 'hours', 'price'
]


def validate_phone(phone: str) -> Tuple[bool, Optional[str]]:
    """Validate an international phone number, returning it in E.164 form"""
    if not phone:
        return False, "Phone number is required"
    digits = re.sub(r'[^\d]', '', phone)
    if 8 <= len(digits) <= 15:
        return True, f"+{digits}"
    return False, "Invalid phone number. Please include the country code"


def validate_time(value: str) -> Tuple[bool, Optional[str]]:
    """Validate an HH:MM start time"""
    try:
        parse_time(value)
    except ValueError as e:
        return False, str(e)
    return True, None


def validate_slot(time: str, hours) -> Tuple[bool, Optional[str]]:
    """Validate that a slot has a positive duration and ends by midnight"""
    valid, error = validate_time(time)
    if not valid:
        return False, error
    try:
        minutes = hours_to_minutes(hours)
    except (TypeError, ValueError):
        return False, "Hours must be a number"
    if minutes <= 0:
        return False, "Hours must be greater than zero"
    if parse_time(time) + minutes > MINUTES_PER_DAY:
        return False, "Booking must end by midnight"
    return True, None


def validate_booking_request(data: dict) -> Tuple[bool, Optional[str]]:
    """Validate a booking creation payload"""
    missing = [field for field in BOOKING_REQUIRED_FIELDS if data.get(field) in (None, '')]
    if missing:
        return False, f"Missing required fields: {', '.join(missing)}"

    try:
        parse_date(data['date'])
    except ValueError as e:
        return False, str(e)

    valid, error = validate_slot(data['time'], data['hours'])
    if not valid:
        return False, error

    try:
        if float(data['price']) < 0:
            return False, "Price cannot be negative"
    except (TypeError, ValueError):
        return False, "Price must be a number"

    return True, None
