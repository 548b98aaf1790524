from .google_calendar_client import GoogleCalendarClient
from .twilio_client import TwilioClient

__all__ = ['GoogleCalendarClient', 'TwilioClient']
