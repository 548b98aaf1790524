import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///villacare.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Seconds a writer waits for the SQLite write lock before giving up
    SQLITE_BUSY_TIMEOUT = int(os.environ.get('SQLITE_BUSY_TIMEOUT', '30'))

    # Cache
    REDIS_URL = os.environ.get('REDIS_URL')
    AVAILABILITY_CACHE_TTL_SECONDS = int(os.environ.get('AVAILABILITY_CACHE_TTL_SECONDS', '300'))

    # API Keys
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_WHATSAPP_NUMBER = os.environ.get('TWILIO_WHATSAPP_NUMBER')  # e.g. 'whatsapp:+14155238886'

    # Application Settings
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5001')
    GOOGLE_REDIRECT_URI = os.environ.get('GOOGLE_REDIRECT_URI') or f"{APP_URL}/api/calendar/google/callback"
    # Where the OAuth callback sends the cleaner's browser afterwards
    CALENDAR_SETTINGS_URL = os.environ.get('CALENDAR_SETTINGS_URL') or f"{APP_URL}/dashboard/availability"
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'Europe/Madrid')

    # Calendar Sync
    CALENDAR_SYNC_DAYS = int(os.environ.get('CALENDAR_SYNC_DAYS', '60'))
    AGENT_CONTEXT_DAYS = int(os.environ.get('AGENT_CONTEXT_DAYS', '14'))
    CALENDAR_RETRY_ATTEMPTS = int(os.environ.get('CALENDAR_RETRY_ATTEMPTS', '3'))
    CALENDAR_REQUEST_TIMEOUT = int(os.environ.get('CALENDAR_REQUEST_TIMEOUT', '15'))
    CALENDAR_RETRY_BACKOFF = float(os.environ.get('CALENDAR_RETRY_BACKOFF', '1.0'))
    TOKEN_REFRESH_BUFFER_MINUTES = 5
    # In-process periodic sync; the cron script covers deployments without it
    SYNC_SCHEDULER_ENABLED = os.environ.get('SYNC_SCHEDULER_ENABLED', 'false').lower() == 'true'
    CALENDAR_SYNC_INTERVAL_MINUTES = int(os.environ.get('CALENDAR_SYNC_INTERVAL_MINUTES', '30'))

    # Scheduling
    WORKING_HOURS_START = int(os.environ.get('WORKING_HOURS_START', '8'))
    WORKING_HOURS_END = int(os.environ.get('WORKING_HOURS_END', '20'))
    DEFAULT_SLOT_HOURS = int(os.environ.get('DEFAULT_SLOT_HOURS', '3'))
    NEXT_AVAILABLE_HORIZON_DAYS = 14
    NEXT_AVAILABLE_COUNT = 5

    # Hours per service type
    SERVICE_HOURS = {
        'Regular clean': 3,
        'Deep clean': 5,
        'Arrival prep': 4
    }

    # Placeholder property defaults for agent-created bookings
    PLACEHOLDER_BEDROOMS = 2
    PLACEHOLDER_BATHROOMS = 1

    # Token Settings
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE', 'logs/villacare.log')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    DEBUG = True
    TESTING = True
    DATABASE_URL = 'sqlite:///test_villacare.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    REDIS_URL = None
    SYNC_SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    TESTING = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
