from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.config import Config
from app.services.exceptions import CalendarAuthError, CalendarProviderError, TransientIOError
from app.utils.logger import get_logger

logger = get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

_retry_transient = retry(
    retry=retry_if_exception_type(TransientIOError),
    stop=stop_after_attempt(Config.CALENDAR_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=Config.CALENDAR_RETRY_BACKOFF, max=10),
    reraise=True
)


class GoogleCalendarClient:
    """Wrapper for the Google Calendar FreeBusy and OAuth token endpoints"""

    def __init__(self, session: requests.Session = None):
        self.client_id = Config.GOOGLE_CLIENT_ID
        self.client_secret = Config.GOOGLE_CLIENT_SECRET
        self.redirect_uri = Config.GOOGLE_REDIRECT_URI
        self.timeout = Config.CALENDAR_REQUEST_TIMEOUT
        self.session = session or requests.Session()

        if not (self.client_id and self.client_secret):
            logger.warning("Google OAuth credentials not configured")

    def _post(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.post(url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.warning(f"Google API network error: {str(e)}")
            raise TransientIOError(f"Google API unreachable: {str(e)}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Google API request error: {str(e)}")
            raise CalendarProviderError(f"Google API request failed: {str(e)}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning(f"Google API returned {response.status_code}, will retry")
            raise TransientIOError(f"Google API returned {response.status_code}")
        return response

    def _json(self, response: requests.Response) -> Dict:
        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Google API returned a body that is not JSON: {str(e)}")
            raise TransientIOError("Malformed response from Google API") from e
        if not isinstance(data, dict):
            raise TransientIOError("Malformed response from Google API")
        return data

    def authorization_url(self, state: str) -> str:
        """Consent screen URL; offline access so Google issues a refresh token"""
        params = {
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': CALENDAR_SCOPE,
            'access_type': 'offline',
            'prompt': 'consent',
            'state': state
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    @_retry_transient
    def exchange_code(self, code: str) -> Dict:
        """Exchange an OAuth authorization code for access and refresh tokens"""
        if not code:
            raise CalendarAuthError("No authorization code supplied")

        response = self._post(
            GOOGLE_TOKEN_URL,
            data={
                'code': code,
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'redirect_uri': self.redirect_uri,
                'grant_type': 'authorization_code'
            }
        )

        if response.status_code != 200:
            logger.error(f"Authorization code exchange failed: {response.text}")
            raise CalendarAuthError(f"Authorization code rejected ({response.status_code})")

        tokens = self._json(response)
        if not tokens.get('access_token'):
            raise CalendarAuthError("No access token in token response")
        return tokens

    @_retry_transient
    def refresh_access_token(self, refresh_token: str) -> Tuple[str, datetime]:
        """Exchange a refresh token for a new access token and its expiry"""
        if not refresh_token:
            raise CalendarAuthError("No refresh token stored")

        response = self._post(
            GOOGLE_TOKEN_URL,
            data={
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'refresh_token': refresh_token,
                'grant_type': 'refresh_token'
            }
        )

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.text}")
            raise CalendarAuthError(f"Token refresh rejected ({response.status_code})")

        tokens = self._json(response)
        access_token = tokens.get('access_token')
        if not access_token:
            raise CalendarAuthError("No access token in refresh response")

        expires_in = int(tokens.get('expires_in', 3600))
        return access_token, datetime.utcnow() + timedelta(seconds=expires_in)

    @_retry_transient
    def fetch_busy_times(self, access_token: str, time_min: datetime, time_max: datetime,
                         calendar_id: str = 'primary') -> List[Dict[str, str]]:
        """Return the raw busy intervals [{'start': ..., 'end': ...}] for a window"""
        response = self._post(
            f"{GOOGLE_CALENDAR_API}/freeBusy",
            headers={'Authorization': f"Bearer {access_token}"},
            json={
                'timeMin': _rfc3339(time_min),
                'timeMax': _rfc3339(time_max),
                'items': [{'id': calendar_id}]
            }
        )

        if response.status_code in (401, 403):
            raise CalendarAuthError(f"Calendar access denied ({response.status_code})")
        if response.status_code != 200:
            # 400/404 and friends fail the same way on every attempt
            logger.error(f"Google Calendar FreeBusy error: {response.text}")
            raise CalendarProviderError(f"Failed to fetch busy times: {response.status_code}")

        data = self._json(response)
        calendar = (data.get('calendars') or {}).get(calendar_id) or {}
        if calendar.get('errors'):
            logger.warning(f"FreeBusy reported calendar errors: {calendar['errors']}")
        return calendar.get('busy') or []


def _rfc3339(value: datetime) -> str:
    # Naive datetimes are UTC throughout the app
    if value.tzinfo is None:
        return value.replace(microsecond=0).isoformat() + 'Z'
    return value.replace(microsecond=0).isoformat()


def parse_google_datetime(value: str) -> Optional[datetime]:
    """Parse an RFC3339 timestamp from the API into an aware datetime"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed
