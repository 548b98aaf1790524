from datetime import timedelta
from urllib.parse import urlencode
from flask import Blueprint, request, jsonify, redirect
from app.services.calendar_sync_service import CalendarSyncService
from app.services.exceptions import CalendarAuthError, NotFoundError, SchedulingError
from app.middleware.auth import require_auth, require_cleaner, can_manage_cleaner
from app.utils.security import generate_token, verify_token
from app.utils.logger import get_logger
from config.config import Config

bp = Blueprint('calendar', __name__)
logger = get_logger(__name__)
calendar_service = CalendarSyncService()

OAUTH_STATE_PURPOSE = 'calendar_connect'
OAUTH_STATE_MINUTES = 10


def _target_cleaner(current_user):
    data = request.get_json(silent=True) or {}
    cleaner_id = data.get('cleaner_id') or request.args.get('cleaner_id', type=int) or current_user.get('cleaner_id')
    try:
        cleaner_id = int(cleaner_id) if cleaner_id else None
    except (TypeError, ValueError):
        return None
    if not cleaner_id or not can_manage_cleaner(current_user, cleaner_id):
        return None
    return cleaner_id


def _settings_redirect(**params):
    return redirect(f"{Config.CALENDAR_SETTINGS_URL}?{urlencode(params)}")


@bp.route('/connect', methods=['GET'])
@require_auth
@require_cleaner
def connect_calendar(current_user):
    """Google consent screen URL for the cleaner to open"""
    try:
        cleaner_id = _target_cleaner(current_user)
        if not cleaner_id:
            return jsonify({'error': 'Unauthorized'}), 403

        if not Config.GOOGLE_CLIENT_ID:
            return jsonify({'error': 'Google Calendar is not configured'}), 503

        # Signed and short-lived, so the callback knows which cleaner it is for
        state = generate_token(
            {'cleaner_id': cleaner_id, 'purpose': OAUTH_STATE_PURPOSE},
            expires_delta=timedelta(minutes=OAUTH_STATE_MINUTES)
        )

        return jsonify({'url': calendar_service.client.authorization_url(state)}), 200

    except Exception as e:
        logger.error(f"Error starting calendar connect: {str(e)}")
        return jsonify({'error': 'Failed to start calendar connection'}), 500


@bp.route('/google/callback', methods=['GET'])
def google_callback():
    """OAuth redirect target: store tokens and run the first sync"""
    if request.args.get('error'):
        logger.warning(f"Google OAuth error: {request.args['error']}")
        return _settings_redirect(error=request.args['error'])

    code = request.args.get('code')
    if not code or not request.args.get('state'):
        return _settings_redirect(error='missing_params')
    state = verify_token(request.args['state'])
    if not state or state.get('purpose') != OAUTH_STATE_PURPOSE or not state.get('cleaner_id'):
        return _settings_redirect(error='invalid_state')

    cleaner_id = int(state['cleaner_id'])
    try:
        result = calendar_service.connect_with_code(cleaner_id, code)
    except NotFoundError:
        return _settings_redirect(error='cleaner_not_found')
    except CalendarAuthError as e:
        logger.warning(f"Calendar token exchange failed for cleaner {cleaner_id}: {str(e)}")
        return _settings_redirect(error='token_exchange_failed')
    except SchedulingError as e:
        logger.error(f"Calendar connect failed for cleaner {cleaner_id}: {str(e)}")
        return _settings_redirect(error='connect_failed')
    except Exception as e:
        logger.error(f"Error in calendar callback for cleaner {cleaner_id}: {str(e)}")
        return _settings_redirect(error='callback_failed')

    # Connected even when the first sync failed; the status endpoint reports it
    return _settings_redirect(success='connected', synced=result.synced_count)


@bp.route('/sync', methods=['POST'])
@require_auth
@require_cleaner
def sync_calendar(current_user):
    """Pull busy times from Google Calendar now"""
    try:
        cleaner_id = _target_cleaner(current_user)
        if not cleaner_id:
            return jsonify({'error': 'Unauthorized'}), 403

        result = calendar_service.sync(cleaner_id)
        if not result.ok:
            return jsonify(result.to_dict()), 400

        return jsonify(result.to_dict()), 200

    except Exception as e:
        logger.error(f"Error syncing calendar: {str(e)}")
        return jsonify({'error': 'Failed to sync calendar'}), 500


@bp.route('/status', methods=['GET'])
@require_auth
@require_cleaner
def calendar_status(current_user):
    """Connection and last sync state"""
    try:
        cleaner_id = _target_cleaner(current_user)
        if not cleaner_id:
            return jsonify({'error': 'Unauthorized'}), 403

        status = calendar_service.connection_status(cleaner_id)
        if status is None:
            return jsonify({'error': 'Cleaner not found'}), 404

        return jsonify(status), 200

    except Exception as e:
        logger.error(f"Error getting calendar status: {str(e)}")
        return jsonify({'error': 'Failed to get calendar status'}), 500


@bp.route('/disconnect', methods=['POST'])
@require_auth
@require_cleaner
def disconnect_calendar(current_user):
    """Disconnect Google Calendar and drop synced blocks"""
    try:
        cleaner_id = _target_cleaner(current_user)
        if not cleaner_id:
            return jsonify({'error': 'Unauthorized'}), 403

        calendar_service.disconnect(cleaner_id)
        return jsonify({'message': 'Google Calendar disconnected'}), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error disconnecting calendar: {str(e)}")
        return jsonify({'error': 'Failed to disconnect calendar'}), 500
