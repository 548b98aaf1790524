from datetime import timedelta
from flask import Blueprint, request, jsonify
from app.models.booking import BookingStatus
from app.services.availability_service import AvailabilityResolver, AvailabilityStore
from app.services.booking_guard import BookingConflictGuard
from app.services.booking_service import BookingLifecycle, ACTIONS
from app.services.exceptions import (
    BookingValidationError, InvalidTransitionError, NotFoundError, TransientIOError
)
from app.middleware.auth import require_auth, require_role
from app.utils.validators import validate_booking_request
from app.utils.time_utils import parse_date
from app.utils.logger import get_logger
from config.config import Config

bp = Blueprint('bookings', __name__)
logger = get_logger(__name__)
store = AvailabilityStore()
resolver = AvailabilityResolver(store)
guard = BookingConflictGuard(store)
lifecycle = BookingLifecycle(store)


def _is_party(current_user: dict, booking) -> bool:
    role = current_user.get('role')
    if role in ('admin', 'agent'):
        return True
    if role == 'cleaner':
        return current_user.get('cleaner_id') == booking.cleaner_id
    if role == 'owner':
        return current_user.get('owner_id') == booking.owner_id
    return False


@bp.route('', methods=['POST'])
@require_auth
@require_role(['owner', 'admin'])
def create_booking(current_user):
    """Request a booking; it waits for the cleaner to accept"""
    try:
        data = request.get_json() or {}

        if current_user['role'] == 'owner':
            data['owner_id'] = current_user.get('owner_id')

        valid, error = validate_booking_request(data)
        if not valid:
            return jsonify({'error': error}), 400

        result = guard.try_create_booking(
            cleaner_id=int(data['cleaner_id']),
            owner_id=int(data['owner_id']),
            property_id=int(data['property_id']),
            service=data['service'],
            date=data['date'],
            time=data['time'],
            hours=float(data['hours']),
            price=float(data['price']),
            status=BookingStatus.PENDING,
            notes=data.get('notes')
        )

        if not result.ok:
            day = parse_date(data['date'])
            alternatives = resolver.find_next_available(
                int(data['cleaner_id']),
                from_date=day + timedelta(days=1),
                count=Config.NEXT_AVAILABLE_COUNT,
                hours=float(data['hours'])
            )
            response = result.conflict.to_dict()
            response['alternatives'] = [d.isoformat() for d in alternatives]
            return jsonify(response), 409

        return jsonify({
            'message': 'Booking requested',
            'booking': result.booking.to_dict()
        }), 201

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (BookingValidationError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except TransientIOError as e:
        return jsonify({'error': str(e)}), 503
    except Exception as e:
        logger.error(f"Error creating booking: {str(e)}")
        return jsonify({'error': 'Failed to create booking'}), 500


@bp.route('/<int:booking_id>', methods=['GET'])
@require_auth
def get_booking(booking_id, current_user):
    """Get booking details"""
    try:
        booking = lifecycle.get_booking(booking_id)

        if not _is_party(current_user, booking):
            return jsonify({'error': 'Unauthorized'}), 403

        return jsonify(booking.to_dict()), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error getting booking: {str(e)}")
        return jsonify({'error': 'Failed to get booking'}), 500


@bp.route('/<int:booking_id>/transition', methods=['POST'])
@require_auth
def transition_booking(booking_id, current_user):
    """Move a booking to a new status, by target status or by dashboard action"""
    try:
        data = request.get_json() or {}
        action = data.get('action')
        to = data.get('to')
        if not action and not to:
            return jsonify({'error': 'to or action is required'}), 400

        booking = lifecycle.get_booking(booking_id)
        if not _is_party(current_user, booking):
            return jsonify({'error': 'Unauthorized'}), 403

        role = current_user['role']
        if role == 'owner':
            wants_cancel = action == 'cancel' or (not action and str(to).lower() == BookingStatus.CANCELLED.value)
            if not wants_cancel:
                return jsonify({'error': 'Owners can only cancel bookings'}), 403

        if action:
            if action not in ACTIONS:
                return jsonify({'error': f"Invalid action. Use one of: {', '.join(sorted(ACTIONS))}"}), 400
            booking = lifecycle.apply_action(booking_id, action, actor=role)
        else:
            booking = lifecycle.transition(booking_id, to, actor=role)

        return jsonify(booking.to_dict()), 200

    except InvalidTransitionError as e:
        return jsonify(e.to_dict()), 422
    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except BookingValidationError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error transitioning booking: {str(e)}")
        return jsonify({'error': 'Failed to update booking'}), 500
