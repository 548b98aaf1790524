from flask import Blueprint, request, jsonify
from app.services.availability_service import (
    AvailabilityResolver, AvailabilityStore, conflict_message, has_free_slot
)
from app.services.exceptions import BookingValidationError, NotFoundError
from app.middleware.auth import require_auth, require_cleaner, can_manage_cleaner
from app.utils.time_utils import end_time_for, parse_date
from app.utils.logger import get_logger
from config.config import Config

bp = Blueprint('availability', __name__)
logger = get_logger(__name__)
store = AvailabilityStore()
resolver = AvailabilityResolver(store)


@bp.route('', methods=['GET'])
@require_auth
def get_availability(current_user):
    """Unavailable intervals for a date, plus whether a slot (or any default slot) is free"""
    try:
        cleaner_id = request.args.get('cleaner_id', type=int)
        day = request.args.get('date')
        if not cleaner_id or not day:
            return jsonify({'error': 'cleaner_id and date are required'}), 400

        intervals = resolver.get_unavailable_intervals(cleaner_id, day)
        result = {'date': day, 'intervals': [i.to_dict() for i in intervals]}

        start_time = request.args.get('time')
        if start_time:
            hours = request.args.get('hours', Config.DEFAULT_SLOT_HOURS, type=float)
            check = resolver.check_slot(cleaner_id, day, start_time, end_time_for(start_time, hours))
            result['available'] = check.available
            if not check.available:
                result['reason'] = check.reason
                result['message'] = conflict_message(check.reason)
        else:
            result['available'] = (
                resolver.cleaner_today(cleaner_id) <= parse_date(day) and has_free_slot(intervals)
            )

        return jsonify(result), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (BookingValidationError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error getting availability: {str(e)}")
        return jsonify({'error': 'Failed to get availability'}), 500


@bp.route('/range', methods=['GET'])
@require_auth
def get_availability_range(current_user):
    """Unavailable intervals for every date in a range"""
    try:
        cleaner_id = request.args.get('cleaner_id', type=int)
        start = request.args.get('start')
        end = request.args.get('end')
        if not cleaner_id or not start or not end:
            return jsonify({'error': 'cleaner_id, start and end are required'}), 400

        by_date = resolver.get_range(cleaner_id, start, end)

        return jsonify({
            'dates': {
                day.isoformat(): [i.to_dict() for i in intervals]
                for day, intervals in by_date.items()
            }
        }), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (BookingValidationError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error getting availability range: {str(e)}")
        return jsonify({'error': 'Failed to get availability'}), 500


@bp.route('/next', methods=['GET'])
@require_auth
def get_next_available(current_user):
    """Next dates with room for a default-length job"""
    try:
        cleaner_id = request.args.get('cleaner_id', type=int)
        if not cleaner_id:
            return jsonify({'error': 'cleaner_id is required'}), 400

        count = request.args.get('count', Config.NEXT_AVAILABLE_COUNT, type=int)
        if count < 1 or count > 30:
            return jsonify({'error': 'count must be between 1 and 30'}), 400

        dates = resolver.find_next_available(
            cleaner_id,
            from_date=request.args.get('from'),
            count=count,
            hours=request.args.get('hours', type=float)
        )

        return jsonify({'dates': [day.isoformat() for day in dates]}), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (BookingValidationError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error finding next available dates: {str(e)}")
        return jsonify({'error': 'Failed to find available dates'}), 500


@bp.route('/slots', methods=['GET'])
@require_auth
def get_day_slots(current_user):
    """Hourly grid for a booking picker"""
    try:
        cleaner_id = request.args.get('cleaner_id', type=int)
        day = request.args.get('date')
        if not cleaner_id or not day:
            return jsonify({'error': 'cleaner_id and date are required'}), 400

        return jsonify({'date': day, 'slots': resolver.day_slots(cleaner_id, day)}), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (BookingValidationError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error getting day slots: {str(e)}")
        return jsonify({'error': 'Failed to get slots'}), 500


@bp.route('/blocks', methods=['POST'])
@require_auth
@require_cleaner
def add_block(current_user):
    """Block out time by hand"""
    try:
        data = request.get_json() or {}

        for field in ['date', 'start_time', 'end_time']:
            if not data.get(field):
                return jsonify({'error': f'{field} is required'}), 400

        cleaner_id = data.get('cleaner_id') or current_user.get('cleaner_id')
        cleaner_id = int(cleaner_id) if cleaner_id else None
        if not cleaner_id or not can_manage_cleaner(current_user, cleaner_id):
            return jsonify({'error': 'Unauthorized'}), 403

        block = store.add_manual_block(
            cleaner_id, data['date'], data['start_time'], data['end_time'], data.get('title')
        )

        return jsonify({
            'message': 'Time blocked',
            'block': {
                'id': block.id,
                'date': block.date.isoformat(),
                'start_time': block.start_time,
                'end_time': block.end_time,
                'title': block.title
            }
        }), 201

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except (BookingValidationError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error adding availability block: {str(e)}")
        return jsonify({'error': 'Failed to block time'}), 500


@bp.route('/blocks/<int:block_id>', methods=['DELETE'])
@require_auth
@require_cleaner
def remove_block(block_id, current_user):
    """Remove a manual block"""
    try:
        cleaner_id = request.args.get('cleaner_id', type=int) or current_user.get('cleaner_id')
        if not cleaner_id or not can_manage_cleaner(current_user, cleaner_id):
            return jsonify({'error': 'Unauthorized'}), 403

        if not store.remove_manual_block(cleaner_id, block_id):
            return jsonify({'error': 'Block not found'}), 404

        return jsonify({'message': 'Block removed'}), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error removing availability block: {str(e)}")
        return jsonify({'error': 'Failed to remove block'}), 500
