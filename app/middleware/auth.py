from functools import wraps
from flask import request, jsonify
from app.utils.security import verify_token
from app.utils.logger import get_logger

logger = get_logger(__name__)

ROLES = ('cleaner', 'owner', 'admin', 'agent')


def require_auth(f):
    """Decorator to require authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Get token from Authorization header
        auth_header = request.headers.get('Authorization')

        if not auth_header:
            return jsonify({'error': 'Authorization header missing'}), 401

        # Check format
        parts = auth_header.split()
        if len(parts) != 2 or parts[0] != 'Bearer':
            return jsonify({'error': 'Invalid authorization header format'}), 401

        token = parts[1]

        # Verify token
        payload = verify_token(token)
        if not payload or payload.get('role') not in ROLES:
            return jsonify({'error': 'Invalid or expired token'}), 401

        # Add user info to kwargs
        return f(current_user=payload, *args, **kwargs)

    return decorated_function


def require_role(allowed_roles):
    """Decorator to require specific roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(current_user, *args, **kwargs):
            if current_user.get('role') not in allowed_roles:
                logger.warning(f"Role {current_user.get('role')} denied for {request.path}")
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(current_user=current_user, *args, **kwargs)
        return decorated_function
    return decorator


def require_cleaner(f):
    """Decorator to require cleaner role"""
    return require_role(['cleaner', 'admin'])(f)


def require_agent(f):
    """Decorator to require the chat agent's service token"""
    return require_role(['agent', 'admin'])(f)


def can_manage_cleaner(current_user: dict, cleaner_id: int) -> bool:
    """Admins and the agent act for any cleaner; a cleaner only for themselves"""
    role = current_user.get('role')
    if role in ('admin', 'agent'):
        return True
    if role != 'cleaner' or current_user.get('cleaner_id') is None:
        return False
    try:
        return int(current_user['cleaner_id']) == int(cleaner_id)
    except (TypeError, ValueError):
        return False
