"""
Bearer-token authentication helpers.

Tokens are issued by the account service; this backend only verifies them
and resolves the acting user.
"""
import logging
from functools import wraps

import jwt
from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def decode_token(token):
    """Decode a JWT, returning its payload or None when invalid/expired."""
    try:
        return jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config.get('JWT_ALGORITHM', 'HS256')],
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
    except jwt.InvalidTokenError:
        logger.info("Rejected invalid token")
    return None


def require_auth(f):
    """Resolve the bearer token to an active User and pass it as ``user``."""
    @wraps(f)
    def decorated(*args, **kwargs):
        from roadside import db
        from roadside.models import User

        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            return jsonify({'error': 'Not authorized, no token'}), 401

        payload = decode_token(auth_header.split(' ', 1)[1])
        if not payload or not payload.get('user_id'):
            return jsonify({'error': 'Not authorized, invalid token'}), 401

        user = db.session.get(User, payload['user_id'])
        if not user or not user.is_active:
            return jsonify({'error': 'Not authorized, user not found'}), 401

        return f(user, *args, **kwargs)
    return decorated
