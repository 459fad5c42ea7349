"""
Domain errors for the dispatch core.

Every engine operation validates and authorizes before mutating anything and
raises one of these on failure. The HTTP layer maps them to JSON responses.
"""
import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Base class for errors surfaced to the caller"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class NotFoundError(DispatchError):
    """Job, actor or vehicle does not exist"""
    status_code = 404


class InvalidInputError(DispatchError):
    """A required field is missing or malformed"""
    status_code = 400


class InvalidStateError(DispatchError):
    """The record is not in a state that allows the operation"""
    status_code = 400


class InvalidTransitionError(InvalidStateError):
    """The requested status change is not allowed from the current status"""


class ForbiddenError(DispatchError):
    """The caller is not the assigned actor or lacks the capability"""
    status_code = 403


class ResourceUnavailableError(DispatchError):
    """No vehicle could be resolved for the assignment"""
    status_code = 400


class ConcurrentUpdateError(DispatchError):
    """The job was modified by someone else between load and persist"""
    status_code = 409


def register_error_handlers(app):
    """Render domain errors as ``{"error": message}`` JSON responses."""

    @app.errorhandler(DispatchError)
    def handle_dispatch_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error):
        logger.exception("Database error while handling request")
        from roadside import db
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(429)
    def ratelimit_handler(e):
        # Retry-After header is set by Flask-Limiter; read it back.
        retry_after = e.get_headers().get("Retry-After") if hasattr(e, "get_headers") else None
        retry_after_seconds = int(retry_after) if retry_after else 60
        return jsonify({
            'error': 'Too many requests. Please try again later.',
            'retry_after': retry_after_seconds,
        }), 429
