"""
Socket.IO event handlers for real-time job updates.

Every authenticated connection joins a personal room ``user_<id>``; the
notifier publishes job events into those rooms.
"""
import logging

from flask import request
from flask_socketio import join_room

from roadside.extensions import socketio
from roadside.utils.auth import decode_token

logger = logging.getLogger(__name__)


def user_room(user_id):
    return 'user_{}'.format(user_id)


@socketio.on('connect')
def handle_connect(auth=None):
    """Authenticate the socket with the JWT passed in the auth payload."""
    token = (auth or {}).get('token')
    if not token:
        logger.info("Socket %s rejected: token not provided", request.sid)
        return False

    payload = decode_token(token)
    if not payload or not payload.get('user_id'):
        logger.info("Socket %s rejected: invalid token", request.sid)
        return False

    user_id = payload['user_id']
    join_room(user_room(user_id))
    logger.info("User connected: %s (sid=%s)", user_id, request.sid)


@socketio.on('disconnect')
def handle_disconnect():
    logger.info("Client disconnected: %s", request.sid)
