"""
Notification fan-out over Socket.IO.

Publishing is best effort: a failed emit is logged per target and never
propagates into the operation that triggered it.
"""
import logging

from flask import current_app

from roadside.socket_events import user_room

logger = logging.getLogger(__name__)

# Event names
JOB_ASSIGNED = 'jobAssigned'
JOB_UPDATED = 'jobUpdated'
JOB_REMOVED = 'jobRemoved'
JOB_ACCEPTED = 'jobAccepted'
JOB_REJECTED = 'jobRejected'
JOB_AUTO_REJECTED = 'jobAutoRejected'
GOA_APPROVED = 'goaApproved'
GOA_DENIED = 'goaDenied'
UNSUCCESSFUL_APPROVED = 'unsuccessfulApproved'
UNSUCCESSFUL_DENIED = 'unsuccessfulDenied'


class Notifier:
    """Publishes job events into per-user Socket.IO rooms"""

    def __init__(self, socketio):
        self.socketio = socketio

    def publish(self, user_id, event, payload):
        """Emit one event to one user. Returns False instead of raising."""
        if not user_id:
            return False
        try:
            self.socketio.emit(event, payload, room=user_room(user_id))
        except Exception:
            logger.exception("Failed to publish %s to user %s", event, user_id)
            return False
        logger.debug("Published %s to user %s", event, user_id)
        return True

    def fan_out(self, user_ids, event, payload, exclude=()):
        """Publish to every target not in ``exclude``; returns the delivered ids."""
        excluded = {user_id for user_id in exclude if user_id}
        delivered = []
        seen = set()
        for user_id in user_ids or []:
            if not user_id or user_id in excluded or user_id in seen:
                continue
            seen.add(user_id)
            if self.publish(user_id, event, payload):
                delivered.append(user_id)
        return delivered

    def job_updated(self, job, exclude=(), **annotations):
        """Broadcast the full job snapshot to the job's visibility set"""
        payload = job.to_dict()
        payload.update(annotations)
        return self.fan_out(job.visible_to, JOB_UPDATED, payload, exclude=exclude)

    def job_removed(self, user_id, job, reason):
        return self.publish(user_id, JOB_REMOVED, {'jobId': job.id, 'reason': reason})


def get_notifier():
    return current_app.extensions['notifier']
