"""
Acceptance/timeout coordinator.

An assigned actor has a bounded window to accept or reject a job. The
coordinator owns one scheduler job per job id (``acceptance:<job_id>``);
arming again for the same job replaces the previous timer. A firing timer
re-reads the job and only auto-rejects when nothing has happened since it
was armed.

Deadlines are persisted on the job (auto_reject_at / auto_reject_timer_set_at),
so ``recover()`` can rebuild the timers after a restart.
"""
import logging
import threading
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from flask import current_app, has_app_context
from sqlalchemy.orm.exc import StaleDataError

from roadside import db
from roadside.errors import ForbiddenError, InvalidInputError, InvalidStateError
from roadside.models import Job
from roadside.models.job import (
    ACCEPTED, AUTO_REJECTION, DISPATCHED, MANUAL_REJECTION, PENDING,
    PENDING_ACCEPTANCE, SYSTEM_ACTOR,
)
from roadside.services.directory import get_directory
from roadside.services.jobs import commit_job, load_job
from roadside.services.notifier import (
    JOB_ACCEPTED, JOB_AUTO_REJECTED, JOB_REJECTED, JOB_UPDATED, get_notifier,
)
from roadside.services.visibility import refresh_visibility
from roadside.utils.helpers import isoformat, utcnow

logger = logging.getLogger(__name__)


def timer_id(job_id):
    return 'acceptance:{}'.format(job_id)


def timeout_label(seconds):
    """Human form of a timeout, e.g. 360 -> '6 minutes'"""
    seconds = int(seconds)
    if seconds % 60:
        return '{} seconds'.format(seconds)
    minutes = seconds // 60
    return '{} minute{}'.format(minutes, '' if minutes == 1 else 's')


class AcceptanceCoordinator:
    """Owns the job id -> acceptance timer map"""

    def __init__(self, app, scheduler):
        self.app = app
        self.scheduler = scheduler
        self._timers = {}
        self._lock = threading.Lock()

    def start(self):
        if not getattr(self.scheduler, 'running', False):
            self.scheduler.start()
            logger.info("Acceptance scheduler started")

    def timeout_for(self, user):
        """Acceptance window in seconds for the given actor"""
        config = self.app.config
        if user is not None and user.is_service_provider():
            return config['SP_ACCEPTANCE_TIMEOUT_SECONDS']
        return config['DRIVER_ACCEPTANCE_TIMEOUT_SECONDS']

    def is_armed(self, job_id):
        with self._lock:
            return job_id in self._timers

    def arm(self, job):
        """
        Schedule the acceptance check for ``job``, replacing any earlier timer

        The job must already carry auto_reject_at and auto_reject_timer_set_at.
        """
        if job.auto_reject_at is None:
            logger.warning("Job %s has no acceptance deadline; timer not armed", job.id)
            return False

        armed_at = job.auto_reject_timer_set_at
        with self._lock:
            self._remove_scheduled(job.id)
            self.scheduler.add_job(
                self._fire,
                'date',
                run_date=job.auto_reject_at,
                args=[job.id, armed_at],
                id=timer_id(job.id),
                name='Acceptance timeout for job {}'.format(job.po),
                replace_existing=True,
                misfire_grace_time=None,
            )
            self._timers[job.id] = armed_at
        logger.info("Acceptance timer armed for job %s (deadline %s)", job.id, isoformat(job.auto_reject_at))
        return True

    def cancel(self, job_id):
        """Drop any scheduled timer for the job; safe to call repeatedly."""
        with self._lock:
            had_timer = self._timers.pop(job_id, None) is not None
            self._remove_scheduled(job_id)
        if had_timer:
            logger.info("Acceptance timer canceled for job %s", job_id)
        return had_timer

    def _remove_scheduled(self, job_id):
        try:
            self.scheduler.remove_job(timer_id(job_id))
        except JobLookupError:
            pass

    def _fire(self, job_id, armed_at):
        with self._lock:
            if self._timers.get(job_id) == armed_at:
                self._timers.pop(job_id, None)

        if has_app_context():
            return self.on_fire(job_id, armed_at)
        with self.app.app_context():
            return self.on_fire(job_id, armed_at)

    def on_fire(self, job_id, armed_at):
        """
        Timer callback: auto-reject the job if it is still waiting on the
        actor that this timer was armed for.

        Never raises; returns True when the job was auto-rejected.
        """
        try:
            return self._auto_reject(job_id, armed_at)
        except StaleDataError:
            db.session.rollback()
            logger.warning("Job %s changed while auto-rejecting; giving up", job_id)
        except Exception:
            db.session.rollback()
            logger.exception("Error auto-rejecting job %s", job_id)
        return False

    def _auto_reject(self, job_id, armed_at):
        job = db.session.get(Job, job_id)
        if job is None:
            logger.info("Auto-rejection skipped: job %s not found", job_id)
            return False
        if job.status != PENDING_ACCEPTANCE:
            logger.info("Auto-rejection skipped for job %s: status is %s", job_id, job.status)
            return False
        if armed_at is not None and job.auto_reject_timer_set_at is not None \
                and job.auto_reject_timer_set_at > armed_at:
            logger.info("Auto-rejection skipped for job %s: timer was reset after this one was armed", job_id)
            return False
        if job.accepted_at is not None:
            logger.info("Auto-rejection skipped for job %s: already accepted", job_id)
            return False
        last_reassignment = job.last_reassignment_at()
        if armed_at is not None and last_reassignment \
                and datetime.fromisoformat(last_reassignment) > armed_at:
            logger.info("Auto-rejection skipped for job %s: redispatched after timer was armed", job_id)
            return False

        now = utcnow()
        expired_driver_id = job.driver_id
        expired_driver_name = job.driver
        if job.auto_reject_at is not None and job.auto_reject_timer_set_at is not None:
            window = (job.auto_reject_at - job.auto_reject_timer_set_at).total_seconds()
        else:
            window = self.timeout_for(get_directory().get_user(expired_driver_id))
        duration = timeout_label(window)
        reason = 'Auto-expired: No response within {}'.format(duration)

        previous_state = {
            'status': job.status,
            'driverId': expired_driver_id,
            'driver': expired_driver_name,
            'truck': job.truck,
        }

        job.status = PENDING
        job.rejected_at = now
        job.rejection_reason = reason
        job.record_rejection(
            expired_driver_id, expired_driver_name, reason, AUTO_REJECTION, now,
            timeoutDuration=duration,
        )
        job.record_status(
            PENDING, SYSTEM_ACTOR, timestamp=now,
            notes='Acceptance expired: {} did not respond within {}'.format(expired_driver_name, duration),
        )
        job.clear_assignment()
        refresh_visibility(job)
        db.session.commit()
        logger.info("Job %s auto-rejected after %s (driver %s)", job_id, duration, expired_driver_id)

        notifier = get_notifier()
        snapshot = job.to_dict()
        auto_rejection = {'reason': reason, 'timestamp': isoformat(now), 'timeoutDuration': duration}
        audience = [user_id for user_id in job.visible_to if user_id != expired_driver_id]
        notifier.fan_out(audience, JOB_AUTO_REJECTED, {
            'jobId': job.id,
            'message': 'expired',
            'jobDetails': dict(job.summary(), previousDriver=expired_driver_name),
        })
        notifier.fan_out(audience, JOB_UPDATED, snapshot)
        if expired_driver_id:
            notifier.publish(expired_driver_id, JOB_UPDATED, dict(
                snapshot, _previousState=previous_state, autoRejection=auto_rejection,
            ))
            notifier.job_removed(expired_driver_id, job, 'expired')
        return True

    def recover(self):
        """
        Rebuild timers from persisted deadlines

        Jobs still waiting past their deadline are evaluated immediately; the
        rest get a fresh timer for the remaining window. Returns the number of
        jobs handled.
        """
        jobs = Job.query.filter(Job.status == PENDING_ACCEPTANCE).all()
        now = utcnow()
        count = 0
        for job in jobs:
            if job.auto_reject_at is None:
                logger.warning("Job %s is pending acceptance without a deadline", job.id)
                continue
            if job.auto_reject_at <= now:
                logger.info("Job %s acceptance deadline passed while offline", job.id)
                self.on_fire(job.id, job.auto_reject_timer_set_at)
            else:
                self.arm(job)
            count += 1
        logger.info("Acceptance recovery handled %d job(s)", count)
        return count


def get_coordinator():
    return current_app.extensions['acceptance']


def accept_job(job_id, actor, eta=None):
    """Assigned actor accepts the job; the job moves to Dispatched."""
    job = load_job(job_id)
    if job.driver_id is None or job.driver_id != actor.id:
        raise ForbiddenError('Job is assigned to a different user')

    eta = str(eta).strip() if eta is not None else ''
    if actor.is_service_provider() and not eta:
        raise InvalidInputError('ETA is required for Service Providers')
    if job.status not in (PENDING_ACCEPTANCE, DISPATCHED, ACCEPTED):
        raise InvalidStateError('Job cannot be accepted while {}'.format(job.status))

    now = utcnow()
    job.status = DISPATCHED
    if eta:
        job.eta = eta
    if job.accepted_at is None:
        job.accepted_at = now
    job.dispatched_at = now
    job.needs_acceptance = False
    job.clear_acceptance_timer()
    if actor.is_service_provider():
        notes = 'Accepted by SP with ETA: {} minutes'.format(eta)
    else:
        notes = 'Accepted by driver'
    job.record_status(DISPATCHED, actor.full_name, notes=notes, timestamp=now)
    commit_job(job)

    get_coordinator().cancel(job.id)

    notifier = get_notifier()
    message = 'Job accepted by {}'.format(job.driver)
    if eta:
        message += ' with ETA: {} minutes'.format(eta)
    notifier.publish(job.provider_id, JOB_ACCEPTED, {
        'jobId': job.id,
        'message': message,
        'jobDetails': job.summary(),
    })
    notifier.job_updated(job)
    return job


def reject_job(job_id, actor, reason):
    """Assigned actor declines the job; it goes back to Pending."""
    reason = (reason or '').strip()
    if not reason:
        raise InvalidInputError('Rejection reason is required')

    job = load_job(job_id)
    if job.driver_id is None or job.driver_id != actor.id:
        raise ForbiddenError('Job is assigned to a different user')

    now = utcnow()
    previous_state = {
        'status': job.status,
        'driverId': job.driver_id,
        'driver': job.driver,
        'truck': job.truck,
    }
    role = 'SP' if actor.is_service_provider() else 'driver'

    job.status = PENDING
    job.rejection_reason = reason
    job.rejected_at = now
    job.record_rejection(actor.id, actor.full_name, reason, MANUAL_REJECTION, now)
    job.record_status(
        PENDING, actor.full_name, timestamp=now,
        notes='Rejected by {} with reason: {}'.format(role, reason),
    )
    job.clear_assignment()
    refresh_visibility(job)
    commit_job(job)

    get_coordinator().cancel(job.id)

    notifier = get_notifier()
    notifier.publish(job.provider_id, JOB_REJECTED, {
        'jobId': job.id,
        'message': 'Job rejected by {}'.format(actor.full_name),
        'reason': reason,
        'jobDetails': job.summary(),
    })
    snapshot = job.to_dict()
    notifier.publish(actor.id, JOB_UPDATED, dict(
        snapshot,
        _previousState=previous_state,
        manualRejection={'reason': reason, 'timestamp': isoformat(now)},
    ))
    notifier.job_removed(actor.id, job, 'rejected')
    notifier.fan_out(job.visible_to, JOB_UPDATED, snapshot, exclude=[actor.id])
    return job
