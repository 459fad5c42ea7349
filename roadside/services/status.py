"""
Status transition engine plus the GOA and unsuccessful-report approval flows.
"""
import logging

from roadside.errors import (
    ForbiddenError, InvalidInputError, InvalidStateError, InvalidTransitionError,
)
from roadside.models.job import (
    APPROVAL_APPROVED, APPROVAL_PENDING, APPROVAL_REJECTED, AWAITING_APPROVAL,
    CANCELED, COMPLETED, DISPATCHED, EN_ROUTE, GOA, JOB_STATUSES, MANUAL_REJECTION,
    ON_SITE, PENDING, PENDING_ACCEPTANCE, REJECTED, TERMINAL_STATUSES,
    UNSUCCESSFUL, WAITING,
)
from roadside.services.acceptance import get_coordinator
from roadside.services.assignment import assign_job
from roadside.services.jobs import commit_job, load_job
from roadside.services.notifier import (
    GOA_APPROVED, GOA_DENIED, JOB_UPDATED, UNSUCCESSFUL_APPROVED,
    UNSUCCESSFUL_DENIED, get_notifier,
)
from roadside.services.permissions import can_approve_goa, can_approve_unsuccessful
from roadside.services.visibility import refresh_visibility
from roadside.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# Status -> timestamp column recorded on entry
STATUS_TIMESTAMPS = {
    DISPATCHED: 'dispatched_at',
    EN_ROUTE: 'en_route_at',
    ON_SITE: 'on_site_at',
    COMPLETED: 'completed_at',
}


def _check_transition(previous_status, new_status):
    if new_status not in JOB_STATUSES:
        raise InvalidInputError('Invalid status: {}'.format(new_status))
    if new_status == previous_status:
        return
    if previous_status in TERMINAL_STATUSES:
        raise InvalidTransitionError('Cannot change the status of a {} job'.format(previous_status))
    if new_status == PENDING_ACCEPTANCE:
        raise InvalidTransitionError('Jobs enter Pending Acceptance only through assignment')
    if new_status == AWAITING_APPROVAL and previous_status != ON_SITE:
        raise InvalidTransitionError('Job can only be marked as GOA when its status is On Site')


def _leave_acceptance(job, previous_status):
    """Drop the pending acceptance when a job moves out of Pending Acceptance"""
    if previous_status == PENDING_ACCEPTANCE and job.status != PENDING_ACCEPTANCE:
        job.clear_acceptance_timer()
        job.needs_acceptance = False
        return True
    return False


def update_job_status(job_id, actor, status=None, cancellation_reason=None, goa_reason=None,
                      rejection_reason=None, driver_id=None, driver_name=None, truck=None):
    """
    Apply a status change and its side effects

    Supplying a ``driver_id`` different from the assigned one performs a
    reassignment instead (see assign_job). Supplying the same ``driver_id``
    only touches up the driver display fields.
    """
    job = load_job(job_id)

    if driver_id and driver_id != job.driver_id:
        if status and status != PENDING_ACCEPTANCE:
            logger.info("Ignoring status %s for job %s: driver change requires acceptance", status, job_id)
        return assign_job(job.id, driver_id, requested_by=actor, vehicle_ref=truck)

    previous_status = job.status
    new_status = status or previous_status
    _check_transition(previous_status, new_status)

    now = utcnow()
    removed = None
    notes = None

    if driver_id is not None and driver_id == job.driver_id:
        if driver_name:
            job.driver = driver_name
        if truck:
            job.truck = truck
        if new_status == previous_status:
            notes = 'Updated driver information without changing driver ID'

    if new_status == PENDING and job.driver_id and (rejection_reason or previous_status == PENDING_ACCEPTANCE):
        removed = {'status': previous_status, 'driverId': job.driver_id, 'driver': job.driver, 'truck': job.truck}
        if rejection_reason and not any(
                entry.get('driverId') == job.driver_id and entry.get('reason') == rejection_reason
                for entry in job.rejected_by):
            job.record_rejection(
                job.driver_id, job.driver, rejection_reason, MANUAL_REJECTION, now,
                recordedBy=actor.full_name,
            )
        job.rejected_at = now
        job.clear_assignment()
    elif new_status == WAITING and job.driver_id:
        removed = {'status': previous_status, 'driverId': job.driver_id, 'driver': job.driver, 'truck': job.truck}
        job.clear_assignment()

    job.status = new_status
    timer_left = _leave_acceptance(job, previous_status)

    if new_status in STATUS_TIMESTAMPS:
        setattr(job, STATUS_TIMESTAMPS[new_status], now)
    if new_status == CANCELED and cancellation_reason:
        job.cancellation_reason = cancellation_reason
        notes = 'Cancellation reason: {}'.format(cancellation_reason)
    elif new_status == AWAITING_APPROVAL:
        if goa_reason:
            job.goa_reason = goa_reason
            notes = 'GOA reason: {}'.format(goa_reason)
        job.approval_status = APPROVAL_PENDING
        job.goa_rejection_notification = False
    elif new_status == REJECTED and rejection_reason:
        job.rejection_reason = rejection_reason
        job.approval_status = APPROVAL_REJECTED
    if rejection_reason and new_status in (PENDING, REJECTED):
        job.rejection_reason = rejection_reason
        notes = 'Rejection reason: {}'.format(rejection_reason)

    job.record_status(new_status, actor.full_name, notes=notes, timestamp=now)
    if removed:
        refresh_visibility(job)
    commit_job(job)
    logger.info("Job %s status %s -> %s by %s", job.id, previous_status, new_status, actor.id)

    if timer_left:
        get_coordinator().cancel(job.id)

    notifier = get_notifier()
    exclude = []
    if removed:
        removed_id = removed['driverId']
        notifier.publish(removed_id, JOB_UPDATED, dict(job.to_dict(), _previousState=removed))
        notifier.job_removed(removed_id, job, 'unassigned')
        exclude.append(removed_id)
    notifier.job_updated(job, exclude=exclude)
    return job


def _notify_decision(job, event, message):
    """Driver-specific decision event plus the generic update"""
    notifier = get_notifier()
    notifier.job_updated(job)
    if job.driver_id:
        notifier.publish(job.driver_id, event, {
            'jobId': job.id,
            'message': message,
            'jobDetails': job.summary(),
        })


def report_unsuccessful(job_id, actor, reason):
    """Request that a job be closed as Unsuccessful; status is unchanged until approved"""
    reason = (reason or '').strip()
    if not reason:
        raise InvalidInputError('A reason is required to mark a job as unsuccessful')
    job = load_job(job_id)
    if job.status in TERMINAL_STATUSES:
        raise InvalidStateError('Cannot report a {} job as unsuccessful'.format(job.status))

    job.approval_status_unsuccessful = APPROVAL_PENDING
    job.unsuccessful_reason = reason
    job.record_status(
        job.status, actor.full_name,
        notes='Requested to mark as unsuccessful with reason: {} (awaiting approval)'.format(reason),
    )
    commit_job(job)
    logger.info("Unsuccessful request on job %s by %s", job.id, actor.id)

    get_notifier().job_updated(job)
    return job


def _pending_unsuccessful(job_id, actor):
    job = load_job(job_id)
    if job.approval_status_unsuccessful != APPROVAL_PENDING:
        raise InvalidStateError('Job does not have a pending unsuccessful request')
    if not can_approve_unsuccessful(actor):
        raise ForbiddenError(
            'Only OW, sOW, RM users, or dispatcher/answering service/admin users '
            'of the platform vendor can decide unsuccessful requests'
        )
    return job


def approve_unsuccessful(job_id, actor):
    job = _pending_unsuccessful(job_id, actor)
    previous_status = job.status

    now = utcnow()
    job.status = UNSUCCESSFUL
    job.approval_status_unsuccessful = APPROVAL_APPROVED
    job.unsuccessful_approved_by = actor.id
    job.unsuccessful_approved_at = now
    timer_left = _leave_acceptance(job, previous_status)
    job.record_status(
        UNSUCCESSFUL, actor.full_name, timestamp=now,
        notes='Unsuccessful request approved by {}'.format(actor.full_name),
    )
    commit_job(job)
    logger.info("Unsuccessful request on job %s approved by %s", job.id, actor.id)

    if timer_left:
        get_coordinator().cancel(job.id)
    _notify_decision(job, UNSUCCESSFUL_APPROVED,
                     'Your unsuccessful request for job {} has been approved'.format(job.po))
    return job


def deny_unsuccessful(job_id, actor):
    """Denying an unsuccessful request cancels the job"""
    job = _pending_unsuccessful(job_id, actor)
    previous_status = job.status

    now = utcnow()
    job.status = CANCELED
    job.cancellation_reason = 'Unsuccessful request denied'
    job.approval_status_unsuccessful = APPROVAL_REJECTED
    job.unsuccessful_approved_by = actor.id
    job.unsuccessful_approved_at = now
    timer_left = _leave_acceptance(job, previous_status)
    job.record_status(
        CANCELED, actor.full_name, timestamp=now,
        notes='Unsuccessful request denied by {}. Job marked as canceled.'.format(actor.full_name),
    )
    commit_job(job)
    logger.info("Unsuccessful request on job %s denied by %s", job.id, actor.id)

    if timer_left:
        get_coordinator().cancel(job.id)
    _notify_decision(
        job, UNSUCCESSFUL_DENIED,
        'Your unsuccessful request for job {} has been denied. The job has been canceled.'.format(job.po),
    )
    return job


def _awaiting_goa(job_id, actor):
    job = load_job(job_id)
    if job.status != AWAITING_APPROVAL:
        raise InvalidStateError('Job is not awaiting GOA approval')
    if not can_approve_goa(actor, job):
        raise ForbiddenError('You do not have permission to decide GOA requests for this job')
    return job


def approve_goa(job_id, actor):
    job = _awaiting_goa(job_id, actor)

    now = utcnow()
    job.status = GOA
    job.approval_status = APPROVAL_APPROVED
    job.approved_by = actor.id
    job.approved_at = now
    job.record_status(GOA, actor.full_name, timestamp=now,
                      notes='GOA request approved by {}'.format(actor.full_name))
    commit_job(job)
    logger.info("GOA on job %s approved by %s", job.id, actor.id)

    _notify_decision(job, GOA_APPROVED, 'Your GOA request for job {} has been approved'.format(job.po))
    return job


def deny_goa(job_id, actor):
    """The job stays in Awaiting Approval with the request marked rejected"""
    job = _awaiting_goa(job_id, actor)

    now = utcnow()
    job.approval_status = APPROVAL_REJECTED
    job.approved_by = actor.id
    job.approved_at = now
    job.goa_rejection_notification = True
    job.record_status(AWAITING_APPROVAL, actor.full_name, timestamp=now,
                      notes='GOA request denied by {}'.format(actor.full_name))
    commit_job(job)
    logger.info("GOA on job %s denied by %s", job.id, actor.id)

    _notify_decision(job, GOA_DENIED, 'Your GOA request for job {} has been denied'.format(job.po))
    return job
