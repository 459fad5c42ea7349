"""
Assignment engine: bind an on-duty actor and a vehicle to a job and put it
into Pending Acceptance.
"""
import logging
from datetime import timedelta

from roadside import db
from roadside.errors import (
    InvalidInputError, InvalidStateError, NotFoundError, ResourceUnavailableError,
)
from roadside.models.job import PENDING_ACCEPTANCE, SYSTEM_ACTOR, TERMINAL_STATUSES
from roadside.services.acceptance import get_coordinator
from roadside.services.directory import get_directory
from roadside.services.fleet import get_fleet
from roadside.services.jobs import commit_job, load_job
from roadside.services.notifier import JOB_ASSIGNED, get_notifier
from roadside.services.visibility import refresh_visibility
from roadside.utils.helpers import isoformat, parse_datetime, utcnow

logger = logging.getLogger(__name__)


def _resolve_vehicle(fleet, actor, vehicle_ref):
    """
    Pick the vehicle for ``actor`` and bind it

    The actor's current vehicle is kept unless a different one is explicitly
    requested. Without a bound or requested vehicle the first on-duty,
    unbound vehicle of the actor's vendor is used.
    """
    requested = None
    if vehicle_ref:
        requested = fleet.find_vehicle(vehicle_ref)
        if requested is None:
            raise NotFoundError('Vehicle not found')
        if requested.driver_id and requested.driver_id != actor.id:
            raise ResourceUnavailableError('Vehicle is already assigned to another driver')
        if not requested.is_on_duty:
            raise ResourceUnavailableError('Vehicle is not on duty')

    bound = fleet.vehicle_bound_to(actor.id)
    if bound is not None:
        if requested is not None and requested.id != bound.id:
            fleet.unbind_vehicle(bound)
            fleet.bind_vehicle(requested, actor)
            return requested
        return bound

    if requested is not None:
        fleet.bind_vehicle(requested, actor)
        return requested

    vehicle = fleet.find_available_vehicle(actor.vendor_id)
    if vehicle is None:
        raise ResourceUnavailableError('No vehicles available for assignment')
    fleet.bind_vehicle(vehicle, actor)
    return vehicle


def assign_job(job_id, actor_id, requested_by=None, vehicle_ref=None,
               preserve_assigned_at=False, original_assigned_at=None):
    """
    Assign (or reassign) a job to a driver or service provider

    Args:
        job_id: job to assign
        actor_id: user who must accept the job
        requested_by: dispatcher performing the assignment
        vehicle_ref: vehicle name or id to use instead of the actor's own
        preserve_assigned_at: on redispatch, keep the original SLA clock
        original_assigned_at: assignment time to restore when preserving

    Returns:
        Job: the job in Pending Acceptance
    """
    if not actor_id:
        raise InvalidInputError('Driver/SP ID is required')

    job = load_job(job_id)
    if job.status in TERMINAL_STATUSES:
        raise InvalidStateError('Cannot assign a job that is {}'.format(job.status))

    actor = get_directory().get_user(actor_id)
    if actor is None:
        raise NotFoundError('User not found')
    if not actor.on_duty:
        raise InvalidStateError('User is not on duty')
    if not (actor.is_service_provider() or actor.can_drive()):
        raise InvalidStateError('User must be either an SP or have a driver secondary role')

    restored_assigned_at = None
    if preserve_assigned_at and original_assigned_at:
        try:
            restored_assigned_at = parse_datetime(original_assigned_at)
        except ValueError:
            raise InvalidInputError('originalAssignedAt is not a valid timestamp')

    vehicle = _resolve_vehicle(get_fleet(), actor, vehicle_ref)

    coordinator = get_coordinator()
    now = utcnow()
    previous_driver_id = job.driver_id
    is_redispatch = previous_driver_id is not None and previous_driver_id != actor.id
    kind = 'SP' if actor.is_service_provider() else 'driver'

    if is_redispatch:
        job.previous_drivers.append({
            'driverId': previous_driver_id,
            'driverName': job.driver,
            'truck': job.truck,
            'status': job.status,
            'acceptedAt': isoformat(job.accepted_at),
            'reassignedAt': isoformat(now),
            'reassignedBy': requested_by.id if requested_by else SYSTEM_ACTOR,
        })
        if job.first_assigned_at is None:
            job.first_assigned_at = restored_assigned_at or job.assigned_at or now
        if not preserve_assigned_at:
            job.assigned_at = now
        elif restored_assigned_at is not None:
            job.assigned_at = restored_assigned_at
        elif job.assigned_at is None:
            job.assigned_at = now
    else:
        job.assigned_at = now
        if job.first_assigned_at is None:
            job.first_assigned_at = now

    job.driver_id = actor.id
    job.driver = actor.full_name
    job.truck = vehicle.name
    job.status = PENDING_ACCEPTANCE
    job.needs_acceptance = True
    job.accepted_at = None
    job.auto_reject_timer_set_at = now
    job.auto_reject_at = now + timedelta(seconds=coordinator.timeout_for(actor))

    verb = 'Reassigned' if is_redispatch else 'Assigned'
    job.record_status(
        PENDING_ACCEPTANCE,
        requested_by.full_name if requested_by else SYSTEM_ACTOR,
        notes='{} to {} {}'.format(verb, kind, actor.full_name),
        timestamp=now,
    )
    # vehicle binding is flushed by commit_job
    with db.session.no_autoflush:
        refresh_visibility(job)
    commit_job(job)
    logger.info("Job %s %s to %s %s (vehicle %s)", job.id, verb.lower(), kind, actor.id, vehicle.name)

    coordinator.arm(job)

    notifier = get_notifier()
    notifier.publish(actor.id, JOB_ASSIGNED, {
        'jobId': job.id,
        'message': 'New job assigned: {} at {}'.format(job.service, job.location),
        'jobDetails': job.summary(),
    })
    exclude = [actor.id]
    if is_redispatch:
        notifier.job_removed(previous_driver_id, job, 'reassigned')
        exclude.append(previous_driver_id)
    notifier.job_updated(job, exclude=exclude)
    return job
