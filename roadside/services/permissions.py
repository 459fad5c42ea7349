"""
Authorization gate for job operations.

These are boolean capability checks; engines call them before mutating and
raise ForbiddenError themselves.
"""
import logging

from flask import current_app

from roadside.models.user import (
    ADMIN_CAPABILITY, ANSWERING_SERVICE_CAPABILITY, DISPATCHER_CAPABILITY,
    DRIVER, DRIVER_CAPABILITY, LEADERSHIP_ROLES, NO_ROLE, SERVICE_PROVIDER,
)
from roadside.services.directory import get_directory

logger = logging.getLogger(__name__)

# Capabilities that qualify a platform-vendor user to rule on unsuccessful reports
_PLATFORM_STAFF_CAPABILITIES = frozenset([
    DISPATCHER_CAPABILITY, ANSWERING_SERVICE_CAPABILITY, ADMIN_CAPABILITY,
])


def is_driver_only(user):
    """Driver identity with no other enabled capability"""
    if user.primary_role == DRIVER and not user.capabilities:
        return True
    return user.capabilities == frozenset([DRIVER_CAPABILITY])


def _is_assigned(user, job):
    return job.driver_id is not None and job.driver_id == user.id


def can_view(user, job, directory=None):
    """Check whether ``user`` may see ``job``"""
    if user is None:
        return False
    if user.id in (job.visible_to or []):
        return True
    if user.is_owner():
        return True

    if user.is_regional_manager():
        state = job.service_state
        if not state:
            logger.debug("Job %s has no service state; RM %s cannot view", job.id, user.id)
            return False
        return any(region.is_active and region.covers_state(state) for region in user.regions)

    directory = directory or get_directory()

    if user.is_dispatcher():
        creator = directory.get_user(job.provider_id)
        if creator is None:
            logger.info("Creator of job %s not found", job.id)
            return False
        if user.vendor_id and user.vendor_id == creator.vendor_id:
            return True
        return any(
            leader.vendor_id == user.vendor_id
            for leader in directory.active_users(LEADERSHIP_ROLES)
            if user.vendor_id
        )

    if user.primary_role == SERVICE_PROVIDER:
        return _is_assigned(user, job)

    if user.can_drive():
        return _is_assigned(user, job) or (bool(job.driver) and job.driver == user.full_name)

    return False


def can_approve_goa(user, job=None):
    """GOA decisions: any real role except driver-only identities.

    When a job is given the user must also be in its visibility set.
    """
    if user.primary_role == NO_ROLE or is_driver_only(user):
        return False
    if job is not None and user.id not in (job.visible_to or []):
        return False
    return True


def can_approve_unsuccessful(user):
    """Leadership, or platform-vendor dispatch/admin staff"""
    if user.primary_role == NO_ROLE or is_driver_only(user):
        return False
    if user.is_leadership():
        return True
    prefix = current_app.config.get('OWNER_VENDOR_PREFIX', 'OWNER')
    return bool(
        user.capabilities & _PLATFORM_STAFF_CAPABILITIES
        and user.vendor_id
        and user.vendor_id.startswith(prefix)
    )


def can_delete_jobs(user):
    return user.is_leadership()
