"""
Visibility calculator.

The visible_to list is always rebuilt from scratch from the job and the
current directory; it is never patched incrementally.
"""
import logging

from roadside.models.user import LEADERSHIP_ROLES, OWNER, REGIONAL_MANAGER, SERVICE_PROVIDER, SUB_OWNER
from roadside.services.directory import get_directory

logger = logging.getLogger(__name__)


def compute_visibility(job, directory):
    """
    Compute the ordered, deduplicated list of user ids that can see a job

    Order: creator, assigned actor, active OW/sOW/SP users, RMs covering the
    service state, dispatchers sharing the creator's vendor, dispatchers
    sharing a vendor with any OW/sOW/RM.
    """
    visible = []

    def add(user_id):
        if user_id and user_id not in visible:
            visible.append(user_id)

    add(job.provider_id)
    add(job.driver_id)

    for user in directory.active_users([OWNER, SUB_OWNER, SERVICE_PROVIDER]):
        add(user.id)

    state = job.service_state
    if state:
        covering = {region.id for region in directory.regions_covering(state)}
        for user in directory.active_users([REGIONAL_MANAGER]):
            if any(region.id in covering for region in user.regions):
                add(user.id)

    dispatchers = directory.find_users(lambda user: user.is_dispatcher() and bool(user.vendor_id))

    creator = directory.get_user(job.provider_id)
    if creator is not None and creator.vendor_id:
        for user in dispatchers:
            if user.vendor_id == creator.vendor_id:
                add(user.id)

    leadership_vendors = {
        user.vendor_id for user in directory.active_users(LEADERSHIP_ROLES) if user.vendor_id
    }
    for user in dispatchers:
        if user.vendor_id in leadership_vendors:
            add(user.id)

    return visible


def refresh_visibility(job, directory=None):
    """Store a freshly computed visibility list on the job"""
    job.visible_to = compute_visibility(job, directory or get_directory())
    logger.debug("Job %s visible to %d users", job.id, len(job.visible_to))
    return job.visible_to
