"""
Job record store operations: numbering, creation, detail edits,
duplication, payment flags, listing and deletion.
"""
import logging
import os
import time

from flask import current_app
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from roadside import db
from roadside.errors import (
    ConcurrentUpdateError, ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError,
)
from roadside.models import Counter, Job
from roadside.models.job import (
    ACCEPTED, AWAITING_APPROVAL, CANCELED, COMPLETED, DISPATCHED, EN_ROUTE, GOA,
    ON_SITE, PENDING, PENDING_ACCEPTANCE, REJECTED, SCHEDULED, UNSUCCESSFUL, WAITING,
)
from roadside.models.user import DRIVER
from roadside.services.directory import get_directory
from roadside.services.notifier import JOB_REMOVED, get_notifier
from roadside.services.permissions import can_delete_jobs, can_view
from roadside.services.visibility import refresh_visibility
from roadside.utils.helpers import isoformat, parse_location, utcnow

logger = logging.getLogger(__name__)

PO_COUNTER = 'po'

# Plain text fields shared by create, detail edits and duplication
TEXT_FIELDS = (
    'account', 'customer_name', 'customer_phone', 'customer_email',
    'caller_name', 'caller_phone', 'service', 'class_type', 'payment_type',
    'service_location_type', 'dropoff_location_type',
    'internal_notes', 'dispatcher_notes', 'invoice_notes',
)
VEHICLE_FIELDS = ('year', 'make', 'model', 'color', 'license', 'vin', 'odometer')

# Fields carried over to a duplicate
DUPLICATE_FIELDS = TEXT_FIELDS + (
    'title', 'service_location', 'dropoff_location', 'vehicle',
    'pickup_contact', 'dropoff_contact', 'created_by',
)

CATEGORY_STATUSES = {
    'pending': (PENDING, PENDING_ACCEPTANCE, WAITING),
    'inProgress': (DISPATCHED, EN_ROUTE, ON_SITE, AWAITING_APPROVAL, REJECTED, ACCEPTED),
    'scheduled': (SCHEDULED, DISPATCHED),
    'completed': (COMPLETED, GOA, UNSUCCESSFUL),
    'canceled': (CANCELED,),
    'awaitingApproval': (AWAITING_APPROVAL,),
}


def load_job(job_id):
    job = db.session.get(Job, job_id) if job_id else None
    if job is None:
        raise NotFoundError('Job not found')
    return job


def commit_job(job):
    """Commit the session, turning a lost optimistic-lock race into a 409"""
    job_id = job.id
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent update detected on job %s", job_id)
        raise ConcurrentUpdateError('Job was modified by another request. Reload and try again.')


# --- Purchase-order numbers ----------------------------------------------------

def _po_value(po):
    """Numeric part of a PO, accepting the legacy ``PO-XXXXX`` form"""
    if not po:
        return None
    if '-' in po:
        po = po.split('-', 1)[1]
    try:
        return int(po)
    except ValueError:
        return None


def _seed_po_counter():
    """Create the counter row from the highest PO on record"""
    values = [_po_value(po) for (po,) in db.session.query(Job.po).all()]
    values = [value for value in values if value is not None]
    start = current_app.config['PO_NUMBER_START'] - 1
    seed = max(values) if values else start
    try:
        with db.session.begin_nested():
            db.session.add(Counter(name=PO_COUNTER, value=seed))
        logger.info("PO counter seeded at %d", seed)
    except IntegrityError:
        logger.info("PO counter already seeded by another writer")


def next_po_number():
    """
    Allocate the next purchase-order number

    The counter row is incremented with a single UPDATE inside the caller's
    transaction, so concurrent creations never receive the same number.
    Must be called before the caller adds anything to the session: when the
    counter cannot be read the session is rolled back and a timestamp-derived
    number is returned instead.
    """
    width = current_app.config['PO_NUMBER_WIDTH']
    increment = (
        update(Counter)
        .where(Counter.name == PO_COUNTER)
        .values(value=Counter.value + 1)
        .execution_options(synchronize_session=False)
    )
    try:
        if db.session.execute(increment).rowcount == 0:
            _seed_po_counter()
            db.session.execute(increment)
        value = db.session.execute(
            select(Counter.value).where(Counter.name == PO_COUNTER)
        ).scalar_one()
    except SQLAlchemyError:
        logger.exception("Error generating PO number; falling back to timestamp")
        db.session.rollback()
        value = int(str(int(time.time() * 1000))[-width:])
    return str(value).zfill(width)


# --- Creation and edits --------------------------------------------------------

def is_scheduled_eta(eta):
    return bool(eta) and 'scheduled' in str(eta).lower()


def _vehicle_from(data):
    if isinstance(data.get('vehicle'), dict):
        source = data['vehicle']
    else:
        source = data
    return {field: source.get(field) for field in VEHICLE_FIELDS if source.get(field)}


def _has_contact(contact):
    return isinstance(contact, dict) and bool(contact.get('name') or contact.get('number'))


def create_job(creator, data):
    """Create a Pending (or Scheduled) job owned by ``creator``"""
    service = (data.get('service') or '').strip()
    customer_name = (data.get('customer_name') or '').strip()
    service_location = parse_location(data.get('service_location'))
    if not service:
        raise InvalidInputError('Service is required')
    if not customer_name:
        raise InvalidInputError('Customer name is required')
    if not service_location:
        raise InvalidInputError('Service location is required')

    eta = data.get('eta')
    status = SCHEDULED if is_scheduled_eta(eta) else PENDING

    job = Job(
        po=next_po_number(),
        title='{} for {}'.format(service, customer_name),
        status=status,
        eta=eta,
        provider_id=creator.id,
        service_location=service_location,
        dropoff_location=parse_location(data.get('dropoff_location')),
        vehicle=_vehicle_from(data),
        created_by=data.get('created_by') or 'user',
        needs_acceptance=bool(data.get('needs_acceptance', False)),
        payment_submitted=False,
    )
    for field in TEXT_FIELDS:
        if data.get(field) is not None and field not in ('service', 'customer_name'):
            setattr(job, field, data[field])
    job.service = service
    job.customer_name = customer_name
    if _has_contact(data.get('pickup_contact')):
        job.pickup_contact = data['pickup_contact']
    if _has_contact(data.get('dropoff_contact')):
        job.dropoff_contact = data['dropoff_contact']

    job.record_status(status, creator.full_name, notes='Job created')
    db.session.add(job)
    db.session.flush()
    refresh_visibility(job)
    db.session.commit()
    logger.info("Job %s created by %s (PO %s)", job.id, creator.id, job.po)

    get_notifier().job_updated(job)
    return job


def update_job_details(job_id, actor, data):
    """
    Update non-status fields of a job

    Replacing the structured service location changes the derived display
    string and may change which regional managers can see the job.
    """
    job = load_job(job_id)
    changed = []

    for field in TEXT_FIELDS:
        if field in data and data[field] is not None and data[field] != getattr(job, field):
            setattr(job, field, data[field])
            changed.append(field)
    if 'service' in changed or 'customer_name' in changed:
        job.title = '{} for {}'.format(job.service, job.customer_name)

    if data.get('eta'):
        job.eta = data['eta']
        changed.append('eta')

    if data.get('service_location'):
        job.service_location = parse_location(data['service_location'])
        changed.append('service_location')
    if data.get('dropoff_location'):
        job.dropoff_location = parse_location(data['dropoff_location'])
        changed.append('dropoff_location')

    vehicle_updates = _vehicle_from(data)
    if vehicle_updates:
        job.vehicle = dict(job.vehicle or {}, **vehicle_updates)
        changed.append('vehicle')

    for field in ('pickup_contact', 'dropoff_contact'):
        if _has_contact(data.get(field)):
            setattr(job, field, data[field])
            changed.append(field)

    if not changed:
        logger.info("No detail changes for job %s", job_id)
        return job

    job.audit_log.append({
        'action': 'update_details',
        'performedBy': actor.id,
        'timestamp': isoformat(utcnow()),
        'details': {'fields': changed},
    })
    if 'service_location' in changed:
        refresh_visibility(job)
    commit_job(job)
    logger.info("Job %s details updated by %s: %s", job_id, actor.id, ', '.join(changed))

    get_notifier().job_updated(job)
    return job


def duplicate_job(job_id, actor):
    """Copy a job's operational data into a fresh Pending job with a new PO"""
    original = load_job(job_id)

    job = Job(po=next_po_number(), status=PENDING, provider_id=original.provider_id, payment_submitted=False)
    for field in DUPLICATE_FIELDS:
        value = getattr(original, field)
        if isinstance(value, dict):
            value = dict(value)
        setattr(job, field, value)

    job.audit_log = [{
        'action': 'duplicate',
        'performedBy': actor.id,
        'timestamp': isoformat(utcnow()),
        'details': {'originalJobId': original.id, 'originalPo': original.po},
    }]
    job.record_status(PENDING, actor.full_name, notes='Duplicated from PO {}'.format(original.po))
    db.session.add(job)
    db.session.flush()
    refresh_visibility(job)
    db.session.commit()
    logger.info("Job %s duplicated as %s by %s", original.id, job.id, actor.id)

    get_notifier().job_updated(job)
    return job


# --- Payment -------------------------------------------------------------------

def mark_payment_submitted(job_id, actor):
    job = load_job(job_id)
    job.payment_submitted = True
    commit_job(job)
    logger.info("Job %s marked payment-submitted by %s", job_id, actor.id)
    get_notifier().job_updated(job)
    return job


def list_unsubmitted_jobs(user):
    """Completed jobs created by ``user`` that are not yet submitted for payment"""
    return (
        Job.query
        .filter_by(provider_id=user.id, status=COMPLETED, payment_submitted=False)
        .order_by(Job.created_at.desc())
        .all()
    )


# --- Listing -------------------------------------------------------------------

def _is_expired_offer(job, now):
    return job.status == PENDING_ACCEPTANCE and job.auto_reject_at is not None and now > job.auto_reject_at


def _in_category(job, category):
    scheduled = is_scheduled_eta(job.eta) and job.status in CATEGORY_STATUSES['scheduled']
    if category == 'scheduled':
        return scheduled
    if category == 'inProgress' and scheduled:
        return False
    return job.status in CATEGORY_STATUSES[category]


def list_visible_jobs(user, category=None):
    """
    Jobs ``user`` can view, newest first, optionally narrowed to a dashboard
    category. Driver-role users only get their own live offers and jobs.
    """
    if category and category not in CATEGORY_STATUSES:
        raise InvalidInputError('Unknown category: {}'.format(category))

    directory = get_directory(snapshot=True)
    query = Job.query
    if user.primary_role == DRIVER:
        query = query.filter(or_(Job.driver_id == user.id, Job.driver == user.full_name))
    jobs = [job for job in query.order_by(Job.created_at.desc()).all() if can_view(user, job, directory)]

    if user.primary_role == DRIVER:
        now = utcnow()
        jobs = [
            job for job in jobs
            if (job.driver_id == user.id or job.driver == user.full_name) and not _is_expired_offer(job, now)
        ]

    if category:
        jobs = [job for job in jobs if _in_category(job, category)]
    return jobs


# --- Deletion ------------------------------------------------------------------

def _document_path(document):
    if isinstance(document, dict):
        return document.get('path')
    return document


def delete_job(job_id, user):
    """Permanently delete a canceled job together with its stored documents"""
    if not can_delete_jobs(user):
        raise ForbiddenError('You do not have permission to delete jobs')

    job = load_job(job_id)
    if job.status != CANCELED:
        raise InvalidStateError('Only cancelled jobs can be permanently deleted')

    paths = [_document_path(document) for document in job.documents or []]
    audience = list(job.visible_to or [])
    db.session.delete(job)
    commit_job(job)
    logger.info("Job %s permanently deleted by %s", job_id, user.id)

    # files go only after the row is gone
    upload_folder = current_app.config['UPLOAD_FOLDER']
    for path in paths:
        if not path:
            continue
        full_path = os.path.join(upload_folder, path)
        try:
            if os.path.exists(full_path):
                os.remove(full_path)
            else:
                logger.info("Document %s for job %s already gone", full_path, job_id)
        except OSError:
            logger.warning("Error deleting document %s for job %s", full_path, job_id, exc_info=True)

    get_notifier().fan_out(audience, JOB_REMOVED, {'jobId': job_id, 'reason': 'deleted'})
    return job_id
