"""Job model"""
from sqlalchemy.ext.mutable import MutableList

from roadside import db
from roadside.utils.helpers import format_location, isoformat, utcnow
from .base import BaseModel

# Lifecycle statuses
PENDING = 'Pending'
PENDING_ACCEPTANCE = 'Pending Acceptance'
SCHEDULED = 'Scheduled'
DISPATCHED = 'Dispatched'
EN_ROUTE = 'En Route'
ON_SITE = 'On Site'
AWAITING_APPROVAL = 'Awaiting Approval'
ACCEPTED = 'Accepted'
COMPLETED = 'Completed'
CANCELED = 'Canceled'
WAITING = 'Waiting'
REJECTED = 'Rejected'
GOA = 'GOA'
UNSUCCESSFUL = 'Unsuccessful'

JOB_STATUSES = (
    PENDING, PENDING_ACCEPTANCE, SCHEDULED, DISPATCHED, EN_ROUTE, ON_SITE,
    AWAITING_APPROVAL, ACCEPTED, COMPLETED, CANCELED, WAITING, REJECTED, GOA,
    UNSUCCESSFUL,
)
TERMINAL_STATUSES = frozenset([COMPLETED, CANCELED, UNSUCCESSFUL])

# Approval sub-states (GOA and unsuccessful requests)
APPROVAL_PENDING = 'pending'
APPROVAL_APPROVED = 'approved'
APPROVAL_REJECTED = 'rejected'

# rejected_by entry types
MANUAL_REJECTION = 'manual-rejection'
AUTO_REJECTION = 'auto-rejection'

SYSTEM_ACTOR = 'System'


def _json_list():
    return db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)


JSON_LIST_FIELDS = ('status_history', 'rejected_by', 'previous_drivers', 'audit_log', 'visible_to', 'documents')


class Job(BaseModel):
    """
    Job model - a roadside service request and its full history
    """
    __tablename__ = 'jobs'

    # Job identification
    po = db.Column(db.String(20), nullable=False, unique=True, index=True)
    title = db.Column(db.String(255))

    # Customer / caller
    account = db.Column(db.String(255))
    customer_name = db.Column(db.String(255))
    customer_phone = db.Column(db.String(50))
    customer_email = db.Column(db.String(255))
    caller_name = db.Column(db.String(255))
    caller_phone = db.Column(db.String(50))

    # Classification
    service = db.Column(db.String(100))
    class_type = db.Column(db.String(50))
    payment_type = db.Column(db.String(50))

    # Locations: {street, city, state, zip, country}
    service_location = db.Column(db.JSON)
    service_location_type = db.Column(db.String(100))
    dropoff_location = db.Column(db.JSON)
    dropoff_location_type = db.Column(db.String(100))

    # Customer's vehicle: {year, make, model, color, license, vin, odometer}
    vehicle = db.Column(db.JSON, default=dict)
    pickup_contact = db.Column(db.JSON)
    dropoff_contact = db.Column(db.JSON)

    internal_notes = db.Column(db.Text)
    dispatcher_notes = db.Column(db.Text)
    invoice_notes = db.Column(db.Text)
    created_by = db.Column(db.String(50), default='user')

    # Parties
    provider_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    driver_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True, index=True)
    driver = db.Column(db.String(255))
    truck = db.Column(db.String(100))

    # Lifecycle
    status = db.Column(db.String(30), nullable=False, default=PENDING, index=True)
    needs_acceptance = db.Column(db.Boolean, nullable=False, default=False)
    eta = db.Column(db.String(255))

    # Timing
    assigned_at = db.Column(db.DateTime)
    first_assigned_at = db.Column(db.DateTime)
    accepted_at = db.Column(db.DateTime)
    rejected_at = db.Column(db.DateTime)
    auto_reject_at = db.Column(db.DateTime)
    auto_reject_timer_set_at = db.Column(db.DateTime)
    dispatched_at = db.Column(db.DateTime)
    en_route_at = db.Column(db.DateTime)
    on_site_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    # Reasons
    rejection_reason = db.Column(db.Text)
    cancellation_reason = db.Column(db.Text)

    # GOA approval sub-state
    goa_reason = db.Column(db.Text)
    approval_status = db.Column(db.String(20))
    approved_by = db.Column(db.String(36))
    approved_at = db.Column(db.DateTime)
    goa_rejection_notification = db.Column(db.Boolean, nullable=False, default=False)

    # Unsuccessful approval sub-state
    unsuccessful_reason = db.Column(db.Text)
    approval_status_unsuccessful = db.Column(db.String(20))
    unsuccessful_approved_by = db.Column(db.String(36))
    unsuccessful_approved_at = db.Column(db.DateTime)

    payment_submitted = db.Column(db.Boolean, nullable=False, default=False)

    # Append-only logs
    status_history = _json_list()
    rejected_by = _json_list()
    previous_drivers = _json_list()
    audit_log = _json_list()

    # Materialized visibility and attached files
    visible_to = _json_list()
    documents = _json_list()

    # Optimistic concurrency revision
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        db.Index('idx_jobs_provider_status', 'provider_id', 'status'),
    )

    def __init__(self, **kwargs):
        # Column defaults only apply at INSERT; logs are appended to before that
        for name in JSON_LIST_FIELDS:
            kwargs.setdefault(name, [])
        super().__init__(**kwargs)

    def __repr__(self):
        return f'<Job {self.po} - {self.status}>'

    @property
    def location(self):
        """Display string, always derived from the structured service location"""
        return format_location(self.service_location)

    @property
    def service_state(self):
        return (self.service_location or {}).get('state')

    def record_status(self, status, updated_by, notes=None, timestamp=None):
        """Append one entry to the status history"""
        entry = {
            'status': status,
            'timestamp': isoformat(timestamp or utcnow()),
            'updatedBy': updated_by,
        }
        if notes:
            entry['notes'] = notes
        self.status_history.append(entry)
        return entry

    def record_rejection(self, driver_id, driver_name, reason, rejection_type, timestamp, **extra):
        """Append one entry to the rejection log"""
        entry = {
            'driverId': driver_id,
            'driverName': driver_name,
            'reason': reason,
            'timestamp': isoformat(timestamp),
            'type': rejection_type,
        }
        entry.update(extra)
        self.rejected_by.append(entry)
        return entry

    def clear_assignment(self):
        """Drop the assigned actor and everything tied to the pending acceptance.

        first_assigned_at is kept for SLA reporting.
        """
        self.driver_id = None
        self.driver = None
        self.truck = None
        self.assigned_at = None
        self.auto_reject_at = None
        self.auto_reject_timer_set_at = None
        self.needs_acceptance = False

    def clear_acceptance_timer(self):
        self.auto_reject_at = None
        self.auto_reject_timer_set_at = None

    def last_reassignment_at(self):
        """Time of the most recent reassignment, or None"""
        if not self.previous_drivers:
            return None
        return self.previous_drivers[-1].get('reassignedAt')

    def summary(self):
        """Short description used in targeted socket events"""
        return {
            'id': self.id,
            'po': self.po,
            'service': self.service,
            'location': self.location,
            'status': self.status,
            'eta': self.eta,
            'autoRejectAt': isoformat(self.auto_reject_at),
            'needsAcceptance': self.needs_acceptance,
        }

    def to_dict(self):
        data = super().to_dict()
        data['location'] = self.location
        data['dropoff_location_string'] = format_location(self.dropoff_location)
        for name in JSON_LIST_FIELDS:
            data[name] = list(getattr(self, name) or [])
        return data
