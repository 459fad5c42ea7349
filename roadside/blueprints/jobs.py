"""
Jobs blueprint
Job lifecycle API: creation, assignment, acceptance, status and approvals
"""
from functools import wraps

from flask import Blueprint, jsonify, request

from roadside.errors import ForbiddenError
from roadside.extensions import limiter
from roadside.services import acceptance, assignment, jobs, status
from roadside.services.jobs import load_job
from roadside.services.permissions import can_view
from roadside.utils.auth import require_auth

jobs_bp = Blueprint('jobs', __name__)


def job_access_required(f):
    """Load the job (404) and check the caller can view it (403)"""
    @wraps(f)
    def decorated_function(user, job_id, *args, **kwargs):
        job = load_job(job_id)
        if not can_view(user, job):
            raise ForbiddenError('You do not have permission to access this job')
        return f(user, job, *args, **kwargs)
    return decorated_function


def _body():
    return request.get_json(silent=True) or {}


@jobs_bp.route('', methods=['GET'])
@require_auth
def list_jobs(user):
    """
    List jobs visible to the caller

    GET /api/jobs?category=pending|inProgress|scheduled|completed|canceled|awaitingApproval
    """
    found = jobs.list_visible_jobs(user, request.args.get('category'))
    return jsonify({'jobs': [job.to_dict() for job in found], 'total': len(found)}), 200


@jobs_bp.route('', methods=['POST'])
@limiter.limit("30 per minute")
@require_auth
def create_job(user):
    """
    Create a job

    POST /api/jobs
    Body: {
        "service": "Tow",
        "customer_name": "...",
        "service_location": {"street", "city", "state", "zip", "country"} or "street, city, ST zip",
        "eta": "...", ...
    }
    """
    job = jobs.create_job(user, _body())
    return jsonify(job.to_dict()), 201


@jobs_bp.route('/unsubmitted', methods=['GET'])
@require_auth
def unsubmitted_jobs(user):
    """Completed jobs created by the caller that are not yet submitted for payment"""
    found = jobs.list_unsubmitted_jobs(user)
    return jsonify({'jobs': [job.to_dict() for job in found], 'total': len(found)}), 200


@jobs_bp.route('/<job_id>', methods=['GET'])
@require_auth
@job_access_required
def get_job(user, job):
    return jsonify(job.to_dict()), 200


@jobs_bp.route('/<job_id>/details', methods=['PUT'])
@require_auth
@job_access_required
def update_details(user, job):
    job = jobs.update_job_details(job.id, user, _body())
    return jsonify(job.to_dict()), 200


@jobs_bp.route('/<job_id>', methods=['PUT'])
@require_auth
@job_access_required
def update_status(user, job):
    """
    Update job status

    PUT /api/jobs/<id>
    Body: {
        "status": "En Route",
        "cancellation_reason": "...", "goa_reason": "...", "rejection_reason": "...",
        "driver_id": "uuid", "driver": "Name", "truck": "Truck 1"
    }
    """
    data = _body()
    job = status.update_job_status(
        job.id, user,
        status=data.get('status'),
        cancellation_reason=data.get('cancellation_reason'),
        goa_reason=data.get('goa_reason'),
        rejection_reason=data.get('rejection_reason'),
        driver_id=data.get('driver_id'),
        driver_name=data.get('driver'),
        truck=data.get('truck'),
    )
    return jsonify(job.to_dict()), 200


@jobs_bp.route('/<job_id>/assign', methods=['PUT'])
@require_auth
@job_access_required
def assign(user, job):
    """
    Assign a driver or SP

    PUT /api/jobs/<id>/assign
    Body: {
        "driver_id": "uuid",
        "truck": "vehicle name or id" (optional),
        "preserve_assigned_at": false,
        "original_assigned_at": "ISO timestamp" (optional)
    }
    """
    data = _body()
    was_assigned = job.driver_id
    job = assignment.assign_job(
        job.id, data.get('driver_id'),
        requested_by=user,
        vehicle_ref=data.get('truck'),
        preserve_assigned_at=bool(data.get('preserve_assigned_at')),
        original_assigned_at=data.get('original_assigned_at'),
    )
    verb = 'reassigned' if was_assigned and was_assigned != job.driver_id else 'assigned'
    return jsonify({'message': 'Job {} successfully'.format(verb), 'job': job.to_dict()}), 200


@jobs_bp.route('/<job_id>/accept', methods=['PUT'])
@require_auth
@job_access_required
def accept(user, job):
    job = acceptance.accept_job(job.id, user, eta=_body().get('eta'))
    return jsonify({'message': 'Job accepted successfully', 'job': job.to_dict()}), 200


@jobs_bp.route('/<job_id>/reject', methods=['PUT'])
@require_auth
@job_access_required
def reject(user, job):
    job = acceptance.reject_job(job.id, user, _body().get('rejection_reason'))
    return jsonify({'message': 'Job rejected successfully', 'job': job.to_dict()}), 200


@jobs_bp.route('/<job_id>/unsuccessful', methods=['PUT'])
@require_auth
@job_access_required
def report_unsuccessful(user, job):
    job = status.report_unsuccessful(job.id, user, _body().get('unsuccessful_reason'))
    return jsonify({
        'message': 'Job unsuccessful request submitted successfully (awaiting approval)',
        'job': job.to_dict(),
    }), 200


@jobs_bp.route('/<job_id>/approve-unsuccessful', methods=['PUT'])
@require_auth
@job_access_required
def approve_unsuccessful(user, job):
    job = status.approve_unsuccessful(job.id, user)
    return jsonify({'message': 'Unsuccessful request approved successfully', 'job': job.to_dict()}), 200


@jobs_bp.route('/<job_id>/deny-unsuccessful', methods=['PUT'])
@require_auth
@job_access_required
def deny_unsuccessful(user, job):
    job = status.deny_unsuccessful(job.id, user)
    return jsonify({
        'message': 'Unsuccessful request denied successfully. Job marked as canceled.',
        'job': job.to_dict(),
    }), 200


@jobs_bp.route('/<job_id>/approve-goa', methods=['PUT'])
@require_auth
@job_access_required
def approve_goa(user, job):
    job = status.approve_goa(job.id, user)
    return jsonify({'message': 'GOA request approved successfully', 'job': job.to_dict()}), 200


@jobs_bp.route('/<job_id>/deny-goa', methods=['PUT'])
@require_auth
@job_access_required
def deny_goa(user, job):
    job = status.deny_goa(job.id, user)
    return jsonify({'message': 'GOA request denied successfully', 'job': job.to_dict()}), 200


@jobs_bp.route('/<job_id>/payment-submitted', methods=['PUT'])
@require_auth
@job_access_required
def payment_submitted(user, job):
    job = jobs.mark_payment_submitted(job.id, user)
    return jsonify(job.to_dict()), 200


@jobs_bp.route('/<job_id>/duplicate', methods=['POST'])
@require_auth
@job_access_required
def duplicate(user, job):
    job = jobs.duplicate_job(job.id, user)
    return jsonify(job.to_dict()), 201


@jobs_bp.route('/<job_id>', methods=['DELETE'])
@require_auth
@job_access_required
def delete(user, job):
    jobs.delete_job(job.id, user)
    return jsonify({'success': True, 'message': 'Job deleted successfully'}), 200
