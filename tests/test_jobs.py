"""
Job record tests: PO numbering, creation, edits, duplication, payment,
listing and deletion
"""
import threading

import pytest
from datetime import timedelta

from sqlalchemy import event, insert, text

from config.testing import TestingConfig
from roadside import create_app, db
from roadside.errors import ConcurrentUpdateError, ForbiddenError, InvalidInputError, InvalidStateError
from roadside.models import Counter, Job
from roadside.models.job import CANCELED, COMPLETED, DISPATCHED, PENDING, SCHEDULED
from roadside.models.user import DISPATCHER_CAPABILITY
from roadside.services import jobs
from roadside.services.acceptance import accept_job
from roadside.services.assignment import assign_job
from roadside.services.jobs import (
    commit_job, create_job, delete_job, duplicate_job, list_unsubmitted_jobs, list_visible_jobs,
    mark_payment_submitted, next_po_number, update_job_details,
)
from roadside.utils.helpers import utcnow


class TestPoNumbers:
    """Purchase-order allocation"""

    def test_numbering_starts_at_configured_value(self, make_job, dispatcher):
        """First job on an empty store gets the configured start"""
        first = make_job(dispatcher)
        second = make_job(dispatcher)

        assert first.po == '10000001'
        assert second.po == '10000002'

    def test_numbers_never_repeat(self, make_job, dispatcher):
        """Every job gets its own PO"""
        pos = [make_job(dispatcher).po for _ in range(5)]

        assert len(set(pos)) == 5
        assert pos == sorted(pos)

    def test_counter_seeded_from_legacy_numbers(self, app, dispatcher):
        """Legacy PO-XXXXX numbers seed the counter"""
        db.session.add(Job(po='PO-00042', provider_id=dispatcher.id, status=PENDING))
        db.session.commit()

        assert next_po_number() == '00000043'
        db.session.commit()
        assert db.session.get(Counter, 'po').value == 43

    def test_fallback_when_counter_unavailable(self, app):
        """A broken counter still yields an 8-digit number"""
        Counter.__table__.drop(db.engine)

        po = next_po_number()

        assert len(po) == 8
        assert po.isdigit()

    def test_counter_seeded_by_another_writer(self, app, monkeypatch):
        """Losing the seeding race continues from the other writer's counter"""
        seed = jobs._seed_po_counter

        def seeded_meanwhile():
            db.session.execute(insert(Counter).values(name='po', value=500))
            seed()
        monkeypatch.setattr(jobs, '_seed_po_counter', seeded_meanwhile)

        assert next_po_number() == '00000501'
        db.session.commit()
        assert db.session.get(Counter, 'po').value == 501


@pytest.fixture
def file_app(tmp_path, scheduler, monkeypatch):
    """App on a file-backed SQLite database, one connection per app context"""
    monkeypatch.setattr(TestingConfig, 'SQLALCHEMY_DATABASE_URI', 'sqlite:///{}'.format(tmp_path / 'dispatch.db'))
    app = create_app('testing', scheduler=scheduler)

    with app.app_context():
        db.create_all()
        db.session.add(Counter(name='po', value=app.config['PO_NUMBER_START'] - 1))
        db.session.commit()
        yield app
        db.session.remove()
        db.engine.dispose()


class TestConcurrentPoNumbers:
    """PO allocation from two open transactions"""

    def test_interleaved_allocations_are_distinct(self, file_app):
        """A second allocation waits for the first transaction, then takes the next number"""
        allocated = {}

        def allocate_elsewhere():
            with file_app.app_context():
                allocated['other'] = next_po_number()
                db.session.commit()

        first = next_po_number()
        other = threading.Thread(target=allocate_elsewhere)
        other.start()
        other.join(timeout=0.5)
        assert other.is_alive()

        db.session.commit()
        other.join(timeout=5)

        assert first == '10000001'
        assert allocated['other'] == '10000002'
        assert db.session.get(Counter, 'po').value == 10000002


class TestCreateJob:
    """Job creation"""

    def test_create_pending_job(self, job, dispatcher, published):
        """A job without a scheduled ETA starts Pending"""
        assert job.status == PENDING
        assert job.provider_id == dispatcher.id
        assert job.title == 'Tow for Casey Customer'
        assert job.location == '100 Main St, Austin, TX 78701'
        assert job.status_history[0]['notes'] == 'Job created'
        assert job.visible_to[0] == dispatcher.id
        assert job.driver_id is None
        assert 'jobUpdated' in published.names(dispatcher.id)

    def test_scheduled_eta_creates_scheduled_job(self, make_job, dispatcher):
        """'Scheduled' in the ETA makes the job Scheduled"""
        job = make_job(dispatcher, eta='Scheduled - tomorrow 9am')

        assert job.status == SCHEDULED

    def test_legacy_location_string(self, make_job, dispatcher):
        """String locations are split into structured fields"""
        job = make_job(dispatcher, service_location='1 Elm St, Dallas, TX 75201')

        assert job.service_location['state'] == 'TX'
        assert job.service_location['city'] == 'Dallas'
        assert job.location == '1 Elm St, Dallas, TX 75201'

    def test_vehicle_details_collected(self, make_job, dispatcher):
        job = make_job(dispatcher, vehicle={'make': 'Ford', 'model': 'F-150', 'year': '2019'})

        assert job.vehicle == {'make': 'Ford', 'model': 'F-150', 'year': '2019'}

    @pytest.mark.parametrize('missing', ['service', 'customer_name', 'service_location'])
    def test_required_fields(self, dispatcher, missing):
        """Service, customer name and service location are required"""
        data = {
            'service': 'Jump Start',
            'customer_name': 'Casey Customer',
            'service_location': {'street': '1 Elm St', 'city': 'Dallas', 'state': 'TX', 'zip': '75201'},
        }
        data[missing] = None

        with pytest.raises(InvalidInputError):
            create_job(dispatcher, data)
        assert Job.query.count() == 0


class TestJobDetails:
    """Detail edits"""

    def test_changed_fields_are_audited(self, job, dispatcher):
        update_job_details(job.id, dispatcher, {'customer_phone': '555-0199', 'customer_name': job.customer_name})

        assert job.customer_phone == '555-0199'
        assert job.audit_log[-1]['action'] == 'update_details'
        assert job.audit_log[-1]['details'] == {'fields': ['customer_phone']}
        assert job.audit_log[-1]['performedBy'] == dispatcher.id

    def test_no_changes_no_audit(self, job, dispatcher):
        update_job_details(job.id, dispatcher, {'customer_phone': job.customer_phone})

        assert job.audit_log == []

    def test_location_change_updates_display_and_visibility(self, job, dispatcher, make_user, make_region):
        """Moving the job to another state changes which managers see it"""
        manager = make_user(primary_role='RM', regions=[make_region('West', ['CA'])])
        assert manager.id not in job.visible_to

        update_job_details(job.id, dispatcher, {
            'service_location': {'street': '9 Bay Rd', 'city': 'Oakland', 'state': 'CA', 'zip': '94601'},
        })

        assert job.location == '9 Bay Rd, Oakland, CA 94601'
        assert manager.id in job.visible_to

    def test_title_follows_service(self, job, dispatcher):
        update_job_details(job.id, dispatcher, {'service': 'Lockout'})

        assert job.title == 'Lockout for Casey Customer'


class TestDuplicateJob:
    """Duplication"""

    def test_duplicate_copies_operational_data(self, job, dispatcher, owner, driver, trucks):
        """The copy is a fresh Pending job with a new PO and no assignment"""
        assign_job(job.id, driver.id, requested_by=dispatcher)

        copy = duplicate_job(job.id, owner)

        assert copy.id != job.id
        assert copy.po != job.po
        assert copy.status == PENDING
        assert copy.provider_id == dispatcher.id
        assert copy.customer_name == job.customer_name
        assert copy.service_location == job.service_location
        assert copy.driver_id is None
        assert copy.assigned_at is None
        assert copy.rejected_by == []
        assert copy.audit_log[0]['action'] == 'duplicate'
        assert copy.audit_log[0]['details'] == {'originalJobId': job.id, 'originalPo': job.po}
        assert copy.status_history[-1]['notes'] == 'Duplicated from PO {}'.format(job.po)
        assert dispatcher.id in copy.visible_to


class TestPayment:
    """Payment submission flags"""

    def test_unsubmitted_lists_completed_jobs_only(self, make_job, dispatcher):
        done = make_job(dispatcher)
        done.status = COMPLETED
        make_job(dispatcher)
        db.session.commit()

        assert list_unsubmitted_jobs(dispatcher) == [done]

        mark_payment_submitted(done.id, dispatcher)

        assert done.payment_submitted is True
        assert list_unsubmitted_jobs(dispatcher) == []


class TestListJobs:
    """Dashboard listing"""

    def test_pending_category(self, job, dispatcher):
        assert list_visible_jobs(dispatcher, 'pending') == [job]
        assert list_visible_jobs(dispatcher, 'completed') == []

    def test_unknown_category(self, dispatcher):
        with pytest.raises(InvalidInputError):
            list_visible_jobs(dispatcher, 'someday')

    def test_scheduled_jobs_stay_out_of_in_progress(self, make_job, dispatcher, driver, trucks):
        """A scheduled job keeps its category after dispatch"""
        job = make_job(dispatcher, eta='Scheduled for Friday')
        assign_job(job.id, driver.id, requested_by=dispatcher)
        accept_job(job.id, driver)
        assert job.status == DISPATCHED

        assert list_visible_jobs(dispatcher, 'scheduled') == [job]
        assert list_visible_jobs(dispatcher, 'inProgress') == []

    def test_newest_first(self, make_job, dispatcher):
        older = make_job(dispatcher)
        newer = make_job(dispatcher)

        assert list_visible_jobs(dispatcher) == [newer, older]

    def test_driver_sees_only_live_offers(self, make_job, dispatcher, driver, trucks):
        """Drivers never see expired offers or other drivers' jobs"""
        mine = make_job(dispatcher)
        make_job(dispatcher)
        assign_job(mine.id, driver.id, requested_by=dispatcher)

        assert list_visible_jobs(driver) == [mine]

        mine.auto_reject_at = utcnow() - timedelta(seconds=5)
        db.session.commit()

        assert list_visible_jobs(driver) == []

    def test_query_count_does_not_grow_with_jobs(self, make_job, make_user, dispatcher):
        """Visibility checks reuse one set of user lookups per listing"""
        outsider = make_user(primary_role='N/A', capabilities={DISPATCHER_CAPABILITY: True}, vendor_id='V555')
        statements = []

        def record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        def queries_for_listing():
            db.session.expire_all()
            del statements[:]
            event.listen(db.engine, 'before_cursor_execute', record)
            try:
                assert list_visible_jobs(outsider) == []
            finally:
                event.remove(db.engine, 'before_cursor_execute', record)
            return len(statements)

        for _ in range(2):
            make_job(dispatcher)
        few = queries_for_listing()
        for _ in range(4):
            make_job(dispatcher)

        assert queries_for_listing() == few


class TestDeleteJob:
    """Permanent deletion"""

    def test_requires_leadership(self, job, dispatcher):
        job.status = CANCELED
        db.session.commit()

        with pytest.raises(ForbiddenError):
            delete_job(job.id, dispatcher)

    def test_only_canceled_jobs(self, job, owner):
        with pytest.raises(InvalidStateError):
            delete_job(job.id, owner)
        assert db.session.get(Job, job.id) is not None

    def test_delete_removes_documents(self, app, job, owner, dispatcher, published, tmp_path):
        """Stored documents go with the job; missing files are ignored"""
        app.config['UPLOAD_FOLDER'] = str(tmp_path)
        (tmp_path / 'invoice.pdf').write_bytes(b'%PDF-1.4')
        job.documents = [{'path': 'invoice.pdf', 'name': 'Invoice'}, 'already-gone.pdf']
        job.status = CANCELED
        db.session.commit()
        job_id = job.id

        delete_job(job_id, owner)

        assert not (tmp_path / 'invoice.pdf').exists()
        assert db.session.get(Job, job_id) is None
        assert published.to(dispatcher.id, 'jobRemoved') == [{'jobId': job_id, 'reason': 'deleted'}]

    def test_failed_delete_keeps_documents(self, app, job, owner, tmp_path):
        """Documents stay on disk while the job row survives"""
        app.config['UPLOAD_FOLDER'] = str(tmp_path)
        (tmp_path / 'invoice.pdf').write_bytes(b'%PDF-1.4')
        job.documents = [{'path': 'invoice.pdf', 'name': 'Invoice'}]
        job.status = CANCELED
        db.session.commit()
        db.session.refresh(job)
        db.session.execute(text('UPDATE jobs SET version = version + 1 WHERE id = :id'), {'id': job.id})

        with pytest.raises(ConcurrentUpdateError):
            delete_job(job.id, owner)

        assert (tmp_path / 'invoice.pdf').exists()
        assert db.session.get(Job, job.id) is not None


class TestConcurrentUpdates:
    """Optimistic locking on the job revision"""

    def test_lost_race_raises_conflict(self, job):
        """A write based on a stale revision is refused"""
        job.customer_phone = '555-0142'
        db.session.execute(text('UPDATE jobs SET version = version + 1 WHERE id = :id'), {'id': job.id})

        with pytest.raises(ConcurrentUpdateError):
            commit_job(job)
