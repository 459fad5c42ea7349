"""
Pytest configuration and fixtures for the roadside dispatch tests
"""
import pytest
from datetime import datetime, timedelta, timezone

import jwt
from apscheduler.jobstores.base import ConflictingIdError, JobLookupError

from roadside import create_app, db
from roadside.models import Region, User, Vehicle
from roadside.models.user import DISPATCHER_CAPABILITY, DRIVER, DRIVER_CAPABILITY
from roadside.models.vehicle import ON_DUTY
from roadside.services.jobs import create_job
from roadside.services.notifier import Notifier


class ScheduledCall:
    def __init__(self, func, run_date, args):
        self.func = func
        self.run_date = run_date
        self.args = args


class ManualScheduler:
    """Stands in for APScheduler; timers only run when a test fires them"""

    def __init__(self):
        self.jobs = {}
        self.running = False

    def start(self):
        self.running = True

    def add_job(self, func, trigger=None, run_date=None, args=None, id=None,
                replace_existing=False, **kwargs):
        if id in self.jobs and not replace_existing:
            raise ConflictingIdError(id)
        self.jobs[id] = ScheduledCall(func, run_date, list(args or []))
        return self.jobs[id]

    def remove_job(self, job_id):
        try:
            del self.jobs[job_id]
        except KeyError:
            raise JobLookupError(job_id)

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def fire(self, job_id):
        call = self.jobs.pop(job_id)
        return call.func(*call.args)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture(scope='function')
def app(scheduler):
    """Create application instance for testing"""
    app = create_app('testing', scheduler=scheduler)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def coordinator(app):
    return app.extensions['acceptance']


class PublishedEvents(list):
    """(user_id, event, payload) tuples in publish order"""

    def to(self, user_id, event=None):
        return [
            payload for target, name, payload in self
            if target == user_id and (event is None or name == event)
        ]

    def names(self, user_id):
        return [name for target, name, _ in self if target == user_id]


@pytest.fixture
def published(monkeypatch):
    """Record every notification instead of emitting it"""
    events = PublishedEvents()

    def record(self, user_id, event, payload):
        events.append((user_id, event, payload))
        return True

    monkeypatch.setattr(Notifier, 'publish', record)
    return events


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def factory(primary_role='N/A', capabilities=None, vendor_id='V100', on_duty=True,
                is_active=True, regions=(), first_name=None, last_name='Tester'):
        counter['n'] += 1
        user = User(
            email='user{}@example.com'.format(counter['n']),
            first_name=first_name or 'User{}'.format(counter['n']),
            last_name=last_name,
            primary_role=primary_role,
            secondary_roles=capabilities,
            vendor_id=vendor_id,
            on_duty=on_duty,
            is_active=is_active,
        )
        user.regions = list(regions)
        db.session.add(user)
        db.session.commit()
        return user
    return factory


@pytest.fixture
def make_region(app):
    def factory(name, states):
        region = Region(name=name, states=[{'country': 'USA', 'state': state} for state in states])
        db.session.add(region)
        db.session.commit()
        return region
    return factory


@pytest.fixture
def make_vehicle(app):
    def factory(name, vendor_id='V100', status=ON_DUTY, driver=None):
        vehicle = Vehicle(name=name, type='Flatbed', vendor_id=vendor_id, status=status)
        if driver is not None:
            vehicle.driver_id = driver.id
            vehicle.driver_name = driver.full_name
            vehicle.is_available = False
        db.session.add(vehicle)
        db.session.commit()
        return vehicle
    return factory


@pytest.fixture
def owner(make_user):
    return make_user(primary_role='OW', vendor_id='OWNER001', first_name='Olivia', last_name='Owner')


@pytest.fixture
def dispatcher(make_user):
    return make_user(
        primary_role='N/A', capabilities={DISPATCHER_CAPABILITY: True, DRIVER_CAPABILITY: False},
        vendor_id='V100', first_name='Dana', last_name='Dispatch',
    )


@pytest.fixture
def driver(make_user):
    return make_user(primary_role=DRIVER, capabilities=[DRIVER_CAPABILITY], vendor_id='V100',
                     first_name='Xavier', last_name='Driver')


@pytest.fixture
def other_driver(make_user):
    return make_user(primary_role=DRIVER, capabilities=[DRIVER_CAPABILITY], vendor_id='V100',
                     first_name='Yolanda', last_name='Driver')


@pytest.fixture
def service_provider(make_user):
    return make_user(primary_role='SP', vendor_id='SP200', first_name='Sam', last_name='Provider')


@pytest.fixture
def trucks(make_vehicle):
    return [make_vehicle('Truck 1'), make_vehicle('Truck 2'), make_vehicle('SP Truck', vendor_id='SP200')]


@pytest.fixture
def make_job(app, published):
    def factory(creator, state='TX', **data):
        payload = {
            'service': 'Tow',
            'customer_name': 'Casey Customer',
            'customer_phone': '555-0100',
            'service_location': {
                'street': '100 Main St', 'city': 'Austin', 'state': state, 'zip': '78701', 'country': 'USA',
            },
            'class_type': 'Light Duty',
        }
        payload.update(data)
        return create_job(creator, payload)
    return factory


@pytest.fixture
def job(make_job, dispatcher):
    return make_job(dispatcher)


@pytest.fixture
def token_for(app):
    def factory(user, expires_in=timedelta(hours=1)):
        return jwt.encode(
            {'user_id': user.id, 'exp': datetime.now(timezone.utc) + expires_in},
            app.config['JWT_SECRET'],
            algorithm='HS256',
        )
    return factory


@pytest.fixture
def headers_for(token_for):
    def factory(user):
        return {
            'Authorization': 'Bearer {}'.format(token_for(user)),
            'Content-Type': 'application/json',
        }
    return factory
