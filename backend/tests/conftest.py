"""Shared fixtures: a testing app whose engine runs on a manual clock."""
from datetime import date, datetime, time

import pytest
from flask_jwt_extended import create_access_token

from rollcall import create_app, db
from rollcall.engine import AttendanceEngine
from rollcall.models import ClassSession, Enrollment, EnrollmentStatus, User, UserRole
from rollcall.services.clock import ManualClock

CLASS_ID = 7
SESSION_DATE = date(2024, 3, 4)
CLOCK_START = datetime(2024, 3, 4, 9, 55)


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime.combine(SESSION_DATE, time(hour, minute, second))


@pytest.fixture
def app():
    """Create test app."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        AttendanceEngine(app, clock=ManualClock(CLOCK_START))
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def engine(app):
    return app.extensions['rollcall']


@pytest.fixture
def clock(engine):
    return engine.clock


@pytest.fixture
def events(engine):
    return engine.events


@pytest.fixture
def make_user(app):
    def _make_user(email, role=UserRole.STUDENT, password='password123', name=None):
        user = User(email=email, name=name or email.split('@')[0], role=role)
        user.set_password(password)
        return user.save()
    return _make_user


@pytest.fixture
def teacher(make_user):
    return make_user('teacher@example.com', role=UserRole.TEACHER)


@pytest.fixture
def students(make_user):
    return [make_user(f'student{i}@example.com') for i in range(1, 4)]


@pytest.fixture
def enroll(app):
    def _enroll(student_id, class_id=CLASS_ID, status=EnrollmentStatus.ACTIVE):
        return Enrollment(student_id=student_id, class_id=class_id, status=status).save()
    return _enroll


@pytest.fixture
def enrolled_students(students, enroll):
    for student in students:
        enroll(student.id)
    return students


@pytest.fixture
def make_session(app, teacher):
    counter = {'number': 0}

    def _make_session(class_id=CLASS_ID, day=SESSION_DATE, start=time(10, 0), end=time(11, 0), instructor_id=None):
        counter['number'] += 1
        return ClassSession(
            class_id=class_id,
            instructor_id=instructor_id if instructor_id is not None else teacher.id,
            session_number=counter['number'],
            date=day,
            start_time=start,
            end_time=end,
            room_location='B-204'
        ).save()
    return _make_session


@pytest.fixture
def session(make_session):
    return make_session()


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user):
        token = create_access_token(identity=str(user.id), additional_claims={'role': user.role.value})
        return {'Authorization': f'Bearer {token}'}
    return _auth_headers


def current_token(engine, session_id) -> str:
    """The token string an instructor screen would be showing right now."""
    return engine.sessions.get(session_id).qr_token
