from datetime import date, timedelta

import pytest

from moveify import create_app
from moveify.auth import issue_token
from moveify.ledger import CompletionLedger
from moveify.models import db, User
from moveify.store import ProgramStore

# Wednesday
TODAY = date(2025, 6, 18)
# Wednesday, two weeks earlier
START = TODAY - timedelta(days=14)

REHAB_EXERCISES = [
    {'name': 'Squat', 'category': 'legs', 'sets': 3, 'reps': 10},
    {'name': 'Push-up', 'category': 'upper body', 'sets': 3, 'reps': 8},
    {'name': 'Plank', 'category': 'core', 'sets': 3, 'reps': 30},
]


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return db.session


def _user(email, name, role):
    user = User(email=email, name=name, role=role)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def clinician(app):
    return _user('clinician@example.com', 'Dana Clinician', 'clinician')


@pytest.fixture
def patient(app):
    return _user('patient@example.com', 'Sam Patient', 'patient')


@pytest.fixture
def other_patient(app):
    return _user('other@example.com', 'Alex Other', 'patient')


@pytest.fixture
def auth_header(app):
    def _make(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}
    return _make


@pytest.fixture
def make_program(session, patient):
    """Creates a program for `patient`; keyword arguments override the defaults"""
    def _make(**overrides):
        options = {
            'patient_id': patient.id,
            'name': 'Knee rehab',
            'exercises': REHAB_EXERCISES,
            'frequency': ['Mon', 'Wed', 'Fri'],
            'start_date': START,
            'block_type': 'introductory',
            'track_effort': True,
            'track_pain': True,
            'today': START,
        }
        options.update(overrides)
        return ProgramStore(session).create_program(**options)
    return _make


@pytest.fixture
def log_completion(session):
    """Logs an exercise for a day and commits"""
    def _log(exercise, day, **values):
        completion = CompletionLedger(session).record(exercise, exercise.program.patient_id, day, **values)
        session.commit()
        return completion
    return _log
