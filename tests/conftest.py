import itertools
from datetime import datetime, timedelta

import pytest

from app import create_app
from auth import generate_token
from model import db, User, UserRole, Event


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role=UserRole.SCANNER, email=None, name="Test User"):
        n = next(counter)
        user = User(
            external_id=f"subject-{n}",
            email=email if email is not None else f"user{n}@example.com",
            name=name,
            role=role
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_event(app):
    def _make(organizer, title="Launch Party", days_ahead=7):
        event = Event(
            title=title,
            description="An evening of demos",
            location="Main Hall",
            date=datetime.utcnow() + timedelta(days=days_ahead),
            organizer_id=organizer.id
        )
        db.session.add(event)
        db.session.commit()
        return event

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {generate_token(user)}"}

    return _headers


@pytest.fixture
def organizer(make_user):
    return make_user(role=UserRole.ORGANIZER, name="Olivia Organizer")


@pytest.fixture
def scanner(make_user):
    return make_user(role=UserRole.SCANNER, name="Sam Scanner")


@pytest.fixture
def attendee(make_user):
    return make_user(role=UserRole.ATTENDEE, name="Alex Attendee")
