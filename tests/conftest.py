"""
Shared pytest fixtures for the Book Club Reading Events test suite.

Provides:
    - app: Flask application with a FixedClock (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clock: The app's FixedClock, reset to START for every test
    - make_user / make_event / enroll_users: ORM factories
    - leader, admin: Pre-created users
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from bookclub import create_app
from bookclub.core.clock import FixedClock
from bookclub.models import db as _db
from bookclub.models.enrollment import Enrollment
from bookclub.models.user import User
from bookclub.services import domain_events
from bookclub.services import event_lifecycle as lifecycle

# Day 1 of the default seven-day event
START = date(2026, 3, 2)
END = START + timedelta(days=6)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing", clock=FixedClock(START))


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    app.extensions["clock"].set(START)
    domain_events.clear_subscribers()
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    domain_events.clear_subscribers()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def clock(app):
    return app.extensions["clock"]


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(nickname=None, role="user"):
        counter["n"] += 1
        user = User(nickname=nickname or f"reader-{counter['n']}", role=role)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def leader(make_user):
    return make_user("group-leader")


@pytest.fixture()
def admin(make_user):
    return make_user("moderator", role="admin")


@pytest.fixture()
def make_event(leader, admin):
    """Create an event through the lifecycle service and drive it to ``stage``.

    Stages reached: draft, pending, rejected, enrolling.
    """

    def _make(stage="draft", start=START, end=END, **fields):
        payload = {
            "title": "Spring Reading",
            "book_name": "The Name of the Rose",
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "min_participants": 1,
        }
        payload.update(fields)
        event = lifecycle.create_event(leader, payload, submit=stage != "draft")
        if stage == "rejected":
            lifecycle.reject(event, admin)
        if stage == "enrolling":
            lifecycle.approve(event, admin)
        return event

    return _make


@pytest.fixture()
def enroll_users(make_user):
    """Insert participant enrollments directly (bypasses the stage rule)."""

    def _enroll(event, count, enrollment_type="participant"):
        users = []
        for i in range(count):
            user = make_user()
            _db.session.add(Enrollment(
                user_id=user.id,
                event_id=event.id,
                enrollment_type=enrollment_type,
                enrollment_date=datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc) + timedelta(minutes=i),
            ))
            users.append(user)
        _db.session.commit()
        return users

    return _enroll


@pytest.fixture()
def running_event(make_event, enroll_users, leader):
    """In-progress voluntary event with three participants; returns (event, participants)."""
    event = make_event("enrolling")
    participants = enroll_users(event, 3)
    lifecycle.start(event, leader, START)
    return event, participants
