"""Domain event publishing: subscription, wildcard delivery, failure isolation."""

import pytest

from bookclub.models import db
from bookclub.models.reading_event import ReadingEvent
from bookclub.services import domain_events
from bookclub.services import event_lifecycle as lifecycle

from conftest import START


@pytest.mark.unit
class TestPublish:
    def test_subscriber_receives_payload(self):
        seen = []
        domain_events.subscribe("flower.given", seen.append)
        event = domain_events.publish("flower.given", flower_id=7, recipient_id=3)
        assert seen == [event]
        assert event.payload == {"flower_id": 7, "recipient_id": 3}

    def test_wildcard_sees_everything(self):
        seen = []
        domain_events.subscribe(domain_events.WILDCARD, lambda e: seen.append(e.name))
        domain_events.publish("a.b")
        domain_events.publish("c.d")
        assert seen == ["a.b", "c.d"]

    def test_unsubscribe(self):
        seen = []
        domain_events.subscribe("x", seen.append)
        domain_events.unsubscribe("x", seen.append)
        domain_events.publish("x")
        assert seen == []

    def test_failing_subscriber_is_isolated(self, caplog):
        seen = []

        def broken(event):
            raise RuntimeError("mail server down")

        domain_events.subscribe("x", broken)
        domain_events.subscribe("x", seen.append)
        domain_events.publish("x", event_id=1)
        assert len(seen) == 1
        assert "Subscriber broken failed for x" in caplog.text

    def test_to_dict(self):
        data = domain_events.publish("x", event_id=5).to_dict()
        assert data["name"] == "x"
        assert data["payload"] == {"event_id": 5}
        assert isinstance(data["occurred_at"], str)


@pytest.mark.unit
def test_failing_subscriber_does_not_undo_transition(make_event, admin):
    def broken(event):
        raise RuntimeError("push gateway offline")

    domain_events.subscribe(domain_events.EVENT_APPROVED, broken)
    event = lifecycle.approve(make_event("pending"), admin)
    db.session.expire_all()
    assert db.session.get(ReadingEvent, event.id).lifecycle_stage == "enrolling"


@pytest.mark.unit
def test_lifecycle_emits_in_order(make_event, enroll_users, leader, admin):
    names = []
    domain_events.subscribe(domain_events.WILDCARD, lambda e: names.append(e.name))
    event = make_event("pending")
    lifecycle.approve(event, admin)
    enroll_users(event, 1)
    lifecycle.start(event, leader, START)
    assert names == [
        domain_events.EVENT_APPROVAL_REQUIRED,
        domain_events.EVENT_APPROVED,
        domain_events.EVENT_STARTED,
    ]
