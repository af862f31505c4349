"""
Domain events — plain data records emitted after a mutation commits.

Delivery (push, email, in-app) belongs to subscribers. ``publish`` calls them
synchronously in registration order; a failing subscriber is logged and
skipped so it can never undo the mutation that produced the event.

Usage:
    from bookclub.services import domain_events

    domain_events.subscribe("flower.given", notify_recipient)
    domain_events.publish("flower.given", flower_id=7, recipient_id=3)

A subscriber registered for ``"*"`` receives every event.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ── Event names ──────────────────────────────────────────────────────────────

EVENT_APPROVAL_REQUIRED = "event.approval.required"
EVENT_APPROVED = "event.approved"
EVENT_REJECTED = "event.rejected"
EVENT_STARTED = "event.started"
EVENT_COMPLETED = "event.completed"
ENROLLMENT_CREATED = "event.enrollment.created"
LEADER_CLAIMED = "leader.claimed"
LEADER_ASSIGNED = "leader.assigned"
CHECKIN_CREATED = "checkin.created"
FLOWER_GIVEN = "flower.given"
LEADING_PUBLISHED = "leading.published"

WILDCARD = "*"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


_subscribers: dict[str, list] = {}


def subscribe(name: str, handler) -> None:
    _subscribers.setdefault(name, []).append(handler)
    logger.debug("Subscribed %s to %s", getattr(handler, "__name__", handler), name)


def unsubscribe(name: str, handler) -> None:
    handlers = _subscribers.get(name, [])
    if handler in handlers:
        handlers.remove(handler)


def subscribers_for(name: str) -> list:
    return list(_subscribers.get(name, [])) + list(_subscribers.get(WILDCARD, []))


def clear_subscribers() -> None:
    _subscribers.clear()


def publish(name: str, **payload) -> DomainEvent:
    """Build the event record and hand it to every subscriber."""
    event = DomainEvent(name=name, payload=payload)
    logger.info(
        "Domain event %s", name,
        extra={"domain_event": name, "event_id": payload.get("event_id"),
               "user_id": payload.get("user_id")},
    )
    for handler in subscribers_for(name):
        try:
            handler(event)
        except Exception:
            logger.exception(
                "Subscriber %s failed for %s",
                getattr(handler, "__name__", handler), name,
                extra={"domain_event": name},
            )
    return event
