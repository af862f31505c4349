"""
Event Lifecycle State Machine.

Stages are derived from (status, approval_status):

    draft ──submit──▶ pending ──approve──▶ enrolling ──start──▶ in_progress ──complete──▶ completed
                        │  ▲
                 reject │  │ submit (resubmission)
                        ▼  │
                      rejected

Only draft and rejected events may be destroyed. Status never leaves
draft/enrolling unless approval_status is 'approved'; every transition below
goes through ``EVENT_TRANSITIONS`` so no other path can move it.

Concurrency: each transition takes a row lock (SELECT … FOR UPDATE where the
backend supports it) and the ``version`` column makes the UPDATE conditional
on the row not having changed since it was read. A losing transition fails
with ``InvalidTransition``.

Usage:
    from bookclub.services import event_lifecycle as lifecycle

    event = lifecycle.create_event(leader, payload, submit=True)
    lifecycle.approve(event, admin)
    lifecycle.start(event, leader, today=clock.today())
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from bookclub.config import setting
from bookclub.core.clock import days_between
from bookclub.core.exceptions import (
    CannotComplete,
    CannotDelete,
    CannotStart,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from bookclub.models import db
from bookclub.models.reading_event import (
    ACTIVITY_MODES,
    DELETABLE_STAGES,
    FEE_TYPES,
    LEADER_ASSIGNMENT_TYPES,
    ReadingEvent,
    ReadingSchedule,
)
from bookclub.services import completion, domain_events, leadership
from bookclub.services.enrollment_service import participant_count
from bookclub.services.permission_window import WRONG_ROLE, Action, EventContext, check
from bookclub.services.role_resolver import resolve
from bookclub.utils.helpers import require_date

logger = logging.getLogger(__name__)


# ── Transition rules ─────────────────────────────────────────────────────────

EVENT_TRANSITIONS = {
    "submit_for_approval": {"from": ["draft", "rejected"], "to": "pending"},
    "approve": {"from": ["pending"], "to": "enrolling"},
    "reject": {"from": ["pending"], "to": "rejected"},
    "start": {"from": ["enrolling"], "to": "in_progress"},
    "complete": {"from": ["in_progress"], "to": "completed"},
}

# stage → (status, approval_status)
STAGE_COLUMNS = {
    "draft": ("draft", None),
    "pending": ("draft", "pending"),
    "rejected": ("draft", "rejected"),
    "enrolling": ("enrolling", "approved"),
    "in_progress": ("in_progress", "approved"),
    "completed": ("completed", "approved"),
}

EDITABLE_FIELDS = (
    "title", "book_name", "book_cover_url", "description",
    "max_participants", "min_participants", "fee_type", "fee_amount",
    "activity_mode", "completion_standard", "leader_assignment_type",
)
IMMUTABLE_FIELDS = ("start_date", "end_date", "days_count")


def validate_event_transition(event: ReadingEvent, action: str) -> dict:
    """Validate whether ``action`` is legal from the event's current stage."""
    current = event.lifecycle_stage
    rule = EVENT_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}
    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"Cannot '{action}' from stage '{current}'"}
    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def available_transitions(event: ReadingEvent) -> list[str]:
    return [action for action in EVENT_TRANSITIONS if validate_event_transition(event, action)["valid"]]


def _require_transition(event: ReadingEvent, action: str) -> str:
    result = validate_event_transition(event, action)
    if not result["valid"]:
        raise InvalidTransition(action, current=result["from"])
    return result["to"]


def _apply_stage(event: ReadingEvent, stage: str) -> None:
    event.status, event.approval_status = STAGE_COLUMNS[stage]


def _lock(event: ReadingEvent) -> None:
    """Row lock for the rest of the transaction; the ORM object is not refreshed."""
    db.session.execute(
        select(ReadingEvent.id).where(ReadingEvent.id == event.id).with_for_update()
    )


def _commit_transition(event_id: int, action: str, previous: str) -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent modification lost %s", action,
            extra={"event_id": event_id, "action": action},
        )
        raise InvalidTransition(
            action, current=previous,
            message=f"Event {event_id} was modified concurrently; '{action}' was not applied",
        )


def _log_transition(event: ReadingEvent, action: str, previous: str, user_id: int) -> None:
    logger.info(
        "Event %s: %s → %s", action, previous, event.lifecycle_stage,
        extra={"event_id": event.id, "user_id": user_id, "action": action},
    )


# ── Creation ─────────────────────────────────────────────────────────────────


def _validate_payload(data: dict) -> dict:
    errors = {}
    for field in ("title", "book_name"):
        if not str(data.get(field) or "").strip():
            errors[field] = "required"
    if errors:
        raise ValidationError("Missing required fields", details=errors)

    start_date = require_date(data, "start_date")
    end_date = require_date(data, "end_date")
    if end_date < start_date:
        raise ValidationError(
            "end_date must not be before start_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )

    cleaned = {"start_date": start_date, "end_date": end_date,
               "max_participants": 30, "min_participants": 1}
    cleaned.update(_validate_editable(data))
    _check_participant_bounds(cleaned["min_participants"], cleaned["max_participants"])
    return cleaned


def _validate_editable(data: dict) -> dict:
    cleaned = {}
    for field in EDITABLE_FIELDS:
        if field in data:
            cleaned[field] = data[field]

    choices = {
        "fee_type": FEE_TYPES,
        "activity_mode": ACTIVITY_MODES,
        "leader_assignment_type": LEADER_ASSIGNMENT_TYPES,
    }
    for field, allowed in choices.items():
        if field in cleaned and cleaned[field] not in allowed:
            raise ValidationError(
                f"{field} must be one of {sorted(allowed)}", details={field: cleaned[field]},
            )

    for field in ("max_participants", "min_participants", "completion_standard"):
        if field in cleaned:
            try:
                cleaned[field] = int(cleaned[field])
            except (TypeError, ValueError):
                raise ValidationError(f"{field} must be an integer", details={field: cleaned[field]})
            if cleaned[field] < 0:
                raise ValidationError(f"{field} must not be negative", details={field: cleaned[field]})

    if cleaned.get("completion_standard", 0) > 100:
        raise ValidationError("completion_standard is a percentage (0–100)")
    return cleaned


def _check_participant_bounds(min_participants: int, max_participants: int) -> None:
    if max_participants < 1:
        raise ValidationError("max_participants must be at least 1")
    if min_participants > max_participants:
        raise ValidationError(
            "min_participants must not exceed max_participants",
            details={"min_participants": min_participants, "max_participants": max_participants},
        )


def _validate_reading_plan(plan) -> list[str]:
    if plan is None:
        return []
    if not isinstance(plan, list) or not all(isinstance(item, str) for item in plan):
        raise ValidationError("reading_plan must be a list of strings", details={"reading_plan": "invalid"})
    return plan


def create_event(leader, data: dict, *, submit: bool = False) -> ReadingEvent:
    """Create an event and its schedule days in one transaction.

    One ReadingSchedule is generated per calendar day in [start_date, end_date];
    ``data["reading_plan"]`` may supply the per-day reading_progress text.
    """
    cleaned = _validate_payload(data)
    days = days_between(cleaned["start_date"], cleaned["end_date"])
    plan = _validate_reading_plan(data.get("reading_plan"))

    event = ReadingEvent(leader_id=leader.id, days_count=len(days), **cleaned)
    if submit:
        _apply_stage(event, "pending")
        event.submitted_for_approval_at = datetime.now(timezone.utc)

    for number, day in enumerate(days, start=1):
        progress = plan[number - 1] if number <= len(plan) else f"Day {number}"
        event.schedules.append(
            ReadingSchedule(day_number=number, date=day, reading_progress=str(progress))
        )

    db.session.add(event)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Event could not be created; schedule generation failed")
    db.session.commit()

    logger.info(
        "Event created with %d day(s)", event.days_count,
        extra={"event_id": event.id, "user_id": leader.id, "action": "create"},
    )
    if submit:
        domain_events.publish(
            domain_events.EVENT_APPROVAL_REQUIRED, event_id=event.id, user_id=leader.id,
        )
    return event


# ── Transitions ──────────────────────────────────────────────────────────────


def submit_for_approval(event: ReadingEvent, user) -> ReadingEvent:
    if event.leader_id != user.id:
        raise PermissionDenied("submit_for_approval", WRONG_ROLE, user_id=user.id)
    _lock(event)
    previous = event.lifecycle_stage
    target = _require_transition(event, "submit_for_approval")

    _apply_stage(event, target)
    event.submitted_for_approval_at = datetime.now(timezone.utc)
    event.rejection_reason = None
    _commit_transition(event.id, "submit_for_approval", previous)

    _log_transition(event, "submit_for_approval", previous, user.id)
    domain_events.publish(domain_events.EVENT_APPROVAL_REQUIRED, event_id=event.id, user_id=user.id)
    return event


def approve(event: ReadingEvent, admin) -> ReadingEvent:
    if not admin.is_admin:
        raise PermissionDenied(Action.APPROVE_EVENT.value, WRONG_ROLE, user_id=admin.id)
    _lock(event)
    previous = event.lifecycle_stage
    target = _require_transition(event, "approve")

    _apply_stage(event, target)
    event.approved_by_id = admin.id
    event.approved_at = datetime.now(timezone.utc)
    event.rejection_reason = None
    _commit_transition(event.id, "approve", previous)

    _log_transition(event, "approve", previous, admin.id)
    domain_events.publish(
        domain_events.EVENT_APPROVED, event_id=event.id, user_id=admin.id, leader_id=event.leader_id,
    )
    return event


def reject(event: ReadingEvent, admin, reason: str | None = None) -> ReadingEvent:
    if not admin.is_admin:
        raise PermissionDenied(Action.REJECT_EVENT.value, WRONG_ROLE, user_id=admin.id)
    _lock(event)
    previous = event.lifecycle_stage
    target = _require_transition(event, "reject")

    _apply_stage(event, target)
    event.approved_by_id = admin.id
    event.approved_at = datetime.now(timezone.utc)
    event.rejection_reason = (reason or "").strip() or setting("DEFAULT_REJECTION_REASON")
    _commit_transition(event.id, "reject", previous)

    _log_transition(event, "reject", previous, admin.id)
    domain_events.publish(
        domain_events.EVENT_REJECTED, event_id=event.id, user_id=admin.id,
        leader_id=event.leader_id, reason=event.rejection_reason,
    )
    return event


def start(event: ReadingEvent, user, today) -> ReadingEvent:
    """enrolling → in_progress.

    Guards, in order: stage (InvalidTransition), caller is the group leader,
    start_date has arrived, enough participants (CannotStart). Assigned-type
    events get their daily leaders distributed here.
    """
    _lock(event)
    previous = event.lifecycle_stage
    target = _require_transition(event, "start")

    if event.leader_id != user.id:
        raise CannotStart("not_group_leader", "Only the group leader can start the event")
    if event.start_date > today:
        raise CannotStart(
            "before_start_date", f"Event starts on {event.start_date.isoformat()}",
            start_date=event.start_date.isoformat(),
        )
    enrolled = participant_count(event)
    if enrolled < event.min_participants:
        raise CannotStart(
            "not_enough_participants",
            f"{enrolled} participant(s) enrolled, {event.min_participants} required",
            enrolled=enrolled, required=event.min_participants,
        )

    # query before the stage change; the version check must happen at commit
    assignments = {}
    if event.leader_assignment_type == "assigned":
        assignments = leadership.assign_leaders(event, commit=False)
    _apply_stage(event, target)
    event.started_at = datetime.now(timezone.utc)
    _commit_transition(event.id, "start", previous)

    _log_transition(event, "start", previous, user.id)
    domain_events.publish(
        domain_events.EVENT_STARTED, event_id=event.id, user_id=user.id, participants=enrolled,
    )
    if assignments:
        domain_events.publish(domain_events.LEADER_ASSIGNED, event_id=event.id, assignments=assignments)
    return event


def complete(event: ReadingEvent, user, today) -> ReadingEvent:
    """in_progress → completed once the final scheduled day is over (end_date < today)."""
    if event.leader_id != user.id and not user.is_admin:
        raise PermissionDenied("complete_event", WRONG_ROLE, user_id=user.id)
    _lock(event)
    previous = event.lifecycle_stage
    target = _require_transition(event, "complete")

    if today <= event.end_date:
        raise CannotComplete(
            "event_not_finished", f"Event runs until {event.end_date.isoformat()} inclusive",
            end_date=event.end_date.isoformat(),
        )

    enrollments = completion.refresh_event_stats(event, finalize=True)
    _apply_stage(event, target)
    event.completed_at = datetime.now(timezone.utc)
    _commit_transition(event.id, "complete", previous)

    _log_transition(event, "complete", previous, user.id)
    domain_events.publish(
        domain_events.EVENT_COMPLETED, event_id=event.id, user_id=user.id,
        completed_enrollments=sum(1 for e in enrollments if e.status == "completed"),
    )
    return event


def destroy(event: ReadingEvent, user, today) -> None:
    """Delete a draft or rejected event together with its schedules."""
    check(resolve(user, event), Action.DELETE_EVENT, None, today, EventContext.of(event))
    stage = event.lifecycle_stage
    if stage not in DELETABLE_STAGES:
        raise CannotDelete("stage_not_deletable", f"Cannot delete an event in stage '{stage}'", stage=stage)

    event_id = event.id
    db.session.delete(event)
    db.session.commit()
    logger.info("Event deleted", extra={"event_id": event_id, "user_id": user.id, "action": "delete"})


def update_event(event: ReadingEvent, user, data: dict, today) -> ReadingEvent:
    """Edit descriptive fields; dates and days_count never change after creation."""
    check(resolve(user, event), Action.EDIT_EVENT, None, today, EventContext.of(event))

    for field in IMMUTABLE_FIELDS:
        if field in data:
            raise ValidationError(f"{field} cannot be changed after creation", details={field: "immutable"})

    cleaned = _validate_editable(data)
    if "leader_assignment_type" in cleaned and event.lifecycle_stage in ("in_progress", "completed"):
        raise ValidationError("leader_assignment_type is fixed once the event has started")

    _check_participant_bounds(
        cleaned.get("min_participants", event.min_participants),
        cleaned.get("max_participants", event.max_participants),
    )
    for field, value in cleaned.items():
        setattr(event, field, value)

    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise InvalidTransition("edit_event", message="Event was modified concurrently; reload and retry")

    logger.info(
        "Event updated: %s", ", ".join(sorted(cleaned)) or "no changes",
        extra={"event_id": event.id, "user_id": user.id, "action": "edit_event"},
    )
    return event
