"""
Leadership Assignment Manager — who leads each schedule day.

claim
    First claim wins. The write is a single conditional UPDATE
    (``SET daily_leader_id = :user WHERE id = :schedule AND daily_leader_id IS NULL``);
    zero affected rows means another claimant got there first and the caller
    receives ``AlreadyClaimed``. There is no read-then-write window.
assign_leaders
    Round-robin over enrolled participants (enrollment order) for events
    whose leader_assignment_type is ``assigned``; runs when the event starts.
backup_assign
    The group leader takes a day over when it has no leader, no content, or
    check-ins still waiting for a flower.
schedules_needing_backup / assignment_statistics
    Read-only views for the group leader's dashboard.
"""

import logging
from datetime import timedelta

from sqlalchemy import select, update

from bookclub.config import setting
from bookclub.core.clock import end_of_day
from bookclub.core.exceptions import AlreadyClaimed, ClaimNotAllowed, NotFoundError, PermissionDenied
from bookclub.models import db
from bookclub.models.check_in import CheckIn, Flower
from bookclub.models.enrollment import ACTIVE_ENROLLMENT_STATUSES, Enrollment
from bookclub.models.reading_event import ReadingSchedule
from bookclub.services import domain_events
from bookclub.services.permission_window import (
    EVENT_NOT_IN_PROGRESS,
    WRONG_ROLE,
    Action,
    Day,
    EventContext,
    FLOWER_WINDOW,
    LEADING_WINDOW,
    check,
)
from bookclub.services.role_resolver import resolve

logger = logging.getLogger(__name__)


def _require_schedule_of(event, schedule) -> None:
    if schedule is None or schedule.event_id != event.id:
        raise NotFoundError(resource="ReadingSchedule", resource_id=getattr(schedule, "id", None))


# ── Claim ────────────────────────────────────────────────────────────────────


def claim(event, schedule, user, today) -> ReadingSchedule:
    """Make ``user`` the daily leader of ``schedule`` if nobody holds it yet."""
    _require_schedule_of(event, schedule)
    if event.leader_assignment_type != "voluntary":
        raise ClaimNotAllowed("assigned_event", "Daily leaders for this event are assigned, not claimed")

    # day_claimed is left out of the context: the conditional UPDATE decides that
    check(
        resolve(user, event, schedule),
        Action.CLAIM_LEADERSHIP,
        Day.of(schedule),
        today,
        EventContext(stage=event.lifecycle_stage),
    )

    limit = setting("MAX_LEADERSHIP_DAYS_PER_USER")
    claimed = ReadingSchedule.query.filter_by(event_id=event.id, daily_leader_id=user.id).count()
    if claimed >= limit:
        raise ClaimNotAllowed(
            "claim_limit_reached", f"A participant may lead at most {limit} day(s) per event",
        )

    schedule_id = schedule.id
    result = db.session.execute(
        update(ReadingSchedule)
        .where(ReadingSchedule.id == schedule_id, ReadingSchedule.daily_leader_id.is_(None))
        .values(daily_leader_id=user.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        holder = db.session.scalar(
            select(ReadingSchedule.daily_leader_id).where(ReadingSchedule.id == schedule_id)
        )
        logger.info(
            "Claim lost to user %s", holder,
            extra={"event_id": event.id, "schedule_id": schedule_id, "user_id": user.id,
                   "action": "claim"},
        )
        raise AlreadyClaimed(schedule_id, holder)

    db.session.commit()
    db.session.refresh(schedule)

    logger.info(
        "Day %d claimed", schedule.day_number,
        extra={"event_id": event.id, "schedule_id": schedule_id, "user_id": user.id,
               "day_number": schedule.day_number, "action": "claim"},
    )
    domain_events.publish(
        domain_events.LEADER_CLAIMED, event_id=event.id, schedule_id=schedule_id,
        day_number=schedule.day_number, user_id=user.id,
    )
    return schedule


# ── Assignment ───────────────────────────────────────────────────────────────


def _participants_in_enrollment_order(event) -> list[int]:
    rows = (
        Enrollment.query
        .with_entities(Enrollment.user_id)
        .filter(
            Enrollment.event_id == event.id,
            Enrollment.enrollment_type == "participant",
            Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
        )
        .order_by(Enrollment.enrollment_date, Enrollment.id)
        .all()
    )
    return [user_id for (user_id,) in rows]


def assign_leaders(event, *, commit: bool = True) -> dict[int, int]:
    """Fill every unassigned day round-robin; returns {day_number: user_id}.

    With ``commit=False`` the caller owns the transaction and publishes
    ``leader.assigned`` once it has committed.
    """
    participants = _participants_in_enrollment_order(event)
    if not participants:
        logger.warning("No participants to assign", extra={"event_id": event.id, "action": "assign_leaders"})
        return {}

    assigned = {}
    open_days = [s for s in event.schedules if s.daily_leader_id is None]
    for index, schedule in enumerate(open_days):
        schedule.daily_leader_id = participants[index % len(participants)]
        assigned[schedule.day_number] = schedule.daily_leader_id

    logger.info(
        "Assigned %d day(s) across %d participant(s)", len(assigned), len(participants),
        extra={"event_id": event.id, "action": "assign_leaders"},
    )
    if commit:
        db.session.commit()
        domain_events.publish(domain_events.LEADER_ASSIGNED, event_id=event.id, assignments=assigned)
    return assigned


def _backup_state(schedule, today) -> dict:
    has_check_ins = schedule.check_ins.count() > 0
    has_flowers = schedule.flowers.count() > 0
    return {
        "missing_leader": schedule.daily_leader_id is None,
        "missing_content": schedule.daily_leading is None,
        "missing_flowers": schedule.date <= today and has_check_ins and not has_flowers,
    }


def backup_assign(event, schedule, by_user, today) -> ReadingSchedule:
    """Group leader becomes the day's leader when the day needs a backup."""
    _require_schedule_of(event, schedule)
    if event.leader_id != by_user.id:
        raise PermissionDenied("backup_assign", WRONG_ROLE, user_id=by_user.id)
    if not event.in_progress:
        raise PermissionDenied("backup_assign", EVENT_NOT_IN_PROGRESS, user_id=by_user.id)

    state = _backup_state(schedule, today)
    if not any(state.values()):
        raise ClaimNotAllowed("backup_not_needed", f"Day {schedule.day_number} does not need a backup")

    previous = schedule.daily_leader_id
    schedule.daily_leader_id = by_user.id
    db.session.commit()

    logger.info(
        "Backup took day %d (previous leader %s)", schedule.day_number, previous,
        extra={"event_id": event.id, "schedule_id": schedule.id, "user_id": by_user.id,
               "day_number": schedule.day_number, "action": "backup_assign"},
    )
    return schedule


# ── Read views ───────────────────────────────────────────────────────────────


def schedules_needing_backup(event, today) -> list[dict]:
    """Days that have arrived but lack leading content or owed flowers."""
    result = []
    for schedule in event.schedules:
        if schedule.date > today:
            continue
        state = _backup_state(schedule, today)
        if not (state["missing_content"] or state["missing_flowers"]):
            continue
        result.append({
            "schedule_id": schedule.id,
            "day_number": schedule.day_number,
            "date": schedule.date.isoformat(),
            "daily_leader_id": schedule.daily_leader_id,
            "missing_leader": state["missing_leader"],
            "missing_content": state["missing_content"],
            "missing_flowers": state["missing_flowers"],
            "urgent": schedule.date <= today,
            "content_deadline": end_of_day(schedule.date + timedelta(days=LEADING_WINDOW[1])).isoformat(),
            "flower_deadline": end_of_day(schedule.date + timedelta(days=FLOWER_WINDOW[1])).isoformat(),
        })
    return result


def assignment_statistics(event, today) -> dict:
    schedules = list(event.schedules)
    total = len(schedules)
    assigned = [s for s in schedules if s.daily_leader_id is not None]
    with_content = sum(1 for s in schedules if s.daily_leading is not None)

    workload: dict[int, dict] = {}
    for schedule in assigned:
        entry = workload.setdefault(schedule.daily_leader_id, {
            "user_id": schedule.daily_leader_id,
            "nickname": schedule.daily_leader.nickname if schedule.daily_leader else None,
            "assigned_count": 0,
            "content_completed": 0,
            "flowers_given": 0,
        })
        entry["assigned_count"] += 1
        if schedule.daily_leading is not None:
            entry["content_completed"] += 1
        entry["flowers_given"] += (
            Flower.query.filter_by(schedule_id=schedule.id, giver_id=schedule.daily_leader_id).count()
        )

    return {
        "event_id": event.id,
        "total_schedules": total,
        "assigned_schedules": len(assigned),
        "unassigned_schedules": total - len(assigned),
        "unique_leaders": len(workload),
        "assignment_rate": round(len(assigned) / total * 100, 2) if total else 0.0,
        "content_completion_rate": round(with_content / total * 100, 2) if total else 0.0,
        "backup_needed": len(schedules_needing_backup(event, today)),
        "check_ins": CheckIn.query.join(ReadingSchedule).filter(ReadingSchedule.event_id == event.id).count(),
        "leader_workload": sorted(workload.values(), key=lambda w: w["user_id"]),
    }
