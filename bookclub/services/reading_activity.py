"""
Reading activity — check-ins, flowers and daily leading content.

Every mutation here asks the permission engine first and then relies on the
schema's unique constraints for duplicates:

    CheckIn       one per (user, schedule)    → DuplicateSubmission("CheckIn")
    Flower        one per check-in            → DuplicateSubmission("Flower")
    DailyLeading  one per schedule            → DuplicateSubmission("DailyLeading")

A flower is checked against the window only when it is created; later window
changes never invalidate it. A check-in that has received a flower can no
longer be edited by its author.
"""

import logging

from sqlalchemy.exc import IntegrityError

from bookclub.config import setting
from bookclub.core.exceptions import DuplicateSubmission, NotFoundError, PermissionDenied, ValidationError
from bookclub.models import db
from bookclub.models.check_in import CheckIn, DailyLeading, Flower
from bookclub.services import completion, domain_events
from bookclub.services.enrollment_service import active_enrollment
from bookclub.services.permission_window import (
    CHECK_IN_REWARDED,
    DAILY_LIMIT_REACHED,
    EVENT_NOT_IN_PROGRESS,
    NOT_ENROLLED,
    SELF_REWARD,
    WRONG_ROLE,
    Action,
    Day,
    EventContext,
    check,
)
from bookclub.services.role_resolver import resolve
from bookclub.utils.helpers import count_words

logger = logging.getLogger(__name__)


def _schedule_of(event, schedule):
    if schedule is None or schedule.event_id != event.id:
        raise NotFoundError(resource="ReadingSchedule", resource_id=getattr(schedule, "id", None))
    return schedule


def _validate_content(content) -> int:
    if not isinstance(content, str):
        raise ValidationError("Check-in content must be text", details={"content": "invalid"})
    words = count_words(content)
    low, high = setting("CHECKIN_MIN_WORD_COUNT"), setting("CHECKIN_MAX_WORD_COUNT")
    if words < low:
        raise ValidationError(
            f"Check-in needs at least {low} characters", details={"word_count": words, "minimum": low},
        )
    if words > high:
        raise ValidationError(
            f"Check-in may have at most {high} characters", details={"word_count": words, "maximum": high},
        )
    return words


def _flush_unique(resource: str) -> None:
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateSubmission(resource)


# ── Check-ins ────────────────────────────────────────────────────────────────


def submit_check_in(event, schedule, user, content: str, today) -> CheckIn:
    """Record the participant's check-in for one day.

    On the scheduled day the status is ``normal``; afterwards it is a
    ``supplement``. Future days are refused.
    """
    _schedule_of(event, schedule)
    if not event.in_progress:
        raise PermissionDenied("check_in", EVENT_NOT_IN_PROGRESS, user_id=user.id)
    enrollment = active_enrollment(event, user.id)
    if enrollment is None or not enrollment.is_participant:
        raise PermissionDenied("check_in", NOT_ENROLLED, user_id=user.id)
    if today < schedule.date:
        raise ValidationError(
            f"Day {schedule.day_number} has not started yet",
            details={"date": schedule.date.isoformat()},
        )

    words = _validate_content(content)
    check_in = CheckIn(
        user_id=user.id,
        schedule_id=schedule.id,
        enrollment_id=enrollment.id,
        content=content.strip(),
        word_count=words,
        status="normal" if today == schedule.date else "supplement",
    )
    db.session.add(check_in)
    _flush_unique("CheckIn")

    completion.refresh_enrollment_stats(enrollment)
    db.session.commit()

    logger.info(
        "Check-in for day %d (%s)", schedule.day_number, check_in.status,
        extra={"event_id": event.id, "schedule_id": schedule.id, "user_id": user.id,
               "day_number": schedule.day_number, "action": "check_in"},
    )
    domain_events.publish(
        domain_events.CHECKIN_CREATED, event_id=event.id, schedule_id=schedule.id,
        check_in_id=check_in.id, user_id=user.id,
    )
    return check_in


def update_check_in(check_in: CheckIn, user, content: str) -> CheckIn:
    if check_in.user_id != user.id:
        raise PermissionDenied("edit_check_in", WRONG_ROLE, user_id=user.id)
    if check_in.flower is not None:
        raise PermissionDenied("edit_check_in", CHECK_IN_REWARDED, user_id=user.id)

    check_in.word_count = _validate_content(content)
    check_in.content = content.strip()
    completion.refresh_enrollment_stats(check_in.enrollment)
    db.session.commit()
    return check_in


# ── Flowers ──────────────────────────────────────────────────────────────────


def give_flower(check_in: CheckIn, giver, today, comment: str | None = None) -> Flower:
    """Reward a check-in; the giver is the day's leader or the group leader."""
    schedule = check_in.schedule
    event = schedule.event

    if giver.id == check_in.user_id:
        raise PermissionDenied(Action.GIVE_FLOWER.value, SELF_REWARD, user_id=giver.id)
    check(
        resolve(giver, event, schedule),
        Action.GIVE_FLOWER,
        Day.of(schedule),
        today,
        EventContext.of(event, schedule),
    )
    if Flower.query.filter_by(check_in_id=check_in.id).first() is not None:
        raise DuplicateSubmission("Flower", "This check-in already has a flower")

    limit = setting("MAX_FLOWERS_PER_GIVER_PER_DAY")
    given = Flower.query.filter_by(schedule_id=schedule.id, giver_id=giver.id).count()
    if given >= limit:
        raise PermissionDenied(Action.GIVE_FLOWER.value, DAILY_LIMIT_REACHED, user_id=giver.id)

    flower = Flower(
        check_in_id=check_in.id,
        giver_id=giver.id,
        recipient_id=check_in.user_id,
        schedule_id=schedule.id,
        comment=(comment or "").strip() or None,
    )
    db.session.add(flower)
    _flush_unique("Flower")

    completion.refresh_enrollment_stats(check_in.enrollment)
    db.session.commit()

    logger.info(
        "Flower given on day %d", schedule.day_number,
        extra={"event_id": event.id, "schedule_id": schedule.id, "user_id": giver.id,
               "day_number": schedule.day_number, "action": "give_flower"},
    )
    domain_events.publish(
        domain_events.FLOWER_GIVEN, event_id=event.id, schedule_id=schedule.id,
        flower_id=flower.id, user_id=giver.id, recipient_id=flower.recipient_id,
    )
    return flower


# ── Daily leading content ────────────────────────────────────────────────────


def _require_text(data: dict, *fields) -> dict:
    missing = {f: "required" for f in fields if not str(data.get(f) or "").strip()}
    if missing:
        raise ValidationError("Missing required fields", details=missing)
    return {f: str(data[f]).strip() for f in fields}


def publish_daily_leading(event, schedule, user, data: dict, today) -> DailyLeading:
    _schedule_of(event, schedule)
    check(
        resolve(user, event, schedule),
        Action.PUBLISH_LEADING,
        Day.of(schedule),
        today,
        EventContext.of(event, schedule),
    )
    if schedule.daily_leading is not None:
        raise DuplicateSubmission("DailyLeading", f"Day {schedule.day_number} already has leading content")

    fields = _require_text(data, "reading_suggestion", "questions")
    leading = DailyLeading(schedule_id=schedule.id, leader_id=user.id, **fields)
    db.session.add(leading)
    _flush_unique("DailyLeading")
    db.session.commit()

    logger.info(
        "Leading content published for day %d", schedule.day_number,
        extra={"event_id": event.id, "schedule_id": schedule.id, "user_id": user.id,
               "day_number": schedule.day_number, "action": "publish_leading"},
    )
    domain_events.publish(
        domain_events.LEADING_PUBLISHED, event_id=event.id, schedule_id=schedule.id,
        user_id=user.id, backup=schedule.daily_leader_id != user.id,
    )
    return leading


def edit_daily_leading(event, schedule, user, data: dict, today) -> DailyLeading:
    _schedule_of(event, schedule)
    leading = schedule.daily_leading
    if leading is None:
        raise NotFoundError(resource="DailyLeading", resource_id=schedule.id)
    check(
        resolve(user, event, schedule),
        Action.EDIT_LEADING,
        Day.of(schedule),
        today,
        EventContext.of(event, schedule),
    )

    editable = {f: data[f] for f in ("reading_suggestion", "questions") if f in data}
    for field, value in _require_text(editable, *editable).items():
        setattr(leading, field, value)
    db.session.commit()

    logger.info(
        "Leading content edited for day %d", schedule.day_number,
        extra={"event_id": event.id, "schedule_id": schedule.id, "user_id": user.id,
               "day_number": schedule.day_number, "action": "edit_leading"},
    )
    return leading
