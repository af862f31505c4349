"""
Completion & reward aggregator (read side).

completion_rate(enrollment) = valid check-ins / days_count × 100, rounded to
two places, where a check-in is valid when its word_count reaches
CHECKIN_MIN_WORD_COUNT. Counts are always derived from CheckIn / Flower rows;
the counters on Enrollment are a cache written by
``refresh_enrollment_stats`` after each check-in or flower.
"""

import logging

from sqlalchemy import func

from bookclub.config import setting
from bookclub.models import db
from bookclub.models.check_in import CheckIn, Flower
from bookclub.models.enrollment import ACTIVE_ENROLLMENT_STATUSES, Enrollment
from bookclub.models.reading_event import ReadingSchedule
from bookclub.models.user import User

logger = logging.getLogger(__name__)


def valid_check_ins_count(enrollment: Enrollment) -> int:
    return (
        CheckIn.query
        .filter(
            CheckIn.enrollment_id == enrollment.id,
            CheckIn.word_count >= setting("CHECKIN_MIN_WORD_COUNT"),
        )
        .count()
    )


def completion_rate(enrollment: Enrollment) -> float:
    days = enrollment.event.days_count or 0
    if days <= 0:
        return 0.0
    return round(valid_check_ins_count(enrollment) / days * 100, 2)


def flowers_received_count(user_id: int, event) -> int:
    return (
        Flower.query
        .join(ReadingSchedule, Flower.schedule_id == ReadingSchedule.id)
        .filter(ReadingSchedule.event_id == event.id, Flower.recipient_id == user_id)
        .count()
    )


def leader_days_count(user_id: int, event) -> int:
    return ReadingSchedule.query.filter_by(event_id=event.id, daily_leader_id=user_id).count()


def refresh_enrollment_stats(enrollment: Enrollment, *, finalize: bool = False) -> Enrollment:
    """Rewrite the cached counters on ``enrollment``; the caller commits.

    With ``finalize`` (event completion) an enrolled participant whose rate
    meets the event's completion_standard is marked ``completed``.
    """
    event = enrollment.event
    enrollment.check_ins_count = CheckIn.query.filter_by(enrollment_id=enrollment.id).count()
    enrollment.flowers_received_count = flowers_received_count(enrollment.user_id, event)
    enrollment.leader_days_count = leader_days_count(enrollment.user_id, event)
    enrollment.completion_rate = completion_rate(enrollment)

    if (
        finalize
        and enrollment.status == "enrolled"
        and enrollment.enrollment_type == "participant"
        and enrollment.completion_rate >= (event.completion_standard or 0)
    ):
        enrollment.status = "completed"
    return enrollment


def refresh_event_stats(event, *, finalize: bool = False) -> list[Enrollment]:
    """Refresh every active enrollment of ``event``; the caller commits."""
    enrollments = (
        event.enrollments
        .filter(Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES))
        .order_by(Enrollment.id)
        .all()
    )
    for enrollment in enrollments:
        refresh_enrollment_stats(enrollment, finalize=finalize)
    logger.info(
        "Refreshed %d enrollment(s)", len(enrollments),
        extra={"event_id": event.id, "action": "refresh_stats"},
    )
    return enrollments


def flower_leaderboard(event, limit: int = 10) -> list[dict]:
    """Recipients ranked by flowers received in ``event`` (ties by user id)."""
    flower_count = func.count(Flower.id).label("flowers")
    rows = (
        db.session.query(User.id, User.nickname, flower_count)
        .join(Flower, Flower.recipient_id == User.id)
        .join(ReadingSchedule, Flower.schedule_id == ReadingSchedule.id)
        .filter(ReadingSchedule.event_id == event.id)
        .group_by(User.id, User.nickname)
        .order_by(flower_count.desc(), User.id)
        .limit(limit)
        .all()
    )
    return [
        {"rank": i, "user_id": uid, "nickname": nickname, "flowers": count}
        for i, (uid, nickname, count) in enumerate(rows, start=1)
    ]


def completion_summary(event) -> dict:
    participants = event.enrollments.filter(
        Enrollment.enrollment_type == "participant",
        Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
    ).all()
    completed = sum(1 for e in participants if e.status == "completed")
    rates = [e.completion_rate or 0.0 for e in participants]
    return {
        "event_id": event.id,
        "participants": len(participants),
        "completed": completed,
        "average_completion_rate": round(sum(rates) / len(rates), 2) if rates else 0.0,
        "completion_standard": event.completion_standard,
    }
