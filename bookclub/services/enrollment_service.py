"""
Enrollment service — joining and leaving a reading event.

Enrollment is open only while the event is in the ``enrolling`` stage and
only to callers who resolve as guests (the group leader and already-enrolled
users are refused with ``wrong_role``). The (user, event) pair is unique in
the schema; a withdrawn enrollment is reactivated rather than duplicated.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from bookclub.core.exceptions import DuplicateSubmission, NotFoundError, PermissionDenied, ValidationError
from bookclub.models import db
from bookclub.models.enrollment import ACTIVE_ENROLLMENT_STATUSES, ENROLLMENT_TYPES, Enrollment
from bookclub.services import domain_events
from bookclub.services.permission_window import NOT_ENROLLING, Action, EventContext, check
from bookclub.services.role_resolver import resolve

logger = logging.getLogger(__name__)


def participant_count(event) -> int:
    """Active participant enrollments (observers do not count)."""
    return (
        Enrollment.query
        .filter(
            Enrollment.event_id == event.id,
            Enrollment.enrollment_type == "participant",
            Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
        )
        .count()
    )


def active_enrollment(event, user_id: int) -> Enrollment | None:
    enrollment = Enrollment.query.filter_by(event_id=event.id, user_id=user_id).first()
    if enrollment is None or not enrollment.is_active:
        return None
    return enrollment


def enroll(event, user, today, enrollment_type: str = "participant") -> Enrollment:
    if enrollment_type not in ENROLLMENT_TYPES:
        raise ValidationError(
            f"enrollment_type must be one of {sorted(ENROLLMENT_TYPES)}",
            details={"enrollment_type": enrollment_type},
        )

    check(resolve(user, event), Action.ENROLL, None, today, EventContext.of(event))

    if enrollment_type == "participant" and participant_count(event) >= event.max_participants:
        raise ValidationError(
            "Event is full",
            details={"reason": "event_full", "max_participants": event.max_participants},
        )

    enrollment = Enrollment.query.filter_by(event_id=event.id, user_id=user.id).first()
    if enrollment is not None:
        # only withdrawn rows reach here; active ones resolve as non-guests
        enrollment.status = "enrolled"
        enrollment.enrollment_type = enrollment_type
        enrollment.enrollment_date = datetime.now(timezone.utc)
    else:
        enrollment = Enrollment(
            event_id=event.id,
            user_id=user.id,
            enrollment_type=enrollment_type,
        )
        db.session.add(enrollment)

    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateSubmission("Enrollment", "User is already enrolled in this event")
    db.session.commit()

    logger.info(
        "User enrolled as %s", enrollment_type,
        extra={"event_id": event.id, "user_id": user.id, "action": "enroll"},
    )
    domain_events.publish(
        domain_events.ENROLLMENT_CREATED,
        event_id=event.id, user_id=user.id, enrollment_id=enrollment.id,
        enrollment_type=enrollment_type,
    )
    return enrollment


def withdraw(event, user) -> Enrollment:
    enrollment = active_enrollment(event, user.id)
    if enrollment is None:
        raise NotFoundError(resource="Enrollment", resource_id=f"{event.id}/{user.id}")
    if event.lifecycle_stage != "enrolling":
        raise PermissionDenied("withdraw", NOT_ENROLLING, user_id=user.id)

    enrollment.status = "withdrawn"
    db.session.commit()
    logger.info(
        "User withdrew",
        extra={"event_id": event.id, "user_id": user.id, "action": "withdraw"},
    )
    return enrollment
