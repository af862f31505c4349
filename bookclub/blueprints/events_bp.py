"""
Reading Events Blueprint.

Routes (all under /api/v1):
  GET    /events                                         – list events (?stage=)
  POST   /events                                         – create event (+ schedules)
  GET    /events/<eid>                                   – event detail
  PUT    /events/<eid>                                   – edit event
  DELETE /events/<eid>                                   – delete draft/rejected event
  GET    /events/<eid>/transitions                       – legal lifecycle actions
  POST   /events/<eid>/submit|approve|reject|start|complete
  POST   /events/<eid>/enrollment                        – enroll
  DELETE /events/<eid>/enrollment                        – withdraw
  GET    /events/<eid>/roles                             – caller's role set
  GET    /events/<eid>/schedules                         – schedule days
  GET    /events/<eid>/schedules/<day>/permissions       – day-scoped decisions
  POST   /events/<eid>/schedules/<day>/claim             – claim daily leadership
  POST   /events/<eid>/schedules/<day>/backup            – group leader backup
  POST   /events/<eid>/schedules/<day>/check-ins         – submit check-in
  POST   /events/<eid>/schedules/<day>/leading           – publish leading content
  PUT    /events/<eid>/schedules/<day>/leading           – edit leading content
  PUT    /check-ins/<cid>                                – edit own check-in
  POST   /check-ins/<cid>/flower                         – give a flower
  GET    /events/<eid>/backup-needed                     – days needing backup
  GET    /events/<eid>/leadership-stats                  – assignment statistics
  GET    /events/<eid>/leaderboard                       – flower leaderboard
  GET    /events/<eid>/completion                        – completion summary

Identity comes from the ``X-User-Id`` header; authentication itself happens
upstream. "Today" comes from the clock registered on the app.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from bookclub.core.exceptions import DomainError, NotFoundError, Unauthenticated, ValidationError
from bookclub.models import db
from bookclub.models.check_in import CheckIn
from bookclub.models.reading_event import LIFECYCLE_STAGES, ReadingEvent
from bookclub.models.user import User
from bookclub.services import completion, enrollment_service, leadership, reading_activity
from bookclub.services import event_lifecycle as lifecycle
from bookclub.services.permission_window import Day, EventContext, permissions_for_day
from bookclub.services.role_resolver import resolve
from bookclub.utils.errors import domain_error_response
from bookclub.utils.helpers import get_or_404

logger = logging.getLogger(__name__)

events_bp = Blueprint("events", __name__, url_prefix="/api/v1")


# ── helpers ──────────────────────────────────────────────────────────────


def _current_user() -> User:
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw.isdigit():
        raise Unauthenticated()
    user = db.session.get(User, int(raw))
    if user is None:
        raise Unauthenticated(f"Unknown user {raw}")
    g.user_id = user.id
    return user


def _today():
    return current_app.extensions["clock"].today()


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _schedule(event: ReadingEvent, day: int):
    schedule = event.schedule_for_day(day)
    if schedule is None:
        raise NotFoundError(resource="ReadingSchedule", resource_id=f"{event.id}/day {day}")
    return schedule


@events_bp.errorhandler(DomainError)
def _handle_domain_error(error: DomainError):
    level = logging.WARNING if error.code in ("ERR_FORBIDDEN", "ERR_UNAUTHENTICATED") else logging.INFO
    logger.log(level, "%s: %s", error.code, error.message, extra={"action": request.endpoint})
    return domain_error_response(error)


# ═════════════════════════════════════════════════════════════════════════════
# EVENTS
# ═════════════════════════════════════════════════════════════════════════════


@events_bp.route("/events", methods=["GET"])
def list_events():
    stage = request.args.get("stage")
    if stage and stage not in LIFECYCLE_STAGES:
        raise ValidationError(f"stage must be one of {list(LIFECYCLE_STAGES)}")
    events = ReadingEvent.query.order_by(ReadingEvent.start_date, ReadingEvent.id).all()
    if stage:
        events = [e for e in events if e.lifecycle_stage == stage]
    return jsonify([e.to_dict() for e in events])


@events_bp.route("/events", methods=["POST"])
def create_event():
    """Body: {title, book_name, start_date, end_date, ..., reading_plan?: [str], submit?: bool}"""
    user = _current_user()
    data = _json_body()
    event = lifecycle.create_event(user, data, submit=bool(data.get("submit")))
    body = event.to_dict()
    body["schedules"] = [s.to_dict() for s in event.schedules]
    return jsonify(body), 201


@events_bp.route("/events/<int:eid>", methods=["GET"])
def get_event(eid):
    event = get_or_404(ReadingEvent, eid)
    body = event.to_dict()
    body["available_transitions"] = lifecycle.available_transitions(event)
    return jsonify(body)


@events_bp.route("/events/<int:eid>", methods=["PUT"])
def update_event(eid):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    event = lifecycle.update_event(event, user, _json_body(), _today())
    return jsonify(event.to_dict())


@events_bp.route("/events/<int:eid>", methods=["DELETE"])
def delete_event(eid):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    lifecycle.destroy(event, user, _today())
    return jsonify({"deleted": True, "id": eid})


@events_bp.route("/events/<int:eid>/transitions", methods=["GET"])
def event_transitions(eid):
    event = get_or_404(ReadingEvent, eid)
    return jsonify({
        "stage": event.lifecycle_stage,
        "available_transitions": lifecycle.available_transitions(event),
    })


# ── Lifecycle ────────────────────────────────────────────────────────────


@events_bp.route("/events/<int:eid>/submit", methods=["POST"])
def submit_event(eid):
    event = lifecycle.submit_for_approval(get_or_404(ReadingEvent, eid), _current_user())
    return jsonify(event.to_dict())


@events_bp.route("/events/<int:eid>/approve", methods=["POST"])
def approve_event(eid):
    event = lifecycle.approve(get_or_404(ReadingEvent, eid), _current_user())
    return jsonify(event.to_dict())


@events_bp.route("/events/<int:eid>/reject", methods=["POST"])
def reject_event(eid):
    reason = _json_body().get("reason")
    event = lifecycle.reject(get_or_404(ReadingEvent, eid), _current_user(), reason)
    return jsonify(event.to_dict())


@events_bp.route("/events/<int:eid>/start", methods=["POST"])
def start_event(eid):
    event = lifecycle.start(get_or_404(ReadingEvent, eid), _current_user(), _today())
    return jsonify(event.to_dict())


@events_bp.route("/events/<int:eid>/complete", methods=["POST"])
def complete_event(eid):
    event = lifecycle.complete(get_or_404(ReadingEvent, eid), _current_user(), _today())
    return jsonify(event.to_dict())


# ── Enrollment ───────────────────────────────────────────────────────────


@events_bp.route("/events/<int:eid>/enrollment", methods=["POST"])
def enroll(eid):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    enrollment_type = _json_body().get("enrollment_type", "participant")
    enrollment = enrollment_service.enroll(event, user, _today(), enrollment_type)
    return jsonify(enrollment.to_dict()), 201


@events_bp.route("/events/<int:eid>/enrollment", methods=["DELETE"])
def withdraw(eid):
    enrollment = enrollment_service.withdraw(get_or_404(ReadingEvent, eid), _current_user())
    return jsonify(enrollment.to_dict())


@events_bp.route("/events/<int:eid>/roles", methods=["GET"])
def my_roles(eid):
    event = get_or_404(ReadingEvent, eid)
    return jsonify(resolve(_current_user(), event).to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# SCHEDULE DAYS
# ═════════════════════════════════════════════════════════════════════════════


@events_bp.route("/events/<int:eid>/schedules", methods=["GET"])
def list_schedules(eid):
    event = get_or_404(ReadingEvent, eid)
    return jsonify([s.to_dict() for s in event.schedules])


@events_bp.route("/events/<int:eid>/schedules/<int:day>/permissions", methods=["GET"])
def day_permissions(eid, day):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    schedule = _schedule(event, day)
    roles = resolve(user, event, schedule)
    decisions = permissions_for_day(roles, Day.of(schedule), _today(), EventContext.of(event, schedule))
    return jsonify({"day_number": day, "roles": roles.to_dict(), "permissions": decisions})


@events_bp.route("/events/<int:eid>/schedules/<int:day>/claim", methods=["POST"])
def claim_schedule(eid, day):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    schedule = leadership.claim(event, _schedule(event, day), user, _today())
    return jsonify(schedule.to_dict())


@events_bp.route("/events/<int:eid>/schedules/<int:day>/backup", methods=["POST"])
def backup_schedule(eid, day):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    schedule = leadership.backup_assign(event, _schedule(event, day), user, _today())
    return jsonify(schedule.to_dict())


@events_bp.route("/events/<int:eid>/schedules/<int:day>/check-ins", methods=["POST"])
def create_check_in(eid, day):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    content = _json_body().get("content")
    check_in = reading_activity.submit_check_in(event, _schedule(event, day), user, content, _today())
    return jsonify(check_in.to_dict()), 201


@events_bp.route("/events/<int:eid>/schedules/<int:day>/leading", methods=["POST"])
def publish_leading(eid, day):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    leading = reading_activity.publish_daily_leading(event, _schedule(event, day), user, _json_body(), _today())
    return jsonify(leading.to_dict()), 201


@events_bp.route("/events/<int:eid>/schedules/<int:day>/leading", methods=["PUT"])
def edit_leading(eid, day):
    user = _current_user()
    event = get_or_404(ReadingEvent, eid)
    leading = reading_activity.edit_daily_leading(event, _schedule(event, day), user, _json_body(), _today())
    return jsonify(leading.to_dict())


# ── Check-ins & flowers ──────────────────────────────────────────────────


@events_bp.route("/check-ins/<int:cid>", methods=["PUT"])
def update_check_in(cid):
    user = _current_user()
    check_in = reading_activity.update_check_in(get_or_404(CheckIn, cid), user, _json_body().get("content"))
    return jsonify(check_in.to_dict())


@events_bp.route("/check-ins/<int:cid>/flower", methods=["POST"])
def give_flower(cid):
    user = _current_user()
    comment = _json_body().get("comment")
    flower = reading_activity.give_flower(get_or_404(CheckIn, cid), user, _today(), comment)
    return jsonify(flower.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════════
# READ VIEWS
# ═════════════════════════════════════════════════════════════════════════════


@events_bp.route("/events/<int:eid>/backup-needed", methods=["GET"])
def backup_needed(eid):
    event = get_or_404(ReadingEvent, eid)
    return jsonify(leadership.schedules_needing_backup(event, _today()))


@events_bp.route("/events/<int:eid>/leadership-stats", methods=["GET"])
def leadership_stats(eid):
    event = get_or_404(ReadingEvent, eid)
    return jsonify(leadership.assignment_statistics(event, _today()))


@events_bp.route("/events/<int:eid>/leaderboard", methods=["GET"])
def leaderboard(eid):
    event = get_or_404(ReadingEvent, eid)
    limit = request.args.get("limit", 10, type=int)
    return jsonify(completion.flower_leaderboard(event, limit=max(1, min(limit, 100))))


@events_bp.route("/events/<int:eid>/completion", methods=["GET"])
def completion_summary(eid):
    event = get_or_404(ReadingEvent, eid)
    return jsonify(completion.completion_summary(event))
