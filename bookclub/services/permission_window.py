"""
Permission Window Engine — may <roles> do <action> on <day>, as of <today>?

The rules are data. ``WINDOW_RULES`` maps each action to the roles that may
perform it and, per role, the window of days relative to the schedule date D
in which they may act (``None`` = unrestricted) and the lifecycle stages the
event must be in. Adding an action means adding a row, not a branch.

    Action             daily_leader(D)   group_leader      admin         participant   guest
    ─────────────────  ────────────────  ────────────────  ────────────  ────────────  ─────────
    publish_leading    [D-1, D]          any day           -             -             -
    edit_leading       [D-1, D] *        any day *         -             -             -
    give_flower        [D, D+1]          any day           -             -             -
    claim_leadership   -                 -                 -             unclaimed D   -
    approve/reject     -                 -                 while pending -             -
    edit/delete event  -                 planning stages   always        -             -
    enroll             -                 -                 -             -             enrolling

    * and no check-in exists for D yet
    Leading, flower and claim actions also require the event to be in_progress.

The evaluation order fixes which denial reason is reported:
wrong_role → event stage → window → day guards (check-ins, claimed).

The engine never mutates state and never reads the clock; callers pass
``today`` and an ``EventContext`` snapshot.

Usage:
    from bookclub.services.permission_window import Action, Day, EventContext, check, may

    day = Day.of(schedule)
    ctx = EventContext.of(event, schedule)
    if may(roles, Action.GIVE_FLOWER, day, today, ctx): ...
    check(roles, Action.PUBLISH_LEADING, day, today, ctx)   # raises PermissionDenied
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from bookclub.core.clock import in_window
from bookclub.core.exceptions import PermissionDenied
from bookclub.services.role_resolver import Role, RoleSet


class Action(str, Enum):
    PUBLISH_LEADING = "publish_leading"
    EDIT_LEADING = "edit_leading"
    GIVE_FLOWER = "give_flower"
    CLAIM_LEADERSHIP = "claim_leadership"
    APPROVE_EVENT = "approve_event"
    REJECT_EVENT = "reject_event"
    EDIT_EVENT = "edit_event"
    DELETE_EVENT = "delete_event"
    ENROLL = "enroll"


# ── Denial reasons ───────────────────────────────────────────────────────────

WRONG_ROLE = "wrong_role"
OUTSIDE_WINDOW = "outside_window"
DAY_HAS_CHECK_INS = "day_has_check_ins"
EVENT_NOT_IN_PROGRESS = "event_not_in_progress"
ALREADY_CLAIMED = "already_claimed"
NOT_PENDING = "not_pending"
EVENT_LOCKED = "event_locked"
NOT_ENROLLING = "not_enrolling"
UNKNOWN_ACTION = "unknown_action"
# raised by the participation services rather than the rule table
NOT_ENROLLED = "not_enrolled"
SELF_REWARD = "self_reward"
DAILY_LIMIT_REACHED = "daily_limit_reached"
CHECK_IN_REWARDED = "check_in_rewarded"


# ── Inputs / outputs ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Day:
    """A schedule day: its 1-based number and calendar date D."""

    number: int
    date: date

    @classmethod
    def of(cls, schedule) -> "Day":
        return cls(number=schedule.day_number, date=schedule.date)


@dataclass(frozen=True)
class EventContext:
    """State snapshot the rules look at; built once from storage."""

    stage: str | None = None
    day_has_check_ins: bool = False
    day_claimed: bool = False

    @classmethod
    def of(cls, event, schedule=None) -> "EventContext":
        if schedule is None:
            return cls(stage=event.lifecycle_stage)
        return cls(
            stage=event.lifecycle_stage,
            day_has_check_ins=schedule.check_ins.count() > 0,
            day_claimed=schedule.daily_leader_id is not None,
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason}


ALLOW = Decision(True)


# ── Rule table ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Grant:
    """What one role may do for an action.

    window:  (lo, hi) day offsets relative to D, or None for no time limit.
    stages:  lifecycle stages in which the grant applies, or None for any.
    """

    window: tuple[int, int] | None = None
    stages: frozenset | None = None
    stage_reason: str = EVENT_LOCKED


@dataclass(frozen=True)
class ActionRule:
    grants: dict = field(default_factory=dict)
    stages: frozenset | None = None
    stage_reason: str = EVENT_NOT_IN_PROGRESS
    needs_day: bool = False
    forbid_check_ins: bool = False
    requires_unclaimed: bool = False


IN_PROGRESS = frozenset({"in_progress"})
PLANNING_STAGES = frozenset({"draft", "pending", "rejected", "enrolling"})

LEADING_WINDOW = (-1, 0)
FLOWER_WINDOW = (0, 1)

WINDOW_RULES: dict[Action, ActionRule] = {
    Action.PUBLISH_LEADING: ActionRule(
        grants={
            Role.DAILY_LEADER: Grant(window=LEADING_WINDOW),
            Role.GROUP_LEADER: Grant(),
        },
        stages=IN_PROGRESS,
        needs_day=True,
    ),
    Action.EDIT_LEADING: ActionRule(
        grants={
            Role.DAILY_LEADER: Grant(window=LEADING_WINDOW),
            Role.GROUP_LEADER: Grant(),
        },
        stages=IN_PROGRESS,
        needs_day=True,
        forbid_check_ins=True,
    ),
    Action.GIVE_FLOWER: ActionRule(
        grants={
            Role.DAILY_LEADER: Grant(window=FLOWER_WINDOW),
            Role.GROUP_LEADER: Grant(),
        },
        stages=IN_PROGRESS,
        needs_day=True,
    ),
    Action.CLAIM_LEADERSHIP: ActionRule(
        grants={Role.PARTICIPANT: Grant()},
        stages=IN_PROGRESS,
        needs_day=True,
        requires_unclaimed=True,
    ),
    Action.APPROVE_EVENT: ActionRule(
        grants={Role.ADMIN: Grant(stages=frozenset({"pending"}), stage_reason=NOT_PENDING)},
    ),
    Action.REJECT_EVENT: ActionRule(
        grants={Role.ADMIN: Grant(stages=frozenset({"pending"}), stage_reason=NOT_PENDING)},
    ),
    Action.EDIT_EVENT: ActionRule(
        grants={
            Role.GROUP_LEADER: Grant(stages=PLANNING_STAGES, stage_reason=EVENT_LOCKED),
            Role.ADMIN: Grant(),
        },
    ),
    Action.DELETE_EVENT: ActionRule(
        grants={
            Role.GROUP_LEADER: Grant(stages=PLANNING_STAGES, stage_reason=EVENT_LOCKED),
            Role.ADMIN: Grant(),
        },
    ),
    Action.ENROLL: ActionRule(
        grants={Role.GUEST: Grant(stages=frozenset({"enrolling"}), stage_reason=NOT_ENROLLING)},
    ),
}


# ── Evaluation ───────────────────────────────────────────────────────────────


def _holds(roles: RoleSet, role: Role, day: Day | None) -> bool:
    if role is Role.DAILY_LEADER:
        return day is not None and roles.leads_day(day.number)
    return roles.has(role)


def evaluate(
    roles: RoleSet,
    action: Action | str,
    day: Day | None,
    today: date,
    context: EventContext | None = None,
) -> Decision:
    """Decide ``action`` and report the first failing rule as the reason."""
    try:
        action = Action(action)
    except ValueError:
        return Decision(False, UNKNOWN_ACTION)
    rule = WINDOW_RULES.get(action)
    if rule is None:
        return Decision(False, UNKNOWN_ACTION)
    if rule.needs_day and day is None:
        raise ValueError(f"Action '{action.value}' is evaluated against a schedule day")

    context = context or EventContext()

    held = [grant for role, grant in rule.grants.items() if _holds(roles, role, day)]
    if not held:
        return Decision(False, WRONG_ROLE)

    if rule.stages is not None and context.stage not in rule.stages:
        return Decision(False, rule.stage_reason)

    staged = [g for g in held if g.stages is None or context.stage in g.stages]
    if not staged:
        return Decision(False, held[0].stage_reason)

    timely = [g for g in staged if g.window is None or in_window(day.date, today, *g.window)]
    if not timely:
        return Decision(False, OUTSIDE_WINDOW)

    if rule.forbid_check_ins and context.day_has_check_ins:
        return Decision(False, DAY_HAS_CHECK_INS)
    if rule.requires_unclaimed and context.day_claimed:
        return Decision(False, ALREADY_CLAIMED)

    return ALLOW


def may(
    roles: RoleSet,
    action: Action | str,
    day: Day | None,
    today: date,
    context: EventContext | None = None,
) -> bool:
    return evaluate(roles, action, day, today, context).allowed


def check(
    roles: RoleSet,
    action: Action | str,
    day: Day | None,
    today: date,
    context: EventContext | None = None,
) -> None:
    """Raise ``PermissionDenied`` with the denial reason unless allowed."""
    decision = evaluate(roles, action, day, today, context)
    if not decision.allowed:
        name = action.value if isinstance(action, Action) else str(action)
        raise PermissionDenied(name, decision.reason, user_id=roles.user_id)


def permissions_for_day(roles: RoleSet, day: Day, today: date, context: EventContext) -> dict:
    """Every day-scoped action with its decision; backs the permissions endpoint."""
    return {
        action.value: evaluate(roles, action, day, today, context).to_dict()
        for action, rule in WINDOW_RULES.items()
        if rule.needs_day
    }
