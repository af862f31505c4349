"""
Role Resolver — the caller's relationship roles on one reading event.

A user can hold several roles at once: an admin who also organises the
event holds both ``admin`` and ``group_leader``; a participant who claimed
days 2 and 5 holds ``participant`` plus ``daily_leader`` for those days.
The result is an immutable ``RoleSet`` computed once per request and passed
by value into the permission engine.

Usage:
    from bookclub.services.role_resolver import resolve, Role

    roles = resolve(user, event)
    roles.has(Role.GROUP_LEADER)
    roles.leads_day(3)
"""

from dataclasses import dataclass, field
from enum import Enum

from bookclub.models.enrollment import Enrollment
from bookclub.models.reading_event import ReadingSchedule


class Role(str, Enum):
    GUEST = "guest"
    OBSERVER = "observer"
    PARTICIPANT = "participant"
    DAILY_LEADER = "daily_leader"
    GROUP_LEADER = "group_leader"
    ADMIN = "admin"


@dataclass(frozen=True)
class RoleSet:
    user_id: int | None
    roles: frozenset = field(default_factory=frozenset)
    leader_days: frozenset = field(default_factory=frozenset)

    def has(self, role: Role) -> bool:
        if role is Role.DAILY_LEADER:
            return bool(self.leader_days)
        return role in self.roles

    def leads_day(self, day_number: int) -> bool:
        return day_number in self.leader_days

    def to_dict(self) -> dict:
        names = sorted(r.value for r in self.roles)
        if self.leader_days:
            names.append(Role.DAILY_LEADER.value)
        return {
            "user_id": self.user_id,
            "roles": names,
            "leader_days": sorted(self.leader_days),
        }


GUEST_ROLES = RoleSet(user_id=None, roles=frozenset({Role.GUEST}))


def resolve(user, event, schedule=None) -> RoleSet:
    """Compute the role set of ``user`` on ``event``.

    The admin flag is decided from the user alone and never depends on the
    relationship lookups. Daily leadership is collected for every schedule
    the user leads, or only for ``schedule`` when one is given.
    """
    if user is None:
        return GUEST_ROLES

    roles = set()
    if user.is_admin:
        roles.add(Role.ADMIN)

    if event.leader_id == user.id:
        roles.add(Role.GROUP_LEADER)
    else:
        enrollment = (
            Enrollment.query
            .filter_by(user_id=user.id, event_id=event.id)
            .first()
        )
        if enrollment is not None and enrollment.is_active:
            roles.add(Role.PARTICIPANT if enrollment.enrollment_type == "participant" else Role.OBSERVER)
        else:
            roles.add(Role.GUEST)

    if schedule is not None:
        leader_days = {schedule.day_number} if schedule.daily_leader_id == user.id else set()
    else:
        leader_days = {
            day for (day,) in (
                ReadingSchedule.query
                .with_entities(ReadingSchedule.day_number)
                .filter_by(event_id=event.id, daily_leader_id=user.id)
                .all()
            )
        }

    return RoleSet(user_id=user.id, roles=frozenset(roles), leader_days=frozenset(leader_days))
