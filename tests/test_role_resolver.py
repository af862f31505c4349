"""Role resolver tests: relationship roles of a user on one event."""

import pytest

from bookclub.models import db
from bookclub.models.enrollment import Enrollment
from bookclub.services.role_resolver import Role, resolve


@pytest.mark.unit
class TestResolve:
    def test_group_leader(self, make_event, leader):
        event = make_event()
        roles = resolve(leader, event)
        assert roles.has(Role.GROUP_LEADER)
        assert not roles.has(Role.GUEST)
        assert not roles.has(Role.ADMIN)

    def test_stranger_is_guest(self, make_event, make_user):
        roles = resolve(make_user(), make_event())
        assert roles.roles == frozenset({Role.GUEST})
        assert roles.leader_days == frozenset()

    def test_none_user_is_guest(self, make_event):
        roles = resolve(None, make_event())
        assert roles.has(Role.GUEST)
        assert roles.user_id is None

    def test_participant_and_observer(self, make_event, enroll_users):
        event = make_event("enrolling")
        (participant,) = enroll_users(event, 1)
        (observer,) = enroll_users(event, 1, enrollment_type="observer")
        assert resolve(participant, event).has(Role.PARTICIPANT)
        assert resolve(observer, event).has(Role.OBSERVER)
        assert not resolve(observer, event).has(Role.PARTICIPANT)

    def test_withdrawn_enrollment_is_guest(self, make_event, enroll_users):
        event = make_event("enrolling")
        (user,) = enroll_users(event, 1)
        enrollment = Enrollment.query.filter_by(user_id=user.id, event_id=event.id).one()
        enrollment.status = "withdrawn"
        db.session.commit()
        assert resolve(user, event).roles == frozenset({Role.GUEST})

    def test_admin_flag_added_alongside_relationship(self, make_event, admin, make_user):
        event = make_event()
        roles = resolve(admin, event)
        assert roles.has(Role.ADMIN)
        assert roles.has(Role.GUEST)

        root = make_user("root", role="root")
        assert resolve(root, event).has(Role.ADMIN)

    def test_daily_leader_days_collected(self, make_event, enroll_users):
        event = make_event("enrolling")
        (user,) = enroll_users(event, 1)
        event.schedules[1].daily_leader_id = user.id
        event.schedules[4].daily_leader_id = user.id
        db.session.commit()

        roles = resolve(user, event)
        assert roles.leader_days == frozenset({2, 5})
        assert roles.has(Role.DAILY_LEADER)
        assert roles.leads_day(5) and not roles.leads_day(3)

    def test_single_schedule_scope(self, make_event, enroll_users):
        event = make_event("enrolling")
        (user,) = enroll_users(event, 1)
        event.schedules[1].daily_leader_id = user.id
        db.session.commit()

        assert resolve(user, event, event.schedules[1]).leader_days == frozenset({2})
        assert resolve(user, event, event.schedules[2]).leader_days == frozenset()

    def test_to_dict(self, make_event, leader):
        data = resolve(leader, make_event()).to_dict()
        assert data == {"user_id": leader.id, "roles": ["group_leader"], "leader_days": []}
