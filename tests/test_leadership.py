"""
Leadership assignment tests.

Claims are first-come-first-served through a conditional UPDATE; assigned
events get round-robin leaders at start; the group leader backs up days
that are missing a leader, content or flowers.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from bookclub.core.exceptions import AlreadyClaimed, ClaimNotAllowed, NotFoundError, PermissionDenied
from bookclub.models import db
from bookclub.models.check_in import DailyLeading
from bookclub.models.reading_event import ReadingSchedule
from bookclub.services import domain_events, leadership, reading_activity
from bookclub.services import event_lifecycle as lifecycle

from conftest import START


@pytest.fixture()
def voluntary_event(make_event, enroll_users, leader):
    """Running voluntary event with five participants."""
    event = make_event("enrolling")
    participants = enroll_users(event, 5)
    lifecycle.start(event, leader, START)
    return event, participants


# ═════════════════════════════════════════════════════════════════════════════
# Voluntary claims
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
class TestClaim:
    def test_participant_claims_open_day(self, running_event):
        event, (reader, *_) = running_event
        schedule = event.schedule_for_day(3)
        leadership.claim(event, schedule, reader, START)
        assert schedule.daily_leader_id == reader.id

    def test_claim_publishes_event(self, running_event):
        event, (reader, *_) = running_event
        seen = []
        domain_events.subscribe(domain_events.LEADER_CLAIMED, seen.append)
        leadership.claim(event, event.schedule_for_day(2), reader, START)
        assert seen[0].payload["day_number"] == 2
        assert seen[0].payload["user_id"] == reader.id

    def test_second_claimant_loses(self, running_event):
        event, (first, second, _) = running_event
        schedule = event.schedule_for_day(4)
        leadership.claim(event, schedule, first, START)

        with pytest.raises(AlreadyClaimed) as exc_info:
            leadership.claim(event, schedule, second, START)
        assert exc_info.value.leader_id == first.id

    def test_only_one_of_many_claimants_wins(self, voluntary_event):
        event, participants = voluntary_event
        schedule_id = event.schedule_for_day(5).id
        winners, losers = [], []
        for user in participants:
            schedule = db.session.get(ReadingSchedule, schedule_id)
            try:
                leadership.claim(event, schedule, user, START)
                winners.append(user.id)
            except AlreadyClaimed:
                losers.append(user.id)

        assert len(winners) == 1
        assert len(losers) == len(participants) - 1
        assert db.session.get(ReadingSchedule, schedule_id).daily_leader_id == winners[0]

    def test_stale_read_cannot_overwrite(self, running_event):
        event, (first, second, _) = running_event
        schedule = event.schedule_for_day(6)
        assert schedule.daily_leader_id is None

        # a competing request commits its claim; this session's object still shows no leader
        db.session.execute(
            update(ReadingSchedule)
            .where(ReadingSchedule.id == schedule.id)
            .values(daily_leader_id=first.id)
            .execution_options(synchronize_session=False)
        )
        assert schedule.daily_leader_id is None

        with pytest.raises(AlreadyClaimed) as exc_info:
            leadership.claim(event, schedule, second, START)
        assert exc_info.value.leader_id == first.id

    def test_guest_cannot_claim(self, running_event, make_user):
        event, _ = running_event
        with pytest.raises(PermissionDenied) as exc_info:
            leadership.claim(event, event.schedule_for_day(1), make_user(), START)
        assert exc_info.value.reason == "wrong_role"

    def test_group_leader_cannot_claim(self, running_event, leader):
        event, _ = running_event
        with pytest.raises(PermissionDenied):
            leadership.claim(event, event.schedule_for_day(1), leader, START)

    def test_claim_before_start(self, make_event, enroll_users):
        event = make_event("enrolling")
        (reader,) = enroll_users(event, 1)
        with pytest.raises(PermissionDenied) as exc_info:
            leadership.claim(event, event.schedule_for_day(1), reader, START)
        assert exc_info.value.reason == "event_not_in_progress"

    def test_claim_limit(self, running_event):
        event, (reader, *_) = running_event
        for day in (1, 2, 3):
            leadership.claim(event, event.schedule_for_day(day), reader, START)
        with pytest.raises(ClaimNotAllowed) as exc_info:
            leadership.claim(event, event.schedule_for_day(4), reader, START)
        assert exc_info.value.reason == "claim_limit_reached"
        assert event.schedule_for_day(4).daily_leader_id is None

    def test_schedule_of_other_event(self, running_event, make_event):
        event, (reader, *_) = running_event
        other = make_event("enrolling")
        with pytest.raises(NotFoundError):
            leadership.claim(event, other.schedule_for_day(1), reader, START)


# ═════════════════════════════════════════════════════════════════════════════
# Assigned events
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
class TestAssigned:
    def test_claims_refused_on_assigned_event(self, make_event, enroll_users, leader):
        event = make_event("enrolling", leader_assignment_type="assigned")
        (reader, _) = enroll_users(event, 2)
        lifecycle.start(event, leader, START)
        with pytest.raises(ClaimNotAllowed) as exc_info:
            leadership.claim(event, event.schedule_for_day(1), reader, START)
        assert exc_info.value.reason == "assigned_event"

    def test_round_robin_in_enrollment_order(self, make_event, enroll_users):
        event = make_event("enrolling", leader_assignment_type="assigned")
        a, b = enroll_users(event, 2)
        assignments = leadership.assign_leaders(event)
        assert assignments == {1: a.id, 2: b.id, 3: a.id, 4: b.id, 5: a.id, 6: b.id, 7: a.id}

    def test_observers_are_skipped(self, make_event, enroll_users):
        event = make_event("enrolling", leader_assignment_type="assigned")
        (reader,) = enroll_users(event, 1)
        enroll_users(event, 2, enrollment_type="observer")
        assert set(leadership.assign_leaders(event).values()) == {reader.id}

    def test_already_led_days_kept(self, make_event, enroll_users):
        event = make_event("enrolling", leader_assignment_type="assigned")
        a, b = enroll_users(event, 2)
        event.schedule_for_day(1).daily_leader_id = b.id
        db.session.commit()

        assignments = leadership.assign_leaders(event)
        assert 1 not in assignments
        assert assignments[2] == a.id
        assert event.schedule_for_day(1).daily_leader_id == b.id

    def test_no_participants(self, make_event):
        event = make_event("enrolling", leader_assignment_type="assigned")
        assert leadership.assign_leaders(event) == {}
        assert all(s.daily_leader_id is None for s in event.schedules)


# ═════════════════════════════════════════════════════════════════════════════
# Backup
# ═════════════════════════════════════════════════════════════════════════════


def _publish(event, day, user, today):
    return reading_activity.publish_daily_leading(
        event, event.schedule_for_day(day), user,
        {"reading_suggestion": "Read slowly", "questions": "What changed?"}, today,
    )


@pytest.mark.unit
class TestBackup:
    def test_arrived_days_without_content_need_backup(self, running_event):
        event, _ = running_event
        today = START + timedelta(days=2)
        days = [row["day_number"] for row in leadership.schedules_needing_backup(event, today)]
        assert days == [1, 2, 3]

    def test_day_with_content_and_no_check_ins_is_fine(self, running_event, leader):
        event, _ = running_event
        _publish(event, 1, leader, START)
        rows = leadership.schedules_needing_backup(event, START)
        assert rows == []

    def test_unrewarded_check_ins_need_backup(self, running_event, leader):
        event, (reader, *_) = running_event
        _publish(event, 1, leader, START)
        reading_activity.submit_check_in(event, event.schedule_for_day(1), reader, "Chapter one notes", START)

        (row,) = leadership.schedules_needing_backup(event, START)
        assert row["day_number"] == 1
        assert row["missing_flowers"] is True
        assert row["missing_content"] is False
        assert row["flower_deadline"].startswith((START + timedelta(days=1)).isoformat())

    def test_group_leader_takes_over(self, running_event, leader):
        event, (reader, *_) = running_event
        schedule = event.schedule_for_day(2)
        leadership.claim(event, schedule, reader, START)

        leadership.backup_assign(event, schedule, leader, START + timedelta(days=1))
        assert schedule.daily_leader_id == leader.id

    def test_backup_not_needed(self, running_event, leader):
        event, (reader, *_) = running_event
        schedule = event.schedule_for_day(1)
        leadership.claim(event, schedule, reader, START)
        _publish(event, 1, reader, START)

        with pytest.raises(ClaimNotAllowed) as exc_info:
            leadership.backup_assign(event, schedule, leader, START)
        assert exc_info.value.reason == "backup_not_needed"

    def test_only_group_leader_backs_up(self, running_event):
        event, (reader, *_) = running_event
        with pytest.raises(PermissionDenied):
            leadership.backup_assign(event, event.schedule_for_day(1), reader, START)

    def test_backup_needs_running_event(self, make_event, leader):
        event = make_event("enrolling")
        with pytest.raises(PermissionDenied) as exc_info:
            leadership.backup_assign(event, event.schedule_for_day(1), leader, START)
        assert exc_info.value.reason == "event_not_in_progress"


@pytest.mark.unit
def test_assignment_statistics(running_event, leader):
    event, (a, b, _) = running_event
    leadership.claim(event, event.schedule_for_day(1), a, START)
    leadership.claim(event, event.schedule_for_day(2), a, START)
    leadership.claim(event, event.schedule_for_day(3), b, START)
    _publish(event, 1, a, START)

    stats = leadership.assignment_statistics(event, START)
    assert stats["total_schedules"] == 7
    assert stats["assigned_schedules"] == 3
    assert stats["unassigned_schedules"] == 4
    assert stats["unique_leaders"] == 2
    assert stats["assignment_rate"] == round(3 / 7 * 100, 2)
    assert stats["content_completion_rate"] == round(1 / 7 * 100, 2)
    workload = {w["user_id"]: w for w in stats["leader_workload"]}
    assert workload[a.id]["assigned_count"] == 2
    assert workload[a.id]["content_completed"] == 1
    assert workload[b.id]["content_completed"] == 0
    assert DailyLeading.query.count() == 1
