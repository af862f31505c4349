"""Completion rates, enrollment counters and the flower leaderboard."""

from datetime import timedelta

import pytest

from bookclub.models import db
from bookclub.models.enrollment import Enrollment
from bookclub.services import completion, leadership, reading_activity
from bookclub.services import event_lifecycle as lifecycle

from conftest import END, START


def _day(n):
    return START + timedelta(days=n - 1)


def _check_in(event, day, user, content="Notes for the day"):
    return reading_activity.submit_check_in(event, event.schedule_for_day(day), user, content, _day(day))


def _enrollment(event, user):
    return Enrollment.query.filter_by(event_id=event.id, user_id=user.id).one()


@pytest.mark.unit
class TestCompletionRate:
    def test_zero_without_check_ins(self, running_event):
        event, (a, *_) = running_event
        assert completion.completion_rate(_enrollment(event, a)) == 0.0

    def test_counts_only_valid_check_ins(self, running_event, app):
        event, (a, *_) = running_event
        for day in (1, 2, 3):
            _check_in(event, day, a)
        app.config["CHECKIN_MIN_WORD_COUNT"] = 100
        try:
            assert completion.valid_check_ins_count(_enrollment(event, a)) == 0
        finally:
            app.config["CHECKIN_MIN_WORD_COUNT"] = 5
        assert completion.valid_check_ins_count(_enrollment(event, a)) == 3
        assert completion.completion_rate(_enrollment(event, a)) == round(3 / 7 * 100, 2)

    def test_every_day_is_one_hundred(self, running_event):
        event, (a, *_) = running_event
        for day in range(1, 8):
            _check_in(event, day, a)
        assert completion.completion_rate(_enrollment(event, a)) == 100.0


@pytest.mark.unit
class TestRefresh:
    def test_counters_follow_rows(self, running_event, leader):
        event, (a, b, _) = running_event
        leadership.claim(event, event.schedule_for_day(1), b, START)
        leadership.claim(event, event.schedule_for_day(2), b, START)
        reading_activity.give_flower(_check_in(event, 1, a), b, _day(1))

        enrollment = completion.refresh_enrollment_stats(_enrollment(event, b))
        assert enrollment.leader_days_count == 2
        enrollment = _enrollment(event, a)
        assert enrollment.check_ins_count == 1
        assert enrollment.flowers_received_count == 1

    def test_finalize_marks_completed_at_standard(self, running_event, leader):
        event, (a, b, _) = running_event
        # 6 of 7 days clears the default 80% standard
        for day in range(1, 7):
            _check_in(event, day, a)
        _check_in(event, 1, b)

        lifecycle.complete(event, leader, END + timedelta(days=1))
        assert _enrollment(event, a).status == "completed"
        assert _enrollment(event, b).status == "enrolled"

    def test_observers_never_complete(self, running_event, enroll_users):
        event, _ = running_event
        (observer,) = enroll_users(event, 1, enrollment_type="observer")
        enrollment = completion.refresh_enrollment_stats(_enrollment(event, observer), finalize=True)
        assert enrollment.status == "enrolled"


@pytest.mark.unit
class TestLeaderboardAndSummary:
    def test_leaderboard_ranks_by_flowers(self, make_event, enroll_users, leader):
        event = make_event("enrolling")
        a, b, c = enroll_users(event, 3)
        lifecycle.start(event, leader, START)
        for day in (1, 2):
            reading_activity.give_flower(_check_in(event, day, b), leader, _day(day))
        reading_activity.give_flower(_check_in(event, 1, a), leader, _day(1))
        _check_in(event, 1, c)

        board = completion.flower_leaderboard(event)
        assert [(row["rank"], row["user_id"], row["flowers"]) for row in board] == [
            (1, b.id, 2), (2, a.id, 1),
        ]
        assert completion.flower_leaderboard(event, limit=1)[0]["user_id"] == b.id

    def test_empty_leaderboard(self, running_event):
        event, _ = running_event
        assert completion.flower_leaderboard(event) == []

    def test_summary(self, running_event, leader):
        event, (a, *_) = running_event
        for day in range(1, 8):
            _check_in(event, day, a)
        lifecycle.complete(event, leader, END + timedelta(days=1))
        summary = completion.completion_summary(event)
        assert summary["participants"] == 3
        assert summary["completed"] == 1
        assert summary["average_completion_rate"] == round(100.0 / 3, 2)
        assert summary["completion_standard"] == event.completion_standard
        db.session.refresh(event)
        assert event.status == "completed"
