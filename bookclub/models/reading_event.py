"""
Book Club Reading Events
Reading-event domain models.

Models:
    - ReadingEvent:     a planned group reading activity owned by its group leader
    - ReadingSchedule:  one calendar day of the event's reading plan

Architecture:
    User ──1:N──▶ ReadingEvent (leader)
    ReadingEvent ──1:N──▶ ReadingSchedule ──1:N──▶ CheckIn ──1:1──▶ Flower
                                         └──1:1──▶ DailyLeading
    ReadingEvent ──1:N──▶ Enrollment ◀──N:1── User

Lifecycle stages (derived from status + approval_status):
    draft → pending → approved (status=enrolling) → in_progress → completed
                    ↘ rejected → pending (resubmission)
"""

from datetime import datetime, timezone

from bookclub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LEADER_ASSIGNMENT_TYPES = {"voluntary", "assigned"}
FEE_TYPES = {"free", "deposit", "paid"}
ACTIVITY_MODES = {"note_checkin", "free_discussion", "video_conference", "offline_meeting"}

LIFECYCLE_STAGES = ("draft", "pending", "rejected", "enrolling", "in_progress", "completed")

# Stages in which the event row may be deleted
DELETABLE_STAGES = frozenset({"draft", "rejected"})


class ReadingEvent(db.Model):
    """
    A planned group reading activity.

    Business rules:
    - approval_status must be 'approved' before status leaves draft/enrolling.
    - end_date >= start_date.
    - days_count equals the number of schedules generated at creation and
      is never changed afterwards.
    - version is an optimistic lock; concurrent lifecycle transitions on the
      same row fail at flush with StaleDataError.
    """

    __tablename__ = "reading_events"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    book_name = db.Column(db.String(200), nullable=False)
    book_cover_url = db.Column(db.String(500))
    description = db.Column(db.Text, default="")

    start_date = db.Column(db.Date, nullable=False, index=True)
    end_date = db.Column(db.Date, nullable=False)
    days_count = db.Column(db.Integer, nullable=False)

    max_participants = db.Column(db.Integer, nullable=False, default=30)
    min_participants = db.Column(db.Integer, nullable=False, default=1)

    # Fee terms (payment processing is out of scope; recorded for display)
    fee_type = db.Column(db.String(20), nullable=False, default="free")
    fee_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    activity_mode = db.Column(db.String(30), nullable=False, default="note_checkin")
    completion_standard = db.Column(
        db.Integer, nullable=False, default=80,
        comment="Completion percentage an enrollment needs to count as completed",
    )

    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    approval_status = db.Column(
        db.String(20), nullable=True,
        comment="NULL until submitted; then pending | approved | rejected",
    )
    leader_assignment_type = db.Column(db.String(20), nullable=False, default="voluntary")

    leader_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_for_approval_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint("end_date >= start_date", name="ck_reading_event_dates"),
    )

    leader = db.relationship("User", foreign_keys=[leader_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    schedules = db.relationship(
        "ReadingSchedule", back_populates="event",
        cascade="all, delete-orphan", order_by="ReadingSchedule.day_number",
        passive_deletes=True,
    )
    enrollments = db.relationship(
        "Enrollment", back_populates="event",
        cascade="all, delete-orphan", lazy="dynamic", passive_deletes=True,
    )

    @property
    def lifecycle_stage(self) -> str:
        """Single combined state for status + approval_status."""
        if self.status == "draft":
            if self.approval_status in ("pending", "rejected"):
                return self.approval_status
            return "draft"
        return self.status

    @property
    def in_progress(self) -> bool:
        return self.status == "in_progress"

    def schedule_for_day(self, day_number: int):
        for schedule in self.schedules:
            if schedule.day_number == day_number:
                return schedule
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "book_name": self.book_name,
            "book_cover_url": self.book_cover_url,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "days_count": self.days_count,
            "max_participants": self.max_participants,
            "min_participants": self.min_participants,
            "fee_type": self.fee_type,
            "fee_amount": float(self.fee_amount or 0),
            "activity_mode": self.activity_mode,
            "completion_standard": self.completion_standard,
            "status": self.status,
            "approval_status": self.approval_status,
            "lifecycle_stage": self.lifecycle_stage,
            "leader_assignment_type": self.leader_assignment_type,
            "leader_id": self.leader_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejection_reason": self.rejection_reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<ReadingEvent {self.id}: {self.title[:40]} [{self.lifecycle_stage}]>"


class ReadingSchedule(db.Model):
    """
    One day of an event's reading plan.

    The set of rows is generated with the event and never changes;
    daily_leader_id is the only mutable column and only the leadership
    service writes it.
    """

    __tablename__ = "reading_schedules"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("reading_events.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    day_number = db.Column(db.Integer, nullable=False)
    date = db.Column(db.Date, nullable=False, index=True)
    reading_progress = db.Column(db.String(200), nullable=False, default="")
    daily_leader_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("event_id", "day_number", name="uq_schedule_event_day"),
        db.CheckConstraint("day_number >= 1", name="ck_schedule_day_number"),
    )

    event = db.relationship("ReadingEvent", back_populates="schedules")
    daily_leader = db.relationship("User", foreign_keys=[daily_leader_id])
    check_ins = db.relationship(
        "CheckIn", back_populates="schedule", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    flowers = db.relationship(
        "Flower", back_populates="schedule", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    daily_leading = db.relationship(
        "DailyLeading", back_populates="schedule", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "day_number": self.day_number,
            "date": self.date.isoformat() if self.date else None,
            "reading_progress": self.reading_progress,
            "daily_leader_id": self.daily_leader_id,
            "has_leading_content": self.daily_leading is not None,
        }

    def __repr__(self):
        return f"<ReadingSchedule event={self.event_id} day={self.day_number}>"
