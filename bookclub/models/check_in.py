"""
Book Club Reading Events
Daily activity models.

Models:
    - CheckIn:       a participant's reading-progress submission for one day
    - Flower:        a leader's reward attached to one check-in
    - DailyLeading:  the leader-authored content for one schedule day

Uniqueness lives in the schema so duplicates fail deterministically even
under concurrent retries:
    CheckIn      (user_id, schedule_id)
    Flower       (check_in_id)
    DailyLeading (schedule_id)
"""

from datetime import datetime, timezone

from bookclub.models import db


class CheckIn(db.Model):
    __tablename__ = "check_ins"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_id = db.Column(
        db.Integer, db.ForeignKey("reading_schedules.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    enrollment_id = db.Column(
        db.Integer, db.ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    content = db.Column(db.Text, nullable=False)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="normal", comment="normal | supplement | late")
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False,
                             default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "schedule_id", name="uq_check_in_user_schedule"),
    )

    user = db.relationship("User")
    schedule = db.relationship("ReadingSchedule", back_populates="check_ins")
    enrollment = db.relationship("Enrollment")
    flower = db.relationship(
        "Flower", back_populates="check_in", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "schedule_id": self.schedule_id,
            "enrollment_id": self.enrollment_id,
            "content": self.content,
            "word_count": self.word_count,
            "status": self.status,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "has_flower": self.flower is not None,
        }

    def __repr__(self):
        return f"<CheckIn {self.id} user={self.user_id} schedule={self.schedule_id}>"


class Flower(db.Model):
    """Reward records are immutable once created; no update path exists."""

    __tablename__ = "flowers"

    id = db.Column(db.Integer, primary_key=True)
    check_in_id = db.Column(
        db.Integer, db.ForeignKey("check_ins.id", ondelete="CASCADE"), nullable=False,
    )
    giver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    schedule_id = db.Column(
        db.Integer, db.ForeignKey("reading_schedules.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("check_in_id", name="uq_flower_check_in"),
        db.CheckConstraint("giver_id <> recipient_id", name="ck_flower_not_self"),
        db.Index("ix_flowers_schedule_giver", "schedule_id", "giver_id"),
    )

    check_in = db.relationship("CheckIn", back_populates="flower")
    giver = db.relationship("User", foreign_keys=[giver_id])
    recipient = db.relationship("User", foreign_keys=[recipient_id])
    schedule = db.relationship("ReadingSchedule", back_populates="flowers")

    def to_dict(self):
        return {
            "id": self.id,
            "check_in_id": self.check_in_id,
            "giver_id": self.giver_id,
            "recipient_id": self.recipient_id,
            "schedule_id": self.schedule_id,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Flower {self.id} {self.giver_id}→{self.recipient_id}>"


class DailyLeading(db.Model):
    __tablename__ = "daily_leadings"

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(
        db.Integer, db.ForeignKey("reading_schedules.id", ondelete="CASCADE"), nullable=False,
    )
    leader_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reading_suggestion = db.Column(db.Text, nullable=False)
    questions = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("schedule_id", name="uq_daily_leading_schedule"),
    )

    schedule = db.relationship("ReadingSchedule", back_populates="daily_leading")
    leader = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "leader_id": self.leader_id,
            "reading_suggestion": self.reading_suggestion,
            "questions": self.questions,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DailyLeading schedule={self.schedule_id} leader={self.leader_id}>"
