"""
Book Club Reading Events
Enrollment model — a user's participation record in a reading event.
"""

from datetime import datetime, timezone

from bookclub.models import db

ENROLLMENT_TYPES = {"participant", "observer"}
ACTIVE_ENROLLMENT_STATUSES = frozenset({"enrolled", "completed"})


class Enrollment(db.Model):
    """
    One row per (user, event).

    The counters are denormalised read models maintained by
    ``services.completion.refresh_enrollment_stats``; the source of truth is
    always the CheckIn / Flower rows.
    """

    __tablename__ = "enrollments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("reading_events.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    enrollment_type = db.Column(db.String(20), nullable=False, default="participant")
    status = db.Column(db.String(20), nullable=False, default="enrolled")
    enrollment_date = db.Column(db.DateTime(timezone=True), nullable=False,
                                default=lambda: datetime.now(timezone.utc))

    check_ins_count = db.Column(db.Integer, nullable=False, default=0)
    flowers_received_count = db.Column(db.Integer, nullable=False, default=0)
    leader_days_count = db.Column(db.Integer, nullable=False, default=0)
    completion_rate = db.Column(db.Float, nullable=False, default=0.0)

    __table_args__ = (
        db.UniqueConstraint("user_id", "event_id", name="uq_enrollment_user_event"),
    )

    user = db.relationship("User")
    event = db.relationship("ReadingEvent", back_populates="enrollments")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_ENROLLMENT_STATUSES

    @property
    def is_participant(self) -> bool:
        return self.enrollment_type == "participant" and self.is_active

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "enrollment_type": self.enrollment_type,
            "status": self.status,
            "enrollment_date": self.enrollment_date.isoformat() if self.enrollment_date else None,
            "check_ins_count": self.check_ins_count,
            "flowers_received_count": self.flowers_received_count,
            "leader_days_count": self.leader_days_count,
            "completion_rate": self.completion_rate,
        }

    def __repr__(self):
        return f"<Enrollment user={self.user_id} event={self.event_id} {self.enrollment_type}/{self.status}>"
