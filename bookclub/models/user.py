"""
Book Club Reading Events
User model.

Identity and credentials live in an external auth service; this table only
carries what the reading-event rules need: a display name and the platform
role that decides admin rights.
"""

from datetime import datetime, timezone

from bookclub.models import db

ADMIN_ROLES = frozenset({"admin", "root"})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    nickname = db.Column(db.String(100), nullable=False)
    avatar_url = db.Column(db.String(500))
    role = db.Column(db.String(20), nullable=False, default="user", comment="user | admin | root")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "nickname": self.nickname,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "is_admin": self.is_admin,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.nickname}>"
