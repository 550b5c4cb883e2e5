from __future__ import annotations

from ..extensions import db
from clicksilog.time_utils import to_utc_z


class Setting(db.Model):
    """
    Key-value settings.

    payment.confirmation_password_hash holds the bcrypt hash cashiers
    unlock cash confirmation with; to_dict never exposes values under a
    *_hash key.
    """
    __tablename__ = "settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True)
    value = db.Column(db.Text, nullable=True)

    updated_by_user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": None if self.key.endswith("_hash") else self.value,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
