from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuthEvent(db.Model):
    """
    Login outcome log.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    email_tried is stored as typed, even for unknown accounts.
    """
    __tablename__ = "auth_events"
    __table_args__ = (
        db.Index("ix_auth_events_email_occurred", "email_tried", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outcome = db.Column(db.String(16), nullable=False)  # SUCCESS, UPGRADED, FAIL
    email_tried = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reason = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outcome": self.outcome,
            "email_tried": self.email_tried,
            "user_id": self.user_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class UserTaskLog(db.Model):
    """Per-user action log (e.g. LOGIN_SUCCESS). Payload is JSON text."""
    __tablename__ = "user_task_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.Text, nullable=False, default="{}")
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
