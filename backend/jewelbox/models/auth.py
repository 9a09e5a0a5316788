from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class Role(db.Model):
    """Named role with a JSON policy blob (e.g. {"createItem": true})."""
    __tablename__ = "roles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    policies = db.Column(db.Text, nullable=False, default="{}")

    def policy_dict(self) -> dict:
        return json.loads(self.policies or "{}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "policies": self.policy_dict(),
        }


class User(db.Model):
    """
    User accounts for authentication and attribution.

    CREDENTIAL FIELDS:
    - password_hash: bcrypt for current accounts; accounts seeded by older
      tooling may still hold an unsalted SHA-256 hex digest until their
      next successful login upgrades it
    - failed_logins: consecutive failures since the last success, never negative
    - locked_until: maintained but not enforced here
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("failed_logins >= 0", name="ck_users_failed_logins_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    display_name = db.Column(db.String(255), nullable=False)

    password_hash = db.Column(db.String(255), nullable=False)
    failed_logins = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    role = db.relationship("Role", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role.name if self.role else None,
            "is_active": self.is_active,
            "failed_logins": self.failed_logins,
            "locked_until": to_utc_z(self.locked_until),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }
