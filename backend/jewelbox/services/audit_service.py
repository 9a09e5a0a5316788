# Overview: Service-layer operations for audit; append-only login and task logs.

"""
Audit Service

WHY: Every login attempt and every bulk operation must be attributable
after the fact. Both tables are append-only.

Outcomes: SUCCESS, UPGRADED (legacy hash replaced), FAIL.
"""

from __future__ import annotations

import json

from ..extensions import db
from ..models import AuthEvent, UserTaskLog
from ..time_utils import utcnow


AUTH_OUTCOMES = ("SUCCESS", "UPGRADED", "FAIL")


def log_auth_event(
    *,
    outcome: str,
    email_tried: str,
    user_id: int | None = None,
    reason: str | None = None,
) -> AuthEvent:
    if outcome not in AUTH_OUTCOMES:
        raise ValueError(f"Unknown auth outcome {outcome}")

    event = AuthEvent(
        outcome=outcome,
        email_tried=(email_tried or "")[:255],
        user_id=user_id,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event


def log_task(user_id: int, action: str, payload: dict | None = None) -> UserTaskLog:
    """Record an action by a real user. payload is stored as JSON text."""
    entry = UserTaskLog(
        user_id=user_id,
        action=action,
        payload=json.dumps(payload or {}, sort_keys=True, default=str),
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.commit()
    return entry
