"""
deskpoints.services.broadcast_service — Team banner and notifications
======================================================================

Writes the rows the helpdesk UI polls (or listens to) for celebrations:

* ``broadcast_messages`` — at most one active team-wide banner.
* ``notifications`` — per-user messages such as kudos.
* ``badge_notifications`` — badge toasts, optionally fanned out to everyone.

On PostgreSQL each write also issues ``NOTIFY deskpoints_events`` inside the
caller's transaction, so listeners only hear about committed rows.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import text, update
from sqlalchemy.orm import Session

from deskpoints.database.models import BadgeNotification, BroadcastMessage, Notification
from deskpoints.engine.achievements import BadgeDefinition
from deskpoints.engine.business_time import as_utc

logger = logging.getLogger(__name__)

EVENT_NOTIFY_CHANNEL = "deskpoints_events"
SYSTEM_AUTHOR = "system"


def notify_before_commit(session: Session, payload: dict) -> None:
    """Queue a NOTIFY with a JSON *payload*; fires when the transaction commits.

    No-op on databases other than PostgreSQL.
    """
    if "type" not in payload:
        raise ValueError("Event payload must include a 'type' key")
    bind = session.get_bind()
    if bind.dialect.name != "postgresql":
        return
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": EVENT_NOTIFY_CHANNEL, "payload": json.dumps(payload, default=str)},
    )


def publish_broadcast(
    session: Session, message: str, now: datetime, created_by: str = SYSTEM_AUTHOR
) -> BroadcastMessage:
    """Deactivate every active banner and post *message* as the only one."""
    session.execute(
        update(BroadcastMessage)
        .where(BroadcastMessage.is_active.is_(True))
        .values(is_active=False)
    )
    row = BroadcastMessage(
        message=message, is_active=True, created_by=created_by, created_at=as_utc(now)
    )
    session.add(row)
    session.flush()
    notify_before_commit(session, {"type": "broadcast", "id": row.id, "message": message})
    logger.info("Broadcast posted: %s", message)
    return row


def notify_user(
    session: Session,
    user_id: str,
    message: str,
    now: datetime,
    *,
    kind: str = "kudos",
    related_ticket_id: int | None = None,
) -> Notification:
    row = Notification(
        user_id=user_id,
        type=kind,
        message=message,
        related_ticket_id=related_ticket_id,
        created_at=as_utc(now),
    )
    session.add(row)
    session.flush()
    notify_before_commit(session, {"type": "notification", "user_id": user_id})
    return row


def notify_badge(
    session: Session,
    recipients: Iterable[str],
    badge: BadgeDefinition,
    message: str,
    now: datetime,
) -> int:
    """Write one badge notification per recipient; returns how many."""
    count = 0
    for user_id in dict.fromkeys(recipients):
        session.add(BadgeNotification(
            user_id=user_id,
            badge_id=str(badge.id),
            badge_name=badge.name,
            badge_emoji=badge.emoji,
            message=message,
            created_at=as_utc(now),
        ))
        count += 1
    if count:
        session.flush()
        notify_before_commit(
            session, {"type": "badge_notification", "badge": str(badge.id), "count": count}
        )
    return count
