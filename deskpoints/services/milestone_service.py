"""
deskpoints.services.milestone_service — Daily ticket-handling milestones
=========================================================================

After a ticket opening or a paid self-assignment, re-scan the user's
business day.  Qualifying events are non-duplicate TICKET_OPENED entries
and ASSIGN_TO_SELF entries that paid out, minus tickets the user deleted
today.  The highest threshold reached and not yet awarded today earns a
one-time +20 MILESTONE_BONUS and a team banner.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from deskpoints.config import DEFAULT_CONFIG, DeskpointsConfig
from deskpoints.database.models import PointEvent
from deskpoints.database.models import PointEventType as E
from deskpoints.engine.business_time import business_date, day_bounds
from deskpoints.engine.locks import KeyedLock, get_default_locks
from deskpoints.services import ledger_store
from deskpoints.services.broadcast_service import publish_broadcast

logger = logging.getLogger(__name__)

MILESTONE_THRESHOLDS: tuple[int, ...] = (15, 10)   # checked highest first
MILESTONE_BONUS = 20


def count_qualifying(events: list[PointEvent]) -> int:
    """Qualifying openings and paid assignments, excluding deleted tickets."""
    deleted = {
        e.related_ticket_id for e in events
        if e.event_type == E.TICKET_DELETED and e.related_ticket_id is not None
    }
    count = 0
    for e in events:
        if e.related_ticket_id is not None and e.related_ticket_id in deleted:
            continue
        if e.event_type == E.TICKET_OPENED and not (e.details or {}).get("duplicate_detection"):
            count += 1
        elif e.event_type == E.ASSIGN_TO_SELF and e.points_awarded > 0:
            count += 1
    return count


def next_threshold(count: int, awarded: set[int]) -> int | None:
    for threshold in MILESTONE_THRESHOLDS:
        if count >= threshold and threshold not in awarded:
            return threshold
    return None


def milestone_message(username: str, threshold: int) -> str:
    return (
        f"🎉 Congratulations to {username} for handling {threshold} tickets today! "
        "Keep up the great work! 🎉"
    )


def check_milestone(
    engine: Engine,
    user_id: str,
    username: str,
    now: datetime,
    *,
    config: DeskpointsConfig = DEFAULT_CONFIG,
    locks: KeyedLock | None = None,
) -> int | None:
    """Award the day's next milestone if reached; returns the threshold or None."""
    locks = locks or get_default_locks()
    offset = config.business_offset
    today = business_date(now, offset)
    start, end = day_bounds(today, offset)

    with locks.hold(("milestone", user_id, today)), Session(engine) as session:
        events = ledger_store.query_events(
            session,
            user_id=user_id,
            event_types=[E.TICKET_OPENED, E.ASSIGN_TO_SELF, E.TICKET_DELETED, E.MILESTONE_BONUS],
            since=start,
            until=end,
        )
        awarded = {
            int((e.details or {}).get("milestone", 0))
            for e in events if e.event_type == E.MILESTONE_BONUS
        }
        count = count_qualifying(events)
        threshold = next_threshold(count, awarded)
        if threshold is None:
            return None

        row = ledger_store.insert_once(
            session,
            f"milestone:{user_id}:{today.isoformat()}:{threshold}",
            user_id=user_id,
            username=username,
            event_type=E.MILESTONE_BONUS,
            points=MILESTONE_BONUS,
            created_at=now,
            details={
                "reason": f"Hit the {threshold} tickets milestone today!",
                "milestone": threshold,
                "qualifying_events": count,
            },
        )
        if row is None:
            session.rollback()
            return None

        publish_broadcast(session, milestone_message(username, threshold), now, created_by=user_id)
        session.commit()

    logger.info("User %s (%s) hit the %d-ticket milestone", username, user_id, threshold)
    return threshold
