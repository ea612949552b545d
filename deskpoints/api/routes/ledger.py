"""
deskpoints.api.routes.ledger — Ledger and badge reads, admin correction
========================================================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from deskpoints.api.deps import get_config, get_session
from deskpoints.config import DeskpointsConfig
from deskpoints.database.models import BadgeAward, PointEvent
from deskpoints.engine.achievements import BADGES
from deskpoints.engine.business_time import business_date
from deskpoints.services import ledger_store
from deskpoints.services.badge_service import badges_on

router = APIRouter(tags=["ledger"])


def _event_dict(e: PointEvent) -> dict:
    return {
        "id": e.id,
        "user_id": e.user_id,
        "username": e.username,
        "event_type": e.event_type,
        "points_awarded": e.points_awarded,
        "related_ticket_id": e.related_ticket_id,
        "details": e.details or {},
        "created_at": e.created_at.isoformat() if e.created_at else None,
        "superseded_by_id": e.superseded_by_id,
        "reverses_id": e.reverses_id,
        "parent_id": e.parent_id,
    }


def _badge_dict(b: BadgeAward) -> dict:
    badge = next((d for d in BADGES.values() if d.id == b.badge_id), None)
    return {
        "badge_id": b.badge_id,
        "name": badge.name if badge else b.badge_id,
        "emoji": badge.emoji if badge else "",
        "award_date": b.award_date.isoformat(),
        "achieved_at": b.achieved_at.isoformat() if b.achieved_at else None,
        "is_active": b.is_active,
        "metadata": b.metadata_ or {},
    }


# ---------------------------------------------------------------------------
# GET /users/{user_id}/points
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/points")
def get_user_points(
    user_id: str,
    ticket_id: int | None = Query(default=None),
    event_type: list[str] | None = Query(default=None),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    include_superseded: bool = Query(default=False),
    session: Session = Depends(get_session),
):
    """Balance (effective entries only) plus the filtered entry list."""
    events = ledger_store.query_events(
        session,
        user_id=user_id,
        ticket_id=ticket_id,
        event_types=event_type,
        since=since,
        until=until,
        include_superseded=include_superseded,
    )
    return {
        "userId": user_id,
        "balance": ledger_store.user_balance(session, user_id),
        "events": [_event_dict(e) for e in events],
    }


# ---------------------------------------------------------------------------
# GET /users/{user_id}/badges
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/badges")
def get_user_badges(
    user_id: str,
    day: date | None = Query(default=None),
    session: Session = Depends(get_session),
    config: DeskpointsConfig = Depends(get_config),
):
    day = day or business_date(datetime.now(UTC), config.business_offset)
    return {
        "userId": user_id,
        "date": day.isoformat(),
        "badges": [_badge_dict(b) for b in badges_on(session, user_id, day)],
    }


# ---------------------------------------------------------------------------
# DELETE /ledger/events/{event_id}
# ---------------------------------------------------------------------------
@router.delete("/ledger/events/{event_id}")
def delete_ledger_event(event_id: int, session: Session = Depends(get_session)):
    if not ledger_store.delete_event(session, event_id):
        raise HTTPException(status_code=404, detail="Ledger event not found")
    session.commit()
    return {"success": True, "deleted": event_id}
