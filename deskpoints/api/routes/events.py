"""
deskpoints.api.routes.events — Event intake
============================================

``POST /api/award-points`` is the single entry point the helpdesk UI calls
after every lifecycle action.  Contract::

    request   {eventType, userId, username, data, eventId?}
    200       {success: true, pointsAwarded}        (+ duplicate: true on replay)
    400       {error}   missing eventType / userId / username
    500       {error}   anything else, including a failed ledger write

Missing fields answer 400.  This is a contract change: earlier helpdesk
clients received 500 for them.  A repeated ``eventId`` is answered from
its receipt and scores nothing new.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Engine

from deskpoints.api.deps import get_config, get_engine
from deskpoints.config import DeskpointsConfig
from deskpoints.engine.events import LifecycleEvent
from deskpoints.services.scoring_service import process_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


class EventIntake(BaseModel):
    """Intake body; presence of the required fields is checked by the handler."""

    model_config = ConfigDict(extra="ignore")

    eventType: str | None = None
    userId: str | int | None = None
    username: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    eventId: str | None = None


@router.post("/award-points")
def award_points(
    body: EventIntake,
    engine: Engine = Depends(get_engine),
    config: DeskpointsConfig = Depends(get_config),
):
    """Score one lifecycle event.

    Raises :class:`EventValidationError` (400) for a missing
    ``eventType``, ``userId`` or ``username``.  Callers written against the
    older intake, which answered 500, must treat 400 as a rejected event.
    """
    event = LifecycleEvent.from_payload(body.model_dump())
    result = process_event(engine, event, config=config)

    payload: dict[str, Any] = {"success": True, "pointsAwarded": result.points_awarded}
    if result.duplicate:
        payload["duplicate"] = True
    return payload
