"""
deskpoints.api.routes.jobs — Scheduled job triggers and log viewer
===================================================================

``POST /api/jobs/top-scorer`` is meant to be hit by a cron once per
business day; it awards the client hero badge for the previous day.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from deskpoints.api.deps import get_config, get_engine
from deskpoints.config import DeskpointsConfig
from deskpoints.services.badge_service import award_top_scorer
from deskpoints.services.log_buffer import (
    VALID_LEVELS,
    get_current_level,
    get_logs,
    set_capture_level,
)

router = APIRouter(tags=["jobs"])


class TopScorerRequest(BaseModel):
    day: date | None = None


@router.post("/jobs/top-scorer")
def run_top_scorer(
    body: TopScorerRequest | None = None,
    engine: Engine = Depends(get_engine),
    config: DeskpointsConfig = Depends(get_config),
):
    target = body.day if body else None
    return award_top_scorer(engine, config=config, now=datetime.now(UTC), target_date=target)


# ---------------------------------------------------------------------------
# Live logs
# ---------------------------------------------------------------------------
@router.get("/admin/logs")
def read_logs(
    tail: int = Query(default=200, ge=1, le=2000),
    level: str | None = Query(default=None),
    logger: str | None = Query(default=None),
):
    return {
        "level": get_current_level(),
        "entries": get_logs(tail=tail, level=level, logger_filter=logger),
    }


class LevelRequest(BaseModel):
    level: str


@router.put("/admin/logs/level")
def change_log_level(body: LevelRequest):
    try:
        return {"level": set_capture_level(body.level)}
    except ValueError:
        raise HTTPException(
            status_code=400, detail=f"level must be one of {', '.join(VALID_LEVELS)}"
        )
