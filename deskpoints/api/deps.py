"""
deskpoints.api.deps — FastAPI dependency injection
===================================================
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from deskpoints.config import DEFAULT_CONFIG, DeskpointsConfig, load_config
from deskpoints.database.engine import create_db_engine

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> DeskpointsConfig:
    try:
        return load_config()
    except FileNotFoundError:
        logger.warning("config.yaml not found; using built-in defaults")
        return DEFAULT_CONFIG


def get_session(engine: Annotated[Engine, Depends(get_engine)]):
    with Session(engine) as session:
        yield session
