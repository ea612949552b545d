"""
deskpoints.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for deployment settings: team identity, the business
time offset used for every day-window rule, duplicate-detection tuning,
and the API port.  The point values themselves are fixed tables in
:mod:`deskpoints.engine.rules`.

Usage::

    from deskpoints.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.team_name)             # "Service Desk"
    print(cfg.business_offset)       # timedelta(seconds=7200)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import yaml

CONFIG_ENV_VAR = "DESKPOINTS_CONFIG"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DeskpointsConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    team_name: str

    # Business time (fixed offset from UTC, no DST)
    business_tz_offset_hours: int = 2

    # Duplicate-ticket detection
    duplicate_lookback_days: int = 2
    duplicate_similarity_threshold: float = 0.80

    # Ticket source tag that qualifies for the fast-response badge
    fast_response_source: str = "outlook"

    # API
    api_port: int = 8000

    @property
    def business_offset(self) -> timedelta:
        return timedelta(hours=self.business_tz_offset_hours)

    @property
    def duplicate_lookback(self) -> timedelta:
        return timedelta(days=self.duplicate_lookback_days)


DEFAULT_CONFIG = DeskpointsConfig(team_name="Service Desk")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> DeskpointsConfig:
    """Read *path* and return a :class:`DeskpointsConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML file.  Defaults to ``$DESKPOINTS_CONFIG``
        or ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If ``team_name`` is missing from the YAML file.
    """
    config_path = Path(path or os.getenv(CONFIG_ENV_VAR, "config.yaml"))
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = DEFAULT_CONFIG
    return DeskpointsConfig(
        team_name=raw["team_name"],
        business_tz_offset_hours=int(
            raw.get("business_tz_offset_hours", defaults.business_tz_offset_hours)
        ),
        duplicate_lookback_days=int(
            raw.get("duplicate_lookback_days", defaults.duplicate_lookback_days)
        ),
        duplicate_similarity_threshold=float(
            raw.get(
                "duplicate_similarity_threshold",
                defaults.duplicate_similarity_threshold,
            )
        ),
        fast_response_source=str(
            raw.get("fast_response_source", defaults.fast_response_source)
        ),
        api_port=int(raw.get("api_port", defaults.api_port)),
    )
