"""
deskpoints.engine.events — LifecycleEvent envelope and scoring errors
======================================================================

Every submission to the intake is normalized into a :class:`LifecycleEvent`
before the scoring pipeline sees it.  Event-specific fields stay in
``data`` with the key names the helpdesk UI sends (``ticketId``,
``priority``, ``minutesExceeded``, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = [
    "LifecycleEvent",
    "ScoringResult",
    "ScoringError",
    "EventValidationError",
    "CollaboratorError",
    "LedgerWriteError",
    "LedgerConflictError",
]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class ScoringError(Exception):
    """Base class for scoring pipeline failures."""


class EventValidationError(ScoringError):
    """The submitted event is missing a required field."""


class CollaboratorError(ScoringError):
    """A read from the helpdesk application's tables failed."""


class LedgerWriteError(ScoringError):
    """The ledger transaction could not be committed."""


class LedgerConflictError(ScoringError):
    """A ledger correction would orphan entries that depend on the row."""


# ---------------------------------------------------------------------------
# LifecycleEvent — the intake envelope
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """One helpdesk lifecycle event submitted for scoring.

    ``event_id`` is an optional caller-supplied idempotency key; a replay
    with the same key is acknowledged without writing anything.
    """

    event_type: str
    user_id: str
    username: str
    data: dict = field(default_factory=dict)
    event_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_payload(cls, payload: dict, now: datetime | None = None) -> LifecycleEvent:
        """Build an event from the intake JSON body.

        Raises :class:`EventValidationError` when ``eventType``, ``userId``
        or ``username`` is absent or blank.
        """
        missing = [
            key for key in ("eventType", "userId", "username")
            if payload.get(key) in (None, "")
        ]
        if missing:
            raise EventValidationError(
                "Missing required parameters: " + ", ".join(missing)
            )
        return cls(
            event_type=str(payload["eventType"]),
            user_id=str(payload["userId"]),
            username=str(payload["username"]),
            data=dict(payload.get("data") or {}),
            event_id=payload.get("eventId") or None,
            timestamp=now or datetime.now(UTC),
        )

    @property
    def ticket_id(self) -> int | None:
        raw = self.data.get("ticketId")
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None


# ---------------------------------------------------------------------------
# ScoringResult — what the intake reports back
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class ScoringResult:
    """Outcome of one intake call.

    ``points_awarded`` is the delta persisted for the acting user's primary
    entry; distributed shares and compensations are not included.
    """

    event_type: str
    points_awarded: int = 0
    reason: str = ""
    details: dict = field(default_factory=dict)
    ledger_event_id: int | None = None
    duplicate: bool = False
    milestone: int | None = None
    badges: list[str] = field(default_factory=list)
