"""
deskpoints.engine.achievements — Daily badge registry and criteria
===================================================================

Five daily badges: four positive (speed demon, sniper, client hero,
lightning) and one negative (turtle).  This module holds the registry and
the pure counting rules; :mod:`deskpoints.services.badge_service` gathers
ticket snapshots and persists stats and awards.

Pure calculation — no database I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from deskpoints.database.models import BadgeId
from deskpoints.engine.business_time import as_utc, minutes_between

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------
SPEED_DEMON_WINDOW_MINUTES = 30
SPEED_DEMON_THRESHOLD = 6

SNIPER_THRESHOLD = 4

LIGHTNING_RESPONSE_MINUTES = 15
LIGHTNING_CLOSURE_MINUTES = 120
LIGHTNING_THRESHOLD = 3

TURTLE_LATE_SHIFT_MINUTES = 15
TURTLE_SLOW_RESPONSE_MINUTES = 30

CLIENT_HERO_BONUS = 10
PERFECT_DAY_BONUS = 50


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeDefinition:
    id: str
    name: str
    emoji: str
    description: str
    positive: bool = True


BADGES: dict[BadgeId, BadgeDefinition] = {
    BadgeId.SPEED_DEMON: BadgeDefinition(
        BadgeId.SPEED_DEMON, "Speed Demon", "🏆",
        "Closed 6+ tickets within 30 minutes of pickup today",
    ),
    BadgeId.SNIPER: BadgeDefinition(
        BadgeId.SNIPER, "Sniper", "🎯",
        "Handled 4+ tickets in a row with nobody else in between",
    ),
    BadgeId.CLIENT_HERO: BadgeDefinition(
        BadgeId.CLIENT_HERO, "Client Hero", "🌟",
        "Top scorer of the day",
    ),
    BadgeId.LIGHTNING: BadgeDefinition(
        BadgeId.LIGHTNING, "Lightning", "⚡",
        "Answered and closed 3+ email tickets fast",
    ),
    BadgeId.TURTLE: BadgeDefinition(
        BadgeId.TURTLE, "Turtle", "🐢",
        "Late shift start or slow first response",
        positive=False,
    ),
}

POSITIVE_BADGES: frozenset[str] = frozenset(
    b.id for b in BADGES.values() if b.positive
)

# Not a badge row, only the notification fanned out on a perfect day.
PERFECT_DAY_NOTICE = BadgeDefinition(
    "perfect_day", "Perfect Day", "🎉",
    "Earned every positive badge with no turtle",
)


# ---------------------------------------------------------------------------
# Ticket snapshot
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TicketSnapshot:
    """Detached view of a ticket row; see :mod:`deskpoints.services.directory`."""

    id: int
    subject: str = ""
    priority: str | None = None
    source: str | None = None
    created_by: str | None = None
    created_by_name: str | None = None
    created_at: datetime | None = None
    assigned_to_id: str | None = None
    assigned_at: datetime | None = None
    completed_by_id: str | None = None
    completed_at: datetime | None = None
    is_reopened: bool = False
    notes: tuple[dict, ...] = ()

    def notes_by(self, user_id: str) -> list[dict]:
        return [n for n in self.notes if str(n.get("user_id")) == user_id]


def reference_time(ticket: TicketSnapshot, user_id: str) -> datetime | None:
    """When the clock started for *user_id* on *ticket*.

    Creation time for the creator, assignment time for anybody else.
    """
    if ticket.created_by == user_id:
        return as_utc(ticket.created_at) if ticket.created_at else None
    return as_utc(ticket.assigned_at) if ticket.assigned_at else None


def _note_time(note: dict) -> datetime | None:
    raw = note.get("timestamp") or note.get("created_at")
    if isinstance(raw, datetime):
        return as_utc(raw)
    if isinstance(raw, str) and raw:
        try:
            return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def first_note_time(ticket: TicketSnapshot, user_id: str) -> datetime | None:
    times = [t for t in (_note_time(n) for n in ticket.notes_by(user_id)) if t]
    return min(times) if times else None


def count_notes_on_day(
    ticket: TicketSnapshot,
    user_id: str,
    start: datetime,
    end: datetime,
) -> int:
    """The user's notes on *ticket* in ``[start, end)``; undated notes count."""
    count = 0
    for note in ticket.notes_by(user_id):
        stamp = _note_time(note)
        if stamp is None or start <= stamp < end:
            count += 1
    return count


# ---------------------------------------------------------------------------
# Criteria
# ---------------------------------------------------------------------------
def count_fast_closures(tickets: Iterable[TicketSnapshot], user_id: str) -> int:
    """Closures by *user_id* within 30 minutes of their reference time."""
    count = 0
    for ticket in tickets:
        ref = reference_time(ticket, user_id)
        if ref is None or ticket.completed_at is None:
            continue
        if minutes_between(ref, ticket.completed_at) <= SPEED_DEMON_WINDOW_MINUTES:
            count += 1
    return count


def qualifies_for_lightning(ticket: TicketSnapshot, user_id: str, source_tag: str) -> bool:
    if not ticket.source or source_tag.lower() not in ticket.source.lower():
        return False
    ref = reference_time(ticket, user_id)
    if ref is None or ticket.completed_at is None:
        return False
    if minutes_between(ref, ticket.completed_at) > LIGHTNING_CLOSURE_MINUTES:
        return False
    first = first_note_time(ticket, user_id)
    return first is not None and minutes_between(ref, first) <= LIGHTNING_RESPONSE_MINUTES


def count_lightning_tickets(
    tickets: Iterable[TicketSnapshot], user_id: str, source_tag: str
) -> int:
    return sum(1 for t in tickets if qualifies_for_lightning(t, user_id, source_tag))


def is_slow_first_response(
    ticket: TicketSnapshot, user_id: str, fallback_time: datetime
) -> bool:
    """True when the user's first note on *ticket* came over 30 minutes late.

    Only the first note counts; an undated note is taken to be written at
    *fallback_time*.
    """
    if len(ticket.notes_by(user_id)) > 1:
        return False
    ref = reference_time(ticket, user_id)
    if ref is None:
        return False
    first = first_note_time(ticket, user_id) or as_utc(fallback_time)
    return minutes_between(ref, first) > TURTLE_SLOW_RESPONSE_MINUTES


@dataclass(frozen=True, slots=True)
class StreakState:
    user_id: str
    username: str
    count: int
    business_date: date


def advance_streak(
    previous: StreakState | None, user_id: str, username: str, today: date
) -> StreakState:
    """Move the team-wide "last actor" cursor.

    Same actor on the same business day extends the run; anyone else (or a
    new day) starts a fresh run of one.
    """
    if (
        previous is not None
        and previous.user_id == user_id
        and previous.business_date == today
    ):
        return StreakState(user_id, username, previous.count + 1, today)
    return StreakState(user_id, username, 1, today)


def is_perfect_day(badge_ids: Iterable[str]) -> bool:
    """All four positive badges and no turtle."""
    held = set(badge_ids)
    if BadgeId.TURTLE in held:
        return False
    return POSITIVE_BADGES.issubset(held)
