"""
deskpoints.engine.rules — Point Rule Table
===========================================

Maps ``(event_type, payload, facts)`` to a :class:`RuleOutcome`: a point
delta, a human-readable reason, and event-specific details.

Rules fall into two groups:

* **Static rules** depend only on the payload (attachments, links,
  schedule items, ...) and live in :data:`STATIC_RULES`.
* **Fact rules** need context the service layer gathers first (similar
  subjects, note ordinal, last assignment, schedule) and are plain
  functions taking those facts as arguments.

Compensating and distributed entries (reversals, creator shares,
supersession) are planned by :mod:`deskpoints.services.compensation` and
:mod:`deskpoints.services.distribution`; they ride on the same outcome.

Pure calculation — no database I/O.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from deskpoints.database.models import PointEventType as E
from deskpoints.engine.business_time import as_utc, minutes_between

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
PRIORITY_POINTS: dict[str, int] = {
    "Low": 8,
    "Medium": 9,
    "High": 9,
    "Urgent": 9,
}

CREATOR_CLOSE_POINTS = 6
CLOSER_POINTS = 4
CREATOR_SHARE_POINTS = 2

ASSIGN_AGED_POINTS = 6
ASSIGN_AGE_WINDOW = timedelta(hours=4)

NOTE_POINTS_BY_ORDINAL = {1: 4, 2: 3}
NOTE_POINTS_LATER = 2
NOTE_POINTS_DEFAULT = 1

BREAK_OVERAGE_MINUTES = 10
BREAK_PENALTY = -20

SHIFT_EARLY_MINUTES = 30
SHIFT_GRACE_MINUTES = 10
SHIFT_LATE_MINUTES = 15
SHIFT_ON_TIME_POINTS = 10
SHIFT_LATE_POINTS = -20
SHIFT_NORMAL_POINTS = 1

BREAK_TIME_DEFAULT_PENALTY = -50
SCORE_BASE_POINTS = 5

# Types the engine writes itself; never scored when submitted from outside.
SYSTEM_EVENT_TYPES: frozenset[str] = frozenset({
    E.TICKET_CLOSED_ASSIST,
    E.MILESTONE_BONUS,
    E.PERFECT_DAY,
    E.BADGE_EARNED,
})

# Zero-point outcomes of these types are still written.
ALWAYS_RECORDED: frozenset[str] = frozenset({
    E.TICKET_REOPENED,
    E.TICKET_DELETED,
    E.KUDOS_RECEIVED,
    E.KUDOS_REMOVED,
})


# ---------------------------------------------------------------------------
# Outcome types
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class PendingEntry:
    """A secondary ledger row planned alongside the primary one."""

    user_id: str
    username: str
    event_type: str
    points: int
    details: dict = field(default_factory=dict)
    related_ticket_id: int | None = None
    reverses_id: int | None = None


@dataclass(slots=True)
class RuleOutcome:
    """Everything the ledger handler needs to write for one event.

    ``record`` forces a zero-point primary entry to be persisted;
    ``persist=False`` suppresses it entirely (unknown / system types).
    ``shares`` are written with ``parent_id`` set to the primary entry and
    ``supersedes`` are marked as replaced by it.
    """

    points: int = 0
    reason: str = ""
    details: dict = field(default_factory=dict)
    related_ticket_id: int | None = None
    record: bool = False
    persist: bool = True
    check_milestone: bool = False
    attribute_to: tuple[str, str] | None = None
    supersedes: list[int] = field(default_factory=list)
    compensations: list[PendingEntry] = field(default_factory=list)
    shares: list[PendingEntry] = field(default_factory=list)
    notify: tuple[str, str] | None = None  # (recipient_id, message)

    @property
    def should_write(self) -> bool:
        return self.persist and (self.points != 0 or self.record)

    def ledger_details(self) -> dict:
        return {"reason": self.reason, **self.details}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def priority_points(priority: str | None) -> int:
    return PRIORITY_POINTS.get(priority or "", 0)


def _int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _number(value, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _ticket(data: dict) -> int | None:
    raw = data.get("ticketId")
    return _int(raw) if raw not in (None, "") else None


# ---------------------------------------------------------------------------
# Static rules — payload only
# ---------------------------------------------------------------------------
def _attachment_added(data: dict) -> RuleOutcome:
    return RuleOutcome(
        3, f"Added attachment: {data.get('fileName')}",
        {"fileName": data.get("fileName")}, _ticket(data),
    )


def _attachment_deleted(data: dict) -> RuleOutcome:
    return RuleOutcome(
        -3, f"Deleted attachment: {data.get('fileName')}",
        {"fileName": data.get("fileName")}, _ticket(data),
    )


def _ticket_linked(data: dict) -> RuleOutcome:
    return RuleOutcome(
        3,
        f"Linked tickets #{data.get('ticketId')} ↔ #{data.get('linkedTicketId')}",
        {
            "linkedTicketId": data.get("linkedTicketId"),
            "relationshipType": data.get("relationshipType"),
        },
        _ticket(data),
    )


def _ticket_unlinked(data: dict) -> RuleOutcome:
    return RuleOutcome(
        -3,
        f"Unlinked tickets #{data.get('ticketId')} and #{data.get('unlinkedTicketId')}",
        {"unlinkedTicketId": data.get("unlinkedTicketId")},
        _ticket(data),
    )


def _note_deleted(data: dict) -> RuleOutcome:
    return RuleOutcome(
        -4, f"Note deleted from ticket #{data.get('ticketId')}", {}, _ticket(data)
    )


def _followup_added(data: dict) -> RuleOutcome:
    return RuleOutcome(0, "Ticket flagged for follow-up", {}, _ticket(data))


def _accept_quickly(data: dict) -> RuleOutcome:
    return RuleOutcome(
        5, "Accepted assignment quickly",
        {"timeToAccept_seconds": data.get("timeToAccept")}, _ticket(data),
    )


def _slow_acceptance(data: dict) -> RuleOutcome:
    return RuleOutcome(
        -10, "Slow to accept assignment",
        {"timeToAccept_seconds": data.get("timeToAccept")}, _ticket(data),
    )


def _schedule_item_added(data: dict) -> RuleOutcome:
    return RuleOutcome(
        15, f"{data.get('itemType') or 'Item'} added to schedule",
        {"itemType": data.get("itemType")},
    )


def _schedule_item_deleted(data: dict) -> RuleOutcome:
    return RuleOutcome(
        -15, "Schedule item deleted", {"action": "Schedule item deleted"}
    )


def _meeting_collaboration(data: dict) -> RuleOutcome:
    return RuleOutcome(
        10, "Joined a meeting collaboration", {"meetingId": data.get("meetingId")}
    )


def _missing_shift_start(data: dict) -> RuleOutcome:
    return RuleOutcome(
        -50,
        "Failed to start shift within 2 hours of scheduled time",
        {
            "scheduled_start_time": data.get("scheduledStartTime"),
            "hours_late": data.get("hoursLate"),
            "action": "Missing shift start",
        },
    )


def _break_exceeded(data: dict) -> RuleOutcome:
    minutes = _number(data.get("minutesExceeded"))
    if minutes >= BREAK_OVERAGE_MINUTES:
        return RuleOutcome(
            BREAK_PENALTY,
            f"Break exceeded by {minutes:g} minutes",
            {
                "minutes_exceeded": minutes,
                "break_type": data.get("breakType"),
                "action": "Break time exceeded limit",
            },
        )
    return RuleOutcome(0, "Break ended within acceptable time")


def _break_time_penalty(data: dict) -> RuleOutcome:
    points = _int(data.get("penalty_points"), BREAK_TIME_DEFAULT_PENALTY)
    return RuleOutcome(
        points,
        data.get("reason") or "Break time penalty",
        {"total_break_minutes": data.get("total_break_minutes")},
    )


def _score_adjusted(data: dict) -> RuleOutcome:
    old_total = (SCORE_BASE_POINTS + priority_points(data.get("oldPriority"))) * (
        _int(data.get("oldComplexity")) or 1
    )
    new_total = (SCORE_BASE_POINTS + priority_points(data.get("newPriority"))) * (
        _int(data.get("newComplexity")) or 1
    )
    return RuleOutcome(
        new_total - old_total,
        "Score adjusted by admin",
        {
            "old_priority": data.get("oldPriority"),
            "new_priority": data.get("newPriority"),
            "old_complexity": data.get("oldComplexity"),
            "new_complexity": data.get("newComplexity"),
        },
        _ticket(data),
    )


def _tag_added(data: dict) -> RuleOutcome:
    return RuleOutcome(
        1, f"Added tag: {data.get('tag')}", {"tag": data.get("tag")}, _ticket(data)
    )


def _kb_created(data: dict) -> RuleOutcome:
    return RuleOutcome(
        5, f"Created KB article: {data.get('title')}",
        {"kbId": data.get("kbId"), "title": data.get("title")},
    )


def _training_completed(data: dict) -> RuleOutcome:
    return RuleOutcome(
        50,
        f"Completed training session {data.get('sessionNumber')}",
        {"sessionNumber": data.get("sessionNumber"), "clientName": data.get("clientName")},
    )


def _penalty_restored(data: dict) -> RuleOutcome:
    return RuleOutcome(
        50, data.get("reason") or "Penalty restored by admin",
        {"awardedBy": data.get("awardedBy")},
    )


def _kudos(received: bool) -> Callable[[dict, str], RuleOutcome]:
    def handler(data: dict, actor_name: str) -> RuleOutcome:
        receiver = (str(data.get("kudosReceiverId") or ""), data.get("kudosReceiverUsername") or "")
        if received:
            outcome = RuleOutcome(
                0,
                f"Received kudos on ticket #{data.get('ticketId')} from {actor_name}",
                {"giver": actor_name},
                _ticket(data),
            )
            if receiver[0]:
                outcome.notify = (receiver[0], f"{actor_name} gave you kudos on a note!")
        else:
            outcome = RuleOutcome(
                0, f"Kudos removed by {actor_name}", {"remover": actor_name}, _ticket(data)
            )
        outcome.attribute_to = receiver if receiver[0] else None
        outcome.persist = receiver[0] != ""
        return outcome
    return handler


STATIC_RULES: dict[str, Callable[[dict], RuleOutcome]] = {
    E.ATTACHMENT_ADDED: _attachment_added,
    E.ATTACHMENT_DELETED: _attachment_deleted,
    E.TICKET_LINKED: _ticket_linked,
    E.TICKET_UNLINKED: _ticket_unlinked,
    E.NOTE_DELETED: _note_deleted,
    E.TICKET_FOLLOWUP_ADDED: _followup_added,
    E.ACCEPT_ASSIGNMENT_QUICKLY: _accept_quickly,
    E.SLOW_ACCEPTANCE: _slow_acceptance,
    E.SCHEDULE_ITEM_ADDED: _schedule_item_added,
    E.SCHEDULE_ITEM_DELETED: _schedule_item_deleted,
    E.MEETING_COLLABORATION: _meeting_collaboration,
    E.MISSING_SHIFT_START: _missing_shift_start,
    E.BREAK_EXCEEDED: _break_exceeded,
    E.BREAK_TIME_PENALTY: _break_time_penalty,
    E.SCORE_ADJUSTED: _score_adjusted,
    E.TAG_ADDED: _tag_added,
    E.KB_CREATED: _kb_created,
    E.TRAINING_COMPLETED: _training_completed,
    E.PENALTY_RESTORED: _penalty_restored,
}

KUDOS_RULES: dict[str, Callable[[dict, str], RuleOutcome]] = {
    E.KUDOS_RECEIVED: _kudos(received=True),
    E.KUDOS_REMOVED: _kudos(received=False),
}


def unknown_event(event_type: str) -> RuleOutcome:
    if event_type in SYSTEM_EVENT_TYPES:
        reason = f"Event type {event_type} is system-generated"
    else:
        reason = f"Unknown event type: {event_type}"
    return RuleOutcome(0, reason, persist=False)


# ---------------------------------------------------------------------------
# Fact rules
# ---------------------------------------------------------------------------
def ticket_opened(
    ticket_id: int | None,
    priority: str | None,
    similar: tuple[int, str, float] | None = None,
) -> RuleOutcome:
    """Priority bonus for a new ticket, or zero when it duplicates a recent one.

    The zero-point duplicate entry is still recorded so a later closure can
    see ``duplicate_detection``.
    """
    if similar is not None:
        similar_id, similar_subject, score = similar
        return RuleOutcome(
            0,
            "Ticket created with similar subject (80%+ match)",
            {
                "duplicate_detection": True,
                "similar_to": similar_subject,
                "similar_ticket_id": similar_id,
                "similarity": round(score, 3),
                "priority": priority,
            },
            ticket_id,
            record=True,
        )

    points = priority_points(priority)
    reason = "Ticket created" + (f" ({priority} Priority Bonus)" if points > 0 else "")
    return RuleOutcome(
        points, reason, {"priority": priority}, ticket_id,
        record=True, check_milestone=True,
    )


def note_added(ticket_id: int | None, note_number: int | None) -> RuleOutcome:
    """4/3/2 points for the user's 1st/2nd/later note; 1 when the count is unknown."""
    if note_number is None:
        return RuleOutcome(
            NOTE_POINTS_DEFAULT,
            f"Note added to ticket #{ticket_id} (default score)",
            {},
            ticket_id,
        )
    note_number = max(note_number, 1)
    points = NOTE_POINTS_BY_ORDINAL.get(note_number, NOTE_POINTS_LATER)
    if note_number == 1:
        reason = f"First note added to ticket #{ticket_id}"
    elif note_number == 2:
        reason = f"Second note added to ticket #{ticket_id}"
    else:
        reason = f"Note #{note_number} added to ticket #{ticket_id}"
    return RuleOutcome(points, reason, {"note_number": note_number}, ticket_id)


@dataclass(frozen=True, slots=True)
class AssignmentFacts:
    """What :func:`assign_to_self` needs to know about a ticket."""

    ticket_created_at: datetime
    created_by: str | None
    ever_assigned: bool
    last_assignee_id: str | None = None
    last_assigned_at: datetime | None = None


def assign_to_self(
    ticket_id: int | None,
    actor_id: str,
    facts: AssignmentFacts | None,
    now: datetime,
) -> RuleOutcome:
    """6 points for picking up a ticket untouched for more than four hours."""
    if facts is None:
        return RuleOutcome(
            0, "Error fetching ticket for assignment check.", {}, ticket_id
        )

    if facts.created_by == actor_id and not facts.ever_assigned:
        return RuleOutcome(
            0, "Creator assigned their own unassigned ticket.", {}, ticket_id
        )

    if facts.last_assignee_id is not None and facts.last_assignee_id == actor_id:
        return RuleOutcome(
            0,
            "Cannot re-assign the same ticket to yourself for points.",
            {"action": "Blocked self-reassignment"},
            ticket_id,
        )

    reference = as_utc(facts.ticket_created_at)
    source = "ticket creation"
    if facts.last_assigned_at is not None and as_utc(facts.last_assigned_at) > reference:
        reference = as_utc(facts.last_assigned_at)
        source = "last assignment"

    details = {"reference_time": reference.isoformat(), "reference_source": source}
    if reference < as_utc(now) - ASSIGN_AGE_WINDOW:
        return RuleOutcome(
            ASSIGN_AGED_POINTS,
            f"Assigned an aged ticket to self (based on {source})",
            details,
            ticket_id,
            check_milestone=True,
        )
    return RuleOutcome(
        0,
        f"Assigned a ticket to self within the 4-hour window (based on {source})",
        details,
        ticket_id,
    )


def shift_started(now: datetime, scheduled_start: datetime | None) -> RuleOutcome:
    """Punctuality score against the scheduled start (UTC)."""
    if scheduled_start is None:
        return RuleOutcome(
            SHIFT_NORMAL_POINTS, "Shift started", {"status": "No schedule found"}
        )

    delay = minutes_between(scheduled_start, now)
    details = {
        "scheduled_start": as_utc(scheduled_start).isoformat(),
        "delay_minutes": round(delay),
    }
    if -SHIFT_EARLY_MINUTES <= delay <= SHIFT_GRACE_MINUTES:
        details["status"] = "On-time"
        return RuleOutcome(SHIFT_ON_TIME_POINTS, "Shift started on time (Bonus)", details)
    if delay >= SHIFT_LATE_MINUTES:
        details.update(status="Late", late_minutes=round(delay))
        return RuleOutcome(
            SHIFT_LATE_POINTS, f"Shift started late by {round(delay)} minutes", details
        )
    details["status"] = "Normal"
    return RuleOutcome(SHIFT_NORMAL_POINTS, "Shift started", details)


def closure_payout(is_creator: bool) -> tuple[int, int]:
    """``(closer_points, creator_share)`` for one closure."""
    if is_creator:
        return CREATOR_CLOSE_POINTS, 0
    return CLOSER_POINTS, CREATOR_SHARE_POINTS
