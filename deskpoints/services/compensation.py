"""
deskpoints.services.compensation — Reversing and superseding ledger entries
============================================================================

Three lifecycle events undo earlier awards:

* **Ticket deleted** — one TICKET_DELETED entry negating the deleting
  user's outstanding opening/closing/assist entries on the ticket.  Other
  users' shares are left alone.
* **Ticket reopened** — one TICKET_REOPENED entry per outstanding closure
  or creator share, attributed to that entry's owner and linked through
  ``reverses_id``.  The reopen itself is a zero-point entry.
* **Ticket re-closed** — the closer's outstanding TICKET_CLOSED entries,
  and the creator shares they produced, are superseded by the new closure
  so exactly one closure per (user, ticket) stays effective.

Functions here only *plan*: they read the ledger and return a
:class:`~deskpoints.engine.rules.RuleOutcome`; the scoring service writes it.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from deskpoints.database.models import PointEvent
from deskpoints.database.models import PointEventType as E
from deskpoints.engine.rules import PendingEntry, RuleOutcome
from deskpoints.services.ledger_store import (
    CLOSURE_FAMILY,
    DELETION_FAMILY,
    outstanding_events,
    query_events,
)

logger = logging.getLogger(__name__)


def plan_deletion(session: Session, ticket_id: int | None, user_id: str) -> RuleOutcome:
    """Negate the deleting user's outstanding points on the ticket.

    Only *user_id*'s own entries are reversed.  Other users' shares on the
    ticket (the creator's closure cut when someone else closed it) stay on
    the ledger.
    """
    if ticket_id is None:
        return RuleOutcome(0, "Ticket deleted (no points to revert)", {}, None, record=True)

    entries = outstanding_events(
        session, ticket_id=ticket_id, event_types=DELETION_FAMILY, user_id=user_id
    )
    total = sum(e.points_awarded for e in entries)
    details = {
        "reverted_points": total,
        "events_count": len(entries),
        "reversed_event_ids": [e.id for e in entries],
        "action": "Ticket deleted",
    }
    if total != 0:
        reason = f"Ticket deleted (reverting {total} points)"
    else:
        reason = "Ticket deleted (no points to revert)"
    return RuleOutcome(-total, reason, details, ticket_id, record=True)


def plan_reopen(session: Session, ticket_id: int | None) -> RuleOutcome:
    """Reverse every outstanding closure-family entry on the ticket."""
    if ticket_id is None:
        return RuleOutcome(
            0, "Ticket reopened (no close events to reverse)",
            {"events_reversed": 0}, None, record=True,
        )

    entries = outstanding_events(session, ticket_id=ticket_id, event_types=CLOSURE_FAMILY)
    outcome = RuleOutcome(0, "", {}, ticket_id, record=True)
    for entry in entries:
        outcome.compensations.append(PendingEntry(
            user_id=entry.user_id,
            username=entry.username,
            event_type=E.TICKET_REOPENED,
            points=-entry.points_awarded,
            details={
                "reason": f"Ticket #{ticket_id} reopened ({entry.event_type} reversed)",
                "reversed_event_type": entry.event_type,
                "reversed_points": entry.points_awarded,
                "action": "Ticket reopened",
            },
            related_ticket_id=ticket_id,
            reverses_id=entry.id,
        ))

    outcome.details = {"events_reversed": len(entries), "action": "Ticket reopened"}
    if entries:
        outcome.reason = "Ticket reopened (close points reversed for all closers)"
    else:
        outcome.reason = "Ticket reopened (no close events to reverse)"
    return outcome


def prior_closures(
    session: Session, ticket_id: int, user_id: str
) -> tuple[list[PointEvent], bool]:
    """``(outstanding, ever_closed)`` for *user_id*'s closures of the ticket."""
    ever = query_events(
        session,
        user_id=user_id,
        ticket_id=ticket_id,
        event_types=[E.TICKET_CLOSED],
        include_superseded=True,
        limit=1,
    )
    outstanding = outstanding_events(
        session, ticket_id=ticket_id, event_types=[E.TICKET_CLOSED], user_id=user_id
    )
    return outstanding, bool(ever)


def plan_supersession(
    session: Session, outcome: RuleOutcome, closures: list[PointEvent]
) -> None:
    """Queue *closures* and the creator shares they produced for supersession."""
    if not closures:
        return
    closure_ids = [c.id for c in closures]
    share_ids = [
        s.id
        for s in outstanding_events(
            session,
            ticket_id=closures[0].related_ticket_id,
            event_types=[E.TICKET_CLOSED_ASSIST],
        )
        if s.parent_id in closure_ids
    ]
    outcome.supersedes.extend(closure_ids)
    outcome.supersedes.extend(share_ids)
    outcome.details["superseded_previous_awards"] = len(closure_ids)
    logger.debug(
        "Superseding closures %s and shares %s on ticket %s",
        closure_ids, share_ids, outcome.related_ticket_id,
    )
