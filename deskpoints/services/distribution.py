"""
deskpoints.services.distribution — Splitting a closure between closer and creator
==================================================================================

A creator closing their own ticket keeps the whole closure award.  When
somebody else closes it, the closer's entry carries their share and a
TICKET_CLOSED_ASSIST entry for the creator is written in the same
transaction, linked to the closure through ``parent_id``.
"""

from __future__ import annotations

from deskpoints.database.models import PointEventType as E
from deskpoints.engine.achievements import TicketSnapshot
from deskpoints.engine.rules import PendingEntry, RuleOutcome, closure_payout

UNKNOWN_CREATOR_NAME = "Ticket Creator"


def plan_closure(
    ticket: TicketSnapshot, closer_id: str, closer_name: str
) -> RuleOutcome:
    """Payout for one effective closure of *ticket* by *closer_id*."""
    is_creator = ticket.created_by is not None and ticket.created_by == closer_id
    closer_points, creator_share = closure_payout(is_creator)

    if is_creator or not ticket.created_by:
        return RuleOutcome(
            closer_points,
            "Ticket closed (creator closed own ticket)" if is_creator else "Ticket closed",
            {"closed_by_creator": is_creator},
            ticket.id,
        )

    outcome = RuleOutcome(
        closer_points,
        "Ticket closed (60% of points - creator gets 40%)",
        {
            "closed_by_creator": False,
            "closer_points": closer_points,
            "creator_points": creator_share,
            "creator_id": ticket.created_by,
        },
        ticket.id,
    )
    outcome.shares.append(PendingEntry(
        user_id=ticket.created_by,
        username=ticket.created_by_name or UNKNOWN_CREATOR_NAME,
        event_type=E.TICKET_CLOSED_ASSIST,
        points=creator_share,
        details={
            "reason": "Your ticket was closed by another user",
            "closed_by_user_id": closer_id,
            "closed_by_username": closer_name,
        },
        related_ticket_id=ticket.id,
    ))
    return outcome
