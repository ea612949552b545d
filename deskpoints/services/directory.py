"""
deskpoints.services.directory — Reads from the helpdesk application's tables
==============================================================================

Tickets, schedules and the user directory belong to the outer application.
The scoring core only reads them, through :class:`TicketDirectory`, on a
short session of its own so that a failed read never poisons the ledger
transaction.  Every database failure surfaces as
:class:`~deskpoints.engine.events.CollaboratorError`; callers decide how to
degrade.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from deskpoints.database.models import DefaultSchedule, Schedule, Ticket
from deskpoints.engine.achievements import TicketSnapshot
from deskpoints.engine.business_time import as_utc
from deskpoints.engine.events import CollaboratorError

logger = logging.getLogger(__name__)


def snapshot(ticket: Ticket) -> TicketSnapshot:
    """Detach a :class:`Ticket` row into an immutable snapshot."""
    return TicketSnapshot(
        id=ticket.id,
        subject=ticket.subject or "",
        priority=ticket.priority,
        source=ticket.source,
        created_by=ticket.created_by,
        created_by_name=ticket.created_by_name,
        created_at=as_utc(ticket.created_at) if ticket.created_at else None,
        assigned_to_id=ticket.assigned_to_id,
        assigned_at=as_utc(ticket.assigned_at) if ticket.assigned_at else None,
        completed_by_id=ticket.completed_by_id,
        completed_at=as_utc(ticket.completed_at) if ticket.completed_at else None,
        is_reopened=bool(ticket.is_reopened),
        notes=tuple(n for n in (ticket.notes or []) if isinstance(n, dict)),
    )


class TicketDirectory:
    """Read-only access to tickets, schedules and users."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_ticket(self, ticket_id: int) -> TicketSnapshot | None:
        try:
            with Session(self._engine) as session:
                row = session.get(Ticket, ticket_id)
                return snapshot(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"ticket {ticket_id}: {exc}") from exc

    def recent_subjects(
        self, since: datetime, exclude_id: int | None = None
    ) -> list[tuple[int, str]]:
        """``(id, subject)`` of tickets created at or after *since*, newest first."""
        stmt = (
            select(Ticket.id, Ticket.subject)
            .where(Ticket.created_at >= as_utc(since))
            .order_by(Ticket.created_at.desc())
        )
        if exclude_id is not None:
            stmt = stmt.where(Ticket.id != exclude_id)
        try:
            with Session(self._engine) as session:
                return [(row.id, row.subject or "") for row in session.execute(stmt)]
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"recent tickets: {exc}") from exc

    def closed_by(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[TicketSnapshot]:
        """Tickets *user_id* completed in ``[start, end)``."""
        stmt = select(Ticket).where(
            Ticket.completed_by_id == user_id,
            Ticket.completed_at >= as_utc(start),
            Ticket.completed_at < as_utc(end),
        )
        try:
            with Session(self._engine) as session:
                return [snapshot(t) for t in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"closed tickets for {user_id}: {exc}") from exc

    def shift_start(self, user_id: str, day: date) -> str | None:
        """``HH:MM`` shift start for *day*: dated schedule, else weekday default."""
        try:
            with Session(self._engine) as session:
                dated = session.scalar(
                    select(Schedule.shift_start_time).where(
                        Schedule.user_id == user_id,
                        Schedule.schedule_date == day,
                    )
                )
                if dated:
                    return dated
                return session.scalar(
                    select(DefaultSchedule.shift_start_time).where(
                        DefaultSchedule.user_id == user_id,
                        DefaultSchedule.day_of_week == day.isoweekday(),
                    )
                )
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"schedule for {user_id}: {exc}") from exc
