"""
deskpoints.services.ledger_store — The points ledger
=====================================================

Append-oriented store of :class:`PointEvent` rows.  A user's score is the
sum of ``points_awarded`` over their *effective* entries — rows whose
``superseded_by_id`` is null.  Superseded rows stay for audit.

All functions take an open :class:`Session` and never commit; the caller
owns the transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deskpoints.database.models import EventReceipt, PointEvent
from deskpoints.database.models import PointEventType as E
from deskpoints.engine.business_time import as_utc
from deskpoints.engine.events import LedgerConflictError

logger = logging.getLogger(__name__)

CLOSURE_FAMILY: tuple[str, ...] = (E.TICKET_CLOSED, E.TICKET_CLOSED_ASSIST)
DELETION_FAMILY: tuple[str, ...] = (E.TICKET_OPENED, E.TICKET_CLOSED, E.TICKET_CLOSED_ASSIST)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def insert_event(
    session: Session,
    *,
    user_id: str,
    username: str,
    event_type: str,
    points: int,
    created_at: datetime,
    details: dict | None = None,
    related_ticket_id: int | None = None,
    reverses_id: int | None = None,
    parent_id: int | None = None,
    idempotency_key: str | None = None,
) -> PointEvent:
    """Add one ledger row and flush so its id is available."""
    row = PointEvent(
        user_id=user_id,
        username=username,
        event_type=str(event_type),
        points_awarded=points,
        related_ticket_id=related_ticket_id,
        details=dict(details or {}),
        created_at=as_utc(created_at),
        reverses_id=reverses_id,
        parent_id=parent_id,
        idempotency_key=idempotency_key,
    )
    session.add(row)
    session.flush()
    return row


def insert_once(session: Session, idempotency_key: str, **fields) -> PointEvent | None:
    """Insert under a SAVEPOINT; ``None`` if *idempotency_key* already exists."""
    if find_by_key(session, idempotency_key) is not None:
        return None
    try:
        with session.begin_nested():   # SAVEPOINT
            return insert_event(session, idempotency_key=idempotency_key, **fields)
    except IntegrityError:
        # Lost the race to a concurrent writer; the outer txn is still alive.
        logger.info("Ledger key %s already written", idempotency_key)
        return None


def delete_event(session: Session, event_id: int) -> bool:
    """Physically remove one row (administrative correction).

    Rows already negated by a reopen or a deletion are refused with
    :class:`LedgerConflictError`; removing them would leave the reversal
    standing on its own.
    """
    row = session.get(PointEvent, event_id)
    if row is None:
        return False
    if row.related_ticket_id is not None and event_id in _reversed_ids(
        session, row.related_ticket_id
    ):
        raise LedgerConflictError(
            f"Ledger event {event_id} has been reversed; delete the reversal first"
        )
    for column in (PointEvent.superseded_by_id, PointEvent.parent_id):
        session.execute(
            update(PointEvent).where(column == event_id).values({column.key: None})
        )
    session.execute(
        update(EventReceipt)
        .where(EventReceipt.ledger_event_id == event_id)
        .values(ledger_event_id=None)
    )
    session.delete(row)
    session.flush()
    return True


def add_receipt(
    session: Session,
    event_id: str,
    *,
    event_type: str,
    user_id: str,
    points: int,
    details: dict,
    ledger_event_id: int | None,
    created_at: datetime,
) -> EventReceipt:
    """Record that client event *event_id* was handled, scored or not.

    A concurrent receipt for the same id raises :class:`IntegrityError` on
    flush.
    """
    receipt = EventReceipt(
        event_id=event_id,
        event_type=str(event_type),
        user_id=user_id,
        points_awarded=points,
        details=dict(details),
        ledger_event_id=ledger_event_id,
        created_at=as_utc(created_at),
    )
    session.add(receipt)
    session.flush()
    return receipt


def supersede(session: Session, event_ids: Iterable[int], by_id: int) -> int:
    """Mark *event_ids* as replaced by entry *by_id*."""
    ids = list(event_ids)
    if not ids:
        return 0
    result = session.execute(
        update(PointEvent)
        .where(PointEvent.id.in_(ids), PointEvent.superseded_by_id.is_(None))
        .values(superseded_by_id=by_id)
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def find_by_key(session: Session, idempotency_key: str) -> PointEvent | None:
    return session.scalar(
        select(PointEvent).where(PointEvent.idempotency_key == idempotency_key)
    )


def find_receipt(session: Session, event_id: str) -> EventReceipt | None:
    return session.get(EventReceipt, event_id)


def query_events(
    session: Session,
    *,
    user_id: str | None = None,
    ticket_id: int | None = None,
    event_types: Iterable[str] | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    include_superseded: bool = False,
    limit: int | None = None,
) -> list[PointEvent]:
    """Filtered read, oldest first."""
    stmt = select(PointEvent)
    if user_id is not None:
        stmt = stmt.where(PointEvent.user_id == user_id)
    if ticket_id is not None:
        stmt = stmt.where(PointEvent.related_ticket_id == ticket_id)
    if event_types is not None:
        stmt = stmt.where(PointEvent.event_type.in_([str(t) for t in event_types]))
    if since is not None:
        stmt = stmt.where(PointEvent.created_at >= as_utc(since))
    if until is not None:
        stmt = stmt.where(PointEvent.created_at < as_utc(until))
    if not include_superseded:
        stmt = stmt.where(PointEvent.superseded_by_id.is_(None))
    stmt = stmt.order_by(PointEvent.created_at, PointEvent.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt))


def _reversed_ids(session: Session, ticket_id: int) -> set[int]:
    """Ids on *ticket_id* already negated by a reopen or a deletion."""
    reversed_ids: set[int] = set(
        session.scalars(
            select(PointEvent.reverses_id).where(
                PointEvent.related_ticket_id == ticket_id,
                PointEvent.reverses_id.isnot(None),
            )
        )
    )
    deletions = session.scalars(
        select(PointEvent.details).where(
            PointEvent.related_ticket_id == ticket_id,
            PointEvent.event_type == E.TICKET_DELETED,
        )
    )
    for details in deletions:
        reversed_ids.update(int(i) for i in (details or {}).get("reversed_event_ids", []))
    return reversed_ids


def outstanding_events(
    session: Session,
    *,
    ticket_id: int,
    event_types: Iterable[str],
    user_id: str | None = None,
) -> list[PointEvent]:
    """Effective entries on *ticket_id* that nothing has reversed yet."""
    rows = query_events(
        session, user_id=user_id, ticket_id=ticket_id, event_types=event_types
    )
    if not rows:
        return rows
    done = _reversed_ids(session, ticket_id)
    return [r for r in rows if r.id not in done]


def user_balance(session: Session, user_id: str) -> int:
    return session.scalar(
        select(func.coalesce(func.sum(PointEvent.points_awarded), 0)).where(
            PointEvent.user_id == user_id,
            PointEvent.superseded_by_id.is_(None),
        )
    ) or 0


def totals_between(
    session: Session, start: datetime, end: datetime
) -> list[tuple[str, str, int]]:
    """``(user_id, username, total)`` of effective points in ``[start, end)``, best first."""
    total = func.sum(PointEvent.points_awarded).label("total")
    rows = session.execute(
        select(PointEvent.user_id, func.max(PointEvent.username), total)
        .where(
            PointEvent.created_at >= as_utc(start),
            PointEvent.created_at < as_utc(end),
            PointEvent.superseded_by_id.is_(None),
        )
        .group_by(PointEvent.user_id)
        .order_by(total.desc(), PointEvent.user_id)
    ).all()
    return [(r[0], r[1], int(r[2] or 0)) for r in rows]
