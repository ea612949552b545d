"""
deskpoints.services.scoring_service — The point-awarding event handler
=======================================================================

One call per lifecycle event:

    1. Gather collaborator facts (ticket, recent subjects, schedule) on
       their own short sessions.  A failed read degrades the outcome, it
       never fails the request.
    2. Under the ticket's (or user's) lock, read the ledger and plan the
       outcome: rule table, compensation, distribution.
    3. Write the primary entry, supersessions, creator shares and
       compensations in ONE transaction.  A failure here rolls everything
       back and raises :class:`LedgerWriteError`.
    4. After commit, run the milestone detector (openings and paid
       assignments) and the badge evaluator.  Their failures are logged and
       do not change the result.

Replays carrying an already-seen ``eventId`` are acknowledged with the
originally persisted points and write nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from deskpoints.config import DEFAULT_CONFIG, DeskpointsConfig
from deskpoints.database.models import PointEventType as E
from deskpoints.engine import rules
from deskpoints.engine.achievements import TicketSnapshot, count_notes_on_day
from deskpoints.engine.business_time import (
    as_utc,
    business_date,
    day_bounds,
    scheduled_start_utc,
)
from deskpoints.engine.events import (
    CollaboratorError,
    LedgerWriteError,
    LifecycleEvent,
    ScoringError,
    ScoringResult,
)
from deskpoints.engine.locks import KeyedLock, get_default_locks
from deskpoints.engine.rules import RuleOutcome
from deskpoints.engine.similarity import find_similar
from deskpoints.services import badge_service, ledger_store
from deskpoints.services.broadcast_service import notify_user
from deskpoints.services.compensation import (
    plan_deletion,
    plan_reopen,
    plan_supersession,
    prior_closures,
)
from deskpoints.services.directory import TicketDirectory
from deskpoints.services.distribution import plan_closure
from deskpoints.services.milestone_service import check_milestone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Facts gathered before the ledger transaction
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class Facts:
    ticket: TicketSnapshot | None = None
    similar: tuple[int, str, float] | None = None
    scheduled_start: datetime | None = None


def _load_ticket(directory: TicketDirectory, event: LifecycleEvent, facts: Facts) -> None:
    if event.ticket_id is None:
        return
    try:
        facts.ticket = directory.get_ticket(event.ticket_id)
    except CollaboratorError as exc:
        logger.warning("Ticket lookup failed for %s: %s", event.event_type, exc)


def gather_facts(
    event: LifecycleEvent,
    config: DeskpointsConfig,
    directory: TicketDirectory,
    now: datetime,
) -> Facts:
    facts = Facts()
    kind = event.event_type

    if kind == E.TICKET_OPENED:
        subject = event.data.get("subject")
        if subject:
            try:
                recent = directory.recent_subjects(
                    now - config.duplicate_lookback, exclude_id=event.ticket_id
                )
                facts.similar = find_similar(
                    subject, recent, config.duplicate_similarity_threshold
                )
            except CollaboratorError as exc:
                logger.warning("Duplicate scan failed, treating as unique: %s", exc)

    elif kind in (E.TICKET_CLOSED, E.ASSIGN_TO_SELF, E.NOTE_ADDED):
        _load_ticket(directory, event, facts)

    elif kind == E.SHIFT_STARTED:
        today = business_date(now, config.business_offset)
        try:
            shift_start = directory.shift_start(event.user_id, today)
            if shift_start:
                facts.scheduled_start = scheduled_start_utc(
                    today, shift_start, config.business_offset
                )
        except (CollaboratorError, ValueError) as exc:
            logger.warning("Schedule lookup failed for %s: %s", event.user_id, exc)

    return facts


# ---------------------------------------------------------------------------
# Handlers that read the ledger
# ---------------------------------------------------------------------------
Handler = Callable[[Session, LifecycleEvent, Facts, DeskpointsConfig, datetime], RuleOutcome]


def _ticket_opened(session, event, facts, config, now) -> RuleOutcome:
    return rules.ticket_opened(event.ticket_id, event.data.get("priority"), facts.similar)


def _ticket_closed(session, event, facts, config, now) -> RuleOutcome:
    ticket = facts.ticket
    if ticket is None:
        return RuleOutcome(0, "Error fetching ticket data", {}, event.ticket_id)

    openings = ledger_store.query_events(
        session, ticket_id=ticket.id, event_types=[E.TICKET_OPENED], include_superseded=True
    )
    if any((o.details or {}).get("duplicate_detection") for o in openings):
        return RuleOutcome(
            0,
            "Ticket was flagged as duplicate - no points for closure",
            {"duplicate_ticket": True},
            ticket.id,
        )

    outstanding, ever_closed = prior_closures(session, ticket.id, event.user_id)
    if ticket.is_reopened and not ever_closed:
        return RuleOutcome(
            0,
            "Ticket was reopened (likely by another user)",
            {"reopened_ticket": True},
            ticket.id,
        )

    outcome = plan_closure(ticket, event.user_id, event.username)
    plan_supersession(session, outcome, outstanding)
    return outcome


def _ticket_reopened(session, event, facts, config, now) -> RuleOutcome:
    return plan_reopen(session, event.ticket_id)


def _ticket_deleted(session, event, facts, config, now) -> RuleOutcome:
    return plan_deletion(session, event.ticket_id, event.user_id)


def _assign_to_self(session, event, facts, config, now) -> RuleOutcome:
    ticket = facts.ticket
    if ticket is None:
        return rules.assign_to_self(event.ticket_id, event.user_id, None, now)

    assignments = ledger_store.query_events(
        session, ticket_id=ticket.id, event_types=[E.ASSIGN_TO_SELF], include_superseded=True
    )
    last = assignments[-1] if assignments else None
    ever_assigned = bool(assignments) or (
        ticket.assigned_to_id is not None and ticket.assigned_to_id != event.user_id
    )
    assignment = rules.AssignmentFacts(
        ticket_created_at=ticket.created_at or now,
        created_by=ticket.created_by,
        ever_assigned=ever_assigned,
        last_assignee_id=last.user_id if last else None,
        last_assigned_at=last.created_at if last else None,
    )
    return rules.assign_to_self(ticket.id, event.user_id, assignment, now)


def _note_added(session, event, facts, config, now) -> RuleOutcome:
    if facts.ticket is None:
        return rules.note_added(event.ticket_id, None)
    start, end = day_bounds(business_date(now, config.business_offset), config.business_offset)
    count = count_notes_on_day(facts.ticket, event.user_id, start, end)
    return rules.note_added(facts.ticket.id, count)


def _shift_started(session, event, facts, config, now) -> RuleOutcome:
    return rules.shift_started(now, facts.scheduled_start)


HANDLERS: dict[str, Handler] = {
    E.TICKET_OPENED: _ticket_opened,
    E.TICKET_CLOSED: _ticket_closed,
    E.TICKET_REOPENED: _ticket_reopened,
    E.TICKET_DELETED: _ticket_deleted,
    E.ASSIGN_TO_SELF: _assign_to_self,
    E.NOTE_ADDED: _note_added,
    E.SHIFT_STARTED: _shift_started,
}


def evaluate(
    session: Session,
    event: LifecycleEvent,
    facts: Facts,
    config: DeskpointsConfig,
    now: datetime,
) -> RuleOutcome:
    """Route *event* to its rule; unknown and system types score zero."""
    kind = event.event_type
    if kind in HANDLERS:
        outcome = HANDLERS[kind](session, event, facts, config, now)
    elif kind in rules.STATIC_RULES:
        outcome = rules.STATIC_RULES[kind](event.data)
    elif kind in rules.KUDOS_RULES:
        outcome = rules.KUDOS_RULES[kind](event.data, event.username)
    else:
        logger.warning("Unscored event type %r from user %s", kind, event.user_id)
        outcome = rules.unknown_event(kind)

    if kind in rules.ALWAYS_RECORDED:
        outcome.record = True
    return outcome


# ---------------------------------------------------------------------------
# Ledger write
# ---------------------------------------------------------------------------
def _write(
    session: Session,
    event: LifecycleEvent,
    outcome: RuleOutcome,
    now: datetime,
) -> int | None:
    """Persist *outcome*; returns the primary entry id (None if nothing primary)."""
    primary_id = None
    if outcome.should_write:
        user_id, username = outcome.attribute_to or (event.user_id, event.username)
        primary = ledger_store.insert_event(
            session,
            user_id=user_id,
            username=username,
            event_type=event.event_type,
            points=outcome.points,
            created_at=now,
            details=outcome.ledger_details(),
            related_ticket_id=outcome.related_ticket_id,
        )
        primary_id = primary.id
        ledger_store.supersede(session, outcome.supersedes, primary.id)
        for share in outcome.shares:
            ledger_store.insert_event(
                session,
                user_id=share.user_id,
                username=share.username,
                event_type=share.event_type,
                points=share.points,
                created_at=now,
                details=share.details,
                related_ticket_id=share.related_ticket_id,
                parent_id=primary.id,
            )

    if outcome.persist:
        for comp in outcome.compensations:
            ledger_store.insert_event(
                session,
                user_id=comp.user_id,
                username=comp.username,
                event_type=comp.event_type,
                points=comp.points,
                created_at=now,
                details=comp.details,
                related_ticket_id=comp.related_ticket_id,
                reverses_id=comp.reverses_id,
            )

    if outcome.notify is not None and outcome.persist:
        recipient, message = outcome.notify
        notify_user(
            session, recipient, message, now, related_ticket_id=outcome.related_ticket_id
        )
    return primary_id


def _replay(receipt, event: LifecycleEvent) -> ScoringResult:
    logger.info("Replay of event %s ignored", event.event_id)
    return ScoringResult(
        event_type=event.event_type,
        points_awarded=receipt.points_awarded,
        reason=receipt.reason or "",
        details=dict(receipt.details or {}),
        ledger_event_id=receipt.ledger_event_id,
        duplicate=True,
    )


def record_event(
    engine: Engine,
    event: LifecycleEvent,
    *,
    config: DeskpointsConfig = DEFAULT_CONFIG,
    directory: TicketDirectory | None = None,
    locks: KeyedLock | None = None,
    now: datetime | None = None,
) -> tuple[ScoringResult, RuleOutcome | None]:
    """Steps 1-3: score *event* and commit its ledger entries.

    With an ``eventId`` a receipt is committed alongside the entries, even
    when nothing is scored; a later submission of the same id is answered
    from the receipt and returns ``None`` as the outcome.
    """
    now = as_utc(now or event.timestamp)
    directory = directory or TicketDirectory(engine)
    locks = locks or get_default_locks()
    key = event.event_id

    facts = gather_facts(event, config, directory, now)
    lock_key = ("ticket", event.ticket_id) if event.ticket_id is not None else ("user", event.user_id)

    with locks.hold(lock_key), Session(engine) as session:
        try:
            if key is not None:
                receipt = ledger_store.find_receipt(session, key)
                if receipt is not None:
                    return _replay(receipt, event), None

            outcome = evaluate(session, event, facts, config, now)
            primary_id = _write(session, event, outcome, now)
            persisted = outcome.points if primary_id is not None else 0
            if key is not None:
                ledger_store.add_receipt(
                    session,
                    key,
                    event_type=event.event_type,
                    user_id=event.user_id,
                    points=persisted,
                    details=outcome.ledger_details(),
                    ledger_event_id=primary_id,
                    created_at=now,
                )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            receipt = ledger_store.find_receipt(session, key) if key else None
            if receipt is not None:
                return _replay(receipt, event), None
            raise LedgerWriteError(f"Ledger write failed: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise LedgerWriteError(f"Ledger write failed: {exc}") from exc

    logger.info(
        "%s for %s (%s): %+d (%s)",
        event.event_type, event.username, event.user_id, persisted, outcome.reason,
    )
    result = ScoringResult(
        event_type=event.event_type,
        points_awarded=persisted,
        reason=outcome.reason,
        details=outcome.ledger_details(),
        ledger_event_id=primary_id,
    )
    return result, outcome


def process_event(
    engine: Engine,
    event: LifecycleEvent,
    *,
    config: DeskpointsConfig = DEFAULT_CONFIG,
    directory: TicketDirectory | None = None,
    locks: KeyedLock | None = None,
    now: datetime | None = None,
    evaluate_badges: bool = True,
) -> ScoringResult:
    """Score one lifecycle event end to end.

    Raises :class:`LedgerWriteError` when the ledger transaction fails.
    Milestone and badge failures are logged and swallowed.
    """
    now = as_utc(now or event.timestamp)
    directory = directory or TicketDirectory(engine)
    locks = locks or get_default_locks()

    result, outcome = record_event(
        engine, event, config=config, directory=directory, locks=locks, now=now
    )
    if outcome is None:
        return result

    if outcome.check_milestone and result.ledger_event_id is not None:
        try:
            result.milestone = check_milestone(
                engine, event.user_id, event.username, now, config=config, locks=locks
            )
        except (SQLAlchemyError, ScoringError):
            logger.exception("Milestone check failed for %s", event.user_id)

    if evaluate_badges:
        try:
            result.badges = [
                str(b) for b in badge_service.consume(
                    engine, event, config=config, directory=directory, now=now, locks=locks
                )
            ]
        except (SQLAlchemyError, ScoringError, ValueError):
            logger.exception("Badge evaluation failed for %s", event.event_type)

    return result
