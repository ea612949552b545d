"""
deskpoints.services.badge_service — Daily badges, stats and the perfect day
============================================================================

Consumes the same lifecycle events as the ledger, after the ledger has
committed, and never fails the intake request.

Per event type:

* TICKET_CLOSED  → recount fast closures (speed demon) and fast email
  responses (lightning) for the closer's business day.
* TICKET_OPENED / ASSIGN_TO_SELF → advance the team-wide "last actor"
  cursor (sniper).
* SHIFT_STARTED  → more than 15 minutes late earns the turtle.
* NOTE_ADDED     → a first note more than 30 minutes after pickup earns
  the turtle.

Awards are unique per (user, badge, business day): an in-process keyed
lock serializes the check, the ``uq_user_badges_user_badge_day``
constraint settles cross-process races.  Each successful award triggers
the perfect-day check.

:func:`award_top_scorer` is the scheduled job behind the client hero badge.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deskpoints.config import DEFAULT_CONFIG, DeskpointsConfig
from deskpoints.database.engine import get_session
from deskpoints.database.models import (
    BadgeAward,
    BadgeDailyStats,
    BadgeId,
    PointEventType,
    StreakCursor,
    UserSettings,
)
from deskpoints.engine import achievements as ach
from deskpoints.engine.business_time import (
    as_utc,
    business_date,
    day_bounds,
    is_weekend,
    minutes_between,
    scheduled_start_utc,
)
from deskpoints.engine.events import CollaboratorError, LifecycleEvent
from deskpoints.engine.locks import KeyedLock, get_default_locks
from deskpoints.services import ledger_store
from deskpoints.services.broadcast_service import notify_badge
from deskpoints.services.directory import TicketDirectory

logger = logging.getLogger(__name__)

STREAK_CURSOR_NAME = "tickets"


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
def get_or_create_daily_stats(
    session: Session, user_id: str, username: str, day: date
) -> BadgeDailyStats:
    """Fetch the (user, day) stats row, inserting a zeroed one if absent."""
    stats = session.get(BadgeDailyStats, (user_id, day))
    if stats is not None:
        return stats
    try:
        with session.begin_nested():   # SAVEPOINT
            stats = BadgeDailyStats(
                user_id=user_id,
                stat_date=day,
                username=username,
                tickets_closed_fast=0,
                consecutive_tickets=0,
                fast_responses=0,
                late_shift_starts=0,
                slow_responses=0,
            )
            session.add(stats)
            session.flush()
    except IntegrityError:
        stats = session.get(BadgeDailyStats, (user_id, day))
    return stats


def _update_stats(
    engine: Engine,
    locks: KeyedLock,
    user_id: str,
    username: str,
    day: date,
    apply: Callable[[BadgeDailyStats], None],
) -> BadgeDailyStats:
    with locks.hold(("stats", user_id, day)), Session(engine, expire_on_commit=False) as session:
        stats = get_or_create_daily_stats(session, user_id, username, day)
        apply(stats)
        session.commit()
        return stats


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------
def has_badge(session: Session, user_id: str, badge_id: str, day: date) -> bool:
    return session.scalar(
        select(BadgeAward.id).where(
            BadgeAward.user_id == user_id,
            BadgeAward.badge_id == str(badge_id),
            BadgeAward.award_date == day,
        )
    ) is not None


def award_badge(
    session: Session,
    user_id: str,
    username: str,
    badge_id: str,
    day: date,
    now: datetime,
    metadata: dict | None = None,
) -> bool:
    """Insert the award and the recipient's toast; False if already held."""
    if has_badge(session, user_id, badge_id, day):
        return False
    badge = ach.BADGES[BadgeId(badge_id)]
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(BadgeAward(
                user_id=user_id,
                username=username,
                badge_id=str(badge_id),
                award_date=day,
                achieved_at=as_utc(now),
                is_active=True,
                reset_period="daily",
                metadata_=dict(metadata or {}),
            ))
            session.flush()
    except IntegrityError:
        logger.info("Badge %s for %s on %s already awarded elsewhere", badge_id, user_id, day)
        return False

    notify_badge(
        session, [user_id], badge, f"You earned the {badge.name} badge! {badge.emoji}", now
    )
    logger.info("Badge %s awarded to %s (%s) for %s", badge_id, username, user_id, day)
    return True


def grant_badge(
    engine: Engine,
    user_id: str,
    username: str,
    badge_id: str,
    day: date,
    now: datetime,
    *,
    metadata: dict | None = None,
    locks: KeyedLock | None = None,
) -> bool:
    """Award under the (user, badge, day) lock, then run the perfect-day check."""
    locks = locks or get_default_locks()
    with locks.hold(("badge", user_id, str(badge_id), day)), Session(engine) as session:
        awarded = award_badge(session, user_id, username, badge_id, day, now, metadata)
        session.commit()
    if awarded:
        check_perfect_day(engine, user_id, username, day, now, locks=locks)
    return awarded


def badges_on(session: Session, user_id: str, day: date) -> list[BadgeAward]:
    return list(session.scalars(
        select(BadgeAward)
        .where(BadgeAward.user_id == user_id, BadgeAward.award_date == day)
        .order_by(BadgeAward.achieved_at, BadgeAward.id)
    ))


def check_perfect_day(
    engine: Engine,
    user_id: str,
    username: str,
    day: date,
    now: datetime,
    *,
    locks: KeyedLock | None = None,
) -> bool:
    """+50 PERFECT_DAY and a team-wide toast, once per user and day."""
    locks = locks or get_default_locks()
    with locks.hold(("perfect_day", user_id, day)), Session(engine) as session:
        held = [b.badge_id for b in badges_on(session, user_id, day)]
        if not ach.is_perfect_day(held):
            return False
        row = ledger_store.insert_once(
            session,
            f"perfect_day:{user_id}:{day.isoformat()}",
            user_id=user_id,
            username=username,
            event_type=PointEventType.PERFECT_DAY,
            points=ach.PERFECT_DAY_BONUS,
            created_at=now,
            details={
                "reason": "Perfect Day! All badges earned with no Turtle badge",
                "badges": sorted(held),
                "award_date": day.isoformat(),
            },
        )
        if row is None:
            session.rollback()
            return False
        recipients = list(session.scalars(select(UserSettings.user_id))) or [user_id]
        notify_badge(
            session,
            recipients,
            ach.PERFECT_DAY_NOTICE,
            f"{username} achieved a PERFECT DAY! All badges earned with no Turtle badge! 🎉",
            now,
        )
        session.commit()
    logger.info("Perfect day for %s (%s) on %s", username, user_id, day)
    return True


# ---------------------------------------------------------------------------
# Evaluators — one per lifecycle event type
# ---------------------------------------------------------------------------
def on_ticket_closed(
    engine: Engine,
    event: LifecycleEvent,
    config: DeskpointsConfig,
    directory: TicketDirectory,
    now: datetime,
    locks: KeyedLock,
) -> list[str]:
    today = business_date(now, config.business_offset)
    start, end = day_bounds(today, config.business_offset)
    closed = directory.closed_by(event.user_id, start, end)
    fast = ach.count_fast_closures(closed, event.user_id)
    lightning = ach.count_lightning_tickets(closed, event.user_id, config.fast_response_source)

    def apply(stats: BadgeDailyStats) -> None:
        stats.tickets_closed_fast = max(stats.tickets_closed_fast or 0, fast)
        stats.fast_responses = max(stats.fast_responses or 0, lightning)

    stats = _update_stats(engine, locks, event.user_id, event.username, today, apply)

    awarded = []
    if stats.tickets_closed_fast >= ach.SPEED_DEMON_THRESHOLD and grant_badge(
        engine, event.user_id, event.username, BadgeId.SPEED_DEMON, today, now,
        metadata={"tickets_closed_fast": stats.tickets_closed_fast}, locks=locks,
    ):
        awarded.append(BadgeId.SPEED_DEMON)
    if stats.fast_responses >= ach.LIGHTNING_THRESHOLD and grant_badge(
        engine, event.user_id, event.username, BadgeId.LIGHTNING, today, now,
        metadata={"fast_responses": stats.fast_responses}, locks=locks,
    ):
        awarded.append(BadgeId.LIGHTNING)
    return awarded


def advance_cursor(
    engine: Engine, user_id: str, username: str, today: date, now: datetime, locks: KeyedLock
) -> ach.StreakState:
    """Move the persisted team-wide cursor and return the new run."""
    with locks.hold(("streak", STREAK_CURSOR_NAME)), Session(engine) as session:
        cursor = session.get(StreakCursor, STREAK_CURSOR_NAME)
        previous = None
        if cursor is not None:
            previous = ach.StreakState(
                cursor.user_id, cursor.username, cursor.count, cursor.business_date
            )
        state = ach.advance_streak(previous, user_id, username, today)
        if cursor is None:
            cursor = StreakCursor(name=STREAK_CURSOR_NAME)
            session.add(cursor)
        cursor.user_id = state.user_id
        cursor.username = state.username
        cursor.count = state.count
        cursor.business_date = state.business_date
        cursor.updated_at = as_utc(now)
        session.commit()
    return state


def on_ticket_taken(
    engine: Engine,
    event: LifecycleEvent,
    config: DeskpointsConfig,
    directory: TicketDirectory,
    now: datetime,
    locks: KeyedLock,
) -> list[str]:
    today = business_date(now, config.business_offset)
    state = advance_cursor(engine, event.user_id, event.username, today, now, locks)

    def apply(stats: BadgeDailyStats) -> None:
        stats.consecutive_tickets = max(stats.consecutive_tickets or 0, state.count)

    _update_stats(engine, locks, event.user_id, event.username, today, apply)

    if state.count >= ach.SNIPER_THRESHOLD and grant_badge(
        engine, event.user_id, event.username, BadgeId.SNIPER, today, now,
        metadata={"consecutive_tickets": state.count}, locks=locks,
    ):
        return [BadgeId.SNIPER]
    return []


def on_shift_started(
    engine: Engine,
    event: LifecycleEvent,
    config: DeskpointsConfig,
    directory: TicketDirectory,
    now: datetime,
    locks: KeyedLock,
) -> list[str]:
    offset = config.business_offset
    today = business_date(now, offset)
    shift_start = directory.shift_start(event.user_id, today)
    if not shift_start:
        return []
    delay = minutes_between(scheduled_start_utc(today, shift_start, offset), now)
    if delay <= ach.TURTLE_LATE_SHIFT_MINUTES:
        return []

    def apply(stats: BadgeDailyStats) -> None:
        stats.late_shift_starts = (stats.late_shift_starts or 0) + 1

    _update_stats(engine, locks, event.user_id, event.username, today, apply)
    if grant_badge(
        engine, event.user_id, event.username, BadgeId.TURTLE, today, now,
        metadata={"reason": "late_shift", "delay_minutes": round(delay)}, locks=locks,
    ):
        return [BadgeId.TURTLE]
    return []


def on_note_added(
    engine: Engine,
    event: LifecycleEvent,
    config: DeskpointsConfig,
    directory: TicketDirectory,
    now: datetime,
    locks: KeyedLock,
) -> list[str]:
    if event.ticket_id is None:
        return []
    ticket = directory.get_ticket(event.ticket_id)
    if ticket is None or not ach.is_slow_first_response(ticket, event.user_id, now):
        return []

    today = business_date(now, config.business_offset)

    def apply(stats: BadgeDailyStats) -> None:
        stats.slow_responses = (stats.slow_responses or 0) + 1

    _update_stats(engine, locks, event.user_id, event.username, today, apply)
    if grant_badge(
        engine, event.user_id, event.username, BadgeId.TURTLE, today, now,
        metadata={"reason": "slow_response", "ticket_id": event.ticket_id}, locks=locks,
    ):
        return [BadgeId.TURTLE]
    return []


EVALUATORS: dict[str, Callable[..., list[str]]] = {
    PointEventType.TICKET_CLOSED: on_ticket_closed,
    PointEventType.TICKET_OPENED: on_ticket_taken,
    PointEventType.ASSIGN_TO_SELF: on_ticket_taken,
    PointEventType.SHIFT_STARTED: on_shift_started,
    PointEventType.NOTE_ADDED: on_note_added,
}


def consume(
    engine: Engine,
    event: LifecycleEvent,
    *,
    config: DeskpointsConfig = DEFAULT_CONFIG,
    directory: TicketDirectory | None = None,
    now: datetime | None = None,
    locks: KeyedLock | None = None,
) -> list[str]:
    """Run the badge evaluator for *event*; returns the badge ids awarded."""
    evaluator = EVALUATORS.get(event.event_type)
    if evaluator is None:
        return []
    try:
        return evaluator(
            engine,
            event,
            config,
            directory or TicketDirectory(engine),
            as_utc(now or event.timestamp),
            locks or get_default_locks(),
        )
    except CollaboratorError as exc:
        logger.warning("Badge evaluation skipped for %s: %s", event.event_type, exc)
        return []


# ---------------------------------------------------------------------------
# Scheduled job — client hero
# ---------------------------------------------------------------------------
def award_top_scorer(
    engine: Engine,
    *,
    config: DeskpointsConfig = DEFAULT_CONFIG,
    now: datetime,
    target_date: date | None = None,
    locks: KeyedLock | None = None,
) -> dict:
    """Award ``client_hero`` to the top scorer of *target_date*.

    Defaults to the previous business day.  Weekends are skipped.  After
    the award every other badge up to that day is deactivated.
    """
    locks = locks or get_default_locks()
    offset = config.business_offset
    target = target_date or business_date(now, offset) - timedelta(days=1)
    summary: dict = {"date": target.isoformat(), "winner": None, "awarded": False}
    if is_weekend(target):
        summary["skipped"] = "weekend"
        logger.info("Client hero check skipped for weekend day %s", target)
        return summary

    start, end = day_bounds(target, offset)
    with get_session(engine) as session:
        session.execute(
            update(BadgeAward)
            .where(
                BadgeAward.badge_id == BadgeId.CLIENT_HERO,
                BadgeAward.is_active.is_(True),
                BadgeAward.award_date != target,
            )
            .values(is_active=False)
        )
        totals = ledger_store.totals_between(session, start, end)

    leader = next(((u, n, p) for u, n, p in totals if p > 0), None)
    if leader is None:
        logger.info("No positive scorer on %s; client hero not awarded", target)
        return summary

    user_id, username, points = leader
    summary.update(winner=user_id, username=username, points=points)
    awarded = grant_badge(
        engine, user_id, username, BadgeId.CLIENT_HERO, target, now,
        metadata={"points": points}, locks=locks,
    )
    summary["awarded"] = awarded

    with get_session(engine) as session:
        if awarded:
            ledger_store.insert_once(
                session,
                f"client_hero:{target.isoformat()}",
                user_id=user_id,
                username=username,
                event_type=PointEventType.BADGE_EARNED,
                points=ach.CLIENT_HERO_BONUS,
                created_at=now,
                details={
                    "reason": "Earned Client Hero badge (top scorer)",
                    "badge_id": BadgeId.CLIENT_HERO.value,
                    "award_date": target.isoformat(),
                    "points_that_day": points,
                },
            )
        session.execute(
            update(BadgeAward)
            .where(
                BadgeAward.badge_id != BadgeId.CLIENT_HERO,
                BadgeAward.award_date <= target,
                BadgeAward.is_active.is_(True),
            )
            .values(is_active=False)
        )

    logger.info("Client hero for %s: %s (%s) with %d points", target, username, user_id, points)
    return summary
