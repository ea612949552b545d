"""
tests/test_badge_service.py — Badge Evaluator Integration Tests
================================================================
Speed demon, lightning, sniper, turtle, perfect day and the client hero
job, run against an in-memory SQLite database.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.orm import Session

from deskpoints.database.models import (
    BadgeAward,
    BadgeDailyStats,
    BadgeId,
    BadgeNotification,
    DefaultSchedule,
    PointEvent,
    PointEventType,
    UserSettings,
)
from deskpoints.engine.events import LifecycleEvent
from deskpoints.services import badge_service, ledger_store

TODAY = date(2026, 3, 11)


def _event(event_type, user_id="u2", username="Bob", **data):
    return LifecycleEvent(event_type, user_id, username, data=data)


def _consume(engine, event, now, locks, config):
    return badge_service.consume(engine, event, config=config, now=now, locks=locks)


def _awards(engine, user_id=None):
    with Session(engine) as session:
        stmt = select(BadgeAward).order_by(BadgeAward.id)
        if user_id is not None:
            stmt = stmt.where(BadgeAward.user_id == user_id)
        return session.scalars(stmt).all()


def _stats(engine, user_id, day=TODAY):
    with Session(engine) as session:
        return session.get(BadgeDailyStats, (user_id, day))


# ===========================================================================
# Speed demon / lightning
# ===========================================================================
class TestClosureBadges:
    def _fast_closures(self, seed_ticket, now, count, first_id=100, **kw):
        picked = now - timedelta(hours=1)
        for i in range(count):
            seed_ticket(
                first_id + i,
                created_by="u1",
                assigned_to_id="u2",
                assigned_at=picked,
                completed_by_id="u2",
                completed_at=picked + timedelta(minutes=20),
                **kw,
            )

    def test_speed_demon_at_six(self, db_engine, seed_ticket, now, locks, config):
        self._fast_closures(seed_ticket, now, 6)

        awarded = _consume(db_engine, _event(PointEventType.TICKET_CLOSED), now, locks, config)

        assert awarded == [BadgeId.SPEED_DEMON]
        [award] = _awards(db_engine)
        assert award.award_date == TODAY
        assert award.metadata_ == {"tickets_closed_fast": 6}
        assert _stats(db_engine, "u2").tickets_closed_fast == 6
        with Session(db_engine) as session:
            [toast] = session.scalars(select(BadgeNotification)).all()
        assert toast.user_id == "u2"
        assert toast.message == "You earned the Speed Demon badge! 🏆"

    def test_awarded_once_per_day(self, db_engine, seed_ticket, now, locks, config):
        self._fast_closures(seed_ticket, now, 7)
        event = _event(PointEventType.TICKET_CLOSED)
        _consume(db_engine, event, now, locks, config)
        assert _consume(db_engine, event, now, locks, config) == []
        assert len(_awards(db_engine)) == 1

    def test_five_is_not_enough(self, db_engine, seed_ticket, now, locks, config):
        self._fast_closures(seed_ticket, now, 5)
        assert _consume(db_engine, _event(PointEventType.TICKET_CLOSED), now, locks, config) == []

    def test_lightning_for_fast_email_tickets(self, db_engine, seed_ticket, now, locks, config):
        created = now - timedelta(minutes=90)
        for i in range(3):
            seed_ticket(
                200 + i,
                source="Outlook",
                created_by="u2",
                created_at=created,
                completed_by_id="u2",
                completed_at=created + timedelta(minutes=60),
                notes=[{"user_id": "u2", "timestamp": (created + timedelta(minutes=10)).isoformat()}],
            )

        awarded = _consume(db_engine, _event(PointEventType.TICKET_CLOSED), now, locks, config)

        assert awarded == [BadgeId.LIGHTNING]
        assert _stats(db_engine, "u2").fast_responses == 3


# ===========================================================================
# Sniper
# ===========================================================================
class TestSniper:
    def test_four_in_a_row(self, db_engine, now, locks, config):
        results = [
            _consume(db_engine, _event(PointEventType.TICKET_OPENED), now + timedelta(minutes=i),
                     locks, config)
            for i in range(4)
        ]
        assert results == [[], [], [], [BadgeId.SNIPER]]
        assert _stats(db_engine, "u2").consecutive_tickets == 4

    def test_interrupted_run(self, db_engine, now, locks, config):
        sequence = ["u2", "u2", "u2", "u3", "u2"]
        for i, user in enumerate(sequence):
            _consume(db_engine, _event(PointEventType.ASSIGN_TO_SELF, user_id=user),
                     now + timedelta(minutes=i), locks, config)
        assert _awards(db_engine) == []
        assert _stats(db_engine, "u2").consecutive_tickets == 3

    def test_run_resets_at_day_boundary(self, db_engine, now, locks, config):
        yesterday = now - timedelta(days=1)
        for i in range(3):
            _consume(db_engine, _event(PointEventType.TICKET_OPENED),
                     yesterday + timedelta(minutes=i), locks, config)
        assert _consume(db_engine, _event(PointEventType.TICKET_OPENED), now, locks, config) == []


# ===========================================================================
# Turtle
# ===========================================================================
class TestTurtle:
    def test_late_shift(self, db_engine, now, locks, config):
        with Session(db_engine) as session:
            session.add(DefaultSchedule(user_id="u2", day_of_week=3, shift_start_time="11:30"))
            session.commit()

        awarded = _consume(db_engine, _event(PointEventType.SHIFT_STARTED), now, locks, config)

        assert awarded == [BadgeId.TURTLE]
        assert _stats(db_engine, "u2").late_shift_starts == 1
        assert _awards(db_engine)[0].metadata_["reason"] == "late_shift"

    def test_fifteen_minutes_is_tolerated(self, db_engine, now, locks, config):
        with Session(db_engine) as session:
            session.add(DefaultSchedule(user_id="u2", day_of_week=3, shift_start_time="11:45"))
            session.commit()
        assert _consume(db_engine, _event(PointEventType.SHIFT_STARTED), now, locks, config) == []

    def test_slow_first_note(self, db_engine, seed_ticket, now, locks, config):
        seed_ticket(
            300,
            created_by="u1",
            assigned_to_id="u2",
            assigned_at=now - timedelta(minutes=45),
            notes=[{"user_id": "u2", "timestamp": now.isoformat()}],
        )
        event = _event(PointEventType.NOTE_ADDED, ticketId=300)
        assert _consume(db_engine, event, now, locks, config) == [BadgeId.TURTLE]
        assert _stats(db_engine, "u2").slow_responses == 1

    def test_prompt_first_note(self, db_engine, seed_ticket, now, locks, config):
        seed_ticket(
            301,
            created_by="u1",
            assigned_to_id="u2",
            assigned_at=now - timedelta(minutes=10),
            notes=[{"user_id": "u2", "timestamp": now.isoformat()}],
        )
        event = _event(PointEventType.NOTE_ADDED, ticketId=301)
        assert _consume(db_engine, event, now, locks, config) == []


# ===========================================================================
# Awards and the perfect day
# ===========================================================================
class TestAwards:
    def test_constraint_race_returns_false(self, db_session, now):
        assert badge_service.award_badge(db_session, "u2", "Bob", BadgeId.SNIPER, TODAY, now)
        with patch.object(badge_service, "has_badge", return_value=False):
            assert not badge_service.award_badge(
                db_session, "u2", "Bob", BadgeId.SNIPER, TODAY, now
            )
        db_session.commit()
        assert len(db_session.scalars(select(BadgeAward)).all()) == 1

    def test_perfect_day(self, db_engine, now, locks):
        with Session(db_engine) as session:
            for uid in ("u1", "u2", "u3"):
                session.add(UserSettings(user_id=uid, username=uid.upper()))
            for badge in (BadgeId.SPEED_DEMON, BadgeId.SNIPER, BadgeId.CLIENT_HERO):
                badge_service.award_badge(session, "u2", "Bob", badge, TODAY, now)
            session.commit()

        assert badge_service.grant_badge(
            db_engine, "u2", "Bob", BadgeId.LIGHTNING, TODAY, now, locks=locks
        )

        with Session(db_engine) as session:
            [bonus] = ledger_store.query_events(session, event_types=[PointEventType.PERFECT_DAY])
            fanout = session.scalars(
                select(BadgeNotification).where(BadgeNotification.badge_id == "perfect_day")
            ).all()
        assert bonus.points_awarded == 50
        assert bonus.user_id == "u2"
        assert sorted(n.user_id for n in fanout) == ["u1", "u2", "u3"]
        assert "Bob achieved a PERFECT DAY!" in fanout[0].message

        assert not badge_service.check_perfect_day(db_engine, "u2", "Bob", TODAY, now, locks=locks)

    def test_turtle_blocks_perfect_day(self, db_engine, now, locks):
        with Session(db_engine) as session:
            for badge in (BadgeId.SPEED_DEMON, BadgeId.SNIPER, BadgeId.CLIENT_HERO, BadgeId.TURTLE):
                badge_service.award_badge(session, "u2", "Bob", badge, TODAY, now)
            session.commit()

        badge_service.grant_badge(db_engine, "u2", "Bob", BadgeId.LIGHTNING, TODAY, now, locks=locks)

        with Session(db_engine) as session:
            assert ledger_store.query_events(
                session, event_types=[PointEventType.PERFECT_DAY]
            ) == []

    def test_unknown_event_type_ignored(self, db_engine, now, locks, config):
        assert _consume(db_engine, _event(PointEventType.TAG_ADDED), now, locks, config) == []


# ===========================================================================
# Client hero job
# ===========================================================================
class TestTopScorer:
    TUESDAY = date(2026, 3, 10)

    def _points(self, engine, user_id, points, at, superseded=False):
        with Session(engine) as session:
            row = ledger_store.insert_event(
                session, user_id=user_id, username=user_id.upper(),
                event_type=PointEventType.ATTACHMENT_ADDED, points=points, created_at=at,
            )
            if superseded:
                replacement = ledger_store.insert_event(
                    session, user_id=user_id, username=user_id.upper(),
                    event_type=PointEventType.ATTACHMENT_ADDED, points=0, created_at=at,
                )
                ledger_store.supersede(session, [row.id], replacement.id)
            session.commit()

    def test_previous_day_leader_wins(self, db_engine, now, locks, config):
        noon = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
        self._points(db_engine, "u1", 30, noon)
        self._points(db_engine, "u1", 500, noon, superseded=True)
        self._points(db_engine, "u2", 50, noon)
        self._points(db_engine, "u3", 90, now)  # today, not counted
        with Session(db_engine) as session:
            badge_service.award_badge(session, "u1", "U1", BadgeId.SNIPER, self.TUESDAY, now)
            session.commit()

        summary = badge_service.award_top_scorer(db_engine, config=config, now=now, locks=locks)

        assert summary["date"] == "2026-03-10"
        assert summary["winner"] == "u2"
        assert summary["points"] == 50
        assert summary["awarded"] is True

        with Session(db_engine) as session:
            [bonus] = ledger_store.query_events(session, event_types=[PointEventType.BADGE_EARNED])
            badges = {b.badge_id: b.is_active for b in session.scalars(select(BadgeAward))}
        assert (bonus.user_id, bonus.points_awarded) == ("u2", 10)
        assert badges == {"client_hero": True, "sniper": False}

    def test_rerun_does_not_pay_twice(self, db_engine, now, locks, config):
        self._points(db_engine, "u2", 50, datetime(2026, 3, 10, 12, 0, tzinfo=UTC))
        badge_service.award_top_scorer(db_engine, config=config, now=now, locks=locks)
        summary = badge_service.award_top_scorer(db_engine, config=config, now=now, locks=locks)
        assert summary["awarded"] is False
        with Session(db_engine) as session:
            assert len(session.scalars(
                select(PointEvent).where(PointEvent.event_type == PointEventType.BADGE_EARNED)
            ).all()) == 1

    def test_weekend_skipped(self, db_engine, locks, config):
        monday = datetime(2026, 3, 9, 10, 0, tzinfo=UTC)
        summary = badge_service.award_top_scorer(db_engine, config=config, now=monday, locks=locks)
        assert summary == {"date": "2026-03-08", "winner": None, "awarded": False,
                           "skipped": "weekend"}

    def test_nobody_scored(self, db_engine, now, locks, config):
        summary = badge_service.award_top_scorer(db_engine, config=config, now=now, locks=locks)
        assert summary["winner"] is None
        assert _awards(db_engine) == []

    def test_explicit_date(self, db_engine, now, locks, config):
        self._points(db_engine, "u3", 12, datetime(2026, 3, 5, 9, 0, tzinfo=UTC))
        summary = badge_service.award_top_scorer(
            db_engine, config=config, now=now, target_date=date(2026, 3, 5), locks=locks
        )
        assert summary["winner"] == "u3"
        [award] = _awards(db_engine)
        assert award.award_date == date(2026, 3, 5)
