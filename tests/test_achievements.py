"""
tests/test_achievements.py — Badge Criteria Tests
==================================================
Pure counting rules behind the daily badges.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

from deskpoints.database.models import BadgeId
from deskpoints.engine import achievements as ach
from deskpoints.engine.achievements import StreakState, TicketSnapshot

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=UTC)
TODAY = date(2026, 3, 11)


def _ticket(ticket_id=1, **kw) -> TicketSnapshot:
    kw.setdefault("created_by", "creator")
    kw.setdefault("created_at", NOW - timedelta(hours=2))
    return TicketSnapshot(id=ticket_id, **kw)


def _note(user_id, at=None, **kw):
    note = {"user_id": user_id, "text": "looking into it", **kw}
    if at is not None:
        note["timestamp"] = at.isoformat()
    return note


class TestRegistry:
    def test_five_badges_one_negative(self):
        assert len(ach.BADGES) == 5
        assert [b.id for b in ach.BADGES.values() if not b.positive] == [BadgeId.TURTLE]

    def test_emoji(self):
        assert ach.BADGES[BadgeId.SPEED_DEMON].emoji == "🏆"
        assert ach.BADGES[BadgeId.TURTLE].emoji == "🐢"


class TestReferenceTime:
    def test_creator_uses_creation(self):
        ticket = _ticket(assigned_at=NOW)
        assert ach.reference_time(ticket, "creator") == NOW - timedelta(hours=2)

    def test_others_use_assignment(self):
        ticket = _ticket(assigned_at=NOW - timedelta(minutes=5))
        assert ach.reference_time(ticket, "agent") == NOW - timedelta(minutes=5)

    def test_unassigned_has_no_reference(self):
        assert ach.reference_time(_ticket(), "agent") is None


class TestFastClosures:
    def test_thirty_minutes_inclusive(self):
        picked = NOW - timedelta(hours=1)
        on_edge = _ticket(1, assigned_at=picked, completed_at=picked + timedelta(minutes=30))
        too_slow = _ticket(2, assigned_at=picked, completed_at=picked + timedelta(minutes=31))
        assert ach.count_fast_closures([on_edge, too_slow], "agent") == 1

    def test_creator_measured_from_creation(self):
        ticket = _ticket(
            created_by="agent",
            created_at=NOW - timedelta(minutes=20),
            completed_at=NOW,
        )
        assert ach.count_fast_closures([ticket], "agent") == 1


class TestLightning:
    def _email_ticket(self, **kw):
        picked = NOW - timedelta(hours=1)
        kw.setdefault("source", "Outlook Inbox")
        kw.setdefault("assigned_at", picked)
        kw.setdefault("completed_at", picked + timedelta(minutes=90))
        kw.setdefault("notes", (_note("agent", picked + timedelta(minutes=10)),))
        return _ticket(**kw)

    def test_qualifies(self):
        assert ach.qualifies_for_lightning(self._email_ticket(), "agent", "outlook")

    def test_wrong_source(self):
        ticket = self._email_ticket(source="phone")
        assert not ach.qualifies_for_lightning(ticket, "agent", "outlook")

    def test_slow_first_note(self):
        picked = NOW - timedelta(hours=1)
        ticket = self._email_ticket(notes=(_note("agent", picked + timedelta(minutes=16)),))
        assert not ach.qualifies_for_lightning(ticket, "agent", "outlook")

    def test_slow_closure(self):
        picked = NOW - timedelta(hours=3)
        ticket = self._email_ticket(
            assigned_at=picked,
            completed_at=picked + timedelta(minutes=121),
            notes=(_note("agent", picked + timedelta(minutes=5)),),
        )
        assert not ach.qualifies_for_lightning(ticket, "agent", "outlook")

    def test_someone_elses_note_does_not_count(self):
        ticket = self._email_ticket(notes=(_note("other", NOW - timedelta(minutes=55)),))
        assert not ach.qualifies_for_lightning(ticket, "agent", "outlook")


class TestSlowFirstResponse:
    def test_first_note_after_thirty_minutes(self):
        ticket = _ticket(
            assigned_at=NOW - timedelta(minutes=45),
            notes=(_note("agent", NOW),),
        )
        assert ach.is_slow_first_response(ticket, "agent", NOW)

    def test_only_first_note_counts(self):
        ticket = _ticket(
            assigned_at=NOW - timedelta(minutes=45),
            notes=(_note("agent", NOW - timedelta(minutes=40)), _note("agent", NOW)),
        )
        assert not ach.is_slow_first_response(ticket, "agent", NOW)

    def test_undated_note_uses_fallback(self):
        ticket = _ticket(assigned_at=NOW - timedelta(minutes=20), notes=(_note("agent"),))
        assert not ach.is_slow_first_response(ticket, "agent", NOW)
        assert ach.is_slow_first_response(ticket, "agent", NOW + timedelta(minutes=15))


class TestNotesOnDay:
    def test_counts_today_and_undated(self):
        start, end = NOW - timedelta(hours=12), NOW + timedelta(hours=12)
        ticket = _ticket(notes=(
            _note("agent", NOW - timedelta(days=1)),
            _note("agent", NOW - timedelta(minutes=1)),
            _note("agent"),
            _note("other", NOW),
        ))
        assert ach.count_notes_on_day(ticket, "agent", start, end) == 2

    def test_created_at_key_accepted(self):
        ticket = _ticket(notes=({"user_id": "agent", "created_at": "2026-03-11T09:59:00Z"},))
        assert ach.first_note_time(ticket, "agent") == NOW - timedelta(minutes=1)


class TestStreak:
    def test_same_user_same_day_extends(self):
        state = StreakState("u1", "Ann", 3, TODAY)
        assert ach.advance_streak(state, "u1", "Ann", TODAY).count == 4

    def test_other_user_resets(self):
        state = StreakState("u1", "Ann", 3, TODAY)
        nxt = ach.advance_streak(state, "u2", "Bob", TODAY)
        assert (nxt.user_id, nxt.count) == ("u2", 1)

    def test_new_day_resets(self):
        state = StreakState("u1", "Ann", 3, TODAY - timedelta(days=1))
        assert ach.advance_streak(state, "u1", "Ann", TODAY).count == 1

    def test_first_ever(self):
        assert ach.advance_streak(None, "u1", "Ann", TODAY).count == 1


class TestPerfectDay:
    def test_all_positive(self):
        assert ach.is_perfect_day(ach.POSITIVE_BADGES)

    def test_turtle_spoils_it(self):
        assert not ach.is_perfect_day(set(ach.POSITIVE_BADGES) | {BadgeId.TURTLE})

    def test_missing_one(self):
        held = set(ach.POSITIVE_BADGES) - {BadgeId.CLIENT_HERO}
        assert not ach.is_perfect_day(held)

    def test_plain_strings(self):
        assert ach.is_perfect_day(["speed_demon", "sniper", "client_hero", "lightning"])
