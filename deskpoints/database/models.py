"""
deskpoints.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables owned by the scoring core:
- point_events        — The points ledger (append-oriented, supersession aware)
- event_receipts      — One row per client eventId (replay detection)
- user_badges         — Daily badge awards, one per user/badge/day
- badge_stats         — Per-user per-day behavioural counters
- streak_cursors      — Persisted "last actor" cursor for the consecutive-ticket badge
- broadcast_messages  — Team-wide banner (at most one active)
- notifications       — Per-user notifications (kudos)
- badge_notifications — Per-user badge toasts and perfect-day fan-out

Tables owned by the helpdesk application and only read here:
- tickets             — Ticket records (subject, priority, notes, ...)
- schedules           — Dated shift start per user
- default_schedules   — Weekday shift start per user
- user_settings       — User directory used for fan-out
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all deskpoints ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PointEventType(enum.StrEnum):
    """Every event type the ledger knows how to score."""
    TICKET_OPENED = "TICKET_OPENED"
    TICKET_CLOSED = "TICKET_CLOSED"
    TICKET_CLOSED_ASSIST = "TICKET_CLOSED_ASSIST"
    TICKET_REOPENED = "TICKET_REOPENED"
    TICKET_DELETED = "TICKET_DELETED"
    TICKET_LINKED = "TICKET_LINKED"
    TICKET_UNLINKED = "TICKET_UNLINKED"
    TICKET_FOLLOWUP_ADDED = "TICKET_FOLLOWUP_ADDED"
    ASSIGN_TO_SELF = "ASSIGN_TO_SELF"
    ACCEPT_ASSIGNMENT_QUICKLY = "ACCEPT_ASSIGNMENT_QUICKLY"
    SLOW_ACCEPTANCE = "SLOW_ACCEPTANCE"
    NOTE_ADDED = "NOTE_ADDED"
    NOTE_DELETED = "NOTE_DELETED"
    ATTACHMENT_ADDED = "ATTACHMENT_ADDED"
    ATTACHMENT_DELETED = "ATTACHMENT_DELETED"
    SCORE_ADJUSTED = "SCORE_ADJUSTED"
    SCHEDULE_ITEM_ADDED = "SCHEDULE_ITEM_ADDED"
    SCHEDULE_ITEM_DELETED = "SCHEDULE_ITEM_DELETED"
    MEETING_COLLABORATION = "MEETING_COLLABORATION"
    SHIFT_STARTED = "SHIFT_STARTED"
    MISSING_SHIFT_START = "MISSING_SHIFT_START"
    BREAK_EXCEEDED = "BREAK_EXCEEDED"
    BREAK_TIME_PENALTY = "BREAK_TIME_PENALTY"
    KUDOS_RECEIVED = "KUDOS_RECEIVED"
    KUDOS_REMOVED = "KUDOS_REMOVED"
    TAG_ADDED = "TAG_ADDED"
    KB_CREATED = "KB_CREATED"
    TRAINING_COMPLETED = "TRAINING_COMPLETED"
    PENALTY_RESTORED = "PENALTY_RESTORED"
    MILESTONE_BONUS = "MILESTONE_BONUS"
    PERFECT_DAY = "PERFECT_DAY"
    BADGE_EARNED = "BADGE_EARNED"


class BadgeId(enum.StrEnum):
    """The five daily badges."""
    SPEED_DEMON = "speed_demon"
    SNIPER = "sniper"
    CLIENT_HERO = "client_hero"
    LIGHTNING = "lightning"
    TURTLE = "turtle"


# ---------------------------------------------------------------------------
# PointEvent — the points ledger
# ---------------------------------------------------------------------------
class PointEvent(Base):
    __tablename__ = "point_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    related_ticket_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Supersession / compensation links
    superseded_by_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True
    )
    reverses_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True
    )
    parent_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        Index(
            "ix_point_events_idempotent",
            "idempotency_key",
            unique=True,
            postgresql_where=idempotency_key.isnot(None),
        ),
        Index("ix_point_events_user_time", "user_id", "created_at"),
        Index("ix_point_events_ticket_type", "related_ticket_id", "event_type"),
        Index("ix_point_events_type_time", "event_type", "created_at"),
    )

    @property
    def reason(self) -> str | None:
        return (self.details or {}).get("reason")

    def __repr__(self) -> str:
        return (
            f"<PointEvent id={self.id} user={self.user_id} "
            f"type={self.event_type} pts={self.points_awarded}>"
        )


# ---------------------------------------------------------------------------
# EventReceipt — one row per client eventId, scored or not
# ---------------------------------------------------------------------------
class EventReceipt(Base):
    __tablename__ = "event_receipts"

    event_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    ledger_event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @property
    def reason(self) -> str | None:
        return (self.details or {}).get("reason")

    def __repr__(self) -> str:
        return f"<EventReceipt {self.event_id} type={self.event_type} pts={self.points_awarded}>"


# ---------------------------------------------------------------------------
# BadgeAward — one row per (user, badge, business day)
# ---------------------------------------------------------------------------
class BadgeAward(Base):
    __tablename__ = "user_badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    badge_id: Mapped[str] = mapped_column(String(32), nullable=False)
    award_date: Mapped[date] = mapped_column(Date, nullable=False)
    achieved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    reset_period: Mapped[str] = mapped_column(String(16), default="daily")
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "badge_id", "award_date", name="uq_user_badges_user_badge_day"
        ),
        Index("ix_user_badges_day", "award_date"),
    )

    def __repr__(self) -> str:
        return f"<BadgeAward user={self.user_id} badge={self.badge_id} day={self.award_date}>"


# ---------------------------------------------------------------------------
# BadgeDailyStats — per-user per-day counters
# ---------------------------------------------------------------------------
class BadgeDailyStats(Base):
    __tablename__ = "badge_stats"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stat_date: Mapped[date] = mapped_column(Date, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    tickets_closed_fast: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_tickets: Mapped[int] = mapped_column(Integer, default=0)
    fast_responses: Mapped[int] = mapped_column(Integer, default=0)
    late_shift_starts: Mapped[int] = mapped_column(Integer, default=0)
    slow_responses: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<BadgeDailyStats user={self.user_id} day={self.stat_date}>"


# ---------------------------------------------------------------------------
# StreakCursor — who handled the most recent ticket, team-wide
# ---------------------------------------------------------------------------
class StreakCursor(Base):
    __tablename__ = "streak_cursors"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Broadcasts and notifications
# ---------------------------------------------------------------------------
class BroadcastMessage(Base):
    __tablename__ = "broadcast_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_broadcast_messages_active", "is_active"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_ticket_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    related_note_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user", "user_id", "is_read"),
    )


class BadgeNotification(Base):
    __tablename__ = "badge_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    badge_id: Mapped[str] = mapped_column(String(32), nullable=False)
    badge_name: Mapped[str] = mapped_column(String(100), nullable=False)
    badge_emoji: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_badge_notifications_user", "user_id", "is_read"),
    )


# ---------------------------------------------------------------------------
# Collaborator tables (written by the helpdesk application)
# ---------------------------------------------------------------------------
class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    priority: Mapped[str | None] = mapped_column(String(16), nullable=True)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="open")
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    assigned_to_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_to_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_by_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_reopened: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_tickets_created_at", "created_at"),
        Index("ix_tickets_completed", "completed_by_id", "completed_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} subject={self.subject!r}>"


class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    schedule_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    shift_start_time: Mapped[str] = mapped_column(String(8), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_schedules_user_date"),
    )


class DefaultSchedule(Base):
    __tablename__ = "default_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)  # ISO: Mon=1
    shift_start_time: Mapped[str] = mapped_column(String(8), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "day_of_week", name="uq_default_schedules_user_dow"),
    )


class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
