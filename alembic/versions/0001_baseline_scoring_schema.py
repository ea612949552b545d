"""Baseline scoring schema: ledger, badges, stats, notifications

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_baseline"
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text("now()")


def upgrade() -> None:
    op.create_table(
        "point_events",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("related_ticket_id", sa.BigInteger(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column(
            "superseded_by_id", sa.Integer(),
            sa.ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column(
            "reverses_id", sa.Integer(),
            sa.ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column(
            "parent_id", sa.Integer(),
            sa.ForeignKey("point_events.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("idempotency_key", sa.String(200), nullable=True),
    )
    op.create_index(
        "ix_point_events_idempotent", "point_events", ["idempotency_key"],
        unique=True, postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )
    op.create_index("ix_point_events_user_time", "point_events", ["user_id", "created_at"])
    op.create_index(
        "ix_point_events_ticket_type", "point_events", ["related_ticket_id", "event_type"]
    )
    op.create_index("ix_point_events_type_time", "point_events", ["event_type", "created_at"])

    op.create_table(
        "user_badges",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("badge_id", sa.String(32), nullable=False),
        sa.Column("award_date", sa.Date(), nullable=False),
        sa.Column("achieved_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("reset_period", sa.String(16), server_default="daily"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.UniqueConstraint(
            "user_id", "badge_id", "award_date", name="uq_user_badges_user_badge_day"
        ),
    )
    op.create_index("ix_user_badges_day", "user_badges", ["award_date"])

    op.create_table(
        "badge_stats",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("stat_date", sa.Date(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("tickets_closed_fast", sa.Integer(), server_default="0"),
        sa.Column("consecutive_tickets", sa.Integer(), server_default="0"),
        sa.Column("fast_responses", sa.Integer(), server_default="0"),
        sa.Column("late_shift_starts", sa.Integer(), server_default="0"),
        sa.Column("slow_responses", sa.Integer(), server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )

    op.create_table(
        "streak_cursors",
        sa.Column("name", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("count", sa.Integer(), server_default="0"),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )

    op.create_table(
        "broadcast_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_broadcast_messages_active", "broadcast_messages", ["is_active"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_ticket_id", sa.BigInteger(), nullable=True),
        sa.Column("related_note_id", sa.String(64), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_notifications_user", "notifications", ["user_id", "is_read"])

    op.create_table(
        "badge_notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("badge_id", sa.String(32), nullable=False),
        sa.Column("badge_name", sa.String(100), nullable=False),
        sa.Column("badge_emoji", sa.String(16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index(
        "ix_badge_notifications_user", "badge_notifications", ["user_id", "is_read"]
    )

    # Helpdesk-owned tables: created here only for fresh installs.
    op.create_table(
        "tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("subject", sa.Text(), nullable=False, server_default=""),
        sa.Column("priority", sa.String(16), nullable=True),
        sa.Column("source", sa.String(64), nullable=True),
        sa.Column("status", sa.String(32), server_default="open"),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_by_name", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("assigned_to_id", sa.String(64), nullable=True),
        sa.Column("assigned_to_name", sa.String(100), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by_id", sa.String(64), nullable=True),
        sa.Column("completed_by_name", sa.String(100), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_reopened", sa.Boolean(), server_default=sa.false()),
        sa.Column("notes", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"])
    op.create_index("ix_tickets_completed", "tickets", ["completed_by_id", "completed_at"])

    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("shift_start_time", sa.String(8), nullable=False),
        sa.UniqueConstraint("user_id", "date", name="uq_schedules_user_date"),
    )

    op.create_table(
        "default_schedules",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("shift_start_time", sa.String(8), nullable=False),
        sa.UniqueConstraint(
            "user_id", "day_of_week", name="uq_default_schedules_user_dow"
        ),
    )

    op.create_table(
        "user_settings",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
    )


def downgrade() -> None:
    for table in (
        "user_settings",
        "default_schedules",
        "schedules",
        "tickets",
        "badge_notifications",
        "notifications",
        "broadcast_messages",
        "streak_cursors",
        "badge_stats",
        "user_badges",
        "point_events",
    ):
        op.drop_table(table)
