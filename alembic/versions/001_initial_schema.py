"""Initial schema - users, focus sessions, participants, violations, stats credits

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("total_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("violations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sessions_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # Focus sessions
    op.create_table(
        "focus_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("room_code", sa.String(6), nullable=False),
        sa.Column("host_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("outcome", sa.String(20), nullable=True),
        sa.Column("fail_reason", sa.String(255), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("violation_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_focus_sessions"),
        sa.ForeignKeyConstraint(["host_id"], ["users.id"], name="fk_focus_sessions_host_id_users", ondelete="CASCADE"),
    )
    op.create_index("ix_focus_sessions_room_code", "focus_sessions", ["room_code"])
    op.create_index(
        "uq_focus_sessions_pending_room_code",
        "focus_sessions",
        ["room_code"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Session participants
    op.create_table(
        "session_participants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_session_participants"),
        sa.ForeignKeyConstraint(["session_id"], ["focus_sessions.id"], name="fk_session_participants_session_id_focus_sessions", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_session_participants_user_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_participants_pair"),
    )
    op.create_index("ix_session_participants_session_id", "session_participants", ["session_id"])
    op.create_index("ix_session_participants_user_id", "session_participants", ["user_id"])

    # Violations
    op.create_table(
        "violations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_violations"),
        sa.ForeignKeyConstraint(["session_id"], ["focus_sessions.id"], name="fk_violations_session_id_focus_sessions", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_violations_user_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("session_id", "seq", name="uq_violations_session_seq"),
    )
    op.create_index("ix_violations_user_id", "violations", ["user_id"])

    # Stats credits
    op.create_table(
        "stats_credits",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("violations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_stats_credits"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_stats_credits_user_id_users", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_id"], ["focus_sessions.id"], name="fk_stats_credits_session_id_focus_sessions", ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "session_id", name="uq_stats_credits_pair"),
    )
    op.create_index("ix_stats_credits_user_id", "stats_credits", ["user_id"])


def downgrade() -> None:
    op.drop_table("stats_credits")
    op.drop_table("violations")
    op.drop_table("session_participants")
    op.drop_table("focus_sessions")
    op.drop_table("users")
