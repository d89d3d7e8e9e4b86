"""Create missed call and callback request tables.

Revision ID: V0002
Revises: V0001
Create Date: 2026-03-02 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "V0002"
down_revision: Union[str, None] = "V0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "missed_calls",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "call_session_id",
            sa.Uuid(),
            sa.ForeignKey("call_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "reason",
            sa.Enum("ABANDONED", "OUT_OF_HOURS", "NO_ANSWER", name="missed_call_reason", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("NEW", "HANDLED", name="missed_call_status", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("queue_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("caller_number", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("call_session_id", name="uq_missed_calls_call_session_id"),
    )
    op.create_index("ix_missed_calls_queue_id", "missed_calls", ["queue_id"])

    op.create_table(
        "callback_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "missed_call_id",
            sa.Uuid(),
            sa.ForeignKey("missed_calls.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "SCHEDULED", "ATTEMPTING", "DONE",
                name="callback_status", native_enum=False, length=16,
            ),
            nullable=False,
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts_count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("missed_call_id", name="uq_callback_requests_missed_call_id"),
    )
    op.create_index("ix_callback_requests_status", "callback_requests", ["status"])


def downgrade() -> None:
    op.drop_index("ix_callback_requests_status", table_name="callback_requests")
    op.drop_table("callback_requests")
    op.drop_index("ix_missed_calls_queue_id", table_name="missed_calls")
    op.drop_table("missed_calls")
