"""Create queue, extension and call tables.

Revision ID: V0001
Revises:
Create Date: 2026-03-02 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "V0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
DISPOSITIONS = ("ANSWERED", "NOANSWER", "BUSY", "ABANDONED", "FAILED", "MISSED")
EVENT_TYPES = (
    "call_start", "call_answer", "call_end", "queue_enter", "queue_leave", "agent_connect",
    "transfer", "hold_start", "hold_end", "recording_ready", "wrapup_start", "wrapup_end",
)


def _enum(values: Sequence[str], name: str, length: int) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=length)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _session_fk(ondelete: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        "call_session_id",
        sa.Uuid(),
        sa.ForeignKey("call_sessions.id", ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "telephony_queues",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("worktime_config", JSON_TYPE, nullable=True),
    )
    op.create_index("ix_telephony_queues_name", "telephony_queues", ["name"], unique=True)

    op.create_table(
        "telephony_extensions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("extension", sa.String(32), nullable=False),
        sa.Column("crm_user_id", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_operator", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_telephony_extensions_extension", "telephony_extensions", ["extension"], unique=True)
    op.create_index("ix_telephony_extensions_crm_user_id", "telephony_extensions", ["crm_user_id"])

    op.create_table(
        "call_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("linked_id", sa.String(255), nullable=False),
        sa.Column("unique_id", sa.String(255), nullable=True),
        sa.Column("direction", _enum(("IN", "OUT"), "call_direction", 8), nullable=False),
        sa.Column("caller_number", sa.String(64), nullable=False),
        sa.Column("callee_number", sa.String(64), nullable=True),
        sa.Column("did", sa.String(128), nullable=True),
        _timestamp("start_at"),
        _timestamp("answer_at", nullable=True),
        _timestamp("end_at", nullable=True),
        sa.Column("disposition", _enum(DISPOSITIONS, "call_disposition", 16), nullable=True),
        sa.Column("hangup_cause", sa.String(100), nullable=True),
        sa.Column(
            "queue_id",
            sa.Uuid(),
            sa.ForeignKey("telephony_queues.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_user_id", sa.String(64), nullable=True),
        sa.Column("assigned_extension", sa.String(32), nullable=True),
        sa.Column(
            "recording_status",
            _enum(("NONE", "AVAILABLE"), "recording_status", 16),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_call_sessions_linked_id", "call_sessions", ["linked_id"], unique=True)
    op.create_index("ix_call_sessions_caller_number", "call_sessions", ["caller_number"])
    op.create_index("ix_call_sessions_start_at", "call_sessions", ["start_at"])
    op.create_index("ix_call_sessions_disposition", "call_sessions", ["disposition"])
    op.create_index("ix_call_sessions_queue_id", "call_sessions", ["queue_id"])
    op.create_index("ix_call_sessions_assigned_user_id", "call_sessions", ["assigned_user_id"])

    op.create_table(
        "call_legs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _session_fk("CASCADE"),
        sa.Column("type", _enum(("CUSTOMER", "AGENT", "TRANSFER"), "call_leg_type", 16), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("extension", sa.String(32), nullable=True),
        _timestamp("start_at"),
        _timestamp("answer_at", nullable=True),
        _timestamp("end_at", nullable=True),
        sa.Column("disposition", _enum(DISPOSITIONS, "call_disposition", 16), nullable=True),
    )
    op.create_index("ix_call_legs_call_session_id", "call_legs", ["call_session_id"])

    op.create_table(
        "call_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _session_fk("SET NULL", nullable=True),
        sa.Column("event_type", _enum(EVENT_TYPES, "telephony_event_type", 32), nullable=False),
        _timestamp("ts"),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("idempotency_key", name="uq_call_events_idempotency_key"),
    )
    op.create_index("ix_call_events_call_session_id", "call_events", ["call_session_id"])
    op.create_index("ix_call_events_ts", "call_events", ["ts"])

    op.create_table(
        "call_metrics",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _session_fk("CASCADE"),
        sa.Column("wait_seconds", sa.Float(), nullable=False),
        sa.Column("ring_seconds", sa.Float(), nullable=False),
        sa.Column("talk_seconds", sa.Float(), nullable=False),
        sa.Column("hold_seconds", sa.Float(), nullable=False),
        sa.Column("wrapup_seconds", sa.Float(), nullable=False),
        sa.Column("transfers_count", sa.Integer(), nullable=False),
        sa.Column("first_response_seconds", sa.Float(), nullable=True),
        sa.Column("abandons_after_seconds", sa.Float(), nullable=True),
        sa.Column("is_sla_met", sa.Boolean(), nullable=True),
        sa.Column("sla_threshold_seconds", sa.Integer(), nullable=False),
        sa.UniqueConstraint("call_session_id", name="uq_call_metrics_call_session_id"),
    )

    op.create_table(
        "recordings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _session_fk("CASCADE"),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        _timestamp("available_at"),
    )
    op.create_index("ix_recordings_call_session_id", "recordings", ["call_session_id"])

    op.create_table(
        "quality_reviews",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _session_fk("CASCADE"),
        sa.Column("status", _enum(("PENDING", "DONE"), "quality_review_status", 16), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("summary", sa.String(4000), nullable=True),
        sa.Column("flags", JSON_TYPE, nullable=True),
        sa.Column("tags", JSON_TYPE, nullable=True),
        sa.Column("reviewer_user_id", sa.String(64), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("call_session_id", name="uq_quality_reviews_call_session_id"),
    )


def downgrade() -> None:
    op.drop_table("quality_reviews")
    op.drop_index("ix_recordings_call_session_id", table_name="recordings")
    op.drop_table("recordings")
    op.drop_table("call_metrics")
    op.drop_index("ix_call_events_ts", table_name="call_events")
    op.drop_index("ix_call_events_call_session_id", table_name="call_events")
    op.drop_table("call_events")
    op.drop_index("ix_call_legs_call_session_id", table_name="call_legs")
    op.drop_table("call_legs")
    for column in ("assigned_user_id", "queue_id", "disposition", "start_at", "caller_number", "linked_id"):
        op.drop_index(f"ix_call_sessions_{column}", table_name="call_sessions")
    op.drop_table("call_sessions")
    op.drop_index("ix_telephony_extensions_crm_user_id", table_name="telephony_extensions")
    op.drop_index("ix_telephony_extensions_extension", table_name="telephony_extensions")
    op.drop_table("telephony_extensions")
    op.drop_index("ix_telephony_queues_name", table_name="telephony_queues")
    op.drop_table("telephony_queues")
