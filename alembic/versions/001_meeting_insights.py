"""Create meeting insight tables.

Revision ID: 001_meeting_insights
Revises:
Create Date: 2026-10-18

Creates four tables:
- meetings: Uploaded recordings and their lifecycle status
- analyses: One row per pipeline run (raw transcript checkpoint, analysis_json)
- transcript_segments: Derived rows projected from analysis_json
- action_items: Derived rows projected from analysis_json, plus manual items

No foreign key constraints (application-level referential integrity via
repository). analyses.meeting_id is indexed but not unique.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_meeting_insights"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── meetings table ───────────────────────────────────────────────────

    op.create_table(
        "meetings",
        _id_column(),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("audio_path", sa.String(1000), nullable=False),
        sa.Column("audio_size", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("language", sa.String(20), nullable=True),
        sa.Column(
            "status",
            sa.String(50),
            server_default=sa.text("'uploaded'"),
            nullable=False,
        ),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_meetings_owner_id", "meetings", ["owner_id"])

    # ── analyses table ───────────────────────────────────────────────────

    op.create_table(
        "analyses",
        _id_column(),
        sa.Column("meeting_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "status",
            sa.String(50),
            server_default=sa.text("'processing'"),
            nullable=False,
        ),
        sa.Column("model", sa.String(200), nullable=True),
        sa.Column("raw_transcript", sa.JSON(), nullable=True),
        sa.Column("analysis_json", sa.JSON(), nullable=True),
        sa.Column(
            "token_usage",
            sa.JSON(),
            server_default=sa.text("'{}'::json"),
            nullable=False,
        ),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(100), nullable=True),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_analyses_meeting_id", "analyses", ["meeting_id"])

    # ── transcript_segments table ────────────────────────────────────────

    op.create_table(
        "transcript_segments",
        _id_column(),
        sa.Column("analysis_id", UUID(as_uuid=True), nullable=False),
        sa.Column("speaker", sa.Text(), nullable=True),
        sa.Column("start_sec", sa.Float(), nullable=False),
        sa.Column("end_sec", sa.Float(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        _created_at_column(),
        sa.CheckConstraint("end_sec >= start_sec", name="ck_segment_end_after_start"),
    )
    op.create_index(
        "ix_transcript_segments_analysis_id", "transcript_segments", ["analysis_id"]
    )

    # ── action_items table ───────────────────────────────────────────────

    op.create_table(
        "action_items",
        _id_column(),
        sa.Column("analysis_id", UUID(as_uuid=True), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("owner", sa.Text(), nullable=True),
        sa.Column("due_date", sa.Text(), nullable=True),
        sa.Column(
            "priority",
            sa.String(20),
            server_default=sa.text("'medium'"),
            nullable=False,
        ),
        sa.Column("timestamp_sec", sa.Float(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column(
            "completed",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at_column(),
    )
    op.create_index("ix_action_items_analysis_id", "action_items", ["analysis_id"])


def downgrade() -> None:
    op.drop_index("ix_action_items_analysis_id", table_name="action_items")
    op.drop_table("action_items")
    op.drop_index("ix_transcript_segments_analysis_id", table_name="transcript_segments")
    op.drop_table("transcript_segments")
    op.drop_index("ix_analyses_meeting_id", table_name="analyses")
    op.drop_table("analyses")
    op.drop_index("ix_meetings_owner_id", table_name="meetings")
    op.drop_table("meetings")
