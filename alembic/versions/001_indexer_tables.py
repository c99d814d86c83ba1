"""Indexer tables: rooms, participants, metadata, watermark, dead letters.

Revision ID: 001_indexer_tables
Revises:
Create Date: 2026-10-18

room_participant and room_metadata reference meeting_room with
ON DELETE CASCADE, so deleting a room clears its dependants.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY

# revision identifiers, used by Alembic.
revision: str = "001_indexer_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── meeting_room ─────────────────────────────────────────────────────

    op.create_table(
        "meeting_room",
        sa.Column("room_id", sa.String(66), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column(
            "hosts",
            ARRAY(sa.String(66)).with_variant(sa.JSON(), "sqlite"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.String(20),
            server_default=sa.text("'scheduled'"),
            nullable=False,
        ),
        sa.Column("max_participants", sa.BigInteger(), nullable=False),
        sa.Column("require_approval", sa.Boolean(), nullable=False),
        sa.Column("participant_count", sa.Integer(), nullable=False),
        sa.Column("seal_policy_id", sa.String(66), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("started_at", sa.BigInteger(), nullable=True),
        sa.Column("ended_at", sa.BigInteger(), nullable=True),
        sa.Column("checkpoint_sequence_number", sa.BigInteger(), nullable=False),
        sa.Column("transaction_digest", sa.String(64), nullable=False),
    )
    op.create_index(
        "ix_meeting_room_checkpoint_sequence_number",
        "meeting_room",
        ["checkpoint_sequence_number"],
    )

    # ── room_participant ─────────────────────────────────────────────────

    op.create_table(
        "room_participant",
        sa.Column(
            "room_id",
            sa.String(66),
            sa.ForeignKey("meeting_room.room_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("participant_address", sa.String(66), primary_key=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("admin_cap_id", sa.String(66), nullable=True),
    )

    # ── room_metadata ────────────────────────────────────────────────────

    op.create_table(
        "room_metadata",
        sa.Column(
            "room_id",
            sa.String(66),
            sa.ForeignKey("meeting_room.room_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("dynamic_field_id", sa.String(66), nullable=False),
        sa.Column("df_version", sa.BigInteger(), nullable=False),
        sa.Column("language", sa.Text(), nullable=False),
        sa.Column("timezone", sa.Text(), nullable=False),
        sa.Column("recording_blob_id", sa.String(80), nullable=True),
    )
    op.create_index(
        "ix_room_metadata_dynamic_field_id",
        "room_metadata",
        ["dynamic_field_id"],
    )

    # ── indexer_watermark ────────────────────────────────────────────────

    op.create_table(
        "indexer_watermark",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("checkpoint_sequence_number", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── failed_checkpoint ────────────────────────────────────────────────

    op.create_table(
        "failed_checkpoint",
        sa.Column("checkpoint_sequence_number", sa.BigInteger(), primary_key=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=False),
        sa.Column("first_failed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_failed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("failed_checkpoint")
    op.drop_table("indexer_watermark")
    op.drop_index("ix_room_metadata_dynamic_field_id", table_name="room_metadata")
    op.drop_table("room_metadata")
    op.drop_table("room_participant")
    op.drop_index("ix_meeting_room_checkpoint_sequence_number", table_name="meeting_room")
    op.drop_table("meeting_room")
