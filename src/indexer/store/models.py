"""Projection models for rooms, participants, and metadata.

Five SQLAlchemy models on IndexerBase:
- MeetingRoomModel: One row per MeetingRoom object
- RoomParticipantModel: Derived (room, address) membership rows
- RoomMetadataModel: At most one metadata row per room
- IndexerWatermarkModel: Explicit resumable cursor, one row per indexer
- FailedCheckpointModel: Dead-letter ledger of checkpoints that failed

Participants and metadata reference meeting_room with ON DELETE CASCADE,
so deleting a room removes everything attached to it. Hosts are a text[]
column on PostgreSQL and JSON on SQLite.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from src.indexer.core.database import IndexerBase

ADDRESS = String(66)

AddressList = ARRAY(ADDRESS).with_variant(JSON(), "sqlite")


class MeetingRoomModel(IndexerBase):
    """A MeetingRoom object as last observed on chain.

    Timestamps are Move u64 milliseconds; started_at/ended_at stay NULL
    until the room reaches that stage.
    """

    __tablename__ = "meeting_room"

    room_id: Mapped[str] = mapped_column(ADDRESS, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    hosts: Mapped[list[str]] = mapped_column(AddressList, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="scheduled",
        server_default=text("'scheduled'"),
    )
    max_participants: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seal_policy_id: Mapped[str] = mapped_column(ADDRESS, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    started_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    ended_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    checkpoint_sequence_number: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True
    )
    transaction_digest: Mapped[str] = mapped_column(String(64), nullable=False)


class RoomParticipantModel(IndexerBase):
    """Membership row derived from a room's host and participant sets."""

    __tablename__ = "room_participant"

    room_id: Mapped[str] = mapped_column(
        ADDRESS,
        ForeignKey("meeting_room.room_id", ondelete="CASCADE"),
        primary_key=True,
    )
    participant_address: Mapped[str] = mapped_column(ADDRESS, primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    admin_cap_id: Mapped[str | None] = mapped_column(ADDRESS, nullable=True)


class RoomMetadataModel(IndexerBase):
    """MeetingMetadata dynamic field attached to a room.

    recording_blob_id is a u256 kept as decimal text to avoid precision loss.
    """

    __tablename__ = "room_metadata"

    room_id: Mapped[str] = mapped_column(
        ADDRESS,
        ForeignKey("meeting_room.room_id", ondelete="CASCADE"),
        primary_key=True,
    )
    dynamic_field_id: Mapped[str] = mapped_column(ADDRESS, nullable=False, index=True)
    df_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    language: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default="")
    recording_blob_id: Mapped[str | None] = mapped_column(String(80), nullable=True)


class IndexerWatermarkModel(IndexerBase):
    """Highest checkpoint fully processed by a named indexer."""

    __tablename__ = "indexer_watermark"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    checkpoint_sequence_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class FailedCheckpointModel(IndexerBase):
    """Checkpoint whose processing failed and awaits a retry."""

    __tablename__ = "failed_checkpoint"

    checkpoint_sequence_number: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_error: Mapped[str] = mapped_column(Text, nullable=False, default="")
    first_failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
