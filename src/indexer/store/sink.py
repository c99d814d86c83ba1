"""Commit sink -- the single writer of the indexer store.

commit() takes an unordered batch of processed values, groups them by kind
and applies them inside one transaction in a fixed order:

    room deletes -> room upserts -> participant deletes ->
    participant upserts -> metadata deletes -> metadata upserts

Every write is keyed by the entity's natural identity, so replaying a
batch is harmless. Before applying, the batch is collapsed:

- room delete vs upsert for the same room: the later checkpoint wins and a
  tie goes to the delete
- repeated participant or metadata records for one key: the last one wins
- room upserts never move checkpoint_sequence_number backwards, metadata
  upserts never move df_version backwards
- a room upsert also removes stored participants that left the room
- participant/metadata upserts for rooms that do not exist once the room
  stages are done are skipped (they would violate the foreign key)

The commit also moves this indexer's watermark up to the highest room
checkpoint in the batch, so deleting the highest room never lowers the
cursor. The sink owns the resumable cursor (latest_checkpoint / watermark)
and the dead-letter ledger of failed checkpoints.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import Table, and_, case, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.indexer.core.monitoring import rows_affected_total
from src.indexer.processing.schemas import (
    MetadataDelete,
    MetadataUpsert,
    ParticipantDelete,
    ParticipantRole,
    ParticipantUpsert,
    ProcessedValue,
    RoomDelete,
    RoomUpsert,
)
from src.indexer.store.models import (
    FailedCheckpointModel,
    IndexerWatermarkModel,
    MeetingRoomModel,
    RoomMetadataModel,
    RoomParticipantModel,
)

logger = structlog.get_logger(__name__)

_CHUNK_SIZE = 500

rooms: Table = MeetingRoomModel.__table__  # type: ignore[assignment]
participants: Table = RoomParticipantModel.__table__  # type: ignore[assignment]
metadata: Table = RoomMetadataModel.__table__  # type: ignore[assignment]
watermarks: Table = IndexerWatermarkModel.__table__  # type: ignore[assignment]
failures: Table = FailedCheckpointModel.__table__  # type: ignore[assignment]


def _chunks(items: Sequence[Any], size: int = _CHUNK_SIZE) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _rowcount(result: Any) -> int:
    count = getattr(result, "rowcount", 0)
    return count if count and count > 0 else 0


def _room_rank(value: RoomUpsert | RoomDelete) -> tuple[float, int]:
    checkpoint = value.checkpoint_sequence_number
    return (
        math.inf if checkpoint is None else checkpoint,
        1 if isinstance(value, RoomDelete) else 0,
    )


# ── Batch Grouping ──────────────────────────────────────────────────────────


@dataclass
class CommitBatch:
    """A batch of processed values grouped by kind and collapsed per key."""

    room_deletes: list[RoomDelete] = field(default_factory=list)
    room_upserts: list[RoomUpsert] = field(default_factory=list)
    participant_deletes: list[ParticipantDelete] = field(default_factory=list)
    participant_upserts: list[ParticipantUpsert] = field(default_factory=list)
    metadata_deletes: list[MetadataDelete] = field(default_factory=list)
    metadata_upserts: list[MetadataUpsert] = field(default_factory=list)

    @classmethod
    def group(cls, values: Iterable[ProcessedValue]) -> CommitBatch:
        room_state: dict[str, RoomUpsert | RoomDelete] = {}
        participant_state: dict[tuple[str, str], ParticipantUpsert | ParticipantDelete] = {}
        metadata_state: dict[str, MetadataUpsert] = {}
        metadata_deletes: dict[tuple[str | None, str | None], MetadataDelete] = {}

        for value in values:
            if isinstance(value, (RoomUpsert, RoomDelete)):
                current = room_state.get(value.room_id)
                if current is None or _room_rank(value) >= _room_rank(current):
                    room_state[value.room_id] = value
            elif isinstance(value, (ParticipantUpsert, ParticipantDelete)):
                participant_state[(value.room_id, value.participant_address)] = value
            elif isinstance(value, MetadataUpsert):
                current_md = metadata_state.get(value.room_id)
                if current_md is None or value.df_version >= current_md.df_version:
                    metadata_state[value.room_id] = value
            elif isinstance(value, MetadataDelete):
                metadata_deletes[(value.room_id, value.dynamic_field_id)] = value

        batch = cls()
        for room_value in room_state.values():
            if isinstance(room_value, RoomDelete):
                batch.room_deletes.append(room_value)
            else:
                batch.room_upserts.append(room_value)
        for participant_value in participant_state.values():
            if isinstance(participant_value, ParticipantDelete):
                batch.participant_deletes.append(participant_value)
            else:
                batch.participant_upserts.append(participant_value)
        batch.metadata_deletes = list(metadata_deletes.values())
        batch.metadata_upserts = list(metadata_state.values())
        return batch

    def __len__(self) -> int:
        return (
            len(self.room_deletes)
            + len(self.room_upserts)
            + len(self.participant_deletes)
            + len(self.participant_upserts)
            + len(self.metadata_deletes)
            + len(self.metadata_upserts)
        )


# ── Commit Sink ─────────────────────────────────────────────────────────────


class CommitSink:
    """Applies processed values to the store and tracks indexing progress.

    Args:
        engine: Async engine for the store (PostgreSQL or SQLite).
        indexer_name: Key of this indexer's watermark row.
    """

    def __init__(self, engine: AsyncEngine, indexer_name: str = "suimeet") -> None:
        self._engine = engine
        self._indexer_name = indexer_name
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def _insert(self, table: Table) -> Any:
        """Dialect insert construct that supports ON CONFLICT DO UPDATE."""
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise ValueError(f"unsupported database backend: {dialect}")

    # ── Commit ───────────────────────────────────────────────────────────

    async def commit(self, values: Iterable[ProcessedValue]) -> int:
        """Apply a batch of processed values in the fixed cross-entity order.

        Returns:
            Number of rows affected (for observability only).
        """
        values = list(values)
        batch = CommitBatch.group(values)
        if not len(batch):
            return 0
        top = max(
            (
                v.checkpoint_sequence_number
                for v in values
                if isinstance(v, (RoomUpsert, RoomDelete))
                and v.checkpoint_sequence_number is not None
            ),
            default=None,
        )

        async with self._sessions() as session, session.begin():
            affected = await self._delete_rooms(session, batch.room_deletes)
            affected += await self._upsert_rooms(session, batch.room_upserts)
            affected += await self._delete_participants(
                session, batch.participant_deletes, batch.room_upserts
            )

            live_rooms = await self._existing_rooms(
                session,
                {p.room_id for p in batch.participant_upserts}
                | {m.room_id for m in batch.metadata_upserts},
            )
            participant_rows = [p for p in batch.participant_upserts if p.room_id in live_rooms]
            metadata_rows = [m for m in batch.metadata_upserts if m.room_id in live_rooms]
            skipped = (
                len(batch.participant_upserts) - len(participant_rows)
                + len(batch.metadata_upserts) - len(metadata_rows)
            )
            if skipped:
                logger.debug("orphan_values_skipped", count=skipped)

            affected += await self._upsert_participants(session, participant_rows)
            affected += await self._delete_metadata(session, batch.metadata_deletes)
            affected += await self._upsert_metadata(session, metadata_rows)
            if top is not None:
                await session.execute(self._watermark_stmt(top))

        rows_affected_total.inc(affected)
        return affected

    async def _delete_rooms(self, session: AsyncSession, values: list[RoomDelete]) -> int:
        affected = 0
        for chunk in _chunks([v.room_id for v in values]):
            result = await session.execute(delete(rooms).where(rooms.c.room_id.in_(chunk)))
            affected += _rowcount(result)
        return affected

    async def _upsert_rooms(self, session: AsyncSession, values: list[RoomUpsert]) -> int:
        affected = 0
        for chunk in _chunks(values):
            stmt = self._insert(rooms).values(
                [
                    {
                        "room_id": v.room_id,
                        "title": v.title,
                        "hosts": list(v.hosts),
                        "status": v.status.value,
                        "max_participants": v.max_participants,
                        "require_approval": v.require_approval,
                        "participant_count": v.participant_count,
                        "seal_policy_id": v.seal_policy_id,
                        "created_at": v.created_at,
                        "started_at": v.started_at,
                        "ended_at": v.ended_at,
                        "checkpoint_sequence_number": v.checkpoint_sequence_number,
                        "transaction_digest": v.transaction_digest,
                    }
                    for v in chunk
                ]
            )
            excluded = stmt.excluded
            stmt = stmt.on_conflict_do_update(
                index_elements=[rooms.c.room_id],
                set_={
                    "title": excluded.title,
                    "hosts": excluded.hosts,
                    "status": excluded.status,
                    "max_participants": excluded.max_participants,
                    "require_approval": excluded.require_approval,
                    "participant_count": excluded.participant_count,
                    "seal_policy_id": excluded.seal_policy_id,
                    "started_at": excluded.started_at,
                    "ended_at": excluded.ended_at,
                    "checkpoint_sequence_number": excluded.checkpoint_sequence_number,
                    "transaction_digest": excluded.transaction_digest,
                },
                where=rooms.c.checkpoint_sequence_number <= excluded.checkpoint_sequence_number,
            )
            affected += _rowcount(await session.execute(stmt))
        return affected

    async def _delete_participants(
        self,
        session: AsyncSession,
        values: list[ParticipantDelete],
        room_upserts: list[RoomUpsert],
    ) -> int:
        """Explicit participant deletes, then members that left upserted rooms."""
        affected = 0

        by_room: dict[str, list[str]] = {}
        for value in values:
            by_room.setdefault(value.room_id, []).append(value.participant_address)
        for room_id, addresses in by_room.items():
            for chunk in _chunks(addresses):
                result = await session.execute(
                    delete(participants).where(
                        participants.c.room_id == room_id,
                        participants.c.participant_address.in_(chunk),
                    )
                )
                affected += _rowcount(result)

        for room in room_upserts:
            members = room.member_addresses
            condition = participants.c.room_id == room.room_id
            if members:
                condition = and_(condition, participants.c.participant_address.not_in(members))
            affected += _rowcount(await session.execute(delete(participants).where(condition)))

        return affected

    async def _existing_rooms(self, session: AsyncSession, room_ids: set[str]) -> set[str]:
        found: set[str] = set()
        for chunk in _chunks(sorted(room_ids)):
            result = await session.execute(
                select(rooms.c.room_id).where(rooms.c.room_id.in_(chunk))
            )
            found.update(result.scalars())
        return found

    async def _upsert_participants(
        self, session: AsyncSession, values: list[ParticipantUpsert]
    ) -> int:
        affected = 0
        for chunk in _chunks(values):
            stmt = self._insert(participants).values(
                [
                    {
                        "room_id": v.room_id,
                        "participant_address": v.participant_address,
                        "role": v.role.value,
                        "admin_cap_id": v.admin_cap_id,
                    }
                    for v in chunk
                ]
            )
            excluded = stmt.excluded
            # A host keeps a previously seen cap id until a new one is observed
            stmt = stmt.on_conflict_do_update(
                index_elements=[participants.c.room_id, participants.c.participant_address],
                set_={
                    "role": excluded.role,
                    "admin_cap_id": case(
                        (
                            excluded.role == ParticipantRole.HOST.value,
                            func.coalesce(excluded.admin_cap_id, participants.c.admin_cap_id),
                        ),
                        else_=None,
                    ),
                },
            )
            affected += _rowcount(await session.execute(stmt))
        return affected

    async def _delete_metadata(self, session: AsyncSession, values: list[MetadataDelete]) -> int:
        room_ids = [v.room_id for v in values if v.room_id is not None]
        field_ids = [v.dynamic_field_id for v in values if v.dynamic_field_id is not None]
        affected = 0
        for chunk in _chunks(room_ids):
            result = await session.execute(delete(metadata).where(metadata.c.room_id.in_(chunk)))
            affected += _rowcount(result)
        for chunk in _chunks(field_ids):
            result = await session.execute(
                delete(metadata).where(metadata.c.dynamic_field_id.in_(chunk))
            )
            affected += _rowcount(result)
        return affected

    async def _upsert_metadata(self, session: AsyncSession, values: list[MetadataUpsert]) -> int:
        affected = 0
        for chunk in _chunks(values):
            stmt = self._insert(metadata).values(
                [
                    {
                        "room_id": v.room_id,
                        "dynamic_field_id": v.dynamic_field_id,
                        "df_version": v.df_version,
                        "language": v.language,
                        "timezone": v.timezone,
                        "recording_blob_id": v.recording_blob_id,
                    }
                    for v in chunk
                ]
            )
            excluded = stmt.excluded
            stmt = stmt.on_conflict_do_update(
                index_elements=[metadata.c.room_id],
                set_={
                    "dynamic_field_id": excluded.dynamic_field_id,
                    "df_version": excluded.df_version,
                    "language": excluded.language,
                    "timezone": excluded.timezone,
                    "recording_blob_id": excluded.recording_blob_id,
                },
                where=metadata.c.df_version <= excluded.df_version,
            )
            affected += _rowcount(await session.execute(stmt))
        return affected

    # ── Cursor ───────────────────────────────────────────────────────────

    async def latest_checkpoint(self) -> int:
        """Resumable cursor: highest of the watermark and any room's checkpoint.

        Returns 0 for an empty store.
        """
        async with self._sessions() as session:
            room_max = await session.scalar(
                select(func.max(rooms.c.checkpoint_sequence_number))
            )
            watermark = await session.scalar(
                select(watermarks.c.checkpoint_sequence_number).where(
                    watermarks.c.name == self._indexer_name
                )
            )
        return max(room_max or 0, watermark or 0)

    def _watermark_stmt(self, checkpoint: int) -> Any:
        stmt = self._insert(watermarks).values(
            name=self._indexer_name,
            checkpoint_sequence_number=checkpoint,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[watermarks.c.name],
            set_={
                "checkpoint_sequence_number": case(
                    (
                        excluded.checkpoint_sequence_number
                        > watermarks.c.checkpoint_sequence_number,
                        excluded.checkpoint_sequence_number,
                    ),
                    else_=watermarks.c.checkpoint_sequence_number,
                ),
                "updated_at": func.now(),
            },
        )
        return stmt

    async def advance_watermark(self, checkpoint: int) -> None:
        """Move the watermark forward to ``checkpoint``; never moves it back."""
        async with self._sessions() as session, session.begin():
            await session.execute(self._watermark_stmt(checkpoint))

    # ── Dead-Letter Ledger ───────────────────────────────────────────────

    async def record_failures(self, errors: Mapping[int, str]) -> None:
        """Record failed checkpoints, bumping the attempt count of known ones."""
        if not errors:
            return
        stmt = self._insert(failures).values(
            [
                {
                    "checkpoint_sequence_number": checkpoint,
                    "attempts": 1,
                    "last_error": error[:2000],
                }
                for checkpoint, error in sorted(errors.items())
            ]
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[failures.c.checkpoint_sequence_number],
            set_={
                "attempts": failures.c.attempts + 1,
                "last_error": excluded.last_error,
                "last_failed_at": func.now(),
            },
        )
        async with self._sessions() as session, session.begin():
            await session.execute(stmt)
        logger.warning("checkpoints_dead_lettered", checkpoints=sorted(errors))

    async def pending_failures(self, max_attempts: int, limit: int) -> list[int]:
        """Failed checkpoints still eligible for a retry, oldest first."""
        async with self._sessions() as session:
            result = await session.execute(
                select(failures.c.checkpoint_sequence_number)
                .where(failures.c.attempts < max_attempts)
                .order_by(failures.c.checkpoint_sequence_number)
                .limit(limit)
            )
            return list(result.scalars())

    async def count_pending_failures(self, max_attempts: int) -> int:
        async with self._sessions() as session:
            count = await session.scalar(
                select(func.count()).select_from(failures).where(
                    failures.c.attempts < max_attempts
                )
            )
        return count or 0

    async def resolve_failures(self, checkpoints: Iterable[int]) -> int:
        """Drop checkpoints that were retried successfully from the ledger."""
        resolved = sorted(set(checkpoints))
        if not resolved:
            return 0
        affected = 0
        async with self._sessions() as session, session.begin():
            for chunk in _chunks(resolved):
                result = await session.execute(
                    delete(failures).where(failures.c.checkpoint_sequence_number.in_(chunk))
                )
                affected += _rowcount(result)
        return affected

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        await self._engine.dispose()
        logger.info("store_closed")
