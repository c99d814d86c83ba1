"""Tests for CommitSink against a SQLite store.

Covers idempotent upserts, cascade deletes, cross-entity commit ordering,
batch collapsing, participant reconciliation, the resumable cursor and the
dead-letter ledger.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine

from src.indexer.processing.schemas import (
    MetadataDelete,
    ParticipantDelete,
    ParticipantRole,
    RoomDelete,
)
from src.indexer.store.models import (
    FailedCheckpointModel,
    IndexerWatermarkModel,
    MeetingRoomModel,
    RoomMetadataModel,
    RoomParticipantModel,
)
from src.indexer.store.sink import CommitBatch, CommitSink
from tests.factories import addr, metadata_upsert, participant_upsert, room_upsert

A, B, C = addr(1), addr(2), addr(3)
ROOM = addr(10)


async def _rows(engine: AsyncEngine, model) -> list:
    async with engine.connect() as conn:
        result = await conn.execute(select(model.__table__))
        return list(result.mappings())


async def _count(engine: AsyncEngine, model) -> int:
    async with engine.connect() as conn:
        return await conn.scalar(select(func.count()).select_from(model.__table__))


# ── Batch Grouping ───────────────────────────────────────────────────────────


class TestCommitBatch:
    def test_groups_by_kind(self):
        batch = CommitBatch.group(
            [
                room_upsert(ROOM, 1),
                participant_upsert(ROOM, A),
                metadata_upsert(ROOM),
                RoomDelete(room_id=addr(11)),
            ]
        )
        assert len(batch.room_upserts) == 1
        assert len(batch.room_deletes) == 1
        assert len(batch.participant_upserts) == 1
        assert len(batch.metadata_upserts) == 1
        assert len(batch) == 4

    def test_delete_wins_tie_regardless_of_order(self):
        for values in (
            [room_upsert(ROOM, 5), RoomDelete(room_id=ROOM, checkpoint_sequence_number=5)],
            [RoomDelete(room_id=ROOM, checkpoint_sequence_number=5), room_upsert(ROOM, 5)],
        ):
            batch = CommitBatch.group(values)
            assert batch.room_upserts == []
            assert [d.room_id for d in batch.room_deletes] == [ROOM]

    def test_later_checkpoint_wins(self):
        batch = CommitBatch.group(
            [room_upsert(ROOM, 6), RoomDelete(room_id=ROOM, checkpoint_sequence_number=5)]
        )
        assert [u.checkpoint_sequence_number for u in batch.room_upserts] == [6]
        assert batch.room_deletes == []

    def test_last_participant_record_wins(self):
        batch = CommitBatch.group(
            [
                participant_upsert(ROOM, A),
                ParticipantDelete(room_id=ROOM, participant_address=A),
                participant_upsert(ROOM, B),
                participant_upsert(ROOM, B, ParticipantRole.HOST),
            ]
        )
        assert [d.participant_address for d in batch.participant_deletes] == [A]
        assert [(u.participant_address, u.role) for u in batch.participant_upserts] == [
            (B, ParticipantRole.HOST)
        ]

    def test_highest_metadata_version_kept(self):
        batch = CommitBatch.group([metadata_upsert(ROOM, 9), metadata_upsert(ROOM, 4)])
        assert [m.df_version for m in batch.metadata_upserts] == [9]


# ── Commit ───────────────────────────────────────────────────────────────────


class TestCommit:
    async def test_empty_batch(self, sink: CommitSink):
        assert await sink.commit([]) == 0

    async def test_upsert_is_idempotent(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit([room_upsert(ROOM, 5, title="first")])
        await sink.commit([room_upsert(ROOM, 5, title="second")])

        rows = await _rows(engine, MeetingRoomModel)
        assert len(rows) == 1
        assert rows[0]["title"] == "second"

    async def test_room_row_contents(self, sink: CommitSink, engine: AsyncEngine):
        affected = await sink.commit([room_upsert(ROOM, 5, hosts=[A], participants=[A, B, C])])

        row = (await _rows(engine, MeetingRoomModel))[0]
        assert affected >= 1
        assert row["hosts"] == [A]
        assert row["participant_count"] == 3
        assert row["status"] == "scheduled"
        assert row["checkpoint_sequence_number"] == 5
        assert row["transaction_digest"] == "digest-5"

    async def test_stale_room_upsert_ignored(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit([room_upsert(ROOM, 10, title="new")])
        await sink.commit([room_upsert(ROOM, 9, title="old")])

        rows = await _rows(engine, MeetingRoomModel)
        assert rows[0]["title"] == "new"
        assert rows[0]["checkpoint_sequence_number"] == 10

    async def test_room_delete_cascades(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit(
            [
                room_upsert(ROOM, 1, hosts=[A], participants=[A, B]),
                participant_upsert(ROOM, A, ParticipantRole.HOST),
                participant_upsert(ROOM, B),
                metadata_upsert(ROOM),
            ]
        )
        assert await _count(engine, RoomParticipantModel) == 2
        assert await _count(engine, RoomMetadataModel) == 1

        await sink.commit([RoomDelete(room_id=ROOM, checkpoint_sequence_number=2)])

        assert await _count(engine, MeetingRoomModel) == 0
        assert await _count(engine, RoomParticipantModel) == 0
        assert await _count(engine, RoomMetadataModel) == 0

    async def test_delete_applied_before_stale_participant(
        self, sink: CommitSink, engine: AsyncEngine
    ):
        await sink.commit([room_upsert(ROOM, 1), participant_upsert(ROOM, A)])

        await sink.commit([participant_upsert(ROOM, B), RoomDelete(room_id=ROOM)])

        assert await _count(engine, MeetingRoomModel) == 0
        assert await _count(engine, RoomParticipantModel) == 0

    async def test_orphan_values_skipped(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit([participant_upsert(addr(99), A), metadata_upsert(addr(99))])

        assert await _count(engine, RoomParticipantModel) == 0
        assert await _count(engine, RoomMetadataModel) == 0

    async def test_departed_members_removed(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit(
            [
                room_upsert(ROOM, 1, hosts=[A], participants=[A, B, C]),
                participant_upsert(ROOM, A, ParticipantRole.HOST),
                participant_upsert(ROOM, B),
                participant_upsert(ROOM, C),
            ]
        )

        await sink.commit(
            [
                room_upsert(ROOM, 2, hosts=[A], participants=[A, B]),
                participant_upsert(ROOM, A, ParticipantRole.HOST),
                participant_upsert(ROOM, B),
            ]
        )

        rows = await _rows(engine, RoomParticipantModel)
        assert {r["participant_address"] for r in rows} == {A, B}

    async def test_explicit_participant_delete(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit([room_upsert(ROOM, 1), participant_upsert(ROOM, A)])

        await sink.commit([ParticipantDelete(room_id=ROOM, participant_address=A)])

        assert await _count(engine, RoomParticipantModel) == 0

    async def test_host_keeps_known_cap(self, sink: CommitSink, engine: AsyncEngine):
        cap = addr(20)
        await sink.commit(
            [room_upsert(ROOM, 1), participant_upsert(ROOM, A, ParticipantRole.HOST, cap)]
        )
        await sink.commit(
            [room_upsert(ROOM, 2), participant_upsert(ROOM, A, ParticipantRole.HOST)]
        )

        rows = await _rows(engine, RoomParticipantModel)
        assert rows[0]["admin_cap_id"] == cap

    async def test_demoted_host_loses_cap(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit(
            [room_upsert(ROOM, 1), participant_upsert(ROOM, A, ParticipantRole.HOST, addr(20))]
        )
        await sink.commit([room_upsert(ROOM, 2, hosts=[B]), participant_upsert(ROOM, A)])

        rows = {r["participant_address"]: r for r in await _rows(engine, RoomParticipantModel)}
        assert rows[A]["role"] == "PARTICIPANT"
        assert rows[A]["admin_cap_id"] is None

    async def test_metadata_version_never_regresses(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit([room_upsert(ROOM, 1), metadata_upsert(ROOM, 8, language="fr")])
        await sink.commit([metadata_upsert(ROOM, 7, language="de")])

        rows = await _rows(engine, RoomMetadataModel)
        assert rows[0]["language"] == "fr"
        assert rows[0]["df_version"] == 8

    async def test_metadata_recording_blob_id_is_exact(
        self, sink: CommitSink, engine: AsyncEngine
    ):
        blob_id = str(2**256 - 1)
        await sink.commit([room_upsert(ROOM, 1), metadata_upsert(ROOM, recording_blob_id=blob_id)])

        rows = await _rows(engine, RoomMetadataModel)
        assert rows[0]["recording_blob_id"] == blob_id

    async def test_metadata_long_language_and_timezone(
        self, sink: CommitSink, engine: AsyncEngine
    ):
        language = "l" * 200
        timezone = "t" * 200
        await sink.commit(
            [room_upsert(ROOM, 1), metadata_upsert(ROOM, language=language, timezone=timezone)]
        )

        rows = await _rows(engine, RoomMetadataModel)
        assert rows[0]["language"] == language
        assert rows[0]["timezone"] == timezone

    async def test_metadata_delete_by_dynamic_field_id(
        self, sink: CommitSink, engine: AsyncEngine
    ):
        await sink.commit([room_upsert(ROOM, 1), metadata_upsert(ROOM)])

        await sink.commit([MetadataDelete(dynamic_field_id=addr(500))])

        assert await _count(engine, RoomMetadataModel) == 0
        assert await _count(engine, MeetingRoomModel) == 1


# ── Cursor ───────────────────────────────────────────────────────────────────


class TestCursor:
    async def test_empty_store(self, sink: CommitSink):
        assert await sink.latest_checkpoint() == 0

    async def test_max_room_checkpoint(self, sink: CommitSink):
        seen = []
        for index, checkpoint in enumerate([3, 7, 5]):
            await sink.commit([room_upsert(addr(100 + index), checkpoint)])
            seen.append(await sink.latest_checkpoint())

        assert seen == [3, 7, 7]

    async def test_watermark_never_moves_back(self, sink: CommitSink):
        await sink.advance_watermark(10)
        await sink.advance_watermark(4)

        assert await sink.latest_checkpoint() == 10

    async def test_watermark_ahead_of_rooms(self, sink: CommitSink):
        await sink.commit([room_upsert(ROOM, 3)])
        await sink.advance_watermark(50)

        assert await sink.latest_checkpoint() == 50

    async def test_watermarks_are_per_indexer(self, sink: CommitSink, engine: AsyncEngine):
        await sink.advance_watermark(50)

        other = CommitSink(engine, indexer_name="other")
        assert await other.latest_checkpoint() == 0

    async def test_commit_advances_watermark(self, sink: CommitSink, engine: AsyncEngine):
        await sink.commit([room_upsert(ROOM, 4)])

        rows = await _rows(engine, IndexerWatermarkModel)
        assert rows[0]["name"] == "test"
        assert rows[0]["checkpoint_sequence_number"] == 4

    async def test_deleting_highest_room_keeps_cursor(self, sink: CommitSink):
        await sink.commit([room_upsert(addr(100), 3)])
        await sink.commit([room_upsert(addr(101), 7)])
        await sink.commit([RoomDelete(room_id=addr(101), checkpoint_sequence_number=9)])

        assert await sink.latest_checkpoint() == 9

    async def test_stale_commit_does_not_lower_watermark(self, sink: CommitSink):
        await sink.commit([room_upsert(ROOM, 7)])
        await sink.commit([RoomDelete(room_id=ROOM, checkpoint_sequence_number=2)])

        assert await sink.latest_checkpoint() == 7


# ── Dead-Letter Ledger ───────────────────────────────────────────────────────


class TestDeadLetters:
    async def test_record_and_retry_accounting(self, sink: CommitSink, engine: AsyncEngine):
        await sink.record_failures({5: "boom", 9: "bang"})
        await sink.record_failures({5: "boom again"})

        rows = {r["checkpoint_sequence_number"]: r for r in await _rows(engine, FailedCheckpointModel)}
        assert rows[5]["attempts"] == 2
        assert rows[5]["last_error"] == "boom again"
        assert rows[9]["attempts"] == 1

        assert await sink.pending_failures(max_attempts=3, limit=10) == [5, 9]
        assert await sink.pending_failures(max_attempts=2, limit=10) == [9]
        assert await sink.pending_failures(max_attempts=3, limit=1) == [5]
        assert await sink.count_pending_failures(max_attempts=3) == 2

    async def test_resolve(self, sink: CommitSink):
        await sink.record_failures({5: "boom", 9: "bang"})

        assert await sink.resolve_failures([5]) == 1
        assert await sink.pending_failures(max_attempts=5, limit=10) == [9]

    async def test_nothing_to_record(self, sink: CommitSink, engine: AsyncEngine):
        await sink.record_failures({})
        assert await sink.resolve_failures([]) == 0
        assert await _count(engine, FailedCheckpointModel) == 0
