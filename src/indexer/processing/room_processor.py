"""Room extractor: MeetingRoom objects -> room and participant records.

For every room observed in a checkpoint:
- content gone      -> RoomDelete (participants/metadata go by cascade)
- content present   -> RoomUpsert plus one ParticipantUpsert per member

Participants are derived data: every host becomes a HOST row (annotated
with its admin capability when one was seen in the same checkpoint) and
every participant that is not also a host becomes a PARTICIPANT row.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from src.indexer.processing.classifier import ObjectKind
from src.indexer.processing.context import CheckpointContext
from src.indexer.processing.schemas import (
    ParsedMeetingRoom,
    ParticipantRole,
    ParticipantUpsert,
    ProcessedValue,
    RoomDelete,
    RoomUpsert,
)

logger = structlog.get_logger(__name__)


def reconcile_participants(
    room_id: str,
    hosts: Iterable[str],
    participants: Iterable[str],
    context: CheckpointContext | None = None,
) -> list[ParticipantUpsert]:
    """Participant rows for a room's current host and participant sets.

    Hosts come first and win over the participant list, so an address that
    appears in both is emitted exactly once, as HOST.
    """
    values: list[ParticipantUpsert] = []
    seen: set[str] = set()

    for host in hosts:
        if host in seen:
            continue
        seen.add(host)
        values.append(
            ParticipantUpsert(
                room_id=room_id,
                participant_address=host,
                role=ParticipantRole.HOST,
                admin_cap_id=context.admin_cap_for(room_id, host) if context else None,
            )
        )

    for address in participants:
        if address in seen:
            continue
        seen.add(address)
        values.append(
            ParticipantUpsert(
                room_id=room_id,
                participant_address=address,
                role=ParticipantRole.PARTICIPANT,
            )
        )

    return values


class RoomProcessor:
    """Turns the rooms of one checkpoint into processed values."""

    def process(self, context: CheckpointContext) -> list[ProcessedValue]:
        values: list[ProcessedValue] = []

        for observation in context.of_kind(ObjectKind.ROOM):
            obj = observation.obj
            if obj.deleted:
                values.append(
                    RoomDelete(
                        room_id=obj.object_id,
                        checkpoint_sequence_number=context.sequence_number,
                    )
                )
                logger.debug(
                    "room_deleted",
                    room_id=obj.object_id,
                    checkpoint=context.sequence_number,
                )
                continue

            room = obj.value
            if not isinstance(room, ParsedMeetingRoom):
                continue

            values.append(
                RoomUpsert(
                    room_id=room.object_id,
                    title=room.title,
                    hosts=room.hosts,
                    participants=room.participants,
                    seal_policy_id=room.seal_policy_id,
                    status=room.status,
                    max_participants=room.max_participants,
                    require_approval=room.require_approval,
                    created_at=room.created_at,
                    started_at=room.started_at,
                    ended_at=room.ended_at,
                    checkpoint_sequence_number=context.sequence_number,
                    transaction_digest=observation.transaction_digest,
                )
            )
            values.extend(
                reconcile_participants(room.object_id, room.hosts, room.participants, context)
            )

        return values
