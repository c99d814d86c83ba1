"""Pydantic v2 schemas for the indexing pipeline.

Two groups of models live here:

- Parsed ledger objects (ParsedMeetingRoom, ParsedHostCap,
  ParsedMeetingMetadata) produced by the classifier's decoders.
- ProcessedValue, the tagged union of immutable change records that the
  extractors emit and the commit sink applies. The ``kind`` literal is the
  discriminator.

Integers are Python ints, so u64/u256 values keep full precision. The
recording blob id is carried as a decimal string all the way to the store.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ── Enums ────────────────────────────────────────────────────────────────────


class RoomStatus(str, Enum):
    """Lifecycle status of a meeting room (Move codes 1/2/3)."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"

    @classmethod
    def from_code(cls, code: int) -> RoomStatus:
        try:
            return _STATUS_CODES[code]
        except KeyError:
            raise ValueError(f"unknown room status code: {code}") from None


_STATUS_CODES = {
    1: RoomStatus.SCHEDULED,
    2: RoomStatus.ACTIVE,
    3: RoomStatus.ENDED,
}


class ParticipantRole(str, Enum):
    HOST = "HOST"
    PARTICIPANT = "PARTICIPANT"


# ── Parsed Ledger Objects ────────────────────────────────────────────────────


class ParsedMeetingRoom(BaseModel):
    """Decoded fields of a ``MeetingRoom`` Move object."""

    model_config = ConfigDict(frozen=True)

    object_id: str
    title: str
    description: str | None = None
    hosts: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    max_participants: int = 0
    require_approval: bool = False
    seal_policy_id: str
    status: RoomStatus = RoomStatus.SCHEDULED
    created_at: int = 0
    started_at: int | None = None
    ended_at: int | None = None


class ParsedHostCap(BaseModel):
    """Decoded ``HostCap`` capability object."""

    model_config = ConfigDict(frozen=True)

    cap_id: str
    room_id: str
    owner: str | None = None
    granted_at: int = 0


class ParsedMeetingMetadata(BaseModel):
    """Decoded ``MeetingMetadata`` dynamic field attached to a room."""

    model_config = ConfigDict(frozen=True)

    dynamic_field_id: str
    df_version: int
    room_id: str
    language: str = ""
    timezone: str = ""
    recording_blob_id: int | None = None


# ── Processed Values ─────────────────────────────────────────────────────────


class _Value(BaseModel):
    model_config = ConfigDict(frozen=True)


class RoomUpsert(_Value):
    """Insert or replace a meeting room observed at a checkpoint."""

    kind: Literal["room_upsert"] = "room_upsert"
    room_id: str
    title: str
    hosts: list[str]
    participants: list[str]
    seal_policy_id: str
    status: RoomStatus
    max_participants: int
    require_approval: bool
    created_at: int
    started_at: int | None = None
    ended_at: int | None = None
    checkpoint_sequence_number: int
    transaction_digest: str

    @property
    def member_addresses(self) -> list[str]:
        """Hosts followed by non-host participants, without duplicates."""
        return list(dict.fromkeys([*self.hosts, *self.participants]))

    @property
    def participant_count(self) -> int:
        return len(self.member_addresses)


class RoomDelete(_Value):
    """Remove a room (and, by cascade, its participants and metadata)."""

    kind: Literal["room_delete"] = "room_delete"
    room_id: str
    checkpoint_sequence_number: int | None = None


class ParticipantUpsert(_Value):
    kind: Literal["participant_upsert"] = "participant_upsert"
    room_id: str
    participant_address: str
    role: ParticipantRole
    admin_cap_id: str | None = None


class ParticipantDelete(_Value):
    kind: Literal["participant_delete"] = "participant_delete"
    room_id: str
    participant_address: str


class MetadataUpsert(_Value):
    kind: Literal["metadata_upsert"] = "metadata_upsert"
    room_id: str
    dynamic_field_id: str
    df_version: int
    language: str
    timezone: str
    recording_blob_id: str | None = None


class MetadataDelete(_Value):
    """Remove a room's metadata row, keyed by room id or dynamic field id.

    A deleted dynamic field can no longer report its owner, so the room id
    is not always known; the dynamic field id is enough to find the row.
    """

    kind: Literal["metadata_delete"] = "metadata_delete"
    room_id: str | None = None
    dynamic_field_id: str | None = None

    @model_validator(mode="after")
    def _require_key(self) -> MetadataDelete:
        if self.room_id is None and self.dynamic_field_id is None:
            raise ValueError("MetadataDelete needs room_id or dynamic_field_id")
        return self


ProcessedValue = Annotated[
    Union[
        RoomUpsert,
        RoomDelete,
        ParticipantUpsert,
        ParticipantDelete,
        MetadataUpsert,
        MetadataDelete,
    ],
    Field(discriminator="kind"),
]
