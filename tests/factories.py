"""Builders for ledger payloads and an in-memory ledger client test double.

The payload shapes mirror Sui fullnode JSON-RPC results (getObject,
getTransactionBlock, getCheckpoint) closely enough for the classifier and
processors.
"""

from __future__ import annotations

from typing import Any

from src.indexer.ledger.client import LedgerClient, LedgerRpcError
from src.indexer.processing.schemas import (
    MetadataUpsert,
    ParticipantRole,
    ParticipantUpsert,
    RoomStatus,
    RoomUpsert,
)

PACKAGE_ID = "0x5eed"
ROOM_TYPE = f"{PACKAGE_ID}::sealmeet::MeetingRoom"
HOST_CAP_TYPE = f"{PACKAGE_ID}::sealmeet::HostCap"
METADATA_TYPE = (
    f"0x2::dynamic_field::Field<vector<u8>, {PACKAGE_ID}::sealmeet::MeetingMetadata>"
)


def addr(n: int) -> str:
    """A full-length Sui address for a small integer."""
    return "0x" + f"{n:064x}"


# ── Object Payloads ──────────────────────────────────────────────────────────


def room_object(
    room_id: str,
    *,
    title: str = "Weekly sync",
    hosts: list[str] | None = None,
    participants: list[str] | None = None,
    status: int = 1,
    version: int = 1,
    max_participants: int = 10,
    require_approval: bool = False,
    created_at: int = 1_700_000_000_000,
    started_at: int = 0,
    ended_at: int = 0,
) -> dict[str, Any]:
    """getObject result for a shared MeetingRoom."""
    return {
        "data": {
            "objectId": room_id,
            "version": str(version),
            "type": ROOM_TYPE,
            "owner": {"Shared": {"initial_shared_version": 1}},
            "content": {
                "dataType": "moveObject",
                "type": ROOM_TYPE,
                "hasPublicTransfer": False,
                "fields": {
                    "id": {"id": room_id},
                    "title": title,
                    "description": "",
                    "hosts": {
                        "type": "0x2::vec_set::VecSet<address>",
                        "fields": {"contents": list(hosts or [])},
                    },
                    "participants": list(participants or []),
                    "max_participants": str(max_participants),
                    "require_approval": require_approval,
                    "seal_policy_id": addr(999),
                    "status": status,
                    "created_at": str(created_at),
                    "started_at": str(started_at),
                    "ended_at": str(ended_at),
                },
            },
        }
    }


def host_cap_object(cap_id: str, room_id: str, owner: str | None) -> dict[str, Any]:
    """getObject result for a HostCap held by ``owner``."""
    return {
        "data": {
            "objectId": cap_id,
            "version": "3",
            "type": HOST_CAP_TYPE,
            "owner": {"AddressOwner": owner} if owner else {"Immutable": None},
            "content": {
                "dataType": "moveObject",
                "type": HOST_CAP_TYPE,
                "fields": {
                    "id": {"id": cap_id},
                    "room_id": room_id,
                    "granted_at": "1700000000000",
                },
            },
        }
    }


def metadata_object(
    field_id: str,
    room_id: str,
    *,
    version: int = 5,
    language: str = "en",
    timezone: str = "UTC",
    recording_blob_id: int | None = None,
) -> dict[str, Any]:
    """getObject result for the MeetingMetadata dynamic field of a room."""
    blob = {"vec": [str(recording_blob_id)]} if recording_blob_id is not None else {"vec": []}
    return {
        "data": {
            "objectId": field_id,
            "version": str(version),
            "type": METADATA_TYPE,
            "owner": {"ObjectOwner": room_id},
            "content": {
                "dataType": "moveObject",
                "type": METADATA_TYPE,
                "fields": {
                    "id": {"id": field_id},
                    "name": list(b"metadata"),
                    "value": {
                        "type": f"{PACKAGE_ID}::sealmeet::MeetingMetadata",
                        "fields": {
                            "language": language,
                            "timezone": timezone,
                            "recording_blob_id": blob,
                        },
                    },
                },
            },
        }
    }


def deleted_object(object_id: str) -> dict[str, Any]:
    """getObject result for an object that no longer exists."""
    return {"error": {"code": "deleted", "object_id": object_id}}


def transaction(digest: str, *changes: tuple[str, str, str]) -> dict[str, Any]:
    """getTransactionBlock result; each change is (type, object_id, object_type)."""
    return {
        "digest": digest,
        "objectChanges": [
            {"type": change_type, "objectId": object_id, "objectType": object_type, "version": "1"}
            for change_type, object_id, object_type in changes
        ],
        "balanceChanges": [],
    }


# ── Processed Values ─────────────────────────────────────────────────────────


def room_upsert(room_id: str, checkpoint: int, **overrides: Any) -> RoomUpsert:
    defaults: dict[str, Any] = {
        "room_id": room_id,
        "title": "Weekly sync",
        "hosts": [addr(1)],
        "participants": [addr(1), addr(2)],
        "seal_policy_id": addr(999),
        "status": RoomStatus.SCHEDULED,
        "max_participants": 10,
        "require_approval": False,
        "created_at": 1_700_000_000_000,
        "checkpoint_sequence_number": checkpoint,
        "transaction_digest": f"digest-{checkpoint}",
    }
    defaults.update(overrides)
    return RoomUpsert(**defaults)


def participant_upsert(
    room_id: str,
    address: str,
    role: ParticipantRole = ParticipantRole.PARTICIPANT,
    admin_cap_id: str | None = None,
) -> ParticipantUpsert:
    return ParticipantUpsert(
        room_id=room_id,
        participant_address=address,
        role=role,
        admin_cap_id=admin_cap_id,
    )


def metadata_upsert(room_id: str, df_version: int = 5, **overrides: Any) -> MetadataUpsert:
    defaults: dict[str, Any] = {
        "room_id": room_id,
        "dynamic_field_id": addr(500),
        "df_version": df_version,
        "language": "en",
        "timezone": "UTC",
        "recording_blob_id": None,
    }
    defaults.update(overrides)
    return MetadataUpsert(**defaults)


# ── FakeLedgerClient ─────────────────────────────────────────────────────────


class FakeLedgerClient(LedgerClient):
    """In-memory test double for the ledger client.

    Checkpoints without registered transactions are empty. Objects that were
    never registered read back as deleted.
    """

    def __init__(self, tip: int = 0) -> None:
        self.tip = tip
        self.checkpoints: dict[int, dict[str, Any]] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.objects: dict[str, dict[str, Any]] = {}
        self.failing_checkpoints: set[int] = set()
        self.failing_objects: set[str] = set()
        self.checkpoint_calls: list[int] = []
        self.object_calls: list[str] = []

    def add_checkpoint(self, sequence_number: int, *transactions: dict[str, Any]) -> None:
        self.checkpoints[sequence_number] = {
            "sequenceNumber": str(sequence_number),
            "transactions": [tx["digest"] for tx in transactions],
        }
        for tx in transactions:
            self.transactions[tx["digest"]] = tx

    async def latest_checkpoint_number(self) -> int:
        return self.tip

    async def get_checkpoint(self, checkpoint_id: int) -> dict[str, Any]:
        self.checkpoint_calls.append(checkpoint_id)
        if checkpoint_id in self.failing_checkpoints:
            raise LedgerRpcError("sui_getCheckpoint", -32000, "checkpoint unavailable")
        return self.checkpoints.get(
            checkpoint_id, {"sequenceNumber": str(checkpoint_id), "transactions": []}
        )

    async def get_transaction_block(self, digest: str, **options: Any) -> dict[str, Any]:
        if digest not in self.transactions:
            raise LedgerRpcError("sui_getTransactionBlock", -32602, f"unknown digest {digest}")
        return self.transactions[digest]

    async def get_object(self, object_id: str, **options: Any) -> dict[str, Any]:
        self.object_calls.append(object_id)
        if object_id in self.failing_objects:
            raise LedgerRpcError("sui_getObject", -32000, "object unavailable")
        return self.objects.get(object_id, deleted_object(object_id))
