"""Object classification: explicit registry of the domain's Move types.

Every object fetched for a checkpoint goes through ObjectRegistry.classify(),
which matches the object's fully-qualified type string exactly (after
normalisation) against the registered signatures and runs the matching
decoder. The result is a tagged ClassifiedObject:

- ROOM      -> ParsedMeetingRoom
- HOST_CAP  -> ParsedHostCap
- METADATA  -> ParsedMeetingMetadata (dynamic field wrapping MeetingMetadata)
- UNKNOWN   -> anything else, or a recognised object that failed to decode

An object whose content is absent is reported with ``deleted=True`` and no
decoded value. Its type comes from the fetched data or, when the node has
nothing left, from the type hint recorded in the transaction's object
changes.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel

from src.indexer.processing.schemas import (
    ParsedHostCap,
    ParsedMeetingMetadata,
    ParsedMeetingRoom,
    RoomStatus,
)

logger = structlog.get_logger(__name__)

SUI_FRAMEWORK = "0x2"

_HEX_ADDRESS = re.compile(r"0x0*([0-9a-fA-F]+)")
_WHITESPACE = re.compile(r"\s+")


class ObjectDecodeError(ValueError):
    """A recognised object's fields could not be decoded."""


class ObjectKind(str, Enum):
    ROOM = "room"
    HOST_CAP = "host_cap"
    METADATA = "metadata"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedObject:
    """Outcome of classifying one fetched object."""

    object_id: str
    kind: ObjectKind
    deleted: bool = False
    value: BaseModel | None = None
    parent_id: str | None = None


Decoder = Callable[[dict[str, Any]], BaseModel]


def normalize_type(type_string: str) -> str:
    """Canonical form of a Move type string for exact comparison.

    Hex addresses are lower-cased with leading zeros stripped (so the long
    and short spellings of 0x2 compare equal) and whitespace is removed.
    """
    compact = _WHITESPACE.sub("", type_string)
    return _HEX_ADDRESS.sub(lambda m: "0x" + m.group(1).lower(), compact)


# ── Field Helpers ────────────────────────────────────────────────────────────


def _move_fields(data: dict[str, Any]) -> dict[str, Any]:
    content = data.get("content") or {}
    if content.get("dataType", "moveObject") != "moveObject":
        raise ObjectDecodeError(f"unexpected content type {content.get('dataType')!r}")
    fields = content.get("fields")
    if not isinstance(fields, dict):
        raise ObjectDecodeError("object content has no fields")
    return fields


def _as_text(value: Any) -> str:
    """Move ``String`` arrives as str, ``vector<u8>`` as a list of bytes."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        try:
            return bytes(value).decode("utf-8")
        except (ValueError, TypeError) as exc:
            raise ObjectDecodeError(f"invalid utf-8 byte string: {exc}") from exc
    raise ObjectDecodeError(f"expected string, got {type(value).__name__}")


def _as_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ObjectDecodeError("expected integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ObjectDecodeError(f"expected integer, got {value!r}") from exc


def _as_id(value: Any) -> str:
    """``ID`` renders as a string, ``UID`` as ``{"id": "0x..."}``."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict) and "id" in value:
        return _as_id(value["id"])
    raise ObjectDecodeError(f"expected object id, got {value!r}")


def _as_address_list(value: Any) -> list[str]:
    """``vector<address>`` or a VecSet (``{"fields": {"contents": [...]}}``)."""
    if value is None:
        return []
    if isinstance(value, dict):
        value = value.get("fields", value).get("contents")
    if not isinstance(value, list):
        raise ObjectDecodeError(f"expected address list, got {value!r}")
    return [str(address) for address in value]


def _as_option(value: Any) -> Any:
    """Unwrap ``Option<T>``: null, a bare value, or ``{"vec": [value]}``."""
    if isinstance(value, dict) and "vec" in value:
        items = value["vec"]
        return items[0] if items else None
    return value


def owner_address(owner: Any) -> str | None:
    """Address of an externally-owned owner, if that is what owns the object."""
    if isinstance(owner, dict) and isinstance(owner.get("AddressOwner"), str):
        return owner["AddressOwner"]
    return None


def owner_object(owner: Any) -> str | None:
    """Parent object id when the object is owned by another object."""
    if isinstance(owner, dict):
        parent = owner.get("ObjectOwner") or owner.get("objectId")
        return parent if isinstance(parent, str) else None
    return None


# ── Decoders ─────────────────────────────────────────────────────────────────


def decode_meeting_room(data: dict[str, Any]) -> ParsedMeetingRoom:
    fields = _move_fields(data)
    description = fields.get("description")
    try:
        status = RoomStatus.from_code(_as_int(fields.get("status"), default=1))
    except ValueError as exc:
        raise ObjectDecodeError(str(exc)) from exc
    return ParsedMeetingRoom(
        object_id=data["objectId"],
        title=_as_text(fields.get("title")),
        description=_as_text(description) if description is not None else None,
        hosts=_as_address_list(fields.get("hosts")),
        participants=_as_address_list(fields.get("participants")),
        max_participants=_as_int(fields.get("max_participants")),
        require_approval=bool(fields.get("require_approval", False)),
        seal_policy_id=_as_id(fields.get("seal_policy_id")),
        status=status,
        created_at=_as_int(fields.get("created_at")),
        started_at=_as_int(fields.get("started_at")) or None,
        ended_at=_as_int(fields.get("ended_at")) or None,
    )


def decode_host_cap(data: dict[str, Any]) -> ParsedHostCap:
    fields = _move_fields(data)
    return ParsedHostCap(
        cap_id=data["objectId"],
        room_id=_as_id(fields.get("room_id")),
        owner=owner_address(data.get("owner")),
        granted_at=_as_int(fields.get("granted_at")),
    )


def decode_meeting_metadata(data: dict[str, Any]) -> ParsedMeetingMetadata:
    """Decode ``Field<vector<u8>, MeetingMetadata>``; the parent is the room."""
    fields = _move_fields(data)
    room_id = owner_object(data.get("owner"))
    if room_id is None:
        raise ObjectDecodeError("metadata field is not owned by a room")

    value = fields.get("value", fields)
    if isinstance(value, dict) and isinstance(value.get("fields"), dict):
        value = value["fields"]
    if not isinstance(value, dict):
        raise ObjectDecodeError("metadata field has no value struct")

    blob_id = _as_option(value.get("recording_blob_id"))
    return ParsedMeetingMetadata(
        dynamic_field_id=data["objectId"],
        df_version=_as_int(data.get("version")),
        room_id=room_id,
        language=_as_text(value.get("language")),
        timezone=_as_text(value.get("timezone")),
        recording_blob_id=_as_int(blob_id) if blob_id is not None else None,
    )


# ── Registry ─────────────────────────────────────────────────────────────────


class ObjectRegistry:
    """Catalog of recognised Move types and the decoders that read them.

    Lookups are exact matches on normalised type strings; generic
    instantiations must be registered with their full type arguments.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[ObjectKind, Decoder]] = {}

    @classmethod
    def for_package(cls, package_id: str, module: str = "sealmeet") -> ObjectRegistry:
        """Registry for the SuiMeet types published under ``package_id``."""
        registry = cls()
        prefix = f"{package_id}::{module}"
        registry.register(f"{prefix}::MeetingRoom", ObjectKind.ROOM, decode_meeting_room)
        registry.register(f"{prefix}::HostCap", ObjectKind.HOST_CAP, decode_host_cap)
        registry.register(
            f"{SUI_FRAMEWORK}::dynamic_field::Field<vector<u8>, {prefix}::MeetingMetadata>",
            ObjectKind.METADATA,
            decode_meeting_metadata,
        )
        return registry

    def register(self, type_signature: str, kind: ObjectKind, decoder: Decoder) -> None:
        """Register a decoder for a fully-qualified type.

        Raises:
            ValueError: If the signature is already registered.
        """
        key = normalize_type(type_signature)
        if key in self._entries:
            raise ValueError(f"type already registered: {type_signature}")
        self._entries[key] = (kind, decoder)

    def classify(
        self,
        object_id: str,
        response: dict[str, Any] | None,
        type_hint: str | None = None,
    ) -> ClassifiedObject:
        """Classify and decode one ``getObject`` response.

        Args:
            object_id: Id the response was fetched for.
            response: Raw getObject result (may carry only an error).
            type_hint: Object type reported by the transaction's changes.
        """
        data = (response or {}).get("data") or {}
        type_string = data.get("type") or type_hint
        entry = self._entries.get(normalize_type(type_string)) if type_string else None
        if entry is None:
            return ClassifiedObject(object_id=object_id, kind=ObjectKind.UNKNOWN)

        kind, decoder = entry
        if not data.get("content"):
            return ClassifiedObject(
                object_id=object_id,
                kind=kind,
                deleted=True,
                parent_id=owner_object(data.get("owner")),
            )

        try:
            value = decoder(data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "object_decode_failed",
                object_id=object_id,
                kind=kind.value,
                error=str(exc),
            )
            return ClassifiedObject(object_id=object_id, kind=ObjectKind.UNKNOWN)

        return ClassifiedObject(
            object_id=object_id,
            kind=kind,
            value=value,
            parent_id=owner_object(data.get("owner")),
        )
