"""Checkpoint processing: object classification, extraction, value records.

Exports:
    ProcessedValue: Tagged union of change records handed to the commit sink.
    ObjectRegistry: Type-signature registry that classifies ledger objects.
    CheckpointProcessor: Fetches one checkpoint and runs both extractors.
"""

from __future__ import annotations

from src.indexer.processing.schemas import (
    MetadataDelete,
    MetadataUpsert,
    ParticipantDelete,
    ParticipantRole,
    ParticipantUpsert,
    ProcessedValue,
    RoomDelete,
    RoomStatus,
    RoomUpsert,
)

__all__ = [
    "CheckpointProcessor",
    "MetadataDelete",
    "MetadataUpsert",
    "ObjectRegistry",
    "ParticipantDelete",
    "ParticipantRole",
    "ParticipantUpsert",
    "ProcessedValue",
    "RoomDelete",
    "RoomStatus",
    "RoomUpsert",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the registry and processor to avoid import cycles."""
    if name == "ObjectRegistry":
        from src.indexer.processing.classifier import ObjectRegistry

        return ObjectRegistry
    if name == "CheckpointProcessor":
        from src.indexer.processing.checkpoint import CheckpointProcessor

        return CheckpointProcessor
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
