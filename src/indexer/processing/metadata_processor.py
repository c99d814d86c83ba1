"""Metadata extractor: MeetingMetadata dynamic fields -> metadata records."""

from __future__ import annotations

import structlog

from src.indexer.processing.classifier import ObjectKind
from src.indexer.processing.context import CheckpointContext
from src.indexer.processing.schemas import (
    MetadataDelete,
    MetadataUpsert,
    ParsedMeetingMetadata,
    ProcessedValue,
)

logger = structlog.get_logger(__name__)


def u256_to_decimal_string(value: int) -> str:
    """Recording blob ids are u256; the store keeps them as decimal text."""
    if value < 0:
        raise ValueError("u256 cannot be negative")
    return str(value)


class MetadataProcessor:
    """Turns the metadata dynamic fields of one checkpoint into processed values.

    Deletion is best effort: it is only seen when a metadata field that a
    transaction referenced has no content any more. Fields removed without
    being referenced are not detected.
    """

    def process(self, context: CheckpointContext) -> list[ProcessedValue]:
        values: list[ProcessedValue] = []

        for observation in context.of_kind(ObjectKind.METADATA):
            obj = observation.obj
            if obj.deleted:
                values.append(
                    MetadataDelete(room_id=obj.parent_id, dynamic_field_id=obj.object_id)
                )
                logger.debug(
                    "metadata_deleted",
                    dynamic_field_id=obj.object_id,
                    room_id=obj.parent_id,
                    checkpoint=context.sequence_number,
                )
                continue

            metadata = obj.value
            if not isinstance(metadata, ParsedMeetingMetadata):
                continue

            blob_id = metadata.recording_blob_id
            values.append(
                MetadataUpsert(
                    room_id=metadata.room_id,
                    dynamic_field_id=metadata.dynamic_field_id,
                    df_version=metadata.df_version,
                    language=metadata.language,
                    timezone=metadata.timezone,
                    recording_blob_id=u256_to_decimal_string(blob_id) if blob_id is not None else None,
                )
            )

        return values
