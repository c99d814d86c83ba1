"""Checkpoint processor: one checkpoint in, a list of processed values out.

Steps for a checkpoint:
1. Fetch the checkpoint and normalise its transaction digests.
2. Fetch every transaction concurrently (a failure here fails the whole
   checkpoint so it can be dead-lettered and retried).
3. Collect referenced object ids across the checkpoint; each object is
   fetched once, concurrently. A failed object fetch only drops that object.
4. Classify objects through the registry and build the per-checkpoint
   context (host capabilities indexed first).
5. Run the room and metadata extractors over the context.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from src.indexer.ledger.client import LedgerClient
from src.indexer.processing.changes import referenced_objects, transaction_digests
from src.indexer.processing.classifier import ObjectRegistry
from src.indexer.processing.context import CheckpointContext, Observation
from src.indexer.processing.metadata_processor import MetadataProcessor
from src.indexer.processing.room_processor import RoomProcessor
from src.indexer.processing.schemas import ProcessedValue

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _Sighting:
    object_id: str
    transaction_digest: str
    type_hint: str | None


class CheckpointProcessor:
    """Fetches a checkpoint from the ledger and extracts domain changes.

    Args:
        client: Ledger client used for all reads.
        registry: Registry of recognised object types.
        room_processor: Room extractor (default instance if omitted).
        metadata_processor: Metadata extractor (default instance if omitted).
    """

    def __init__(
        self,
        client: LedgerClient,
        registry: ObjectRegistry,
        room_processor: RoomProcessor | None = None,
        metadata_processor: MetadataProcessor | None = None,
    ) -> None:
        self._client = client
        self._registry = registry
        self._rooms = room_processor or RoomProcessor()
        self._metadata = metadata_processor or MetadataProcessor()

    async def process(self, sequence_number: int) -> list[ProcessedValue]:
        checkpoint = await self._client.get_checkpoint(sequence_number)
        digests = transaction_digests(checkpoint)
        if not digests:
            return []

        transactions = await asyncio.gather(
            *(self._client.get_transaction_block(digest) for digest in digests)
        )

        sightings: dict[str, _Sighting] = {}
        for digest, transaction in zip(digests, transactions):
            for object_id, type_hint in referenced_objects(transaction or {}).items():
                previous = sightings.get(object_id)
                if type_hint is None and previous is not None:
                    type_hint = previous.type_hint
                sightings[object_id] = _Sighting(object_id, digest, type_hint)

        if not sightings:
            return []

        responses = await asyncio.gather(
            *(self._fetch_object(object_id) for object_id in sightings)
        )

        observations = [
            Observation(
                obj=self._registry.classify(sighting.object_id, response, sighting.type_hint),
                transaction_digest=sighting.transaction_digest,
            )
            for sighting, response in zip(sightings.values(), responses)
            if response is not None
        ]
        context = CheckpointContext.build(sequence_number, observations)

        values: list[ProcessedValue] = [
            *self._rooms.process(context),
            *self._metadata.process(context),
        ]
        logger.debug(
            "checkpoint_extracted",
            checkpoint=sequence_number,
            transactions=len(digests),
            objects=len(observations),
            values=len(values),
        )
        return values

    async def _fetch_object(self, object_id: str) -> dict[str, Any] | None:
        """Fetch one object; None when the fetch itself failed."""
        try:
            return await self._client.get_object(object_id)
        except Exception as exc:
            logger.warning("object_fetch_failed", object_id=object_id, error=str(exc))
            return None
