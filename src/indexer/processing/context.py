"""Per-checkpoint working set shared by the extractors.

A CheckpointContext is built once per processed checkpoint and discarded
afterwards; nothing in it outlives the call that created it.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from src.indexer.processing.classifier import ClassifiedObject, ObjectKind
from src.indexer.processing.schemas import ParsedHostCap


@dataclass(frozen=True)
class Observation:
    """A classified object and the last transaction in the checkpoint that touched it."""

    obj: ClassifiedObject
    transaction_digest: str


@dataclass
class CheckpointContext:
    sequence_number: int
    observations: list[Observation] = field(default_factory=list)
    # room_id -> {host address or None: cap id}
    host_caps: dict[str, dict[str | None, str]] = field(default_factory=dict)

    @classmethod
    def build(cls, sequence_number: int, observations: list[Observation]) -> CheckpointContext:
        """Create the context, indexing host capabilities before anything else."""
        context = cls(sequence_number=sequence_number, observations=observations)
        for observation in context.of_kind(ObjectKind.HOST_CAP):
            cap = observation.obj.value
            if isinstance(cap, ParsedHostCap):
                context.host_caps.setdefault(cap.room_id, {})[cap.owner] = cap.cap_id
        return context

    def of_kind(self, kind: ObjectKind) -> Iterator[Observation]:
        return (o for o in self.observations if o.obj.kind == kind)

    def admin_cap_for(self, room_id: str, host: str) -> str | None:
        """Cap owned by ``host`` for the room, else a cap with unknown owner."""
        caps = self.host_caps.get(room_id)
        if not caps:
            return None
        return caps.get(host) or caps.get(None)
