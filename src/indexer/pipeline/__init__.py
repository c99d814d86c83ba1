"""Ingestion pipeline: range scheduling and the long-running indexer loop."""

from src.indexer.pipeline.orchestrator import IndexerState, SuiMeetIndexer
from src.indexer.pipeline.scheduler import BatchResult, BatchScheduler, partition_range

__all__ = [
    "BatchResult",
    "BatchScheduler",
    "IndexerState",
    "SuiMeetIndexer",
    "partition_range",
]
