"""Batch scheduler: splits a checkpoint range into buffers and sub-batches.

A range is cut into buffers of at most ``buffer_size`` checkpoints, and each
buffer into sub-batches of at most ``concurrency`` checkpoints. All
checkpoints of a sub-batch are processed concurrently; the next sub-batch
starts only after the whole sub-batch has finished and been committed.

A checkpoint that fails is logged and recorded in the dead-letter ledger;
it never aborts its sub-batch. After each commit the watermark advances to
the sub-batch's last checkpoint.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from src.indexer.core.monitoring import (
    checkpoints_processed_total,
    indexer_cursor,
    sub_batch_duration_seconds,
    values_emitted_total,
)
from src.indexer.processing.checkpoint import CheckpointProcessor
from src.indexer.processing.schemas import ProcessedValue
from src.indexer.store.sink import CommitSink

logger = structlog.get_logger(__name__)


def partition_range(start: int, end: int, size: int) -> list[tuple[int, int]]:
    """Split the inclusive range ``start..end`` into chunks of at most ``size``.

    >>> partition_range(1, 450, 200)
    [(1, 200), (201, 400), (401, 450)]
    """
    if size < 1:
        raise ValueError("size must be at least 1")
    return [(first, min(first + size - 1, end)) for first in range(start, end + 1, size)]


@dataclass
class BatchResult:
    """Outcome of processing a range or a set of checkpoints."""

    processed: int = 0
    values: int = 0
    affected: int = 0
    succeeded: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    def merge(self, other: BatchResult) -> None:
        self.processed += other.processed
        self.values += other.values
        self.affected += other.affected
        self.succeeded.extend(other.succeeded)
        self.failed.update(other.failed)


class BatchScheduler:
    """Drives a CheckpointProcessor over ranges with bounded concurrency.

    Args:
        processor: Extracts processed values for one checkpoint.
        sink: Commit sink that applies values and owns the watermark.
        buffer_size: Maximum checkpoints per buffer.
        concurrency: Maximum checkpoints processed at once (sub-batch size).
    """

    def __init__(
        self,
        processor: CheckpointProcessor,
        sink: CommitSink,
        *,
        buffer_size: int = 5000,
        concurrency: int = 200,
    ) -> None:
        if buffer_size < 1 or concurrency < 1:
            raise ValueError("buffer_size and concurrency must be at least 1")
        self._processor = processor
        self._sink = sink
        self.buffer_size = buffer_size
        self.concurrency = concurrency

    async def process_range(self, start: int, end: int) -> BatchResult:
        """Process checkpoints ``start..end`` (inclusive), in order by sub-batch.

        Commit errors propagate; the caller retries the range and replay is
        idempotent.
        """
        result = BatchResult()
        if end < start:
            return result

        logger.info("range_started", start=start, end=end, checkpoints=end - start + 1)
        for buffer_start, buffer_end in partition_range(start, end, self.buffer_size):
            for sub_start, sub_end in partition_range(buffer_start, buffer_end, self.concurrency):
                sub_result = await self.process_checkpoints(range(sub_start, sub_end + 1))
                if sub_result.failed:
                    await self._sink.record_failures(sub_result.failed)
                await self._sink.advance_watermark(sub_end)
                indexer_cursor.set(sub_end)
                result.merge(sub_result)

        logger.info(
            "range_completed",
            start=start,
            end=end,
            values=result.values,
            affected=result.affected,
            failed=len(result.failed),
        )
        return result

    async def retry_failed(self, checkpoints: Sequence[int]) -> BatchResult:
        """Re-process dead-lettered checkpoints without touching the watermark.

        Successes leave the ledger; failures bump their attempt count.
        """
        result = BatchResult()
        for first in range(0, len(checkpoints), self.concurrency):
            sub_result = await self.process_checkpoints(checkpoints[first:first + self.concurrency])
            if sub_result.succeeded:
                await self._sink.resolve_failures(sub_result.succeeded)
            if sub_result.failed:
                await self._sink.record_failures(sub_result.failed)
            result.merge(sub_result)

        if checkpoints:
            logger.info(
                "dead_letters_retried",
                retried=len(checkpoints),
                resolved=len(result.succeeded),
                failed=len(result.failed),
            )
        return result

    async def process_checkpoints(self, checkpoints: Sequence[int]) -> BatchResult:
        """Process one sub-batch concurrently and commit its values once."""
        result = BatchResult()
        if not checkpoints:
            return result

        started = time.perf_counter()
        outcomes = await asyncio.gather(*(self._process_one(seq) for seq in checkpoints))

        values: list[ProcessedValue] = []
        for sequence_number, extracted, error in outcomes:
            result.processed += 1
            if error is not None:
                result.failed[sequence_number] = error
                continue
            result.succeeded.append(sequence_number)
            values.extend(extracted)

        for value in values:
            values_emitted_total.labels(kind=value.kind).inc()

        result.values = len(values)
        result.affected = await self._sink.commit(values)
        sub_batch_duration_seconds.observe(time.perf_counter() - started)

        logger.debug(
            "sub_batch_committed",
            first=checkpoints[0],
            last=checkpoints[-1],
            values=result.values,
            affected=result.affected,
            failed=len(result.failed),
        )
        return result

    async def _process_one(
        self, sequence_number: int
    ) -> tuple[int, list[ProcessedValue], str | None]:
        try:
            values = await self._processor.process(sequence_number)
        except Exception as exc:
            logger.error(
                "checkpoint_failed",
                checkpoint=sequence_number,
                error=str(exc),
                exc_info=True,
            )
            checkpoints_processed_total.labels(outcome="failed").inc()
            return sequence_number, [], f"{type(exc).__name__}: {exc}"

        checkpoints_processed_total.labels(outcome="ok").inc()
        return sequence_number, values, None
