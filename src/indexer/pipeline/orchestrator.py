"""SuiMeetIndexer -- the long-running poll/backfill loop.

State machine: INIT -> RUNNING -> (TERMINATED | STOPPED).

INIT reads the resumable cursor from the store and fast-forwards it to
``first_checkpoint - 1`` when a configured first checkpoint lies ahead.
Each RUNNING iteration queries the chain tip, processes
``cursor + 1 .. min(last_checkpoint, tip)`` through the BatchScheduler and
moves the cursor to the batch end. When there is nothing new it retries
pending dead letters and sleeps for the retry interval. Loop errors are
logged and handled like an idle poll; the cursor does not move.

stop() clears the run flag and wakes a sleeping loop. A batch in progress
always runs to completion; the store is closed on the way out.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import structlog

from src.indexer.core.monitoring import chain_tip, dead_letter_pending, indexer_cursor
from src.indexer.ledger.client import LedgerClient
from src.indexer.pipeline.scheduler import BatchScheduler
from src.indexer.store.sink import CommitSink

logger = structlog.get_logger(__name__)


class IndexerState(str, Enum):
    INIT = "init"
    RUNNING = "running"
    TERMINATED = "terminated"
    STOPPED = "stopped"


class SuiMeetIndexer:
    """Drives ingestion from the persisted cursor up to the chain tip.

    Args:
        client: Ledger client used to query the chain tip.
        sink: Commit sink holding the cursor and dead-letter ledger.
        scheduler: Batch scheduler that processes checkpoint ranges.
        first_checkpoint: Optional lowest checkpoint to index.
        last_checkpoint: Optional last checkpoint; reaching it ends the run.
        retry_interval: Seconds to sleep between idle polls.
        dead_letter_max_attempts: Attempts after which a failed checkpoint
            is no longer retried.
    """

    def __init__(
        self,
        client: LedgerClient,
        sink: CommitSink,
        scheduler: BatchScheduler,
        *,
        first_checkpoint: int | None = None,
        last_checkpoint: int | None = None,
        retry_interval: float = 0.2,
        dead_letter_max_attempts: int = 5,
    ) -> None:
        self._client = client
        self._sink = sink
        self._scheduler = scheduler
        self._first_checkpoint = first_checkpoint
        self._last_checkpoint = last_checkpoint
        self._retry_interval = retry_interval
        self._dead_letter_max_attempts = dead_letter_max_attempts

        self._state = IndexerState.INIT
        self._running = False
        self._wakeup = asyncio.Event()
        self.cursor = 0

    @property
    def state(self) -> IndexerState:
        return self._state

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> int:
        """Load the cursor from the store, honouring first_checkpoint."""
        self.cursor = await self._sink.latest_checkpoint()
        if self._first_checkpoint is not None and self._first_checkpoint - 1 > self.cursor:
            logger.info(
                "cursor_fast_forwarded",
                stored=self.cursor,
                cursor=self._first_checkpoint - 1,
            )
            self.cursor = self._first_checkpoint - 1
        indexer_cursor.set(self.cursor)
        logger.info(
            "indexer_initialized",
            cursor=self.cursor,
            first_checkpoint=self._first_checkpoint,
            last_checkpoint=self._last_checkpoint,
        )
        return self.cursor

    async def run(self) -> IndexerState:
        """Run until the last checkpoint is reached or stop() is called."""
        self._running = True
        try:
            await self.initialize()
            self._state = IndexerState.RUNNING
            logger.info("indexer_started", cursor=self.cursor)

            while self._running:
                try:
                    progressed = await self.run_once()
                except Exception:
                    logger.exception("indexer_loop_error", cursor=self.cursor)
                    progressed = False

                if self._state is IndexerState.TERMINATED:
                    break
                if not progressed and self._running:
                    await self._sleep()
        finally:
            await self._sink.close()
            if self._state is not IndexerState.TERMINATED:
                self._state = IndexerState.STOPPED
            logger.info("indexer_exited", state=self._state.value, cursor=self.cursor)

        return self._state

    def stop(self) -> None:
        """Signal the loop to stop after the current iteration."""
        if self._running:
            logger.info("indexer_stop_requested", cursor=self.cursor)
        self._running = False
        self._wakeup.set()

    # ── Loop Body ────────────────────────────────────────────────────────

    async def run_once(self) -> bool:
        """One loop iteration. Returns True when a range was processed."""
        tip = await self._client.latest_checkpoint_number()
        chain_tip.set(tip)

        if self._last_checkpoint is not None and self.cursor >= self._last_checkpoint:
            logger.info(
                "last_checkpoint_reached",
                cursor=self.cursor,
                last_checkpoint=self._last_checkpoint,
            )
            self._state = IndexerState.TERMINATED
            self._running = False
            return False

        end = tip if self._last_checkpoint is None else min(self._last_checkpoint, tip)
        if self.cursor < end:
            await self._scheduler.process_range(self.cursor + 1, end)
            self.cursor = end
            indexer_cursor.set(self.cursor)
            return True

        await self.retry_dead_letters()
        return False

    async def retry_dead_letters(self) -> int:
        """Re-process pending failed checkpoints. Returns how many resolved."""
        pending = await self._sink.pending_failures(
            self._dead_letter_max_attempts, limit=self._scheduler.concurrency
        )
        resolved = 0
        if pending:
            result = await self._scheduler.retry_failed(pending)
            resolved = len(result.succeeded)
        dead_letter_pending.set(
            await self._sink.count_pending_failures(self._dead_letter_max_attempts)
        )
        return resolved

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self._retry_interval)
        except asyncio.TimeoutError:
            pass
