"""Process entry point for the SuiMeet indexer.

Loads settings (missing required values are fatal), configures logging,
creates the schema, wires the ledger client, processors, commit sink and
scheduler together, and runs SuiMeetIndexer until it terminates or a
SIGINT/SIGTERM asks it to stop.
"""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog
from pydantic import ValidationError

from src.indexer.config import Settings, get_settings
from src.indexer.core.database import create_engine_for_url, init_db
from src.indexer.core.logging import configure_structlog
from src.indexer.core.monitoring import init_sentry, start_metrics_server
from src.indexer.ledger.client import SuiRpcClient
from src.indexer.pipeline.orchestrator import IndexerState, SuiMeetIndexer
from src.indexer.pipeline.scheduler import BatchScheduler
from src.indexer.processing.checkpoint import CheckpointProcessor
from src.indexer.processing.classifier import ObjectRegistry
from src.indexer.store.sink import CommitSink

logger = structlog.get_logger(__name__)


def build_indexer(settings: Settings) -> tuple[SuiMeetIndexer, SuiRpcClient, CommitSink]:
    """Wire the indexer components from settings."""
    client = SuiRpcClient(
        settings.SUI_RPC_URL,
        timeout=settings.RPC_TIMEOUT,
        max_retries=settings.RPC_MAX_RETRIES,
        max_in_flight=settings.rpc_max_in_flight,
    )
    registry = ObjectRegistry.for_package(settings.SUIMEET_PACKAGE_ID, settings.SUIMEET_MODULE)
    sink = CommitSink(create_engine_for_url(settings.DATABASE_URL), settings.INDEXER_NAME)
    scheduler = BatchScheduler(
        CheckpointProcessor(client, registry),
        sink,
        buffer_size=settings.CHECKPOINT_BUFFER_SIZE,
        concurrency=settings.INGEST_CONCURRENCY,
    )
    indexer = SuiMeetIndexer(
        client,
        sink,
        scheduler,
        first_checkpoint=settings.FIRST_CHECKPOINT,
        last_checkpoint=settings.LAST_CHECKPOINT,
        retry_interval=settings.retry_interval_seconds,
        dead_letter_max_attempts=settings.DEAD_LETTER_MAX_ATTEMPTS,
    )
    return indexer, client, sink


async def serve(settings: Settings) -> IndexerState:
    """Run the indexer until it terminates or is stopped by a signal."""
    indexer, client, sink = build_indexer(settings)
    try:
        await init_db(sink.engine)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, indexer.stop)
            except NotImplementedError:
                # Platforms without loop signal support fall back to KeyboardInterrupt
                pass

        logger.info(
            "indexer_starting",
            network=settings.SUI_NETWORK,
            rpc_url=settings.SUI_RPC_URL,
            package_id=settings.SUIMEET_PACKAGE_ID,
            buffer_size=settings.CHECKPOINT_BUFFER_SIZE,
            concurrency=settings.INGEST_CONCURRENCY,
        )
        return await indexer.run()
    finally:
        await client.close()
        # run() closes the store itself once it has started
        if indexer.state is IndexerState.INIT:
            await sink.close()


def run() -> None:
    """Console script entry point."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        structlog.get_logger(__name__).error(
            "configuration_invalid",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                for err in exc.errors()
            ],
        )
        sys.exit(1)

    configure_structlog(settings)
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)
    start_metrics_server(settings.METRICS_PORT)

    state = asyncio.run(serve(settings))
    logger.info("indexer_finished", state=state.value)


if __name__ == "__main__":
    run()
