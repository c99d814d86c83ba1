"""Prometheus metrics, Sentry integration, and RPC call tracking.

Provides:
- Ingestion metrics (checkpoints, emitted values, committed rows)
- RPC metrics via the track_rpc_call() context manager
- Progress gauges (cursor, chain tip, pending dead letters)
- start_metrics_server(): Prometheus exporter for the headless process
- init_sentry(): Initialize Sentry for error reporting
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = structlog.get_logger(__name__)

# ── Ingestion Metrics ───────────────────────────────────────────────────────

checkpoints_processed_total = Counter(
    "indexer_checkpoints_processed_total",
    "Checkpoints processed by the indexer",
    ["outcome"],
)

values_emitted_total = Counter(
    "indexer_values_emitted_total",
    "Processed values emitted by the extractors",
    ["kind"],
)

rows_affected_total = Counter(
    "indexer_rows_affected_total",
    "Rows affected by commit sink operations",
)

sub_batch_duration_seconds = Histogram(
    "indexer_sub_batch_duration_seconds",
    "Wall time to fetch, extract and commit one sub-batch",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# ── RPC Metrics ─────────────────────────────────────────────────────────────

rpc_requests_total = Counter(
    "indexer_rpc_requests_total",
    "Total ledger RPC requests",
    ["method", "status"],
)

rpc_request_duration_seconds = Histogram(
    "indexer_rpc_request_duration_seconds",
    "Ledger RPC request duration in seconds",
    ["method"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Progress Gauges ─────────────────────────────────────────────────────────

indexer_cursor = Gauge(
    "indexer_cursor",
    "Highest checkpoint the indexer has processed",
)

chain_tip = Gauge(
    "indexer_chain_tip",
    "Latest checkpoint sequence number reported by the ledger",
)

dead_letter_pending = Gauge(
    "indexer_dead_letter_pending",
    "Failed checkpoints waiting for a retry",
)


# ── RPC Metrics Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_rpc_call(method: str) -> AsyncGenerator[None, None]:
    """Context manager that records count and duration of one RPC call.

    Usage:
        async with track_rpc_call("sui_getObject"):
            response = await client.post(...)
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        rpc_requests_total.labels(method=method, status=status).inc()
        rpc_request_duration_seconds.labels(method=method).observe(
            time.perf_counter() - start_time
        )


# ── Exporter ────────────────────────────────────────────────────────────────


def start_metrics_server(port: int) -> bool:
    """Expose metrics over HTTP on the given port. Returns False if disabled."""
    if port <= 0:
        return False
    start_http_server(port)
    logger.info("metrics_server_started", port=port)
    return True


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK for error reporting.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    try:
        import sentry_sdk
    except ImportError:
        logger.warning("sentry_unavailable", reason="sentry-sdk not installed")
        return

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
    )
    logger.info("sentry_initialized", environment=environment)
