"""Async JSON-RPC client for a Sui fullnode.

Provides the LedgerClient contract consumed by the processors and
SuiRpcClient, its httpx implementation. Transport failures are retried
with tenacity (exponential backoff); JSON-RPC error objects are raised as
LedgerRpcError without retry. A semaphore bounds in-flight requests so the
fan-out of a sub-batch never exceeds the configured concurrency.

Responses are returned as the raw ``result`` dicts of the node, e.g.:

    get_object -> {"data": {"objectId", "version", "type", "owner", "content"}}
               or {"error": {"code": "deleted", "object_id": ...}}
"""

from __future__ import annotations

import asyncio
import itertools
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.indexer.core.monitoring import track_rpc_call

logger = structlog.get_logger(__name__)

_RETRYABLE = (httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)


class LedgerRpcError(Exception):
    """The node returned a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class LedgerClient(ABC):
    """Read-only ledger operations the indexer depends on."""

    @abstractmethod
    async def latest_checkpoint_number(self) -> int:
        """Sequence number of the newest finalized checkpoint."""
        ...

    @abstractmethod
    async def get_checkpoint(self, checkpoint_id: int) -> dict[str, Any]:
        """Checkpoint summary including its ``transactions`` list."""
        ...

    @abstractmethod
    async def get_transaction_block(
        self,
        digest: str,
        *,
        show_effects: bool = True,
        show_events: bool = True,
        show_object_changes: bool = True,
        show_balance_changes: bool = True,
    ) -> dict[str, Any]:
        """Transaction with objectChanges, balanceChanges and events."""
        ...

    @abstractmethod
    async def get_object(
        self,
        object_id: str,
        *,
        show_type: bool = True,
        show_content: bool = True,
        show_owner: bool = True,
    ) -> dict[str, Any]:
        """Current state of an object (``data`` may be absent if deleted)."""
        ...

    async def close(self) -> None:
        """Release network resources. No-op by default."""


class SuiRpcClient(LedgerClient):
    """JSON-RPC client for a Sui fullnode.

    Args:
        rpc_url: Fullnode JSON-RPC endpoint.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per call on transport errors.
        max_in_flight: Upper bound on concurrent requests.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        max_in_flight: int = 200,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._max_retries = max_retries
        self._in_flight = asyncio.Semaphore(max_in_flight)
        self._ids = itertools.count(1)
        self._http = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            limits=httpx.Limits(
                max_connections=max_in_flight,
                max_keepalive_connections=max_in_flight,
            ),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Issue one JSON-RPC call with retry on transport errors."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=5),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._post(method, params)

    async def _post(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        async with self._in_flight, track_rpc_call(method):
            response = await self._http.post(self._rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()

        error = body.get("error")
        if error:
            raise LedgerRpcError(method, error.get("code"), error.get("message", ""))
        return body.get("result")

    async def latest_checkpoint_number(self) -> int:
        result = await self._call("sui_getLatestCheckpointSequenceNumber", [])
        return int(result)

    async def get_checkpoint(self, checkpoint_id: int) -> dict[str, Any]:
        return await self._call("sui_getCheckpoint", [str(checkpoint_id)])

    async def get_transaction_block(
        self,
        digest: str,
        *,
        show_effects: bool = True,
        show_events: bool = True,
        show_object_changes: bool = True,
        show_balance_changes: bool = True,
    ) -> dict[str, Any]:
        options = {
            "showEffects": show_effects,
            "showEvents": show_events,
            "showObjectChanges": show_object_changes,
            "showBalanceChanges": show_balance_changes,
        }
        return await self._call("sui_getTransactionBlock", [digest, options])

    async def get_object(
        self,
        object_id: str,
        *,
        show_type: bool = True,
        show_content: bool = True,
        show_owner: bool = True,
    ) -> dict[str, Any]:
        options = {
            "showType": show_type,
            "showContent": show_content,
            "showOwner": show_owner,
        }
        return await self._call("sui_getObject", [object_id, options])

    async def close(self) -> None:
        await self._http.aclose()
        logger.debug("ledger_client_closed", rpc_url=self._rpc_url)
