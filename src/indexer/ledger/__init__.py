"""Ledger boundary: the RPC contract the indexer consumes and its Sui client.

Exports:
    LedgerClient: Abstract contract (tip, checkpoint, transaction, object).
    SuiRpcClient: httpx JSON-RPC implementation against a Sui fullnode.
    LedgerRpcError: Raised when the node answers with a JSON-RPC error.
"""

from __future__ import annotations

from src.indexer.ledger.client import LedgerClient, LedgerRpcError, SuiRpcClient

__all__ = [
    "LedgerClient",
    "LedgerRpcError",
    "SuiRpcClient",
]
