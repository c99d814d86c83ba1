"""Helpers that read checkpoint and transaction payloads.

transaction_digests() normalises the transaction list of a checkpoint.
referenced_objects() collects every object id a transaction touched,
together with the object type the node reported for the change (needed to
classify objects that no longer exist).
"""

from __future__ import annotations

from typing import Any

from src.indexer.processing.classifier import owner_object


def transaction_digests(checkpoint: dict[str, Any] | None) -> list[str]:
    """Digests listed by a checkpoint.

    Entries may be bare digest strings or objects carrying the digest under
    ``transaction`` or ``digest``; anything else is skipped.
    """
    digests: list[str] = []
    for entry in (checkpoint or {}).get("transactions") or []:
        if isinstance(entry, str):
            digests.append(entry)
        elif isinstance(entry, dict):
            digest = entry.get("transaction") or entry.get("digest")
            if isinstance(digest, str):
                digests.append(digest)
    return digests


def _remember(refs: dict[str, str | None], object_id: str, type_hint: Any) -> None:
    hint = type_hint if isinstance(type_hint, str) else None
    if refs.get(object_id) is None:
        refs[object_id] = hint


def referenced_objects(transaction: dict[str, Any]) -> dict[str, str | None]:
    """Map of object id -> reported object type for one transaction.

    Sources, in order:
    - object changes carrying an ``objectId`` (created, mutated, transferred,
      deleted, wrapped, ...)
    - object changes carrying a nested ``object`` reference
    - balance changes owned by an object rather than an address; these
      surface dynamic fields that never appear as top-level changes
    """
    refs: dict[str, str | None] = {}

    for change in transaction.get("objectChanges") or []:
        object_id = change.get("objectId")
        if isinstance(object_id, str):
            _remember(refs, object_id, change.get("objectType"))
            continue
        nested = change.get("object")
        if isinstance(nested, dict) and isinstance(nested.get("objectId"), str):
            _remember(refs, nested["objectId"], nested.get("objectType"))

    for balance_change in transaction.get("balanceChanges") or []:
        parent = owner_object(balance_change.get("owner"))
        if parent:
            _remember(refs, parent, None)

    return refs
