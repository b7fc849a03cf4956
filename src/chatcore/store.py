from __future__ import annotations

from typing import Any, Dict, List, Mapping

from .errors import NotFoundError, StoreError, ValidationError
from .filters import OrderBy, apply_query, matches


def _require_id(record: Mapping[str, Any]) -> str:
    record_id = record.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise ValidationError("record requires a string id")
    return record_id


class InMemoryRecordStore:
    """Dict-backed document store with the same contract as the durable stores.

    Each method body runs without yielding to the event loop, which makes
    ``create_if_absent`` atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, dict]] = {}

    async def list(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> List[dict]:
        records = self._collections.get(collection, {}).values()
        return apply_query(records, where, order_by=order_by, limit=limit)

    async def create(self, collection: str, record: Mapping[str, Any]) -> dict:
        record_id = _require_id(record)
        rows = self._collections.setdefault(collection, {})
        if record_id in rows:
            raise StoreError(f"{collection} record {record_id} already exists")
        rows[record_id] = dict(record)
        return dict(record)

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> dict:
        rows = self._collections.get(collection, {})
        current = rows.get(record_id)
        if current is None:
            raise NotFoundError(f"{collection} record {record_id} not found")
        merged = {**current, **patch, "id": record_id}
        rows[record_id] = merged
        return dict(merged)

    async def delete(self, collection: str, record_id: str) -> None:
        rows = self._collections.get(collection, {})
        if rows.pop(record_id, None) is None:
            raise NotFoundError(f"{collection} record {record_id} not found")

    async def create_if_absent(
        self, collection: str, record: Mapping[str, Any], key: Mapping[str, Any]
    ) -> tuple[dict, bool]:
        record_id = _require_id(record)
        rows = self._collections.setdefault(collection, {})
        for existing in rows.values():
            if matches(existing, key):
                return dict(existing), False
        if record_id in rows:
            raise StoreError(f"{collection} record {record_id} already exists")
        rows[record_id] = dict(record)
        return dict(record), True
