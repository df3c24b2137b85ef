"""Entity store — CRUD over tenant-scoped dynamic records.

Data-operation nodes (get_records, create_record, update_multiple, ...)
read and write business records only through this interface. Records are
plain dicts carrying an ``id``; the in-memory implementation keeps one
table per (tenant, entity) and returns copies so callers never alias
stored state.
"""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EntityStore(ABC):
    """Narrow CRUD interface used by data node handlers."""

    @abstractmethod
    async def query(
        self, tenant_id: str, entity: str, criteria: Optional[dict] = None, limit: Optional[int] = None
    ) -> list[dict]:
        """Records whose fields equal every criteria value, in insertion order."""

    @abstractmethod
    async def get(self, tenant_id: str, entity: str, record_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def create(self, tenant_id: str, entity: str, fields: dict) -> dict:
        ...

    @abstractmethod
    async def update(self, tenant_id: str, entity: str, record_id: str, fields: dict) -> Optional[dict]:
        """Merge fields into the record; None when the record does not exist."""

    @abstractmethod
    async def delete(self, tenant_id: str, entity: str, record_id: str) -> bool:
        ...

    async def search(
        self, tenant_id: str, entity: str, field: str, value: Any, limit: Optional[int] = None
    ) -> list[dict]:
        """Case-insensitive substring match on one field."""
        needle = str(value or "").lower()
        matches = [
            r for r in await self.query(tenant_id, entity)
            if needle in str(r.get(field) or "").lower()
        ]
        return matches[:limit] if limit else matches

    async def clone(
        self, tenant_id: str, entity: str, record_id: str, overrides: Optional[dict] = None
    ) -> Optional[dict]:
        """Copy a record under a new id, applying overrides."""
        original = await self.get(tenant_id, entity, record_id)
        if original is None:
            return None
        fields = {k: v for k, v in original.items() if k not in ("id", "createdAt", "updatedAt")}
        fields.update(overrides or {})
        return await self.create(tenant_id, entity, fields)


class InMemoryEntityStore(EntityStore):

    def __init__(self):
        self._tables: dict[tuple[str, str], dict[str, dict]] = {}

    def _table(self, tenant_id: str, entity: str) -> dict[str, dict]:
        return self._tables.setdefault((tenant_id or "", entity), {})

    async def query(
        self, tenant_id: str, entity: str, criteria: Optional[dict] = None, limit: Optional[int] = None
    ) -> list[dict]:
        criteria = criteria or {}
        results = []
        for record in self._table(tenant_id, entity).values():
            if all(_matches(record.get(k), v) for k, v in criteria.items()):
                results.append(copy.deepcopy(record))
                if limit and len(results) >= limit:
                    break
        return results

    async def get(self, tenant_id: str, entity: str, record_id: str) -> Optional[dict]:
        record = self._table(tenant_id, entity).get(str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def create(self, tenant_id: str, entity: str, fields: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        record = copy.deepcopy(fields or {})
        record["id"] = str(record.get("id") or uuid.uuid4())
        record.setdefault("createdAt", now)
        record["updatedAt"] = now
        self._table(tenant_id, entity)[record["id"]] = record
        logger.debug(f"Created {entity} record {record['id']} for tenant {tenant_id}")
        return copy.deepcopy(record)

    async def update(self, tenant_id: str, entity: str, record_id: str, fields: dict) -> Optional[dict]:
        record = self._table(tenant_id, entity).get(str(record_id))
        if record is None:
            return None
        record.update(copy.deepcopy({k: v for k, v in (fields or {}).items() if k != "id"}))
        record["updatedAt"] = datetime.now(timezone.utc).isoformat()
        return copy.deepcopy(record)

    async def delete(self, tenant_id: str, entity: str, record_id: str) -> bool:
        return self._table(tenant_id, entity).pop(str(record_id), None) is not None


def _matches(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    return actual is not None and expected is not None and str(actual) == str(expected)


# ─── Singleton ─────────────────────────────────────────────────

_store: Optional[EntityStore] = None


def get_entity_store() -> EntityStore:
    """Get or create the process-wide entity store."""
    global _store
    if _store is None:
        _store = InMemoryEntityStore()
    return _store
