"""Task / activity store.

Tasks, events, meetings, notes, comments and attachments created by task
nodes. Every item is keyed by the record it belongs to
(``entity_type``, ``entity_id``) so a CRM timeline can list them.
"""

import copy
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ActivityKind(str, Enum):
    TASK = "TASK"
    ACTIVITY = "ACTIVITY"
    EVENT = "EVENT"
    MEETING = "MEETING"
    NOTE = "NOTE"
    COMMENT = "COMMENT"
    ATTACHMENT = "ATTACHMENT"


class TaskStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ActivityStore:
    """In-process store for tasks and timeline activities."""

    def __init__(self):
        self._items: dict[str, dict] = {}

    async def create(self, tenant_id: str, kind: ActivityKind, data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        item = copy.deepcopy(data or {})
        item.update(
            id=str(uuid.uuid4()),
            tenantId=tenant_id,
            kind=ActivityKind(kind).value,
            createdAt=now,
            updatedAt=now,
        )
        if kind == ActivityKind.TASK:
            item.setdefault("status", TaskStatus.OPEN.value)
        self._items[item["id"]] = item
        logger.info(f"Created {item['kind']} {item['id']}")
        return copy.deepcopy(item)

    async def get(self, item_id: str) -> Optional[dict]:
        item = self._items.get(str(item_id))
        return copy.deepcopy(item) if item is not None else None

    async def update(self, item_id: str, updates: dict) -> Optional[dict]:
        item = self._items.get(str(item_id))
        if item is None:
            return None
        item.update({k: v for k, v in (updates or {}).items() if k not in ("id", "kind", "tenantId")})
        item["updatedAt"] = datetime.now(timezone.utc).isoformat()
        return copy.deepcopy(item)

    async def complete_task(self, task_id: str, notes: Optional[str] = None) -> Optional[dict]:
        updates = {
            "status": TaskStatus.COMPLETED.value,
            "completedAt": datetime.now(timezone.utc).isoformat(),
        }
        if notes:
            updates["completionNotes"] = notes
        return await self.update(task_id, updates)

    async def assign_task(self, task_id: str, user_id: str) -> Optional[dict]:
        return await self.update(task_id, {"assignedTo": user_id})

    async def for_record(
        self, tenant_id: str, entity_type: str, entity_id: str, kind: Optional[ActivityKind] = None
    ) -> list[dict]:
        """Items attached to one record, oldest first."""
        return [
            copy.deepcopy(item)
            for item in self._items.values()
            if item.get("tenantId") == tenant_id
            and item.get("entityType") == entity_type
            and str(item.get("entityId")) == str(entity_id)
            and (kind is None or item["kind"] == ActivityKind(kind).value)
        ]


# ─── Singleton ─────────────────────────────────────────────────

_store: Optional[ActivityStore] = None


def get_activity_store() -> ActivityStore:
    """Get or create the process-wide activity store."""
    global _store
    if _store is None:
        _store = ActivityStore()
    return _store
