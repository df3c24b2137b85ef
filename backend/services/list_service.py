"""List and tag membership for records.

Backs the ``list`` node category and the added_to_list / tag_added event
triggers. Memberships are tenant-scoped; adding an existing member or tag
is a no-op that reports ``added: False``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class ListService:

    def __init__(self):
        # (tenant, list_id) -> {record_id: record_type}
        self._lists: dict[tuple[str, str], dict[str, str]] = {}
        # (tenant, record_type, record_id) -> set of tags
        self._tags: dict[tuple[str, str, str], set[str]] = {}

    async def add_to_list(self, tenant_id: str, list_id: str, record_id: str, record_type: str = "") -> dict:
        members = self._lists.setdefault((tenant_id, str(list_id)), {})
        added = str(record_id) not in members
        members[str(record_id)] = record_type
        logger.info(f"Record {record_id} {'added to' if added else 'already in'} list {list_id}")
        return {
            "listId": list_id,
            "recordId": record_id,
            "added": added,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def remove_from_list(self, tenant_id: str, list_id: str, record_id: str) -> dict:
        members = self._lists.get((tenant_id, str(list_id)), {})
        removed = members.pop(str(record_id), None) is not None
        return {"listId": list_id, "recordId": record_id, "removed": removed}

    async def add_tag(self, tenant_id: str, record_id: str, record_type: str, tag: str) -> dict:
        tags = self._tags.setdefault((tenant_id, record_type, str(record_id)), set())
        added = tag not in tags
        tags.add(tag)
        return {"recordId": record_id, "tag": tag, "added": added}

    async def remove_tag(self, tenant_id: str, record_id: str, record_type: str, tag: str) -> dict:
        tags = self._tags.get((tenant_id, record_type, str(record_id)), set())
        removed = tag in tags
        tags.discard(tag)
        return {"recordId": record_id, "tag": tag, "removed": removed}

    async def is_in_list(self, tenant_id: str, list_id: str, record_id: str) -> bool:
        return str(record_id) in self._lists.get((tenant_id, str(list_id)), {})

    async def list_members(self, tenant_id: str, list_id: str) -> list[str]:
        return list(self._lists.get((tenant_id, str(list_id)), {}))

    async def get_tags(self, tenant_id: str, record_id: str, record_type: str) -> list[str]:
        return sorted(self._tags.get((tenant_id, record_type, str(record_id)), set()))


# ─── Singleton ─────────────────────────────────────────────────

_service: Optional[ListService] = None


def get_list_service() -> ListService:
    """Get or create the process-wide list/tag service."""
    global _service
    if _service is None:
        _service = ListService()
    return _service
