"""Task and activity nodes.

Creates tasks, activities, events, meetings, notes, comments and file
attachments in the activity store, linked to a record through
``entityType`` / ``entityId``, and updates existing tasks.
"""

from typing import Optional

import structlog

from handlers.base_handler import NodeHandler
from services.activity_store import ActivityKind
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

DEFAULT_ENTITY_TYPE = "Lead"


class TaskHandler(NodeHandler):
    """Task management and CRM timeline entries."""

    node_type = "task"
    display_name = "Task Management"

    def operations(self):
        return {
            "create_task": self._create_task,
            "create_activity": self._create_activity,
            "create_event": self._create_event,
            "create_meeting": self._create_meeting,
            "update_task": self._update_task,
            "complete_task": self._complete_task,
            "assign_task": self._assign_task,
            "add_note": self._add_note,
            "add_comment": self._add_comment,
            "attach_file": self._attach_file,
        }

    @property
    def store(self):
        return self.services.activity_store

    def _link(self, node: Node, context: ExecutionContext) -> dict:
        """Record the item belongs to: explicit config first, then the trigger record."""
        config = node.config
        entity_id = config.get("recordId") or config.get("entityId") or config.get("relatedTo")
        entity_type = config.get("entityType") or config.get("relatedType") or config.get("recordType")
        resolved_id = self.resolve(entity_id, context) if entity_id else ""
        if not resolved_id:
            record = context.get_variable("record") or {}
            resolved_id = str(record.get("id", "")) if isinstance(record, dict) else ""
        return {"entityType": entity_type or DEFAULT_ENTITY_TYPE, "entityId": resolved_id}

    def _fields(self, node: Node, context: ExecutionContext, *keys: str) -> dict:
        return {k: self.resolve_value(node.config[k], context) for k in keys if k in node.config}

    async def _create(
        self, node: Node, context: ExecutionContext, kind: ActivityKind, data: dict, variable: str, id_key: str
    ) -> ExecutionResult:
        item = await self.store.create(context.tenant_id, kind, {**self._link(node, context), **data})
        logger.info("Created activity item", kind=kind.value, item_id=item["id"], node_id=node.id)
        return ExecutionResult.ok(
            {
                "created": True,
                variable: item,
                id_key: item["id"],
            }
        )

    async def _create_task(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = self._fields(node, context, "title", "description", "assignTo", "dueDate")
        data["priority"] = str(node.config.get("priority", "MEDIUM")).upper()
        return await self._create(node, context, ActivityKind.TASK, data, "createdTask", "taskId")

    async def _create_activity(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = self._fields(node, context, "title", "subject", "description", "assignTo", "dueDate")
        data["activityType"] = node.config.get("activityType", "CALL")
        return await self._create(node, context, ActivityKind.ACTIVITY, data, "createdActivity", "activityId")

    async def _create_event(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = self._fields(node, context, "title", "startDate", "endDate", "location", "description")
        return await self._create(node, context, ActivityKind.EVENT, data, "createdEvent", "eventId")

    async def _create_meeting(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = self._fields(
            node, context, "title", "startDate", "endDate", "startTime", "endTime", "location", "attendees"
        )
        return await self._create(node, context, ActivityKind.MEETING, data, "createdMeeting", "meetingId")

    async def _add_note(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = {
            "content": self._text(node, context, "note"),
            "createdBy": self.resolve(node.config.get("createdBy"), context) or None,
        }
        return await self._create(node, context, ActivityKind.NOTE, data, "createdNote", "noteId")

    async def _add_comment(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = {
            "content": self._text(node, context, "comment"),
            "createdBy": self.resolve(node.config.get("createdBy"), context) or None,
        }
        return await self._create(node, context, ActivityKind.COMMENT, data, "createdComment", "commentId")

    async def _attach_file(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        data = self._fields(node, context, "fileName", "fileUrl", "fileId", "uploadedBy")
        return await self._create(node, context, ActivityKind.ATTACHMENT, data, "createdAttachment", "attachmentId")

    def _text(self, node: Node, context: ExecutionContext, preferred: str) -> str:
        for key in (preferred, "note", "comment", "content"):
            if node.config.get(key):
                return self.resolve(node.config[key], context)
        return ""

    # ─── Existing tasks ───

    async def _existing(self, node: Node, context: ExecutionContext) -> tuple:
        task_id = self.resolve(node.config.get("taskId"), context)
        task = await self.store.get(task_id)
        return task_id, task

    @staticmethod
    def _missing(task_id: Optional[str]) -> ExecutionResult:
        return ExecutionResult.failed(f"Task not found: {task_id}")

    async def _update_task(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        task_id, task = await self._existing(node, context)
        if task is None:
            return self._missing(task_id)
        updates = self.resolve_map(node.config.get("updates") or node.config.get("fields"), context)
        updated = await self.store.update(task_id, updates)
        return ExecutionResult.ok({"updated": True, "updatedTask": updated, "taskId": task_id})

    async def _complete_task(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        task_id, task = await self._existing(node, context)
        if task is None:
            return self._missing(task_id)
        notes = self.resolve(node.config.get("completionNotes"), context) or None
        completed = await self.store.complete_task(task_id, notes)
        return ExecutionResult.ok({"completed": True, "completedTask": completed, "taskId": task_id})

    async def _assign_task(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        task_id, task = await self._existing(node, context)
        if task is None:
            return self._missing(task_id)
        assignee = self.resolve(node.config.get("assignTo"), context)
        assigned = await self.store.assign_task(task_id, assignee)
        return ExecutionResult.ok(
            {"assigned": True, "taskId": task_id, "assignedTo": assignee, "taskAssignment": assigned}
        )


TASK_HANDLERS = {
    "task": TaskHandler,
}
