"""List and tag membership nodes."""

import structlog

from handlers.base_handler import NodeHandler
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)


class ListHandler(NodeHandler):

    node_type = "list"
    display_name = "List Management"

    def operations(self):
        return {
            "add_to_list": self._add_to_list,
            "remove_from_list": self._remove_from_list,
            "add_tag": self._add_tag,
            "remove_tag": self._remove_tag,
        }

    def _target(self, node: Node, context: ExecutionContext) -> tuple:
        record_id = self.resolve(node.config.get("recordId"), context)
        if not record_id:
            record = context.get_variable("record")
            record_id = str(record.get("id", "")) if isinstance(record, dict) else ""
        return record_id, str(node.config.get("recordType") or "Lead")

    async def _add_to_list(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        record_id, record_type = self._target(node, context)
        list_id = self.resolve(node.config.get("listId"), context)
        if not record_id or not list_id:
            return ExecutionResult.failed("add_to_list requires recordId and listId")

        result = await self.services.list_service.add_to_list(context.tenant_id, list_id, record_id, record_type)
        logger.info("Record added to list", record_id=record_id, list_id=list_id, added=result["added"])
        return ExecutionResult.ok({"listResult": result, "addedToList": list_id})

    async def _remove_from_list(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        record_id, _ = self._target(node, context)
        list_id = self.resolve(node.config.get("listId"), context)
        result = await self.services.list_service.remove_from_list(context.tenant_id, list_id, record_id)
        return ExecutionResult.ok({"listResult": result, "removedFromList": list_id})

    async def _add_tag(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        record_id, record_type = self._target(node, context)
        tag = self.resolve(node.config.get("tag"), context).strip()
        if not tag:
            return ExecutionResult.failed("add_tag requires a tag")

        result = await self.services.list_service.add_tag(context.tenant_id, record_id, record_type, tag)
        logger.info("Tag added", record_id=record_id, tag=tag, added=result["added"])
        return ExecutionResult.ok({"tagResult": result, "tagAdded": tag})

    async def _remove_tag(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        record_id, record_type = self._target(node, context)
        tag = self.resolve(node.config.get("tag"), context).strip()
        result = await self.services.list_service.remove_tag(context.tenant_id, record_id, record_type, tag)
        return ExecutionResult.ok({"tagResult": result, "tagRemoved": tag})


LIST_HANDLERS = {
    "list": ListHandler,
}
