"""Data operation nodes.

Query, create, update and delete business records through the entity
store; set, copy, clear and count workflow variables; route a record to an
owner through the assignment engine.
"""

from typing import Any, Optional

import structlog

from core.utils import to_number
from handlers.base_handler import NodeHandler
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

DEFAULT_QUERY_LIMIT = 100


def _as_int_if_whole(value: float) -> Any:
    return int(value) if float(value).is_integer() else value


class DataHandler(NodeHandler):
    """Record CRUD, variable field operations and owner assignment."""

    node_type = "data"
    display_name = "Data Operation"

    def operations(self):
        return {
            "get_records": self._query,
            "query_database": self._query,
            "search_records": self._search,
            "create_record": self._create,
            "create_multiple": self._create_multiple,
            "clone_record": self._clone,
            "update_record": self._update,
            "update_multiple": self._update_multiple,
            "update_related": self._update_related,
            "delete_record": self._delete,
            "delete_multiple": self._delete_multiple,
            "set_field": self._set_field,
            "copy_field": self._copy_field,
            "clear_field": self._clear_field,
            "increment": self._increment,
            "decrement": self._decrement,
            "assign_record": self._assign,
            "rotate_owner": self._rotate_owner,
            "assign_team": self._assign_team,
        }

    @property
    def store(self):
        return self.services.entity_store

    # ─── Queries ───

    async def _query(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        entity = config.get("entity")
        criteria = self.resolve_map(config.get("criteria"), context)
        limit = int(config.get("limit", DEFAULT_QUERY_LIMIT))

        records = await self.store.query(context.tenant_id, entity, criteria, limit)
        logger.info("Query returned records", entity=entity, count=len(records))
        return ExecutionResult.ok(
            {"records": records, "count": len(records), "queryResults": records, "recordCount": len(records)}
        )

    async def _search(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        entity = config.get("entity")
        field = config.get("searchField") or "name"
        value = self.resolve(config.get("searchValue"), context)
        limit = int(config.get("limit", DEFAULT_QUERY_LIMIT))

        records = await self.store.search(context.tenant_id, entity, field, value, limit)
        logger.info("Search returned records", entity=entity, field=field, count=len(records))
        return ExecutionResult.ok(
            {"records": records, "count": len(records), "queryResults": records, "recordCount": len(records)}
        )

    # ─── Create ───

    async def _create(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        fields = self.resolve_map(node.config.get("fields"), context)
        record = await self.store.create(context.tenant_id, entity, fields)
        logger.info("Created record", entity=entity, record_id=record.get("id"))
        return ExecutionResult.ok({"record": record, "created": True, "createdRecord": record})

    async def _create_multiple(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        rows = node.config.get("records")
        if rows is None:
            rows = node.config.get("fields")
        if not isinstance(rows, list):
            return ExecutionResult.failed("create_multiple requires a list of records")

        created = []
        for row in rows:
            created.append(await self.store.create(context.tenant_id, entity, self.resolve_map(row, context)))
        logger.info("Created records", entity=entity, count=len(created))
        return ExecutionResult.ok({"records": created, "count": len(created), "created": True})

    async def _clone(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        record_id = self.resolve(node.config.get("recordId"), context)
        overrides = self.resolve_map(node.config.get("overrideFields"), context)

        clone = await self.store.clone(context.tenant_id, entity, record_id, overrides)
        if clone is None:
            return ExecutionResult.failed(f"Record not found: {entity} {record_id}")
        return ExecutionResult.ok({"record": clone, "cloned": True, "sourceRecordId": record_id})

    # ─── Update ───

    async def _update(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        record_id = self.resolve(node.config.get("recordId"), context)
        fields = self.resolve_map(node.config.get("fields"), context)

        record = await self.store.update(context.tenant_id, entity, record_id, fields)
        if record is None:
            return ExecutionResult.failed(f"Record not found: {entity} {record_id}")
        logger.info("Updated record", entity=entity, record_id=record_id)
        return ExecutionResult.ok({"record": record, "recordId": record_id, "updated": True, "updatedRecord": record})

    async def _target_ids(self, node: Node, context: ExecutionContext) -> list:
        ids = self.resolve_value(node.config.get("recordIds"), context)
        if isinstance(ids, list):
            return [str(i) for i in ids]
        if isinstance(ids, str) and ids:
            return [part.strip() for part in ids.split(",") if part.strip()]
        criteria = self.resolve_map(node.config.get("criteria"), context)
        if criteria:
            rows = await self.store.query(context.tenant_id, node.config.get("entity"), criteria)
            return [r["id"] for r in rows]
        record_id = self.resolve(node.config.get("recordId"), context)
        return [record_id] if record_id else []

    async def _update_multiple(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        fields = self.resolve_map(node.config.get("fields"), context)
        updated = []
        for record_id in await self._target_ids(node, context):
            record = await self.store.update(context.tenant_id, entity, record_id, fields)
            if record is not None:
                updated.append(record)
        logger.info("Updated records", entity=entity, count=len(updated))
        return ExecutionResult.ok({"records": updated, "count": len(updated), "updated": True})

    async def _update_related(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        record_id = self.resolve(config.get("recordId"), context)
        related_entity = config.get("relatedEntity")
        relationship_field = config.get("relationshipField") or f"{str(config.get('entity', '')).lower()}Id"
        fields = self.resolve_map(config.get("fields"), context)

        related = await self.store.query(context.tenant_id, related_entity, {relationship_field: record_id})
        for row in related:
            await self.store.update(context.tenant_id, related_entity, row["id"], fields)

        logger.info("Updated related records", related_entity=related_entity, count=len(related))
        return ExecutionResult.ok(
            {
                "entity": config.get("entity"),
                "recordId": record_id,
                "relatedEntity": related_entity,
                "relationshipField": relationship_field,
                "updatedCount": len(related),
                "updated": True,
            }
        )

    # ─── Delete ───

    async def _delete(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        record_id = self.resolve(node.config.get("recordId"), context)
        deleted = await self.store.delete(context.tenant_id, entity, record_id)
        logger.info("Deleted record", entity=entity, record_id=record_id, deleted=deleted)
        return ExecutionResult.ok({"recordId": record_id, "deleted": deleted})

    async def _delete_multiple(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        entity = node.config.get("entity")
        count = 0
        for record_id in await self._target_ids(node, context):
            if await self.store.delete(context.tenant_id, entity, record_id):
                count += 1
        return ExecutionResult.ok({"count": count, "deleted": count > 0})

    # ─── Variable fields ───

    async def _set_field(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        field = node.config.get("field")
        value = self.resolve_value(node.config.get("value"), context)
        context.set_variable(field, value)
        return ExecutionResult.ok({"field": field, "value": value})

    async def _copy_field(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        source, target = node.config.get("sourceField"), node.config.get("targetField")
        value = self.lookup(source, context)
        context.set_variable(target, value)
        return ExecutionResult.ok({"sourceField": source, "targetField": target})

    async def _clear_field(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        field = node.config.get("field")
        context.set_variable(field, None)
        return ExecutionResult.ok({"clearedField": field})

    async def _adjust(self, node: Node, context: ExecutionContext, sign: int) -> ExecutionResult:
        field = node.config.get("field")
        amount = to_number(self.resolve_value(node.config.get("amount", 1), context))
        if amount is None:
            return ExecutionResult.failed(f"Amount must be a number: {node.config.get('amount')}")
        current = context.get_variable(field)
        base = to_number(current) if current not in (None, "") else 0.0
        if base is None:
            return ExecutionResult.failed(f"Field {field} is not numeric: {current}")

        value = _as_int_if_whole(base + sign * amount)
        context.set_variable(field, value)
        return ExecutionResult.ok({"field": field, "value": value})

    async def _increment(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        return await self._adjust(node, context, 1)

    async def _decrement(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        return await self._adjust(node, context, -1)

    # ─── Assignment ───

    def _assignment_record(self, node: Node, context: ExecutionContext) -> dict:
        record = dict(context.trigger_data)
        scoped = context.get_variable("record")
        if isinstance(scoped, dict):
            record.update(scoped)
        record.update(self.resolve_map(node.config.get("leadData"), context))
        return record

    async def _persist_owner(self, node: Node, context: ExecutionContext, owner_field: str, value: Any) -> Optional[dict]:
        entity = node.config.get("entity")
        record_id = self.resolve(node.config.get("recordId"), context)
        if not entity or not record_id:
            return None
        return await self.store.update(context.tenant_id, entity, record_id, {owner_field: value})

    async def _assign(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        strategy = config.get("strategy", "ROUND_ROBIN")
        strategy_config = self.resolve_map(config.get("strategyConfig"), context)
        record = self._assignment_record(node, context)

        owner = self.services.assignment.assign(record, strategy, strategy_config)
        if owner is None:
            logger.warning("Assignment returned no owner", strategy=strategy, node_id=node.id)
            return ExecutionResult.failed("No user available for assignment")

        owner_field = config.get("ownerField") or "ownerId"
        await self._persist_owner(node, context, owner_field, owner)
        logger.info("Record assigned", owner=owner, strategy=strategy)
        return ExecutionResult.ok(
            {
                "assignedTo": owner,
                "strategy": strategy,
                "success": True,
                "assignedUserId": owner,
                "assignmentStrategy": strategy,
            }
        )

    async def _rotate_owner(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        owner_field = node.config.get("ownerField") or "ownerId"
        previous = self._assignment_record(node, context).get(owner_field)
        result = await self._assign(node, context)
        if result.success and previous and previous != result.output["assignedTo"]:
            self.services.assignment.release(str(previous))
            result.output["previousOwner"] = previous
        return result

    async def _assign_team(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        team_id = self.resolve(node.config.get("teamId"), context)
        await self._persist_owner(node, context, node.config.get("teamField") or "teamId", team_id)
        logger.info("Record assigned to team", team_id=team_id)
        return ExecutionResult.ok({"assignedTeam": team_id, "assignedTeamId": team_id, "success": True})


DATA_HANDLERS = {
    "data": DataHandler,
}
