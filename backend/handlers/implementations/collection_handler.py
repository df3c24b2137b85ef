"""Collection nodes: loop over a list, filter it, sort it.

A loop runs its ``bodyNodes`` inline once per element through the engine's
body runner. The body shares the run's variable scope, so the current
element and index are plain variables.
"""

from functools import cmp_to_key
from typing import Any

import structlog

from core.utils import to_number
from handlers.base_handler import NodeHandler
from handlers.operators import compare
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)


def _field_of(item: Any, field: Any) -> Any:
    if not field:
        return item
    value = item
    for part in str(field).split("."):
        if isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def _compare_values(a: Any, b: Any) -> int:
    """None sorts first; numbers numerically; everything else as text."""
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    left, right = to_number(a), to_number(b)
    if left is not None and right is not None:
        return (left > right) - (left < right)
    left, right = str(a), str(b)
    return (left > right) - (left < right)


class CollectionHandler(NodeHandler):
    """Iterates and reshapes lists held in variables."""

    node_type = "collection"
    display_name = "Collection"

    def operations(self):
        return {
            "loop": self._loop,
            "filter_collection": self._filter,
            "sort_collection": self._sort,
        }

    def _collection(self, node: Node, context: ExecutionContext) -> tuple:
        path = node.config.get("collection") or node.config.get("collectionVariable")
        return path, self.lookup(path, context)

    async def _loop(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        path, items = self._collection(node, context)
        if items is None:
            return ExecutionResult.ok({"iterations": 0, "results": [], "completed": True, "loopIterations": 0})
        if not isinstance(items, (list, tuple)):
            return ExecutionResult.failed(f"Variable '{path}' is not a collection")

        runner = self.services.body_runner
        body = node.body_node_ids
        if body and runner is None:
            return ExecutionResult.failed("Loop body execution is not available")

        item_var = config.get("itemVariable") or "currentItem"
        index_var = config.get("indexVariable") or "currentIndex"
        max_iterations = int(config.get("maxIterations") or self.services.settings.LOOP_MAX_ITERATIONS)

        results = []
        for index, item in enumerate(items):
            if index >= max_iterations:
                logger.warning("Loop iteration cap reached", node_id=node.id, max_iterations=max_iterations)
                break
            context.set_variable(item_var, item)
            context.set_variable(index_var, index)
            if body:
                outcome = await runner(body, context)
                if not outcome.success:
                    return ExecutionResult.failed(f"Loop iteration {index} failed: {outcome.error}")
            results.append(context.get_variable(item_var))

        logger.info("Loop completed", node_id=node.id, iterations=len(results), total=len(items))
        return ExecutionResult.ok(
            {
                "iterations": len(results),
                "results": results,
                "completed": len(results) == len(items),
                "loopResults": results,
                "loopIterations": len(results),
            }
        )

    async def _filter(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        path, items = self._collection(node, context)
        if items is None:
            items = []
        if not isinstance(items, (list, tuple)):
            return ExecutionResult.failed(f"Variable '{path}' is not a collection")

        field = config.get("field")
        operator = config.get("operator", "equals")
        expected = self.resolve_value(config.get("value"), context)
        filtered = [item for item in items if compare(_field_of(item, field), operator, expected)]

        output_variable = config.get("outputVariable") or "filteredResults"
        return ExecutionResult.ok(
            {output_variable: filtered, "filtered": filtered, "count": len(filtered), "originalCount": len(items)}
        )

    async def _sort(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        path, items = self._collection(node, context)
        if items is None:
            items = []
        if not isinstance(items, (list, tuple)):
            return ExecutionResult.failed(f"Variable '{path}' is not a collection")

        field = config.get("field")
        order = str(config.get("order") or "asc").lower()
        ordered = sorted(
            items,
            key=cmp_to_key(lambda a, b: _compare_values(_field_of(a, field), _field_of(b, field))),
            reverse=order == "desc",
        )

        output_variable = config.get("outputVariable") or "sortedResults"
        return ExecutionResult.ok(
            {output_variable: ordered, "sorted": ordered, "count": len(ordered), "sortField": field, "sortOrder": order}
        )


COLLECTION_HANDLERS = {
    "collection": CollectionHandler,
}
