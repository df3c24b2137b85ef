"""Record trigger nodes.

A trigger node marks where a run enters the graph. The event has already
happened by the time the node is dispatched, so record triggers pass
through: they expose the trigger payload as ``triggerData`` and the
affected record as ``record``. Field-change subtypes also report the old
and new value of the watched field.

The ``trigger`` category additionally accepts every scheduled and event
subtype so a graph can start with e.g. ``{"type": "trigger", "subtype":
"recurring"}``.
"""

from typing import Any

import structlog

from handlers.base_handler import NodeHandler
from handlers.implementations.event_handler import EventTriggerHandler
from handlers.implementations.scheduled_handler import ScheduledTriggerHandler
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

# Field watched by default for the status/stage subtypes
_DEFAULT_FIELDS = {"status_changed": "status", "stage_changed": "stage"}


def _record_of(trigger_data: dict) -> dict:
    record = trigger_data.get("record")
    return record if isinstance(record, dict) else dict(trigger_data)


class TriggerHandler(NodeHandler):
    """Pass-through handler for record lifecycle, manual and webhook triggers."""

    node_type = "trigger"
    display_name = "Trigger"

    def __init__(self, services):
        super().__init__(services)
        self._scheduled = ScheduledTriggerHandler(services)
        self._events = EventTriggerHandler(services)

    def operations(self):
        table = {
            "record_created": self._pass_through,
            "record_updated": self._pass_through,
            "record_deleted": self._pass_through,
            "manual": self._pass_through,
            "webhook": self._pass_through,
            "field_changed": self._field_changed,
            "status_changed": self._field_changed,
            "stage_changed": self._field_changed,
        }
        table.update(self._scheduled.operations())
        table.update(self._events.operations())
        return table

    async def _pass_through(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        logger.info("Trigger passing through", subtype=node.subtype, entity=node.config.get("entity"))
        return ExecutionResult.ok(self._base_output(node, context))

    async def _field_changed(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        field = node.config.get("field") or _DEFAULT_FIELDS.get(node.subtype, "")
        trigger_data = context.trigger_data
        record = _record_of(trigger_data)

        previous: Any = trigger_data.get("previousValues") or trigger_data.get("oldRecord") or {}
        old_value = previous.get(field) if isinstance(previous, dict) else None
        if old_value is None:
            old_value = trigger_data.get("oldValue")
        new_value = record.get(field, trigger_data.get("newValue"))

        output = self._base_output(node, context)
        output.update(
            changedField=field,
            oldValue=old_value,
            newValue=new_value,
            fieldChanged=old_value != new_value,
        )
        logger.info("Field change trigger", field=field, changed=output["fieldChanged"])
        return ExecutionResult.ok(output)

    @staticmethod
    def _base_output(node: Node, context: ExecutionContext) -> dict:
        return {
            "triggered": True,
            "triggerType": node.subtype,
            "triggerData": dict(context.trigger_data),
            "record": _record_of(context.trigger_data),
        }


TRIGGER_HANDLERS = {
    "trigger": TriggerHandler,
    "scheduled": ScheduledTriggerHandler,
    "event": EventTriggerHandler,
}
