"""Event trigger nodes (button clicks, form submissions, email engagement, ...).

Each subtype copies a fixed set of fields into the variable scope. A field
comes from the node config (templates resolved) and falls back to the
trigger payload under the same key.
"""

import structlog

from handlers.base_handler import NodeHandler
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

# subtype -> ((source key, variable name), ...)
_EMAIL_FIELDS = (("emailId", "emailId"), ("recipientEmail", "recipientEmail"), ("linkUrl", "clickedLink"))
_OWNER_FIELDS = (
    ("recordId", "recordId"),
    ("recordType", "recordType"),
    ("newOwner", "newOwner"),
    ("previousOwner", "previousOwner"),
)
_MEMBERSHIP_FIELDS = (
    ("recordId", "recordId"),
    ("recordType", "recordType"),
    ("listId", "listId"),
    ("tagName", "tagName"),
)

EVENT_FIELDS = {
    "button_click": (("buttonId", "buttonId"), ("recordId", "clickedRecordId"), ("recordType", "clickedRecordType")),
    "form_submit": (("formId", "formId"), ("formData", "formData")),
    "manual_enrollment": (
        ("recordId", "enrolledRecordId"),
        ("recordType", "enrolledRecordType"),
        ("enrolledBy", "enrolledBy"),
    ),
    "email_opened": _EMAIL_FIELDS,
    "email_clicked": _EMAIL_FIELDS,
    "email_replied": _EMAIL_FIELDS,
    "page_viewed": (("pageUrl", "viewedPageUrl"), ("visitorId", "visitorId"), ("referrer", "referrer")),
    "record_assigned": _OWNER_FIELDS,
    "owner_changed": _OWNER_FIELDS,
    "added_to_list": _MEMBERSHIP_FIELDS,
    "removed_from_list": _MEMBERSHIP_FIELDS,
    "tag_added": _MEMBERSHIP_FIELDS,
    "tag_removed": _MEMBERSHIP_FIELDS,
}


class EventTriggerHandler(NodeHandler):
    """Maps an engagement or membership event into context variables."""

    node_type = "event"
    display_name = "Event Trigger"

    def operations(self):
        return {subtype: self._map_event for subtype in EVENT_FIELDS}

    async def _map_event(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        output = {"triggered": True, "eventType": node.subtype}
        for source, variable in EVENT_FIELDS[node.subtype]:
            if source in node.config:
                value = self.resolve_value(node.config[source], context)
            else:
                value = context.trigger_data.get(source)
            if value is None or value == "":
                continue
            output[variable] = value

        if node.subtype.startswith("email_"):
            output["emailEventType"] = node.subtype

        logger.info("Event trigger fired", event_type=node.subtype, fields=sorted(output))
        return ExecutionResult.ok(output)
