"""Workflow Validator — static analysis of a graph before activation.

Two passes:

- Per-node checks, table-driven by ``(type, subtype)``: required config
  fields, value-range sanity, format checks (email, phone, URL, cron).
- Structural checks: at least one trigger node, reachability from the
  triggers, dangling edge targets, and cycle detection (iterative DFS with
  a recursion stack; reconvergent branches are not cycles).

Errors block activation, warnings do not. ``validate`` never raises: a
config value of the wrong shape is itself reported as an error.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from croniter import croniter

from core.constants import NodeType, TRIGGER_NODE_TYPES
from workflow.formula import FormulaEngine
from workflow.models import Node, WorkflowGraph
from workflow.schemas import parse_graph

logger = logging.getLogger(__name__)

WORKFLOW_SCOPE = "WORKFLOW"

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
URL_PATTERN = re.compile(r"^https?://.*", re.IGNORECASE)
HTTP_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}
TIME_UNITS = {"MINUTES", "HOURS", "DAYS", "WEEKS"}

CONDITION_OPERATORS = {
    "equals", "not_equals", "contains", "not_contains",
    "starts_with", "ends_with", "greater_than", "less_than",
    "greater_than_or_equal", "less_than_or_equal",
    "is_null", "is_not_null", "is_empty", "is_not_empty",
    "in", "not_in",
    "==", "!=", ">", "<", ">=", "<=",
}
NULL_CHECK_OPERATORS = {"is_null", "is_not_null", "is_empty", "is_not_empty"}

ENTITY_REQUIRED_FIELDS = {
    "LEAD": ("firstName", "lastName", "email"),
    "CONTACT": ("firstName", "lastName", "email"),
    "DEAL": ("name", "amount", "stage"),
    "ACCOUNT": ("name",),
    "TASK": ("title", "assignTo"),
}

LOOP_ITERATION_WARNING = 1000
QUERY_LIMIT_WARNING = 10000
BULK_RECIPIENT_WARNING = 1000
APPROVER_COUNT_WARNING = 10
MAX_RETRIES_WARNING = 10
LONG_WAIT_DAYS = 365


# ─── Report ───────────────────────────────────────────────────

@dataclass
class ValidationIssue:
    """One finding of the validator."""
    severity: str  # ERROR or WARNING
    node_id: str
    message: str

    def to_dict(self) -> dict:
        return {"severity": self.severity, "nodeId": self.node_id, "message": self.message}


@dataclass
class ValidationResult:
    """Errors and warnings for a graph."""
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, node_id: str, message: str) -> None:
        self.errors.append(ValidationIssue("ERROR", node_id, message))

    def add_warning(self, node_id: str, message: str) -> None:
        self.warnings.append(ValidationIssue("WARNING", node_id, message))

    def errors_for(self, node_id: str) -> list[str]:
        return [e.message for e in self.errors if e.node_id == node_id]

    def warnings_for(self, node_id: str) -> list[str]:
        return [w.message for w in self.warnings if w.node_id == node_id]

    def to_dict(self) -> dict:
        return {
            "valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ─── Rule helpers ─────────────────────────────────────────────

Rule = Callable[[str, dict, ValidationResult], None]


def _present(config: dict, key: str) -> bool:
    value = config.get(key)
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and len(value) == 0:
        return False
    return True


def _is_template(value: Any) -> bool:
    return isinstance(value, str) and "{{" in value and "}}" in value


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def required(key: str, message: str) -> Rule:
    def rule(node_id, config, result):
        if not _present(config, key):
            result.add_error(node_id, message)
    return rule


def required_any(keys: tuple, message: str) -> Rule:
    def rule(node_id, config, result):
        if not any(_present(config, k) for k in keys):
            result.add_error(node_id, message)
    return rule


def recommended(key: str, message: str) -> Rule:
    def rule(node_id, config, result):
        if not _present(config, key):
            result.add_warning(node_id, message)
    return rule


# ─── Custom checks ────────────────────────────────────────────

def _check_cron_or_date(node_id, config, result):
    schedule = config.get("schedule")
    if _present(config, "schedule"):
        if not croniter.is_valid(str(schedule)):
            result.add_error(node_id, f"Invalid cron expression: {schedule}")
    elif not _present(config, "scheduledDate"):
        result.add_error(node_id, "Scheduled trigger must have cron expression or scheduledDate")


def _check_recurring(node_id, config, result):
    frequency = str(config.get("frequency", "daily")).lower()
    if frequency not in ("daily", "weekly", "monthly", "yearly"):
        result.add_error(node_id, f"Invalid recurrence frequency: {frequency}")
    interval = _as_int(config.get("interval", 1))
    if interval is None or interval < 1:
        result.add_error(node_id, "Recurrence interval must be at least 1")


def _check_field_condition(node_id, config, result):
    if not _present(config, "field"):
        result.add_error(node_id, "Condition must specify field to check")
    operator = config.get("operator")
    if not operator:
        result.add_error(node_id, "Condition must specify operator (equals, greater_than, etc.)")
        return
    if operator not in CONDITION_OPERATORS:
        result.add_error(node_id, f"Invalid operator: {operator}")
    elif operator not in NULL_CHECK_OPERATORS and "value" not in config:
        result.add_error(node_id, "Condition must specify value to compare")


def _check_multi_branch(node_id, config, result):
    cases = config.get("cases") or config.get("branches")
    if not cases:
        result.add_error(node_id, "Multi-branch condition must define cases")
        return
    if not isinstance(cases, list):
        result.add_error(node_id, "Multi-branch cases must be a list")
        return
    for index, case in enumerate(cases):
        if not isinstance(case, dict) or not case.get("outcome"):
            result.add_error(node_id, f"Case {index + 1} must specify an outcome")


def _check_loop(node_id, config, result):
    if not _present(config, "collection"):
        result.add_error(node_id, "Loop must specify collection to iterate")
    if "maxIterations" not in config:
        result.add_warning(node_id, "Loop should have maxIterations to prevent infinite loops")
        return
    max_iterations = _as_int(config.get("maxIterations"))
    if max_iterations is None or max_iterations < 1:
        result.add_error(node_id, "Loop maxIterations must be a positive number")
    elif max_iterations > LOOP_ITERATION_WARNING:
        result.add_warning(
            node_id,
            f"Loop maxIterations is very high ({max_iterations}), may cause performance issues",
        )


def _check_formula(node_id, config, result):
    formula = config.get("formula")
    if not _present(config, "formula"):
        result.add_error(node_id, "Formula condition must specify formula")
    elif not FormulaEngine.validate_formula(str(formula)):
        result.add_error(node_id, "Invalid formula syntax")


def _check_query(node_id, config, result):
    if not _present(config, "criteria") and not _present(config, "query") and not _present(config, "searchValue"):
        result.add_warning(node_id, "Query should have criteria or query string")
    limit = _as_int(config.get("limit"))
    if limit is not None and limit > QUERY_LIMIT_WARNING:
        result.add_warning(node_id, f"Query limit is very high ({limit}), may cause performance issues")


def _check_create(node_id, config, result):
    fields = config.get("fields")
    entity = str(config.get("entity", "")).upper()
    if not fields:
        result.add_error(node_id, "Create operation must specify fields")
        return
    records = fields if isinstance(fields, list) else [fields]
    for record in records:
        if not isinstance(record, dict):
            result.add_error(node_id, "Create fields must be a mapping")
            continue
        for required_field in ENTITY_REQUIRED_FIELDS.get(entity, ()):
            if required_field not in record:
                result.add_error(node_id, f"Missing required field for {entity}: {required_field}")


def _check_delete(node_id, config, result):
    if not _present(config, "recordId") and not _present(config, "recordIds") and not _present(config, "criteria"):
        result.add_error(node_id, "Delete operation must specify recordId or criteria")
    result.add_warning(node_id, "Delete operation is irreversible - ensure proper safeguards")


def _check_update(node_id, config, result):
    if not _present(config, "recordId") and not _present(config, "recordIds") and not _present(config, "criteria"):
        result.add_error(node_id, "Update operation must specify recordId or criteria")
    if not _present(config, "fields"):
        result.add_error(node_id, "Update operation must specify fields to update")


def _check_set_field(node_id, config, result):
    if "value" not in config:
        result.add_error(node_id, "Set field operation must specify value")


def _check_increment(node_id, config, result):
    if "amount" in config and not _is_template(config["amount"]) and _as_int(config["amount"]) is None:
        try:
            float(config["amount"])
        except (TypeError, ValueError):
            result.add_error(node_id, "Amount must be a number")


def _check_email(node_id, config, result):
    to = config.get("to")
    if not to:
        result.add_error(node_id, "Email must specify recipient (to)")
    else:
        recipients = to if isinstance(to, list) else [to]
        for address in recipients:
            if not _is_template(address) and not EMAIL_PATTERN.match(str(address)):
                result.add_error(node_id, f"Invalid email address: {address}")
    if not _present(config, "subject"):
        result.add_error(node_id, "Email must have subject")
    if not _present(config, "body") and not _present(config, "templateId"):
        result.add_error(node_id, "Email must have body or templateId")


def _check_bulk_email(node_id, config, result):
    recipients = config.get("recipients")
    if not recipients:
        result.add_error(node_id, "Bulk email must specify recipients list")
    elif isinstance(recipients, list) and len(recipients) > BULK_RECIPIENT_WARNING:
        result.add_warning(
            node_id, f"Bulk email has {len(recipients)} recipients, may hit rate limits"
        )
    if not _present(config, "templateId") and not _present(config, "body"):
        result.add_error(node_id, "Bulk email must specify templateId or body")


def _check_phone(node_id, config, result):
    phone = config.get("phoneNumber")
    if not phone:
        result.add_error(node_id, "SMS/WhatsApp must specify phoneNumber")
    elif not _is_template(phone) and not PHONE_PATTERN.match(str(phone)):
        result.add_warning(node_id, f"Phone number format may be invalid: {phone}")
    if not _present(config, "message") and not _present(config, "templateName") and not _present(config, "templateId"):
        result.add_error(node_id, "SMS/WhatsApp must have message or templateId")


def _check_approval(node_id, config, result):
    approvers = config.get("approvers") or config.get("reviewers") or config.get("steps")
    if approvers is None:
        result.add_error(node_id, "Approval must specify approvers")
    elif isinstance(approvers, list):
        flat = [a for step in approvers for a in (step if isinstance(step, list) else [step])]
        if not flat:
            result.add_error(node_id, "Approval must have at least one approver")
        elif len(flat) > APPROVER_COUNT_WARNING:
            result.add_warning(node_id, f"Approval has many approvers ({len(flat)}), may cause delays")
    if not _present(config, "message"):
        result.add_warning(node_id, "Approval should have message for approvers")
    if "expiresIn" in config:
        expires_in = _as_int(config["expiresIn"])
        if expires_in is None or expires_in < 1:
            result.add_error(node_id, "Approval expiration must be at least 1 hour")
    required_approvals = config.get("requiredApprovals")
    if required_approvals is not None:
        count = _as_int(required_approvals)
        if count is None or count < 1:
            result.add_error(node_id, "requiredApprovals must be at least 1")
        elif isinstance(approvers, list) and count > len(approvers):
            result.add_error(node_id, "requiredApprovals exceeds the number of approvers")


def _check_wait_duration(node_id, config, result):
    if "duration" not in config:
        result.add_error(node_id, "Wait duration must specify duration")
    else:
        duration = _as_int(config["duration"])
        if not _is_template(config["duration"]):
            if duration is None or duration < 1:
                result.add_error(node_id, "Duration must be at least 1")
            elif str(config.get("unit", "")).upper() == "DAYS" and duration > LONG_WAIT_DAYS:
                result.add_warning(node_id, f"Wait duration is very long ({duration} days)")
    unit = config.get("unit")
    if not unit:
        result.add_error(node_id, "Wait duration must specify unit (MINUTES, HOURS, DAYS, WEEKS)")
    elif str(unit).upper() not in TIME_UNITS:
        result.add_error(node_id, f"Invalid time unit: {unit}")


def _check_http(node_id, config, result):
    url = config.get("url")
    if not url:
        result.add_error(node_id, "Webhook/API call must specify url")
    elif not _is_template(url) and not URL_PATTERN.match(str(url)):
        result.add_error(node_id, f"Invalid URL: {url}")
    method = config.get("method")
    if not method:
        result.add_warning(node_id, "HTTP method not specified, will default to POST")
    elif str(method).upper() not in HTTP_METHODS:
        result.add_error(node_id, f"Invalid HTTP method: {method}")
    if "timeout" not in config:
        result.add_warning(node_id, "No timeout specified, may cause workflow to hang")


def _check_list(node_id, config, result, subtype: str):
    if not _present(config, "recordId"):
        result.add_error(node_id, "List operation must specify recordId")
    if "list" in subtype and not _present(config, "listId"):
        result.add_error(node_id, "List operation must specify listId")
    if "tag" in subtype and not _present(config, "tag"):
        result.add_error(node_id, "Tag operation must specify tag")


def _check_retry(node_id, config, result):
    if "maxRetries" not in config:
        result.add_warning(node_id, "Retry should specify maxRetries")
    else:
        max_retries = _as_int(config["maxRetries"])
        if max_retries is None or max_retries < 0:
            result.add_error(node_id, "maxRetries must be zero or a positive number")
        elif max_retries > MAX_RETRIES_WARNING:
            result.add_warning(node_id, f"Max retries is very high ({max_retries})")
    if "retryDelay" in config:
        delay = _as_int(config["retryDelay"])
        if delay is None or delay < 0:
            result.add_error(node_id, "retryDelay must be zero or a positive number")


def _check_error_action(node_id, config, result):
    action = str(config.get("action", "LOG")).upper()
    if action not in ("LOG", "NOTIFY", "CONTINUE", "STOP"):
        result.add_error(node_id, f"Invalid error action: {action}")


# ─── Rule table ───────────────────────────────────────────────

_ENTITY = required("entity", "Trigger must specify entity (LEAD, CONTACT, DEAL, etc.)")

_RECORD_TRIGGER = [_ENTITY]
_FIELD_TRIGGER = [
    required("entity", "Trigger must specify entity"),
    required("field", "Trigger must specify which field changed"),
]
_EMAIL_TRIGGER = [required_any(("emailId", "campaignId"), "Email trigger must specify emailId or campaignId")]
_DATE_TRIGGER = [
    required("dateField", "Date-based trigger must specify date field"),
    recommended("offsetDays", "Date-based trigger should specify offset (e.g., -7 days)"),
]

_FIELD_OPERATION = [required("field", "Field operation must specify field")]
_ASSIGNMENT = [
    required("entity", "Assignment must specify entity"),
    required("recordId", "Assignment must specify recordId"),
]

_TASK_CREATE = [
    required("title", "Task must have title"),
    required("assignTo", "Task must specify assignTo user"),
    recommended("dueDate", "Task should have dueDate"),
]
_EVENT_CREATE = [
    required("title", "Event must have title"),
    required("startDate", "Event must have startDate"),
    required("endDate", "Event must have endDate"),
]

_NOTIFICATION = [
    required_any(("userId", "userIds"), "Notification must specify userId or userIds"),
    required("title", "Notification must have title"),
    required("message", "Notification must have message"),
]
_CHAT = [
    required("channel", "Chat message must specify channel"),
    required("message", "Chat message must have message"),
]

_EVENT_SUBTYPES = {
    "button_click": [],
    "form_submit": [required("formId", "Form submission trigger must specify formId")],
    "manual_enrollment": [],
    "email_opened": _EMAIL_TRIGGER,
    "email_clicked": _EMAIL_TRIGGER,
    "email_replied": _EMAIL_TRIGGER,
    "page_viewed": [],
    "record_assigned": [],
    "owner_changed": [],
    "added_to_list": [],
    "removed_from_list": [],
    "tag_added": [],
    "tag_removed": [],
}

_SCHEDULED_SUBTYPES = {
    "scheduled": [_check_cron_or_date],
    "date_based": _DATE_TRIGGER,
    "recurring": [_check_recurring],
}

RULES: dict[str, dict[str, list[Rule]]] = {
    NodeType.TRIGGER.value: {
        "record_created": _RECORD_TRIGGER,
        "record_updated": _RECORD_TRIGGER,
        "record_deleted": _RECORD_TRIGGER,
        "field_changed": _FIELD_TRIGGER,
        "status_changed": _FIELD_TRIGGER,
        "stage_changed": _FIELD_TRIGGER,
        "manual": [],
        "webhook": [],
        **_SCHEDULED_SUBTYPES,
        **_EVENT_SUBTYPES,
    },
    NodeType.SCHEDULED.value: _SCHEDULED_SUBTYPES,
    NodeType.EVENT.value: _EVENT_SUBTYPES,
    NodeType.CONDITION.value: {
        "if_else": [_check_field_condition],
        "field_check": [_check_field_condition],
        "multi_branch": [_check_multi_branch],
        "switch": [_check_multi_branch],
        "compare_fields": [
            required("field1", "Must specify first field"),
            required("field2", "Must specify second field"),
            required("operator", "Must specify comparison operator"),
        ],
        "formula": [_check_formula],
    },
    NodeType.COLLECTION.value: {
        "loop": [_check_loop],
        "filter_collection": [
            required("collection", "Filter must specify collection"),
            required("field", "Filter must specify field"),
            required("operator", "Filter must specify operator"),
        ],
        "sort_collection": [
            required("collection", "Sort must specify collection"),
            required("field", "Sort must specify field"),
        ],
    },
    NodeType.DATA.value: {
        "get_records": [required("entity", "Query must specify entity"), _check_query],
        "query_database": [required("entity", "Query must specify entity"), _check_query],
        "search_records": [required("entity", "Query must specify entity"), _check_query],
        "create_record": [required("entity", "Create operation must specify entity"), _check_create],
        "create_multiple": [required("entity", "Create operation must specify entity"), _check_create],
        "clone_record": [
            required("entity", "Clone operation must specify entity"),
            required("recordId", "Clone operation must specify recordId"),
        ],
        "update_record": [required("entity", "Update operation must specify entity"), _check_update],
        "update_multiple": [required("entity", "Update operation must specify entity"), _check_update],
        "update_related": [
            required("entity", "Update operation must specify entity"),
            required("relatedEntity", "Related update must specify relatedEntity"),
            required("fields", "Update operation must specify fields to update"),
        ],
        "delete_record": [required("entity", "Delete operation must specify entity"), _check_delete],
        "delete_multiple": [required("entity", "Delete operation must specify entity"), _check_delete],
        "set_field": _FIELD_OPERATION + [_check_set_field],
        "copy_field": [
            required("sourceField", "Copy field operation must specify sourceField"),
            required("targetField", "Copy field operation must specify targetField"),
        ],
        "clear_field": _FIELD_OPERATION,
        "increment": [required("field", "Increment/Decrement must specify field"), _check_increment],
        "decrement": [required("field", "Increment/Decrement must specify field"), _check_increment],
        "assign_record": _ASSIGNMENT,
        "rotate_owner": _ASSIGNMENT,
        "assign_team": _ASSIGNMENT + [required("teamId", "Team assignment must specify team")],
    },
    NodeType.COMMUNICATION.value: {
        "send_email": [_check_email],
        "send_template_email": [
            required("to", "Email must specify recipient"),
            required("templateId", "Template email must specify templateId"),
        ],
        "send_bulk_email": [_check_bulk_email],
        "send_sms": [_check_phone],
        "send_whatsapp": [_check_phone],
        "send_notification": _NOTIFICATION,
        "internal_notification": _NOTIFICATION,
        "push_notification": _NOTIFICATION,
        "post_to_chat": _CHAT,
        "slack_message": _CHAT,
    },
    NodeType.TASK.value: {
        "create_task": _TASK_CREATE,
        "create_activity": _TASK_CREATE,
        "create_event": _EVENT_CREATE,
        "create_meeting": _EVENT_CREATE + [recommended("attendees", "Meeting should have attendees")],
        "update_task": [required("taskId", "Task operation must specify taskId")],
        "complete_task": [required("taskId", "Task operation must specify taskId")],
        "assign_task": [
            required("taskId", "Task operation must specify taskId"),
            required("assignTo", "Task assignment must specify assignTo user"),
        ],
        "add_note": [
            required("recordId", "Note/Comment must specify recordId"),
            required_any(("note", "comment", "content"), "Must specify note or comment text"),
        ],
        "add_comment": [
            required("recordId", "Note/Comment must specify recordId"),
            required_any(("note", "comment", "content"), "Must specify note or comment text"),
        ],
        "attach_file": [
            required("recordId", "File attachment must specify recordId"),
            required_any(("fileUrl", "fileId"), "File attachment must specify fileUrl or fileId"),
        ],
    },
    NodeType.APPROVAL.value: {
        "approval_step": [_check_approval],
        "multi_step_approval": [_check_approval],
        "parallel_approval": [_check_approval],
        "review_process": [_check_approval],
    },
    NodeType.DELAY.value: {
        "wait_duration": [_check_wait_duration],
        "wait_until_date": [required("targetDate", "Wait until date must specify targetDate")],
        "wait_for_event": [
            required("eventType", "Wait for event must specify eventType"),
            recommended("timeoutMinutes", "Wait for event should have timeout to prevent indefinite waiting"),
        ],
        "schedule_action": [required("scheduleTime", "Schedule action must specify scheduleTime")],
    },
    NodeType.INTEGRATION.value: {
        "webhook": [_check_http],
        "api_call": [_check_http],
        "custom_function": [required("functionName", "Custom function must specify functionName")],
        "call_subflow": [required("subflowId", "Sub-workflow call must specify subflowId")],
        "external_service": [
            required("serviceName", "External service must specify serviceName"),
            required_any(("action", "method"), "External service must specify action"),
        ],
    },
    NodeType.LIST.value: {
        "add_to_list": [],
        "remove_from_list": [],
        "add_tag": [],
        "remove_tag": [],
    },
    NodeType.ERROR.value: {
        "error_handler": [_check_error_action],
        "retry_on_failure": [_check_retry],
        "stop_workflow": [recommended("reason", "Stop workflow should specify reason")],
    },
}

# Types whose nodes carry no meaningful config
_CONFIG_OPTIONAL = {
    NodeType.TRIGGER.value, NodeType.SCHEDULED.value, NodeType.EVENT.value, NodeType.ERROR.value,
}

# Node types whose handlers may return PAUSED or WAITING
_SUSPENDING_TYPES = {
    NodeType.APPROVAL.value, NodeType.DELAY.value, NodeType.SCHEDULED.value, NodeType.TRIGGER.value,
}


class WorkflowValidator:
    """Validates workflow graphs. Stateless; safe to share."""

    def validate(self, graph: Any) -> ValidationResult:
        """Validate a graph (WorkflowGraph or raw definition dict)."""
        result = ValidationResult()
        try:
            graph = parse_graph(graph)
        except Exception as e:
            result.add_error(WORKFLOW_SCOPE, f"Malformed workflow definition: {e}")
            return result

        if not graph.nodes:
            result.add_error(WORKFLOW_SCOPE, "Workflow must have at least one node")
            return result

        seen: set[str] = set()
        for node in graph.nodes:
            if node.id and node.id in seen:
                result.add_error(node.id, f"Duplicate node id: {node.id}")
            seen.add(node.id)
            self._validate_node(node, result)

        self._validate_structure(graph, result)
        self._validate_connections(graph, result)
        self._validate_acyclic(graph, result)

        logger.debug(
            f"Validated graph: {len(graph.nodes)} nodes, "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    # ─── Per-node ───

    def _validate_node(self, node: Node, result: ValidationResult) -> None:
        if not node.id:
            result.add_error("NODE", "Node must have an ID")
            return
        if not node.type:
            result.add_error(node.id, "Node must have a type")
            return

        subtypes = RULES.get(node.type)
        if subtypes is None:
            result.add_error(node.id, f"Unknown node type: {node.type}")
            return

        if not node.config and node.type not in _CONFIG_OPTIONAL and node.type != NodeType.LIST.value:
            result.add_error(node.id, f"{node.type.capitalize()} node must have configuration")
            return

        rules = subtypes.get(node.subtype)
        if rules is None:
            result.add_warning(node.id, f"Unknown {node.type} subtype: {node.subtype}")
            return

        try:
            if node.type == NodeType.LIST.value:
                _check_list(node.id, node.config, result, node.subtype)
            for rule in rules:
                rule(node.id, node.config, result)
        except Exception as e:
            result.add_error(node.id, f"Invalid configuration: {e}")

    # ─── Structure ───

    def _validate_structure(self, graph: WorkflowGraph, result: ValidationResult) -> None:
        triggers = [n for n in graph.nodes if n.type in TRIGGER_NODE_TYPES and n.id]
        if not triggers:
            result.add_error(WORKFLOW_SCOPE, "Workflow must have at least one trigger node")
            return

        reachable: set[str] = set()
        frontier = [t.id for t in triggers]
        while frontier:
            node_id = frontier.pop()
            if node_id in reachable:
                continue
            reachable.add(node_id)
            node = graph.get(node_id)
            if node is not None:
                targets = list(node.connections.values()) + node.body_node_ids
                frontier.extend(t for t in targets if t not in reachable)

        for node in graph.nodes:
            if node.id and node.type not in TRIGGER_NODE_TYPES and node.id not in reachable:
                result.add_warning(node.id, "Node is not reachable from any trigger (orphaned)")

    def _validate_connections(self, graph: WorkflowGraph, result: ValidationResult) -> None:
        for node in graph.nodes:
            for outcome, target in node.connections.items():
                if target not in graph:
                    result.add_error(
                        node.id or "NODE",
                        f"Connection '{outcome}' points to non-existent node: {target}",
                    )
            for body_id in node.body_node_ids:
                body = graph.get(body_id)
                if body is None:
                    result.add_error(node.id, f"Loop body references non-existent node: {body_id}")
                elif body.type in _SUSPENDING_TYPES or body.body_node_ids:
                    result.add_warning(
                        node.id,
                        f"Loop body node {body_id} can suspend or nest a loop; "
                        "suspension inside a loop body fails the run",
                    )

    def _validate_acyclic(self, graph: WorkflowGraph, result: ValidationResult) -> None:
        cycle_node = self.find_cycle(graph)
        if cycle_node is not None:
            result.add_error(
                WORKFLOW_SCOPE, f"Workflow contains infinite loop involving node: {cycle_node}"
            )

    @staticmethod
    def find_cycle(graph: WorkflowGraph) -> Optional[str]:
        """Return the first node found on a cycle, or None for a DAG.

        Iterative DFS with an explicit recursion stack, so only back edges
        count; two branches reconverging on one node do not.
        """
        visited: set[str] = set()
        on_stack: set[str] = set()

        for root in graph.nodes:
            if not root.id or root.id in visited:
                continue
            visited.add(root.id)
            on_stack.add(root.id)
            stack = [(root.id, iter(list(root.connections.values())))]

            while stack:
                node_id, neighbors = stack[-1]
                advanced = False
                for neighbor in neighbors:
                    if neighbor not in graph:
                        continue
                    if neighbor in on_stack:
                        return neighbor
                    if neighbor not in visited:
                        visited.add(neighbor)
                        on_stack.add(neighbor)
                        stack.append((neighbor, iter(list(graph.get(neighbor).connections.values()))))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    on_stack.discard(node_id)
        return None


# ─── Singleton ─────────────────────────────────────────────────

_validator: Optional[WorkflowValidator] = None


def get_workflow_validator() -> WorkflowValidator:
    """Get or create the singleton WorkflowValidator."""
    global _validator
    if _validator is None:
        _validator = WorkflowValidator()
    return _validator
