"""Constants and enums for the workflow automation engine."""

from enum import Enum


class NodeType(str, Enum):
    """Node categories. One handler is registered per category."""

    TRIGGER = "trigger"
    CONDITION = "condition"
    DATA = "data"
    COMMUNICATION = "communication"
    TASK = "task"
    APPROVAL = "approval"
    DELAY = "delay"
    INTEGRATION = "integration"
    LIST = "list"
    ERROR = "error"
    COLLECTION = "collection"
    SCHEDULED = "scheduled"
    EVENT = "event"


# Node types that can start a run
TRIGGER_NODE_TYPES = frozenset({NodeType.TRIGGER.value, NodeType.SCHEDULED.value, NodeType.EVENT.value})


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    WAITING_APPROVAL = "WAITING_APPROVAL"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)

    @property
    def is_suspended(self) -> bool:
        return self in (ExecutionStatus.PAUSED, ExecutionStatus.WAITING_APPROVAL)


class TriggerType(str, Enum):
    """What kind of event a workflow listens for."""

    FIELD_UPDATE = "FIELD_UPDATE"
    RECORD_CREATE = "RECORD_CREATE"
    RECORD_UPDATE = "RECORD_UPDATE"
    RECORD_DELETE = "RECORD_DELETE"
    TIME_BASED = "TIME_BASED"
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"
    WEBHOOK = "WEBHOOK"


class ApprovalType(str, Enum):
    SINGLE = "SINGLE"
    MULTI_STEP = "MULTI_STEP"
    PARALLEL = "PARALLEL"
    REVIEW = "REVIEW"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_open(self) -> bool:
        return self in (ApprovalStatus.PENDING, ApprovalStatus.PARTIALLY_APPROVED)


class ApprovalDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class AssignmentStrategy(str, Enum):
    """Record routing algorithms of the assignment engine."""

    ROUND_ROBIN = "ROUND_ROBIN"
    WORKLOAD_BASED = "WORKLOAD_BASED"
    TERRITORY = "TERRITORY"
    SKILL_BASED = "SKILL_BASED"
    LEAD_SOURCE = "LEAD_SOURCE"
    LEAD_VALUE = "LEAD_VALUE"
    AVAILABILITY = "AVAILABILITY"
    PERFORMANCE = "PERFORMANCE"
    CUSTOM_RULES = "CUSTOM_RULES"


class AuthType(str, Enum):
    """Authentication schemes supported by the HTTP executor."""

    NONE = "NONE"
    BASIC = "BASIC"
    BEARER = "BEARER"
    API_KEY = "API_KEY"
    CUSTOM = "CUSTOM"


class TimeUnit(str, Enum):
    """Units accepted by wait_duration delays."""

    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"
    WEEKS = "WEEKS"


class LogLevel(str, Enum):
    """Log level for execution logs."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
