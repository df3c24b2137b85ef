"""Workflow graph and execution state model.

Everything here is plain data: dataclasses that serialize to nested
dicts/lists/scalars so that a suspended execution can be persisted by any
store and rebuilt later without holding engine resources.

Graph Schema (Workflow.graph):
{
    "nodes": [
        {
            "id": "start",
            "type": "trigger",
            "subtype": "record_created",
            "config": {},
            "connections": {"default": "check_value"}
        },
        {
            "id": "check_value",
            "type": "condition",
            "subtype": "if_else",
            "config": {"field": "amount", "operator": ">", "value": 1000},
            "connections": {"true": "approve", "false": "notify"}
        },
        ...
    ]
}
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from core.constants import NodeType, TRIGGER_NODE_TYPES


DEFAULT_OUTCOME = "default"
ERROR_OUTCOME = "error"


# ─── Graph ────────────────────────────────────────────────────

@dataclass
class Node:
    """One step of a workflow graph."""

    id: str
    type: str
    subtype: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    connections: dict[str, str] = field(default_factory=dict)
    label: str = ""
    position: dict[str, Any] = field(default_factory=dict)

    @property
    def is_trigger(self) -> bool:
        return self.type in TRIGGER_NODE_TYPES

    @property
    def body_node_ids(self) -> list[str]:
        """Inline loop body in execution order. Empty for anything but collection/loop."""
        if self.type != NodeType.COLLECTION.value or self.subtype != "loop":
            return []
        body = self.config.get("bodyNodes")
        return [str(b) for b in body] if isinstance(body, list) else []

    def next_node_id(self, outcome: str) -> Optional[str]:
        """Target of the edge for an outcome, or None when the branch ends here."""
        return self.connections.get(outcome)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "subtype": self.subtype,
            "config": self.config,
            "connections": self.connections,
            "label": self.label,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Node":
        return cls(
            id=data.get("id") or "",
            type=data.get("type") or "",
            subtype=data.get("subtype") or "",
            config=dict(data.get("config") or {}),
            connections=dict(data.get("connections") or {}),
            label=data.get("label") or "",
            position=dict(data.get("position") or {}),
        )


@dataclass
class WorkflowGraph:
    """Ordered set of nodes. Edges live on each node's connections."""

    nodes: list[Node] = field(default_factory=list)

    def __post_init__(self):
        self._index = {n.id: n for n in self.nodes}

    def get(self, node_id: str) -> Optional[Node]:
        return self._index.get(node_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._index

    def __len__(self) -> int:
        return len(self.nodes)

    def trigger_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.is_trigger]

    def to_dict(self) -> dict:
        return {"nodes": [n.to_dict() for n in self.nodes]}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WorkflowGraph":
        data = data or {}
        return cls(nodes=[Node.from_dict(n) for n in data.get("nodes", [])])


@dataclass
class Workflow:
    """A named, versioned graph bound to a (module_type, trigger_type) pair."""

    id: str
    key: str
    name: str
    module_type: str
    trigger_type: str
    graph: WorkflowGraph
    version: int = 1
    active: bool = False
    tenant_id: Optional[str] = None  # None = available to every tenant
    description: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ─── Execution State ──────────────────────────────────────────

@dataclass
class ExecutedNode:
    """Audit trail entry for one node dispatch."""

    node_id: str
    node_type: str
    subtype: str
    status: str
    outcome: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "subtype": self.subtype,
            "status": self.status,
            "outcome": self.outcome,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutedNode":
        return cls(
            node_id=data["node_id"],
            node_type=data.get("node_type", ""),
            subtype=data.get("subtype", ""),
            status=data.get("status", ""),
            outcome=data.get("outcome"),
            error=data.get("error"),
            duration_ms=data.get("duration_ms", 0),
            timestamp=data.get("timestamp") or datetime.now(timezone.utc).isoformat(),
        )


@dataclass
class ExecutionContext:
    """Live state of one run.

    The engine owns the lifecycle. Handlers read everything and write only
    ``variables``.
    """

    execution_id: str
    workflow_id: str
    tenant_id: str
    workflow_version: int = 1
    variables: dict[str, Any] = field(default_factory=dict)
    executed_nodes: list[ExecutedNode] = field(default_factory=list)
    current_node_id: Optional[str] = None
    trigger_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    resume_reason: Optional[str] = None  # only set while the resumed node is re-dispatched

    @property
    def is_resuming(self) -> bool:
        return self.resume_reason is not None

    def set_variable(self, key: str, value: Any) -> None:
        """Set a workflow variable."""
        self.variables[key] = value

    def get_variable(self, key: str, default: Any = None) -> Any:
        """Get a workflow variable."""
        return self.variables.get(key, default)

    def last_executed(self, node_id: str) -> Optional[ExecutedNode]:
        for entry in reversed(self.executed_nodes):
            if entry.node_id == node_id:
                return entry
        return None

    def to_dict(self) -> dict:
        """Serialize context for persistence."""
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "workflow_version": self.workflow_version,
            "variables": self.variables,
            "executed_nodes": [e.to_dict() for e in self.executed_nodes],
            "current_node_id": self.current_node_id,
            "trigger_data": self.trigger_data,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionContext":
        """Restore context from a persisted snapshot."""
        return cls(
            execution_id=data["execution_id"],
            workflow_id=data["workflow_id"],
            tenant_id=data.get("tenant_id", ""),
            workflow_version=data.get("workflow_version", 1),
            variables=dict(data.get("variables") or {}),
            executed_nodes=[ExecutedNode.from_dict(e) for e in data.get("executed_nodes", [])],
            current_node_id=data.get("current_node_id"),
            trigger_data=dict(data.get("trigger_data") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


# ─── Handler Results ──────────────────────────────────────────

class ResultStatus(str, Enum):
    """Outcome class of one node dispatch."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PAUSED = "PAUSED"    # time-based suspension
    WAITING = "WAITING"  # event-based suspension (approvals, external events)

    @property
    def suspends(self) -> bool:
        return self in (ResultStatus.PAUSED, ResultStatus.WAITING)


@dataclass
class ExecutionResult:
    """Value a node handler returns to the engine.

    Output is merged into the variable scope for every status except
    FAILED. Only SUCCESS carries an outcome used to choose the next edge.
    """

    status: ResultStatus
    output: dict[str, Any] = field(default_factory=dict)
    outcome: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def ok(cls, output: Optional[dict] = None, outcome: str = DEFAULT_OUTCOME) -> "ExecutionResult":
        return cls(status=ResultStatus.SUCCESS, output=output or {}, outcome=outcome or DEFAULT_OUTCOME)

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(status=ResultStatus.FAILED, error=error)

    @classmethod
    def paused(cls, output: Optional[dict] = None) -> "ExecutionResult":
        return cls(status=ResultStatus.PAUSED, output=output or {})

    @classmethod
    def waiting(cls, output: Optional[dict] = None) -> "ExecutionResult":
        return cls(status=ResultStatus.WAITING, output=output or {})

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "output": self.output,
            "outcome": self.outcome,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


# ─── Approvals ────────────────────────────────────────────────

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ApprovalRequest:
    """A human-approval sub-process owned by one paused execution node.

    ``required_approvers`` is the set eligible to respond; for MULTI_STEP
    requests ``steps`` holds the ordered approver groups and only the group
    at ``current_step`` may respond.
    """

    id: str
    execution_id: str
    node_id: str
    approval_type: str
    required_approvers: list[str]
    tenant_id: str = ""
    workflow_id: str = ""
    title: str = ""
    message: str = ""
    request_data: dict[str, Any] = field(default_factory=dict)
    steps: list[list[str]] = field(default_factory=list)
    current_step: int = 0
    required_approvals: int = 1
    approved_by: list[str] = field(default_factory=list)
    rejected_by: list[str] = field(default_factory=list)
    responses: list[dict[str, Any]] = field(default_factory=list)
    status: str = "PENDING"
    resolution: Optional[str] = None  # APPROVED or REJECTED once terminal (CANCELLED stays None)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def current_approvers(self) -> list[str]:
        if self.steps:
            if 0 <= self.current_step < len(self.steps):
                return list(self.steps[self.current_step])
            return []
        return list(self.required_approvers)

    def step_approvals(self) -> list[str]:
        """Approvers who approved at the current step (the whole request when unstepped)."""
        if not self.steps:
            return list(self.approved_by)
        return [
            r["approverId"]
            for r in self.responses
            if r.get("decision") == "APPROVE" and r.get("step") == self.current_step
        ]

    def outstanding_approvers(self) -> list[str]:
        approved = self.step_approvals()
        return [a for a in self.current_approvers() if a not in approved]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "approval_type": self.approval_type,
            "required_approvers": self.required_approvers,
            "tenant_id": self.tenant_id,
            "workflow_id": self.workflow_id,
            "title": self.title,
            "message": self.message,
            "request_data": self.request_data,
            "steps": self.steps,
            "current_step": self.current_step,
            "required_approvals": self.required_approvals,
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "responses": self.responses,
            "status": self.status,
            "resolution": self.resolution,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "resolved_at": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ApprovalRequest":
        return cls(
            id=data["id"],
            execution_id=data["execution_id"],
            node_id=data["node_id"],
            approval_type=data["approval_type"],
            required_approvers=list(data.get("required_approvers") or []),
            tenant_id=data.get("tenant_id", ""),
            workflow_id=data.get("workflow_id", ""),
            title=data.get("title", ""),
            message=data.get("message", ""),
            request_data=dict(data.get("request_data") or {}),
            steps=[list(s) for s in data.get("steps") or []],
            current_step=data.get("current_step", 0),
            required_approvals=data.get("required_approvals", 1),
            approved_by=list(data.get("approved_by") or []),
            rejected_by=list(data.get("rejected_by") or []),
            responses=list(data.get("responses") or []),
            status=data.get("status", "PENDING"),
            resolution=data.get("resolution"),
            created_at=_from_iso(data.get("created_at")) or datetime.now(timezone.utc),
            expires_at=_from_iso(data.get("expires_at")),
            resolved_at=_from_iso(data.get("resolved_at")),
        )
