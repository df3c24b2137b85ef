"""Workflow definition schemas.

Coerce raw definition payloads (editor exports, JSON files) into the
engine's graph model. The schemas only normalize shape; semantic checks
belong to the WorkflowValidator, so a node missing its id or type still
parses and is reported there.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any

from workflow.models import DEFAULT_OUTCOME, Node, WorkflowGraph


class NodeSchema(BaseModel):
    """A node as it appears in a definition payload."""

    id: str = Field(default="", description="Node id, unique within the graph")
    type: str = Field(default="", description="Node category (trigger, condition, data, ...)")
    subtype: str = Field(default="", description="Concrete operation within the category")
    label: str = Field(default="", description="Display label")
    config: Dict[str, Any] = Field(default={}, description="Operation parameters, may embed {{templates}}")
    connections: Dict[str, str] = Field(default={}, description="Outcome key -> target node id")
    position: Dict[str, Any] = Field(default={}, description="Editor canvas position")

    @field_validator("id", "type", "subtype", "label", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else str(value)

    @field_validator("connections", mode="before")
    @classmethod
    def _drop_empty_targets(cls, value):
        if not value:
            return {}
        return {str(k): str(v) for k, v in value.items() if v}


class EdgeSchema(BaseModel):
    """Optional explicit edge list entry, folded into the source node's connections."""

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    outcome: str = Field(default=DEFAULT_OUTCOME)


class GraphSchema(BaseModel):
    """Graph definition: nodes plus optional explicit edges."""

    nodes: List[NodeSchema] = Field(default=[])
    edges: List[EdgeSchema] = Field(default=[])

    def to_graph(self) -> WorkflowGraph:
        nodes = [Node(**n.model_dump()) for n in self.nodes]
        by_id = {n.id: n for n in nodes if n.id}
        for edge in self.edges:
            source = by_id.get(edge.source)
            if source is not None:
                source.connections.setdefault(edge.outcome, edge.target)
        return WorkflowGraph(nodes=nodes)


class WorkflowCreate(BaseModel):
    """Request to register a workflow."""

    key: str = Field(min_length=1, description="Unique workflow key")
    name: str = Field(min_length=1, description="Workflow name")
    module_type: str = Field(min_length=1, description="Entity module the workflow listens on (e.g. LEAD)")
    trigger_type: str = Field(min_length=1, description="Trigger type (e.g. RECORD_CREATE)")
    graph: GraphSchema = Field(default_factory=GraphSchema)
    tenant_id: Optional[str] = Field(default=None, description="Owning tenant, None for shared")
    description: str = Field(default="")


def parse_graph(data: Any) -> WorkflowGraph:
    """Build a WorkflowGraph from a dict payload or pass one through."""
    if isinstance(data, WorkflowGraph):
        return data
    return GraphSchema.model_validate(data or {}).to_graph()
