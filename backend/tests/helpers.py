"""Test doubles and builders shared across the test modules."""

from datetime import datetime, timedelta, timezone

import httpx

from notifications.channels import ChannelType, DeliveryResult, Message, MessagingChannel
from workflow.models import ExecutionContext, Node, WorkflowGraph

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel(MessagingChannel):
    """Channel that accepts every message and remembers it."""

    def __init__(self, channel_type: ChannelType, fail_targets: tuple = ()):
        super().__init__({})
        self.channel_type = channel_type
        self.fail_targets = fail_targets
        self.sent: list[tuple[str, Message]] = []

    def is_available(self) -> bool:
        return True

    async def send(self, target: str, message: Message) -> DeliveryResult:
        if target in self.fail_targets:
            return DeliveryResult(sent=False, reason="rejected by provider")
        self.sent.append((target, message))
        return DeliveryResult(sent=True, message_id=f"{self.channel_type.value}-{len(self.sent)}")


class HttpRecorder:
    """httpx.MockTransport handler with canned responses per URL."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.get(str(request.url), httpx.Response(200, json={"ok": True}))


def make_node(node_id: str, node_type: str, subtype: str = "", config: dict = None, **connections) -> dict:
    return {
        "id": node_id,
        "type": node_type,
        "subtype": subtype,
        "config": config or {},
        "connections": connections,
    }


def make_graph(*nodes: dict) -> WorkflowGraph:
    return WorkflowGraph.from_dict({"nodes": list(nodes)})


def make_context(variables: dict = None, trigger_data: dict = None, **kwargs) -> ExecutionContext:
    return ExecutionContext(
        execution_id=kwargs.pop("execution_id", "ex-1"),
        workflow_id=kwargs.pop("workflow_id", "wf-1"),
        tenant_id=kwargs.pop("tenant_id", "tenant-1"),
        variables=dict(variables or {}),
        trigger_data=dict(trigger_data or {}),
        **kwargs,
    )


def node_of(node_type: str, subtype: str, config: dict = None, node_id: str = "n1", **connections) -> Node:
    return Node.from_dict(make_node(node_id, node_type, subtype, config, **connections))
