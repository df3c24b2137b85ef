"""Tests for the workflow definition registry."""

import pytest

from core.exceptions import WorkflowNotFoundError, WorkflowValidationError
from helpers import make_node

TRIGGER = make_node("start", "trigger", "record_created", {"entity": "LEAD"}, default="a")
STEP = make_node("a", "data", "set_field", {"field": "x", "value": 1})


@pytest.mark.unit
class TestWorkflowService:

    async def test_create_is_inactive_version_one(self, workflow_service):
        workflow = await workflow_service.create("onboard", "Onboard", "lead", "record_create",
                                                 graph={"nodes": [TRIGGER, STEP]})

        assert workflow.active is False
        assert workflow.version == 1
        assert workflow.module_type == "LEAD"
        assert workflow.trigger_type == "RECORD_CREATE"

    async def test_activate_rejects_cycles(self, workflow_service):
        looping = make_node("a", "data", "set_field", {"field": "x", "value": 1}, default="a")
        workflow = await workflow_service.create("loop", "Loop", "LEAD", "RECORD_CREATE",
                                                 graph={"nodes": [TRIGGER, looping]})

        with pytest.raises(WorkflowValidationError) as exc:
            await workflow_service.activate(workflow.id)

        assert not exc.value.report.is_valid
        assert (await workflow_service.get(workflow.id)).active is False

    async def test_graph_change_on_active_workflow_bumps_version(self, register_workflow, workflow_service):
        workflow = await register_workflow([TRIGGER, STEP])
        changed = make_node("a", "data", "set_field", {"field": "x", "value": 2})

        updated = await workflow_service.update_graph(workflow.id, {"nodes": [TRIGGER, changed]})

        assert updated.version == 2
        first = await workflow_service.get_version(workflow.id, 1)
        assert first.graph.get("a").config["value"] == 1

    async def test_invalid_graph_keeps_active_version_live(self, register_workflow, workflow_service):
        workflow = await register_workflow([TRIGGER, STEP])
        dangling = make_node("a", "data", "set_field", {"field": "x", "value": 2}, default="ghost")

        with pytest.raises(WorkflowValidationError) as exc:
            await workflow_service.update_graph(workflow.id, {"nodes": [TRIGGER, dangling]})

        assert not exc.value.report.is_valid
        live = await workflow_service.find_active(None, "LEAD", "RECORD_CREATE")
        assert [w.version for w in live] == [1]
        assert live[0].graph.get("a").next_node_id("default") is None
        assert await workflow_service.get_version(workflow.id, 2) is None

    async def test_draft_edits_keep_version(self, workflow_service):
        workflow = await workflow_service.create("d", "Draft", "LEAD", "RECORD_CREATE", graph={"nodes": [TRIGGER]})
        updated = await workflow_service.update_graph(workflow.id, {"nodes": [TRIGGER, STEP]})
        assert updated.version == 1

    async def test_find_active_includes_shared_workflows(self, register_workflow, workflow_service):
        shared = await register_workflow([TRIGGER, STEP], key="shared")
        own = await register_workflow([TRIGGER, STEP], key="own", tenant_id="tenant-1")
        await register_workflow([TRIGGER, STEP], key="other", tenant_id="tenant-2")
        await register_workflow([TRIGGER, STEP], key="deal", module_type="DEAL")

        found = await workflow_service.find_active("tenant-1", "lead", "record_create")

        assert {w.id for w in found} == {shared.id, own.id}

    async def test_deactivated_workflow_not_found(self, register_workflow, workflow_service):
        workflow = await register_workflow([TRIGGER, STEP])
        await workflow_service.deactivate(workflow.id)
        assert await workflow_service.find_active(None, "LEAD", "RECORD_CREATE") == []

    async def test_unknown_workflow(self, workflow_service):
        with pytest.raises(WorkflowNotFoundError):
            await workflow_service.activate("ghost")
        assert await workflow_service.get("ghost") is None

    async def test_returned_copies_are_detached(self, register_workflow, workflow_service):
        workflow = await register_workflow([TRIGGER, STEP])
        workflow.graph.get("a").config["value"] = 99
        assert (await workflow_service.get(workflow.id)).graph.get("a").config["value"] == 1
