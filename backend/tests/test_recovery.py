"""Tests for execution recovery and the wake-up sweep."""

import pytest

from core.constants import ExecutionStatus
from helpers import make_node
from workflow.recovery import RecoveryService

START = make_node("start", "trigger", "manual", default="wait")
WAIT = make_node("wait", "delay", "wait_duration", {"duration": 5, "unit": "MINUTES"}, default="a")
STEP = make_node("a", "data", "set_field", {"field": "done", "value": True})


@pytest.fixture
def recovery(engine):
    return RecoveryService(engine)


async def _paused(engine, register_workflow, nodes=None, module_type="LEAD"):
    workflow = await register_workflow(nodes or [START, WAIT, STEP], module_type=module_type)
    context = await engine.start(workflow, {"name": "Acme"}, "tenant-1")
    return context.execution_id


@pytest.mark.unit
class TestDueScan:

    async def test_not_due_yet(self, recovery, engine, register_workflow, clock):
        await _paused(engine, register_workflow)
        clock.advance(minutes=4)

        assert await recovery.scan_due_executions() == []

    async def test_elapsed_delay_resumes(self, recovery, engine, register_workflow, clock):
        execution_id = await _paused(engine, register_workflow)
        clock.advance(minutes=5)

        results = await recovery.resume_due()

        assert [(r.execution_id, r.reason, r.recovered) for r in results] == [(execution_id, "delay", True)]
        assert results[0].status == "COMPLETED"
        assert (await engine.get_execution(execution_id)).context.variables["done"] is True

    async def test_event_wait_times_out(self, recovery, engine, register_workflow, clock):
        nodes = [
            make_node("start", "trigger", "manual", default="wait"),
            make_node("wait", "delay", "wait_for_event", {"eventType": "form_submit", "timeoutMinutes": 30},
                      default="a", timeout="late"),
            STEP,
            make_node("late", "data", "set_field", {"field": "late", "value": True}),
        ]
        execution_id = await _paused(engine, register_workflow, nodes)
        clock.advance(minutes=31)

        assert await recovery.scan_due_executions() == [(execution_id, "timeout")]
        await recovery.resume_due()

        variables = (await engine.get_execution(execution_id)).context.variables
        assert variables["late"] is True
        assert "done" not in variables

    async def test_event_wait_without_timeout_is_left_alone(self, recovery, engine, register_workflow, clock):
        nodes = [
            make_node("start", "trigger", "manual", default="wait"),
            make_node("wait", "delay", "wait_for_event", {"eventType": "form_submit"}, default="a"),
            STEP,
        ]
        await _paused(engine, register_workflow, nodes)
        clock.advance(days=30)

        assert await recovery.scan_due_executions() == []


@pytest.mark.unit
class TestInterruptedRuns:

    async def test_stale_running_record_is_resumed(self, recovery, engine, register_workflow, execution_store):
        execution_id = await _paused(engine, register_workflow)
        record = await execution_store.load(execution_id)
        record.status = ExecutionStatus.RUNNING
        record.context.current_node_id = "a"
        await execution_store.save(record)

        assert await recovery.scan_interrupted_executions() == [execution_id]
        results = await recovery.recover_all()

        assert results[0].reason == "recovery"
        assert results[0].status == "COMPLETED"
        assert (await execution_store.load(execution_id)).context.variables["done"] is True

    async def test_run_live_in_this_process_is_not_interrupted(self, recovery, engine, register_workflow,
                                                              execution_store, monkeypatch):
        execution_id = await _paused(engine, register_workflow)
        record = await execution_store.load(execution_id)
        record.status = ExecutionStatus.RUNNING
        await execution_store.save(record)
        monkeypatch.setattr(engine, "get_running_executions", lambda: {execution_id: {}})

        assert await recovery.scan_interrupted_executions() == []

    async def test_unknown_execution_is_reported(self, recovery):
        result = await recovery.recover_execution("ghost")

        assert result.recovered is False
        assert result.error == "Execution not found: ghost"
        assert recovery.get_recovery_log()[0]["execution_id"] == "ghost"

    async def test_nothing_to_recover(self, recovery):
        assert await recovery.recover_all() == []


@pytest.mark.unit
class TestSweep:

    async def test_sweep_expires_overdue_approvals(self, recovery, engine, register_workflow, approval_service, clock):
        nodes = [
            make_node("start", "trigger", "record_created", {"entity": "DEAL"}, default="ask"),
            make_node("ask", "approval", "approval_step", {"approvers": ["mgr"], "message": "ok?"},
                      approved="yes", rejected="no"),
            make_node("yes", "data", "set_field", {"field": "decision", "value": "approved"}),
            make_node("no", "data", "set_field", {"field": "decision", "value": "rejected"}),
        ]
        execution_id = await _paused(engine, register_workflow, nodes, module_type="DEAL")
        clock.advance(hours=73)

        await recovery.sweep()

        record = await engine.get_execution(execution_id)
        assert record.status == ExecutionStatus.COMPLETED
        assert record.context.variables["decision"] == "rejected"
        assert (await approval_service.for_execution(execution_id))[0].status == "EXPIRED"
