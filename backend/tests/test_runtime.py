"""Tests for the runtime bootstrap: persistence across restarts and the poller."""

import asyncio

import pytest

import workflow.store as store_module
from app.config import Settings
from app.main import lifespan
from core.constants import ExecutionStatus
from helpers import make_node
from workflow.store import SqlAlchemyExecutionStore

NODES = [
    make_node("start", "trigger", "manual", default="wait"),
    make_node("wait", "delay", "wait_duration", {"duration": 5, "unit": "MINUTES"}, default="a"),
    make_node("a", "data", "set_field", {"field": "done", "value": True}),
]


@pytest.fixture(autouse=True)
def fresh_stores(monkeypatch):
    monkeypatch.setattr(store_module, "_execution_store", None)
    monkeypatch.setattr(store_module, "_approval_store", None)


def _settings(tmp_path, **overrides) -> Settings:
    values = dict(
        ENVIRONMENT="testing",
        LOG_FORMAT="text",
        EXECUTION_STORE="sql",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'runtime.db'}",
        SWEEP_INTERVAL_SECONDS=0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.mark.integration
class TestRuntime:

    async def test_wires_sql_stores(self, tmp_path, workflow_service, clock):
        async with lifespan(_settings(tmp_path), workflow_service=workflow_service, clock=clock) as runtime:
            assert isinstance(runtime.engine.store, SqlAlchemyExecutionStore)
            assert runtime.engine.services.approvals.store is store_module.get_approval_store()
            assert runtime.db_engine is not None
        assert runtime.db_engine is None

    async def test_paused_run_completes_after_restart(self, tmp_path, workflow_service, register_workflow, clock):
        workflow = await register_workflow(NODES)
        settings = _settings(tmp_path)

        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            context = await runtime.engine.start(workflow, {"id": "L1"}, "tenant-1")
            assert (await runtime.engine.get_execution(context.execution_id)).status == ExecutionStatus.PAUSED

        clock.advance(minutes=10)

        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            record = await runtime.engine.get_execution(context.execution_id)
            recovered = runtime.recovery.get_recovery_log()

        assert record.status == ExecutionStatus.COMPLETED
        assert record.context.variables["done"] is True
        assert recovered[0]["reason"] == "delay"

    async def test_paused_run_not_due_stays_paused(self, tmp_path, workflow_service, register_workflow, clock):
        workflow = await register_workflow(NODES)
        settings = _settings(tmp_path)

        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            context = await runtime.engine.start(workflow, {}, "tenant-1")

        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            record = await runtime.engine.get_execution(context.execution_id)

        assert record.status == ExecutionStatus.PAUSED

    async def test_in_memory_store_option(self, tmp_path, workflow_service, clock):
        settings = _settings(tmp_path, EXECUTION_STORE="memory")
        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            assert runtime.db_engine is None
            assert runtime.engine.store is store_module.get_execution_store()

    async def test_poller_sweeps_until_stopped(self, tmp_path, workflow_service, register_workflow, clock):
        workflow = await register_workflow(NODES)
        settings = _settings(tmp_path, EXECUTION_STORE="memory", SWEEP_INTERVAL_SECONDS=0.01)

        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            context = await runtime.engine.start(workflow, {}, "tenant-1")
            clock.advance(minutes=5)
            for _ in range(100):
                record = await runtime.engine.get_execution(context.execution_id)
                if record.status == ExecutionStatus.COMPLETED:
                    break
                await asyncio.sleep(0.01)

        assert record.status == ExecutionStatus.COMPLETED
        assert runtime.sweeps >= 1
        assert runtime._poller is None

    async def test_trigger_ingress_is_wired(self, tmp_path, workflow_service, register_workflow, clock):
        await register_workflow(
            [make_node("start", "trigger", "record_created", {"entity": "LEAD"}, default="a"), NODES[2]]
        )
        settings = _settings(tmp_path, EXECUTION_STORE="memory")

        async with lifespan(settings, workflow_service=workflow_service, clock=clock) as runtime:
            started = await runtime.triggers.trigger_workflows("tenant-1", "LEAD", "RECORD_CREATE", {"id": "L2"})

        assert started == 1
