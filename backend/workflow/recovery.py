"""
Execution Recovery Service.

Finds suspended or interrupted executions that are ready to move again and
resumes them through the engine:

1. Interrupted runs: records still RUNNING that no coroutine in this
   process is traversing (the process stopped mid-run). Assumes a single
   engine process per execution store; with several processes sharing one
   database, run recovery from only one of them
2. Due delays: PAUSED delay / scheduled nodes whose ``resumeAt`` passed
3. Timed-out event waits: PAUSED ``wait_for_event`` nodes whose
   ``eventTimeout`` passed
4. Overdue approvals: expired through the approval service, which resumes
   the waiting execution itself

Called once on startup and then periodically by the runtime poller.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog

from core.constants import ExecutionStatus, NodeType
from core.exceptions import WorkflowEngineError
from core.utils import parse_datetime
from workflow.engine import WorkflowEngine
from workflow.store import ExecutionRecord

logger = structlog.get_logger(__name__)

RECOVERY_REASON = "recovery"
DELAY_REASON = "delay"
TIMEOUT_REASON = "timeout"


class RecoveryResult:
    """Result of a recovery attempt for a single execution."""

    def __init__(self, execution_id: str, reason: str):
        self.execution_id = execution_id
        self.reason = reason
        self.recovered: bool = False
        self.status: Optional[str] = None
        self.error: Optional[str] = None
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "reason": self.reason,
            "recovered": self.recovered,
            "status": self.status,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class RecoveryService:
    """
    Resumes executions that are due or were left behind.

    Stateless apart from a bounded log of past attempts; every scan reads
    the execution store afresh.
    """

    MAX_LOG_ENTRIES = 500

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine
        self._recovery_log: List[RecoveryResult] = []

    def now(self) -> datetime:
        return self.engine.services.clock()

    # ─── Scans ─────────────────────────────────────────────────

    async def scan_interrupted_executions(self, tenant_id: Optional[str] = None) -> List[str]:
        """RUNNING records that nothing in this process is traversing.

        Only this process's live runs are known, so a run owned by another
        process sharing the store counts as interrupted.
        """
        live = self.engine.get_running_executions()
        records = await self.engine.store.list_by_status(ExecutionStatus.RUNNING, tenant_id)
        execution_ids = [r.execution_id for r in records if r.execution_id not in live]
        if execution_ids:
            logger.info("Found interrupted executions", count=len(execution_ids), execution_ids=execution_ids[:10])
        return execution_ids

    async def scan_due_executions(self, tenant_id: Optional[str] = None) -> List[Tuple[str, str]]:
        """PAUSED records whose wait has elapsed, paired with the resume reason."""
        now = self.now()
        due = []
        for record in await self.engine.store.list_by_status(ExecutionStatus.PAUSED, tenant_id):
            reason = await self._due_reason(record, now)
            if reason is not None:
                due.append((record.execution_id, reason))
        if due:
            logger.info("Found due executions", count=len(due))
        return due

    async def _due_reason(self, record: ExecutionRecord, now: datetime) -> Optional[str]:
        workflow = await self.engine.workflow_service.get_version(record.workflow_id, record.workflow_version)
        if workflow is None:
            return None
        node = workflow.graph.get(record.current_node_id)
        if node is None:
            return None

        variables = record.context.variables
        if node.type == NodeType.DELAY.value and node.subtype == "wait_for_event":
            deadline, reason = variables.get("eventTimeout"), TIMEOUT_REASON
        elif node.type in (NodeType.DELAY.value, NodeType.SCHEDULED.value):
            deadline, reason = variables.get("resumeAt"), DELAY_REASON
        else:
            # Callbacks and other waits are resumed by whoever they wait on
            return None

        if not deadline:
            return None
        try:
            return reason if parse_datetime(deadline) <= now else None
        except ValueError:
            logger.warning("Unparseable wake-up time", execution_id=record.execution_id, value=deadline)
            return None

    # ─── Recovery ──────────────────────────────────────────────

    async def recover_execution(self, execution_id: str, reason: str = RECOVERY_REASON) -> RecoveryResult:
        """Resume one execution and record the outcome."""
        result = RecoveryResult(execution_id, reason)
        try:
            context = await self.engine.resume(execution_id, {"resumeReason": reason})
        except WorkflowEngineError as e:
            result.error = e.message
            logger.warning("Execution could not be recovered", execution_id=execution_id, reason=reason, error=e.message)
        else:
            record = await self.engine.store.load(execution_id)
            result.recovered = True
            result.status = record.status.value if record else None
            logger.info(
                "Execution recovered",
                execution_id=execution_id,
                reason=reason,
                status=result.status,
                current_node=context.current_node_id,
            )

        self._remember(result)
        return result

    async def recover_all(self) -> List[RecoveryResult]:
        """Resume interrupted runs. Called on startup."""
        logger.info("Starting execution recovery scan")
        results = [await self.recover_execution(eid) for eid in await self.scan_interrupted_executions()]
        results.extend(await self.resume_due())
        self._summarise("Recovery scan complete", results)
        return results

    async def resume_due(self) -> List[RecoveryResult]:
        """Resume elapsed waits."""
        return [await self.recover_execution(eid, reason) for eid, reason in await self.scan_due_executions()]

    async def sweep(self) -> List[RecoveryResult]:
        """One poller tick: elapsed waits, then overdue approvals."""
        results = await self.resume_due()
        approvals = self.engine.services.approvals
        if approvals is not None:
            expired = await approvals.expire_overdue()
            if expired:
                logger.info("Expired overdue approvals", count=len(expired))
        self._summarise("Sweep complete", results)
        return results

    def _summarise(self, message: str, results: List[RecoveryResult]) -> None:
        if not results:
            return
        recovered = sum(1 for r in results if r.recovered)
        logger.info(message, total=len(results), recovered=recovered, failed=len(results) - recovered)

    def _remember(self, result: RecoveryResult) -> None:
        self._recovery_log.append(result)
        if len(self._recovery_log) > self.MAX_LOG_ENTRIES:
            del self._recovery_log[: -self.MAX_LOG_ENTRIES]

    def get_recovery_log(self) -> List[dict]:
        return [r.to_dict() for r in self._recovery_log]
