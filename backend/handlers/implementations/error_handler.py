"""Error handling nodes.

Usually reached through a node's ``"error"`` connection, after the engine
has recorded ``lastError`` and ``lastErrorNodeId`` in variables.
"""

from datetime import timedelta

import structlog

from handlers.base_handler import NodeHandler
from workflow.models import ExecutionContext, ExecutionResult, Node
from workflow.retry_strategies import RetryStrategy

logger = structlog.get_logger(__name__)

RETRY_OUTCOME = "retry"
ERROR_ACTIONS = ("LOG", "NOTIFY", "CONTINUE", "STOP")


class ErrorHandler(NodeHandler):
    """Handles, retries or stops on a failure."""

    node_type = "error"
    display_name = "Error Handling"

    def operations(self):
        return {
            "error_handler": self._error_handler,
            "retry_on_failure": self._retry_on_failure,
            "stop_workflow": self._stop_workflow,
        }

    async def _error_handler(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        action = str(config.get("action") or "LOG").upper()
        if action not in ERROR_ACTIONS:
            return ExecutionResult.failed(f"Unknown error action: {action}")

        error = context.get_variable("lastError")
        failed_node = context.get_variable("lastErrorNodeId")
        output = {"errorHandled": True, "action": action, "handledError": error}

        if action == "STOP":
            return ExecutionResult.failed(f"Workflow stopped after error: {error}")

        if action == "NOTIFY":
            users = self.resolve_value(config.get("notifyUsers"), context) or []
            if isinstance(users, str):
                users = [u.strip() for u in users.split(",") if u.strip()]
            created = await self.services.notifications.notify_users(
                users,
                self.resolve(config.get("title") or "Workflow error", context),
                self.resolve(config.get("message"), context) or str(error or ""),
                {
                    "executionId": context.execution_id,
                    "workflowId": context.workflow_id,
                    "nodeId": failed_node,
                },
                type="ERROR",
            )
            output["notified"] = [n.user_id for n in created]

        logger.warning(
            "Workflow error handled",
            action=action,
            error=error,
            failed_node=failed_node,
            execution_id=context.execution_id,
        )
        return ExecutionResult.ok(output)

    async def _retry_on_failure(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        strategy = RetryStrategy.from_node_config(node.config)
        retry_count = int(context.get_variable("retryCount") or 0)

        if not strategy.should_retry(retry_count):
            logger.warning("Retries exhausted", node_id=node.id, retry_count=retry_count)
            return ExecutionResult.failed("Max retries exceeded")

        attempt = retry_count + 1
        delay = strategy.compute_delay(attempt)
        next_retry_at = self.now() + timedelta(seconds=delay)
        logger.info("Scheduling retry", node_id=node.id, attempt=attempt, delay=delay)
        return ExecutionResult.ok(
            {
                "retryCount": attempt,
                "maxRetries": strategy.max_retries,
                "retryDelay": delay,
                "nextRetryAt": next_retry_at.isoformat(),
                "shouldRetry": True,
            },
            outcome=RETRY_OUTCOME,
        )

    async def _stop_workflow(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        reason = self.resolve(node.config.get("reason"), context) or "Stopped by workflow"
        logger.info("Workflow stop requested", node_id=node.id, reason=reason)
        return ExecutionResult.failed(f"Workflow stopped: {reason}")


ERROR_HANDLERS = {
    "error": ErrorHandler,
}
