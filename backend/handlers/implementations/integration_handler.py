"""Integration nodes: outbound HTTP, registered functions and services, subflows."""

import inspect
from typing import Any

import structlog

from handlers.base_handler import NodeHandler
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)


async def _call(fn, *args) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class IntegrationHandler(NodeHandler):
    """Calls out of the engine and folds the answers back into variables."""

    node_type = "integration"
    display_name = "Integration"

    def operations(self):
        return {
            "webhook": self._webhook,
            "api_call": self._webhook,
            "custom_function": self._custom_function,
            "external_service": self._external_service,
            "call_subflow": self._call_subflow,
        }

    # ─── HTTP ───

    async def _webhook(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        if context.is_resuming and config.get("waitForCallback"):
            logger.info("Webhook callback received", node_id=node.id)
            return ExecutionResult.ok(
                {"callbackReceived": True, "callbackData": context.get_variable("callbackData")}
            )

        url = self.resolve(config.get("url"), context)
        method = str(config.get("method") or "POST").upper()
        body = config.get("body")
        body = self.resolve_map(body, context) if isinstance(body, dict) else self.resolve_value(body, context)

        response = await self.services.http_executor.request(
            url,
            method=method,
            body=body,
            headers=self.resolve_map(config.get("headers"), context),
            auth_type=config.get("authType") or "NONE",
            auth_config=self.resolve_map(config.get("authConfig"), context),
            timeout=config.get("timeout"),
        )
        if not response.success:
            logger.warning("Webhook call failed", url=url, status=response.status_code, error=response.error)
            return ExecutionResult.failed(f"Webhook call failed: {response.error}")

        output = {
            **response.to_dict(),
            "webhookResponse": response.body,
            "webhookStatusCode": response.status_code,
            "webhookBody": response.body,
        }
        if config.get("waitForCallback"):
            return ExecutionResult.waiting({**output, "waitingForCallback": True})
        return ExecutionResult.ok(output)

    # ─── Registered callables ───

    async def _custom_function(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        name = config.get("functionName")
        fn = self.services.functions.get(name)
        if fn is None:
            return ExecutionResult.failed(f"Custom function not found: {name}")

        params = self.resolve_map(config.get("parameters"), context)
        result = await _call(fn, params, context)
        result_variable = config.get("resultVariable") or "functionResult"
        logger.info("Custom function executed", function=name, node_id=node.id)
        return ExecutionResult.ok({result_variable: result, "functionName": name})

    async def _external_service(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        name = config.get("serviceName")
        service = self.services.external_services.get(name)
        if service is None:
            return ExecutionResult.failed(f"External service not found: {name}")

        method = config.get("action") or config.get("method")
        params = self.resolve_map(config.get("parameters"), context)
        result = await _call(service, method, params)
        result_variable = config.get("resultVariable") or "serviceResult"
        logger.info("External service called", service=name, method=method, node_id=node.id)
        return ExecutionResult.ok({result_variable: result, "serviceName": name, "method": method})

    # ─── Subflows ───

    async def _call_subflow(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        runner = self.services.subflow_runner
        if runner is None:
            return ExecutionResult.failed("Subflow execution is not available")

        subflow_id = self.resolve(config.get("subflowId") or config.get("workflowId"), context)
        input_data = self.resolve_map(config.get("inputData"), context)
        wait = config.get("waitForCompletion", True) is not False

        result = await runner(subflow_id, input_data, context, wait)
        if result.get("status") == "FAILED":
            return ExecutionResult.failed(f"Subflow execution failed: {result.get('error')}")

        return ExecutionResult.ok(
            {
                "subflowResult": result,
                "subflowExecutionId": result.get("executionId"),
                "subflowStatus": result.get("status"),
                "subflowOutput": result.get("output"),
            }
        )


INTEGRATION_HANDLERS = {
    "integration": IntegrationHandler,
}
