"""Approval nodes.

The first dispatch opens an approval request and holds the run in WAITING.
The approval service resumes the execution once the request resolves; the
re-dispatch reads the resolution and chooses the ``approved`` or
``rejected`` edge.
"""

from typing import Any, Optional

import structlog

from core.constants import ApprovalStatus, ApprovalType
from handlers.base_handler import NodeHandler
from workflow.models import ApprovalRequest, ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

APPROVED_OUTCOME = "approved"
REJECTED_OUTCOME = "rejected"


def _people(value: Any) -> list:
    if value in (None, ""):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


class ApprovalHandler(NodeHandler):
    """Opens approval requests and routes on their resolution."""

    node_type = "approval"
    display_name = "Approval"

    def operations(self):
        return {
            "approval_step": self._single,
            "multi_step_approval": self._multi_step,
            "parallel_approval": self._parallel,
            "review_process": self._review,
        }

    @property
    def approvals(self):
        return self.services.approvals

    async def _single(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        return await self._approval(node, context, ApprovalType.SINGLE)

    async def _multi_step(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        return await self._approval(node, context, ApprovalType.MULTI_STEP)

    async def _parallel(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        return await self._approval(node, context, ApprovalType.PARALLEL)

    async def _review(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        return await self._approval(node, context, ApprovalType.REVIEW)

    async def _approval(self, node: Node, context: ExecutionContext, approval_type: ApprovalType) -> ExecutionResult:
        if not self.services.settings.APPROVAL_ENABLED or self.approvals is None:
            logger.warning("Approval service not configured", node_id=node.id)
            return ExecutionResult.ok({"approved": False, "reason": "Approval service not configured"})

        if context.is_resuming:
            request = await self._pending_request(node, context)
            if request is not None:
                return self._from_request(request)

        return await self._open_request(node, context, approval_type)

    async def _pending_request(self, node: Node, context: ExecutionContext) -> Optional[ApprovalRequest]:
        approval_id = context.get_variable("approvalId")
        if not approval_id:
            return None
        request = await self.approvals.get(approval_id)
        if request is None or request.node_id != node.id or request.execution_id != context.execution_id:
            return None
        return request

    async def _open_request(self, node: Node, context: ExecutionContext, approval_type: ApprovalType) -> ExecutionResult:
        config = node.config
        steps = self._steps(config.get("steps"), context)
        approvers = _people(self.resolve_value(config.get("approvers") or config.get("reviewers"), context))
        request_data = self.resolve_map(config.get("requestData") or config.get("reviewData"), context)
        expires_in = config.get("expiresIn")

        try:
            request = await self.approvals.create_request(
                context.execution_id,
                node.id,
                approval_type,
                approvers,
                tenant_id=context.tenant_id,
                workflow_id=context.workflow_id,
                title=self.resolve(config.get("title"), context),
                message=self.resolve(config.get("message"), context),
                request_data=request_data,
                steps=steps,
                required_approvals=int(config.get("requiredApprovals", 1) or 1),
                timeout_hours=float(expires_in) if expires_in not in (None, "") else None,
            )
        except ValueError as e:
            return ExecutionResult.failed(str(e))

        logger.info("Waiting for approval", node_id=node.id, approval_id=request.id, type=approval_type.value)
        return ExecutionResult.waiting(
            {
                "approvalId": request.id,
                "approvalType": approval_type.value,
                "approvalStatus": request.status,
                "status": ApprovalStatus.PENDING.value,
                "paused": True,
                "approvers": request.required_approvers,
            }
        )

    def _steps(self, raw: Any, context: ExecutionContext) -> list:
        if not isinstance(raw, list):
            return []
        steps = []
        for step in raw:
            if isinstance(step, dict):
                step = step.get("approvers") or step.get("approverId") or step.get("approver")
            steps.append(_people(self.resolve_value(step, context)))
        return [s for s in steps if s]

    @staticmethod
    def _from_request(request: ApprovalRequest) -> ExecutionResult:
        status = ApprovalStatus(request.status)
        if status.is_open:
            return ExecutionResult.waiting(
                {"approvalId": request.id, "approvalStatus": status.value, "paused": True}
            )
        if status == ApprovalStatus.CANCELLED:
            return ExecutionResult.failed("Approval request cancelled")

        approved = request.resolution == ApprovalStatus.APPROVED.value
        output = {
            "approvalId": request.id,
            "approvalStatus": status.value,
            "approvalDecision": request.resolution,
            "approved": approved,
            "approvedBy": list(request.approved_by),
            "rejectedBy": list(request.rejected_by),
            "responses": list(request.responses),
        }
        logger.info("Approval resolved", approval_id=request.id, status=status.value, approved=approved)
        return ExecutionResult.ok(output, outcome=APPROVED_OUTCOME if approved else REJECTED_OUTCOME)


APPROVAL_HANDLERS = {
    "approval": ApprovalHandler,
}
