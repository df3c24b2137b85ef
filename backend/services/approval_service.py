"""Approval Orchestrator — human-approval sub-processes that hold a run.

Every request belongs to exactly one paused execution node. State machine:

    PENDING ──approve (incomplete)──> PARTIALLY_APPROVED ──...──> APPROVED
       │                                      │
       ├── any rejection ─────────────────────┴──> REJECTED
       ├── expires_at passed ─────────────────────> EXPIRED (resolved by policy)
       └── cancel ────────────────────────────────> CANCELLED

Completeness rules:
- SINGLE / REVIEW: one approval
- PARALLEL:        ``required_approvals`` distinct approvals (quorum)
- MULTI_STEP:      every approver of the current step, then the next step
                   is notified; only the last step completes the request

Reaching a terminal state calls the resume callback (set by the engine)
with the owning execution id and a payload the approval handler reads on
re-dispatch. Cancelling every request of an execution that is itself being
cancelled does not resume it.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from app.config import Settings, get_settings
from core.constants import ApprovalDecision, ApprovalStatus, ApprovalType
from core.exceptions import (
    ApprovalNotFoundError,
    ApprovalPermissionError,
    InvalidApprovalStateError,
    WorkflowEngineError,
)
from core.utils import utc_now
from workflow.models import ApprovalRequest
from workflow.store import ApprovalStore, get_approval_store

logger = logging.getLogger(__name__)

ResumeCallback = Callable[[str, dict], Awaitable[Any]]


class ApprovalService:
    """Creates, resolves and expires approval requests."""

    def __init__(
        self,
        store: Optional[ApprovalStore] = None,
        notifier=None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store or get_approval_store()
        self.notifier = notifier  # anything with async notify_users(user_ids, title, message, data)
        self.settings = settings or get_settings()
        self._clock = clock or utc_now
        self._resume_callback: Optional[ResumeCallback] = None
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def enabled(self) -> bool:
        return self.settings.APPROVAL_ENABLED

    def set_resume_callback(self, callback: Optional[ResumeCallback]) -> None:
        """Register the coroutine that resumes an execution once its request resolves."""
        self._resume_callback = callback

    # ─── Creation ──────────────────────────────────────────────

    async def create_request(
        self,
        execution_id: str,
        node_id: str,
        approval_type: Any,
        approvers: Optional[list] = None,
        *,
        tenant_id: str = "",
        workflow_id: str = "",
        title: str = "",
        message: str = "",
        request_data: Optional[dict] = None,
        steps: Optional[list] = None,
        required_approvals: int = 1,
        timeout_hours: Optional[float] = None,
    ) -> ApprovalRequest:
        """Persist a new PENDING request and notify the first approvers.

        Raises:
            ValueError: No approvers, or an unknown approval type
        """
        approval_type = ApprovalType(str(getattr(approval_type, "value", approval_type)).upper())
        approvers = [str(a) for a in (approvers or []) if a not in (None, "")]
        step_groups = [[str(a) for a in step if a not in (None, "")] for step in (steps or [])]
        step_groups = [s for s in step_groups if s]

        if approval_type == ApprovalType.MULTI_STEP:
            if not step_groups:
                # An ordered approver list means one approver per step
                step_groups = [[a] for a in approvers]
            approvers = [a for step in step_groups for a in step]
        else:
            step_groups = []

        if not approvers:
            raise ValueError("Approval request requires at least one approver")

        if approval_type == ApprovalType.PARALLEL:
            required_approvals = max(1, min(int(required_approvals or 1), len(set(approvers))))
        else:
            required_approvals = 1

        hours = timeout_hours if timeout_hours is not None else self.settings.APPROVAL_DEFAULT_TIMEOUT_HOURS
        now = self._clock()
        request = ApprovalRequest(
            id=str(uuid.uuid4()),
            execution_id=execution_id,
            node_id=node_id,
            approval_type=approval_type.value,
            required_approvers=approvers,
            tenant_id=tenant_id or "",
            workflow_id=workflow_id or "",
            title=title or "Approval required",
            message=message or "",
            request_data=dict(request_data or {}),
            steps=step_groups,
            current_step=0,
            required_approvals=required_approvals,
            status=ApprovalStatus.PENDING.value,
            created_at=now,
            expires_at=now + timedelta(hours=float(hours)) if hours and float(hours) > 0 else None,
        )
        await self.store.save(request)
        logger.info(
            f"Created {approval_type.value} approval request {request.id} for execution "
            f"{execution_id} with {len(approvers)} approver(s)"
        )

        await self._notify(request, request.current_approvers(), self._step_title(request))
        return request

    # ─── Responses ─────────────────────────────────────────────

    async def respond(
        self,
        approval_id: str,
        approver_id: Any,
        decision: Any,
        comments: Optional[str] = None,
    ) -> ApprovalRequest:
        """Record one approver's decision and advance the state machine.

        Raises:
            ApprovalNotFoundError: Unknown request id
            InvalidApprovalStateError: Request already resolved (including by expiry)
            ApprovalPermissionError: Responder may not act on the request right now
        """
        async with self._lock(approval_id):
            request = await self._respond(approval_id, approver_id, decision, comments)
        if not ApprovalStatus(request.status).is_open:
            self._locks.pop(approval_id, None)
        return request

    async def _respond(
        self, approval_id: str, approver_id: Any, decision: Any, comments: Optional[str]
    ) -> ApprovalRequest:
        request = await self._load(approval_id)
        request = await self._check_expiry(request)

        if not ApprovalStatus(request.status).is_open:
            raise InvalidApprovalStateError(approval_id, request.status)

        approver_id = str(approver_id)
        if approver_id not in request.current_approvers():
            raise ApprovalPermissionError(approver_id, approval_id)

        decision = ApprovalDecision(str(getattr(decision, "value", decision)).upper())

        if decision == ApprovalDecision.REJECT:
            self._record_response(request, approver_id, decision, comments)
            request.rejected_by.append(approver_id)
            logger.info(f"Approval request {approval_id} rejected by {approver_id}")
            return await self._resolve(request, ApprovalStatus.REJECTED, ApprovalStatus.REJECTED)

        if approver_id in request.step_approvals():
            logger.info(f"Duplicate approval from {approver_id} on {approval_id} ignored")
            return request

        self._record_response(request, approver_id, decision, comments)
        request.approved_by.append(approver_id)

        if not self._is_complete(request):
            request.status = ApprovalStatus.PARTIALLY_APPROVED.value
            await self.store.save(request)
            return request

        if request.steps and request.current_step < len(request.steps) - 1:
            request.current_step += 1
            request.status = ApprovalStatus.PARTIALLY_APPROVED.value
            await self.store.save(request)
            logger.info(
                f"Approval request {approval_id} advanced to step "
                f"{request.current_step + 1}/{len(request.steps)}"
            )
            await self._notify(request, request.outstanding_approvers(), self._step_title(request))
            return request

        logger.info(f"Approval request {approval_id} fully approved")
        return await self._resolve(request, ApprovalStatus.APPROVED, ApprovalStatus.APPROVED)

    async def approve(self, approval_id: str, approver_id: Any, comments: Optional[str] = None) -> ApprovalRequest:
        return await self.respond(approval_id, approver_id, ApprovalDecision.APPROVE, comments)

    async def reject(self, approval_id: str, approver_id: Any, comments: Optional[str] = None) -> ApprovalRequest:
        return await self.respond(approval_id, approver_id, ApprovalDecision.REJECT, comments)

    # ─── Expiry & cancellation ─────────────────────────────────

    async def expire_overdue(self, tenant_id: Optional[str] = None) -> list[ApprovalRequest]:
        """Expire every open request past its deadline. Meant for a periodic timer."""
        expired = []
        for request in await self.store.list_open(tenant_id):
            try:
                request = await self._check_expiry(request)
            except WorkflowEngineError as e:
                # The request is already saved as EXPIRED; only the resume failed
                logger.error(f"Resume after expiry of {request.id} failed: {e.message}")
                expired.append(request)
                continue
            if request.status == ApprovalStatus.EXPIRED.value:
                expired.append(request)
        if expired:
            logger.info(f"Expired {len(expired)} overdue approval request(s)")
        return expired

    async def cancel(self, approval_id: str, reason: Optional[str] = None, resume: bool = True) -> ApprovalRequest:
        """Administratively cancel an open request.

        Raises:
            ApprovalNotFoundError: Unknown request id
            InvalidApprovalStateError: Request already resolved
        """
        async with self._lock(approval_id):
            request = await self._load(approval_id)
            if not ApprovalStatus(request.status).is_open:
                raise InvalidApprovalStateError(approval_id, request.status)
            if reason:
                request.request_data["cancellationReason"] = reason
            logger.info(f"Cancelling approval request {approval_id}")
            request = await self._resolve(request, ApprovalStatus.CANCELLED, None, resume=resume)
        self._locks.pop(approval_id, None)
        return request

    async def cancel_for_execution(self, execution_id: str) -> int:
        """Cancel all open requests of an execution without resuming it."""
        count = 0
        for request in await self.store.list_for_execution(execution_id):
            if ApprovalStatus(request.status).is_open:
                await self._resolve(request, ApprovalStatus.CANCELLED, None, resume=False)
                count += 1
        return count

    # ─── Queries ───────────────────────────────────────────────

    async def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        """Load a request, applying lazy expiry. None when unknown."""
        request = await self.store.get(approval_id)
        if request is None:
            return None
        return await self._check_expiry(request)

    async def pending_for_user(self, user_id: Any, tenant_id: Optional[str] = None) -> list[ApprovalRequest]:
        """Open requests currently waiting on this user's decision."""
        user_id = str(user_id)
        pending = []
        for request in await self.store.list_open(tenant_id):
            request = await self._check_expiry(request)
            if ApprovalStatus(request.status).is_open and user_id in request.outstanding_approvers():
                pending.append(request)
        return pending

    async def for_execution(self, execution_id: str) -> list[ApprovalRequest]:
        return await self.store.list_for_execution(execution_id)

    async def send_reminders(self, approval_id: Optional[str] = None) -> int:
        """Re-notify outstanding approvers of one request, or of every open request."""
        if approval_id:
            requests = [await self._load(approval_id)]
        else:
            requests = await self.store.list_open()

        notified = 0
        for request in requests:
            request = await self._check_expiry(request)
            if not ApprovalStatus(request.status).is_open:
                continue
            outstanding = request.outstanding_approvers()
            await self._notify(request, outstanding, f"Reminder: {self._step_title(request)}")
            notified += len(outstanding)
        return notified

    # ─── Internals ─────────────────────────────────────────────

    def _lock(self, approval_id: str) -> asyncio.Lock:
        # Responses to one request are applied one at a time within a process
        lock = self._locks.get(approval_id)
        if lock is None:
            lock = self._locks[approval_id] = asyncio.Lock()
        return lock

    async def _load(self, approval_id: str) -> ApprovalRequest:
        request = await self.store.get(approval_id)
        if request is None:
            raise ApprovalNotFoundError(approval_id)
        return request

    def _is_complete(self, request: ApprovalRequest) -> bool:
        approval_type = ApprovalType(request.approval_type)
        if approval_type == ApprovalType.MULTI_STEP:
            return not request.outstanding_approvers()
        if approval_type == ApprovalType.PARALLEL:
            return len(set(request.approved_by)) >= request.required_approvals
        return len(request.approved_by) >= 1

    def _record_response(
        self, request: ApprovalRequest, approver_id: str, decision: ApprovalDecision, comments: Optional[str]
    ) -> None:
        request.responses.append({
            "approverId": approver_id,
            "decision": decision.value,
            "comments": comments,
            "step": request.current_step if request.steps else None,
            "timestamp": self._clock().isoformat(),
        })

    async def _check_expiry(self, request: ApprovalRequest) -> ApprovalRequest:
        if not ApprovalStatus(request.status).is_open or request.expires_at is None:
            return request
        if self._clock() < request.expires_at:
            return request

        resolution = (
            ApprovalStatus.APPROVED if self.settings.approval_expiry_approves else ApprovalStatus.REJECTED
        )
        logger.info(f"Approval request {request.id} expired; resolving as {resolution.value}")
        return await self._resolve(request, ApprovalStatus.EXPIRED, resolution)

    async def _resolve(
        self,
        request: ApprovalRequest,
        status: ApprovalStatus,
        resolution: Optional[ApprovalStatus],
        resume: bool = True,
    ) -> ApprovalRequest:
        request.status = status.value
        request.resolution = resolution.value if resolution else None
        request.resolved_at = self._clock()
        await self.store.save(request)

        if resume and self._resume_callback is not None:
            await self._resume_callback(request.execution_id, self.resume_payload(request))
        return request

    @staticmethod
    def resume_payload(request: ApprovalRequest) -> dict:
        return {
            "approvalId": request.id,
            "approvalStatus": request.status,
            "approvalDecision": request.resolution,
            "resumeReason": "approval",
        }

    @staticmethod
    def _step_title(request: ApprovalRequest) -> str:
        if request.steps:
            return f"{request.title} - Step {request.current_step + 1}"
        return request.title

    async def _notify(self, request: ApprovalRequest, approvers: list[str], title: str) -> None:
        """Fire-and-forget notification; failures are logged, never raised."""
        if not self.notifier or not approvers:
            return
        try:
            await self.notifier.notify_users(
                approvers,
                title,
                request.message,
                {
                    "type": "APPROVAL",
                    "approvalId": request.id,
                    "executionId": request.execution_id,
                    "nodeId": request.node_id,
                    "step": request.current_step + 1 if request.steps else None,
                },
            )
        except Exception as e:
            logger.error(f"Failed to send approval notifications for {request.id}: {e}")


# ─── Singleton ─────────────────────────────────────────────────

_service: Optional[ApprovalService] = None


def get_approval_service() -> ApprovalService:
    """Get or create the singleton ApprovalService."""
    global _service
    if _service is None:
        from notifications.manager import get_notification_manager

        _service = ApprovalService(notifier=get_notification_manager())
    return _service
