"""Tests for the approval orchestrator."""

import asyncio
from datetime import timedelta

import pytest

from app.config import Settings
from core.exceptions import (
    ApprovalNotFoundError,
    ApprovalPermissionError,
    InvalidApprovalStateError,
)
from helpers import T0
from services.approval_service import ApprovalService
from workflow.store import InMemoryApprovalStore, SqlAlchemyApprovalStore


class ResumeRecorder:
    """Stands in for the engine's resume entry point."""

    def __init__(self):
        self.calls = []

    async def __call__(self, execution_id: str, payload: dict):
        self.calls.append((execution_id, payload))


@pytest.fixture
def resumes(approval_service):
    recorder = ResumeRecorder()
    approval_service.set_resume_callback(recorder)
    return recorder


async def _request(service: ApprovalService, approval_type: str = "SINGLE", **kwargs):
    kwargs.setdefault("approvers", ["alice"])
    return await service.create_request(
        "ex-1", "ask", approval_type, kwargs.pop("approvers"),
        tenant_id="tenant-1", workflow_id="wf-1", title="Discount", message="Please review", **kwargs,
    )


@pytest.mark.unit
class TestCreation:

    async def test_creates_pending_request(self, approval_service, clock):
        request = await _request(approval_service)

        assert request.status == "PENDING"
        assert request.required_approvers == ["alice"]
        assert request.expires_at == T0 + timedelta(hours=72)

    async def test_notifies_approvers(self, approval_service, notifications):
        request = await _request(approval_service, approvers=["alice", "bob"])

        inbox = notifications.inbox("bob")
        assert len(inbox) == 1
        assert inbox[0].title == "Discount"
        assert inbox[0].data["approvalId"] == request.id

    async def test_requires_approvers(self, approval_service):
        with pytest.raises(ValueError):
            await _request(approval_service, approvers=[])

    async def test_unknown_type(self, approval_service):
        with pytest.raises(ValueError):
            await _request(approval_service, "UNANIMOUS")

    async def test_quorum_clamped_to_approver_count(self, approval_service):
        request = await _request(approval_service, "PARALLEL", approvers=["a", "b"], required_approvals=5)
        assert request.required_approvals == 2

    async def test_ordered_list_becomes_steps(self, approval_service):
        request = await _request(approval_service, "MULTI_STEP", approvers=["a", "b"])
        assert request.steps == [["a"], ["b"]]
        assert request.current_approvers() == ["a"]

    async def test_zero_timeout_never_expires(self, approval_service):
        request = await _request(approval_service, timeout_hours=0)
        assert request.expires_at is None


@pytest.mark.unit
class TestResponses:

    async def test_single_approval_resolves_and_resumes(self, approval_service, resumes):
        request = await _request(approval_service)

        resolved = await approval_service.approve(request.id, "alice", "ok")

        assert resolved.status == "APPROVED"
        assert resolved.resolution == "APPROVED"
        assert resolved.responses[0]["comments"] == "ok"
        assert resumes.calls == [("ex-1", {
            "approvalId": request.id,
            "approvalStatus": "APPROVED",
            "approvalDecision": "APPROVED",
            "resumeReason": "approval",
        })]

    async def test_parallel_quorum_two_of_three(self, approval_service, resumes):
        request = await _request(approval_service, "PARALLEL", approvers=["a", "b", "c"], required_approvals=2)

        partial = await approval_service.approve(request.id, "a")
        assert partial.status == "PARTIALLY_APPROVED"
        assert resumes.calls == []

        done = await approval_service.approve(request.id, "c")
        assert done.status == "APPROVED"
        assert len(resumes.calls) == 1

    async def test_duplicate_approval_does_not_count(self, approval_service, resumes):
        request = await _request(approval_service, "PARALLEL", approvers=["a", "b"], required_approvals=2)

        await approval_service.approve(request.id, "a")
        again = await approval_service.approve(request.id, "a")

        assert again.status == "PARTIALLY_APPROVED"
        assert again.approved_by == ["a"]

    async def test_rejection_short_circuits(self, approval_service, resumes):
        request = await _request(approval_service, "PARALLEL", approvers=["a", "b", "c"], required_approvals=2)
        await approval_service.approve(request.id, "a")

        rejected = await approval_service.reject(request.id, "b", "no budget")

        assert rejected.status == "REJECTED"
        assert rejected.rejected_by == ["b"]
        assert resumes.calls[0][1]["approvalDecision"] == "REJECTED"

    async def test_multi_step_advances_in_order(self, approval_service, resumes, notifications):
        request = await _request(approval_service, "MULTI_STEP", approvers=[], steps=[["lead"], ["cfo", "ceo"]])

        with pytest.raises(ApprovalPermissionError):
            await approval_service.approve(request.id, "cfo")

        step_two = await approval_service.approve(request.id, "lead")
        assert step_two.current_step == 1
        assert step_two.status == "PARTIALLY_APPROVED"
        assert notifications.inbox("cfo")[0].title == "Discount - Step 2"

        await approval_service.approve(request.id, "cfo")
        assert resumes.calls == []

        final = await approval_service.approve(request.id, "ceo")
        assert final.status == "APPROVED"
        assert len(resumes.calls) == 1

    async def test_approver_repeated_in_later_step(self, approval_service, resumes, notifications):
        request = await _request(approval_service, "MULTI_STEP", approvers=["mgr", "director", "mgr"])

        await approval_service.approve(request.id, "mgr")
        step_three = await approval_service.approve(request.id, "director")
        assert step_three.current_step == 2
        assert step_three.outstanding_approvers() == ["mgr"]
        assert notifications.inbox("mgr")[-1].title == "Discount - Step 3"

        final = await approval_service.approve(request.id, "mgr")

        assert final.status == "APPROVED"
        assert len(resumes.calls) == 1

    async def test_duplicate_within_step_is_ignored(self, approval_service, resumes):
        request = await _request(approval_service, "MULTI_STEP", approvers=[], steps=[["cfo", "ceo"], ["board"]])

        await approval_service.approve(request.id, "cfo")
        again = await approval_service.approve(request.id, "cfo")

        assert again.current_step == 0
        assert again.outstanding_approvers() == ["ceo"]

    async def test_outsider_cannot_respond(self, approval_service):
        request = await _request(approval_service)
        with pytest.raises(ApprovalPermissionError):
            await approval_service.approve(request.id, "mallory")

    async def test_resolved_request_rejects_responses(self, approval_service, resumes):
        request = await _request(approval_service)
        await approval_service.approve(request.id, "alice")

        with pytest.raises(InvalidApprovalStateError):
            await approval_service.reject(request.id, "alice")

    async def test_unknown_request(self, approval_service):
        with pytest.raises(ApprovalNotFoundError):
            await approval_service.approve("nope", "alice")

    async def test_invalid_decision(self, approval_service):
        request = await _request(approval_service)
        with pytest.raises(ValueError):
            await approval_service.respond(request.id, "alice", "MAYBE")


@pytest.mark.unit
class TestExpiry:

    async def test_expire_overdue_rejects_by_default(self, approval_service, resumes, clock):
        request = await _request(approval_service, timeout_hours=1)
        clock.advance(hours=2)

        expired = await approval_service.expire_overdue()

        assert [r.id for r in expired] == [request.id]
        assert expired[0].status == "EXPIRED"
        assert expired[0].resolution == "REJECTED"
        assert resumes.calls[0][1]["approvalStatus"] == "EXPIRED"

    async def test_not_yet_due(self, approval_service, resumes, clock):
        await _request(approval_service, timeout_hours=1)
        clock.advance(minutes=30)

        assert await approval_service.expire_overdue() == []
        assert resumes.calls == []

    async def test_expiry_policy_approve(self, notifications, clock):
        service = ApprovalService(
            store=InMemoryApprovalStore(),
            notifier=notifications,
            settings=Settings(ENVIRONMENT="testing", APPROVAL_EXPIRY_POLICY="approve"),
            clock=clock,
        )
        request = await _request(service, timeout_hours=1)
        clock.advance(hours=2)

        expired = await service.get(request.id)

        assert expired.status == "EXPIRED"
        assert expired.resolution == "APPROVED"

    async def test_response_after_deadline_fails(self, approval_service, resumes, clock):
        request = await _request(approval_service, timeout_hours=1)
        clock.advance(hours=2)

        with pytest.raises(InvalidApprovalStateError):
            await approval_service.approve(request.id, "alice")
        assert (await approval_service.get(request.id)).status == "EXPIRED"


@pytest.mark.unit
class TestCancellationAndQueries:

    async def test_cancel_resumes(self, approval_service, resumes):
        request = await _request(approval_service)

        cancelled = await approval_service.cancel(request.id, reason="withdrawn")

        assert cancelled.status == "CANCELLED"
        assert cancelled.resolution is None
        assert cancelled.request_data["cancellationReason"] == "withdrawn"
        assert len(resumes.calls) == 1

    async def test_cancel_for_execution_does_not_resume(self, approval_service, resumes):
        await _request(approval_service)
        await _request(approval_service)

        assert await approval_service.cancel_for_execution("ex-1") == 2
        assert resumes.calls == []

    async def test_pending_for_user(self, approval_service):
        request = await _request(approval_service, "MULTI_STEP", approvers=["a", "b"])

        assert [r.id for r in await approval_service.pending_for_user("a")] == [request.id]
        assert await approval_service.pending_for_user("b") == []

    async def test_reminders_go_to_outstanding_approvers(self, approval_service, notifications, resumes):
        request = await _request(approval_service, "PARALLEL", approvers=["a", "b"], required_approvals=2)
        await approval_service.approve(request.id, "a")

        assert await approval_service.send_reminders(request.id) == 1
        assert notifications.inbox("b")[-1].title == "Reminder: Discount"


@pytest.mark.integration
class TestConcurrentResponses:

    @pytest.fixture
    def sql_approval_service(self, session_factory, settings, notifications, clock):
        return ApprovalService(
            store=SqlAlchemyApprovalStore(session_factory), notifier=notifications, settings=settings, clock=clock,
        )

    async def test_simultaneous_approvals_reach_quorum(self, sql_approval_service):
        resumes = ResumeRecorder()
        sql_approval_service.set_resume_callback(resumes)
        request = await _request(sql_approval_service, "PARALLEL", approvers=["a", "b", "c"], required_approvals=2)

        await asyncio.gather(
            sql_approval_service.approve(request.id, "a"),
            sql_approval_service.approve(request.id, "b"),
        )

        stored = await sql_approval_service.get(request.id)
        assert stored.status == "APPROVED"
        assert sorted(stored.approved_by) == ["a", "b"]
        assert len(resumes.calls) == 1

    async def test_simultaneous_steps_are_not_lost(self, sql_approval_service):
        request = await _request(sql_approval_service, "MULTI_STEP", approvers=[], steps=[["cfo", "ceo"], ["board"]])

        await asyncio.gather(
            sql_approval_service.approve(request.id, "cfo"),
            sql_approval_service.approve(request.id, "ceo"),
        )

        stored = await sql_approval_service.get(request.id)
        assert stored.current_step == 1
        assert stored.outstanding_approvers() == ["board"]
