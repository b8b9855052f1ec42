"""Tests for the permission approval manager."""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from turnwise.errors import ApprovalCancelled, ApprovalTimedOut
from turnwise.models.approval import ApprovalStatus, PermissionApproval, PermissionRequest
from turnwise.services.approval import (
    ApprovalEventPublisher,
    PermissionApprovalEvent,
    PermissionApprovalManager,
    PolicyApprover,
    always_approve,
    always_deny,
)


def make_request(request_id="req-1", tool_name="delete_file"):
    return PermissionRequest.for_tool_call(tool_name, '{"path": "/tmp/x"}', request_id=request_id)


@pytest.fixture
def manager():
    """Manager without an approver; decisions come from the test."""
    with PermissionApprovalManager() as manager:
        yield manager


class TestPermissionRequest:
    """Tests for request and decision models."""

    def test_for_tool_call(self):
        """Test that tool call requests describe the call."""
        request = PermissionRequest.for_tool_call("delete_file", "{}", requester="conv-1")

        assert request.id
        assert request.tool_name == "delete_file"
        assert request.requester == "conv-1"
        assert "delete_file" in request.content

    def test_decision_helpers(self):
        """Test approval factories and rendering."""
        assert PermissionApproval.approved().is_approved
        assert not PermissionApproval.denied("no").is_approved
        assert str(PermissionApproval.denied("no")) == "DENIED: no"
        assert str(PermissionApproval(status=ApprovalStatus.APPROVED)) == "APPROVED"


class TestCompletion:
    """Tests for completing and cancelling pending requests."""

    def test_initiate_registers_pending(self, manager):
        """Test that an initiated request is pending until decided."""
        future = manager.initiate_approval(make_request())

        assert not future.done()
        assert manager.is_pending("req-1")
        assert [request.id for request in manager.pending_requests()] == ["req-1"]

    def test_complete_resolves_future(self, manager):
        """Test that completion delivers the decision."""
        future = manager.initiate_approval(make_request())

        assert manager.complete_approval("req-1", PermissionApproval.approved())
        assert future.result().is_approved
        assert not manager.is_pending("req-1")

    def test_duplicate_completion_is_noop(self, manager):
        """Test that a second completion does not change the decision."""
        future = manager.initiate_approval(make_request())
        manager.complete_approval("req-1", PermissionApproval.approved())

        assert not manager.complete_approval("req-1", PermissionApproval.denied())
        assert future.result().is_approved

    def test_unknown_completion_is_noop(self, manager):
        """Test that completing an unknown id does nothing."""
        assert not manager.complete_approval("missing", PermissionApproval.approved())

    def test_duplicate_pending_id_is_rejected(self, manager):
        """Test that the same id cannot be pending twice."""
        manager.initiate_approval(make_request())

        with pytest.raises(ValueError):
            manager.initiate_approval(make_request())

    def test_cancel_twice(self, manager):
        """Test that only the first cancellation finds the request."""
        future = manager.initiate_approval(make_request())

        assert manager.cancel_approval("req-1")
        assert not manager.cancel_approval("req-1")
        assert future.cancelled()

    def test_complete_after_cancel_is_noop(self, manager):
        """Test that a decision arriving after cancellation is ignored."""
        manager.initiate_approval(make_request())
        manager.cancel_approval("req-1")

        assert not manager.complete_approval("req-1", PermissionApproval.approved())

    def test_close_cancels_pending_and_refuses_new(self):
        """Test that closing cancels outstanding requests."""
        manager = PermissionApprovalManager()
        pending = manager.initiate_approval(make_request())

        manager.close()
        refused = manager.initiate_approval(make_request("req-2"))

        assert pending.cancelled()
        assert refused.cancelled()
        assert manager.pending_requests() == []


class TestWaitForApproval:
    """Tests for awaiting decisions."""

    @pytest.mark.asyncio
    async def test_completion_from_another_thread(self, manager):
        """Test that a decision made on another thread wakes the waiter."""
        future = manager.initiate_approval(make_request())
        timer = threading.Timer(0.05, manager.complete_approval, args=("req-1", PermissionApproval.approved()))
        timer.start()

        approval = await manager.wait_for_approval("req-1", future, timeout=5)

        assert approval.is_approved
        timer.join()

    @pytest.mark.asyncio
    async def test_timeout_cancels_request(self, manager):
        """Test that a timed out request is no longer pending."""
        future = manager.initiate_approval(make_request())

        with pytest.raises(ApprovalTimedOut) as exc_info:
            await manager.wait_for_approval("req-1", future, timeout=0.05)

        assert exc_info.value.request_id == "req-1"
        assert not manager.is_pending("req-1")
        assert not manager.complete_approval("req-1", PermissionApproval.approved())

    @pytest.mark.asyncio
    async def test_external_cancellation(self, manager):
        """Test that cancelling the request wakes the waiter with ApprovalCancelled."""
        future = manager.initiate_approval(make_request())
        asyncio.get_running_loop().call_later(0.02, manager.cancel_approval, "req-1")

        with pytest.raises(ApprovalCancelled):
            await manager.wait_for_approval("req-1", future, timeout=5)

    @pytest.mark.asyncio
    async def test_waiter_cancellation_cancels_request(self, manager):
        """Test that cancelling the waiting task cancels the pending request."""
        future = manager.initiate_approval(make_request())
        task = asyncio.create_task(manager.wait_for_approval("req-1", future))
        await asyncio.sleep(0.02)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not manager.is_pending("req-1")
        assert future.cancelled()

    @pytest.mark.asyncio
    async def test_wait_on_closed_manager(self):
        """Test that a refused request reports cancellation."""
        manager = PermissionApprovalManager()
        manager.close()
        future = manager.initiate_approval(make_request())

        with pytest.raises(ApprovalCancelled):
            await manager.wait_for_approval("req-1", future)


class TestApprovers:
    """Tests for approver-backed managers."""

    def test_inline_approver_decides_immediately(self):
        """Test that an inline approver resolves during initiation."""
        manager = PermissionApprovalManager.with_approver(always_approve)

        future = manager.initiate_approval(make_request())

        assert future.done()
        assert future.result().is_approved
        assert not manager.is_pending("req-1")

    def test_deny_approver(self):
        """Test that the deny approver rejects with a reason."""
        manager = PermissionApprovalManager.with_approver(always_deny)

        approval = manager.initiate_approval(make_request()).result()

        assert approval.status is ApprovalStatus.DENIED
        assert "delete_file" in approval.content

    def test_failing_approver_denies(self):
        """Test that an approver exception becomes a denial."""
        approver = Mock(side_effect=RuntimeError("boom"))
        manager = PermissionApprovalManager.with_approver(approver)

        approval = manager.initiate_approval(make_request()).result()

        assert not approval.is_approved
        assert "boom" in approval.content

    @pytest.mark.asyncio
    async def test_approver_on_executor(self):
        """Test that an approver running on a worker thread resolves the waiter."""
        with ThreadPoolExecutor(max_workers=2) as executor:
            manager = PermissionApprovalManager.with_approver(always_approve, executor)
            future = manager.initiate_approval(make_request())

            approval = await manager.wait_for_approval("req-1", future, timeout=5)

        assert approval.is_approved

    def test_policy_approver(self):
        """Test that deny patterns win over allow patterns."""
        approver = PolicyApprover(allowed=["read_*", "delete_file"], denied=["delete_*"])

        assert approver(make_request(tool_name="read_file")).is_approved
        assert not approver(make_request(tool_name="delete_file")).is_approved
        assert not approver(make_request(tool_name="write_file")).is_approved
        assert PolicyApprover(default_approve=True)(make_request(tool_name="write_file")).is_approved


class TestApprovalEventPublisher:
    """Tests for event delivery."""

    def test_publish_without_listener(self):
        """Test that publishing without a listener reports no delivery."""
        assert not ApprovalEventPublisher().publish(PermissionApprovalEvent(make_request()))

    def test_listener_failure_is_contained(self):
        """Test that a failing listener does not raise to the publisher."""
        listener = Mock(side_effect=RuntimeError("boom"))
        publisher = ApprovalEventPublisher(listener)

        assert publisher.publish(PermissionApprovalEvent(make_request()))
        listener.assert_called_once()


if __name__ == "__main__":
    pytest.main([__file__])
