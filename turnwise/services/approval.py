"""Asynchronous permission approval.

The manager decouples the thread that asks for permission from the thread
(or process, or human) that decides. A request is registered against a
pending future and published as an event; whoever decides calls back
``complete_approval``. The pending map is the only shared mutable state and
is guarded by a single lock. Waiting on a decision never holds the lock.
"""

import asyncio
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from fnmatch import fnmatch

from turnwise.errors import ApprovalCancelled, ApprovalTimedOut
from turnwise.models.approval import PermissionApproval, PermissionRequest
from turnwise.utils.logging import get_logger

logger = get_logger(__name__)

PermissionApprover = Callable[[PermissionRequest], PermissionApproval]


@dataclass(frozen=True)
class PermissionApprovalEvent:
    """Published when a new permission request needs a decision."""

    request: PermissionRequest


ApprovalEventListener = Callable[[PermissionApprovalEvent], None]


class ApprovalEventPublisher:
    """Delivers approval events to a listener, on an executor when one is given.

    A publisher without a listener delivers nothing; decisions then come from
    outside, e.g. a reviewer answering through the HTTP API.
    """

    def __init__(self, listener: ApprovalEventListener | None = None, executor: Executor | None = None):
        self.listener = listener
        self.executor = executor

    def publish(self, event: PermissionApprovalEvent) -> bool:
        if self.listener is None:
            logger.info(f"Approval request {event.request.id} for {event.request.tool_name} awaiting external decision")
            return False
        if self.executor is not None:
            self.executor.submit(self._dispatch, event)
        else:
            self._dispatch(event)
        return True

    def _dispatch(self, event: PermissionApprovalEvent) -> None:
        try:
            self.listener(event)
        except Exception as e:
            logger.error(f"Approval listener failed for request {event.request.id}: {e}", exc_info=True)


class PermissionApprovalManager:
    """Brokers approve/deny decisions for pending permission requests."""

    def __init__(self, publisher: ApprovalEventPublisher | None = None):
        self.publisher = publisher or ApprovalEventPublisher()
        self._lock = threading.Lock()
        self._pending: dict[str, tuple[PermissionRequest, Future]] = {}
        self._closed = False

    @classmethod
    def with_approver(
        cls, approver: PermissionApprover, executor: Executor | None = None
    ) -> "PermissionApprovalManager":
        """Create a manager whose requests are decided by ``approver``.

        The approver runs on ``executor`` when given, otherwise inline during
        ``initiate_approval``. An approver that raises denies the request.
        """
        manager = cls()

        def on_event(event: PermissionApprovalEvent) -> None:
            try:
                approval = approver(event.request)
            except Exception as e:
                logger.error(f"Approver failed for request {event.request.id}: {e}", exc_info=True)
                approval = PermissionApproval.denied(f"Approver failed: {e}")
            manager.complete_approval(event.request.id, approval)

        manager.publisher = ApprovalEventPublisher(on_event, executor)
        return manager

    def initiate_approval(self, request: PermissionRequest) -> Future:
        """Register ``request`` and notify the approver. Returns immediately.

        Raises:
            ValueError: If a request with the same id is already pending
        """
        future: Future = Future()
        with self._lock:
            if self._closed:
                future.cancel()
                return future
            if request.id in self._pending:
                raise ValueError(f"Approval request {request.id} is already pending")
            self._pending[request.id] = (request, future)

        logger.debug(f"Initiated approval {request.id} for tool {request.tool_name}")
        self.publisher.publish(PermissionApprovalEvent(request))
        return future

    def complete_approval(self, request_id: str, approval: PermissionApproval) -> bool:
        """Resolve a pending request. Unknown or already resolved ids are ignored.

        Returns:
            True if a pending decision was resolved
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
            if entry is None:
                logger.debug(f"Ignoring completion for unknown or resolved approval {request_id}")
                return False
            _, future = entry
            resolved = future.set_running_or_notify_cancel()
            if resolved:
                future.set_result(approval)

        logger.info(f"Approval {request_id} completed: {approval}")
        return resolved

    def cancel_approval(self, request_id: str) -> bool:
        """Cancel a pending request.

        Returns:
            True if a pending entry existed, False otherwise
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
            if entry is None:
                return False
            entry[1].cancel()

        logger.info(f"Approval {request_id} cancelled")
        return True

    def pending_requests(self) -> list[PermissionRequest]:
        with self._lock:
            return [request for request, _ in self._pending.values()]

    def is_pending(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    async def wait_for_approval(
        self, request_id: str, future: Future, timeout: float | None = None
    ) -> PermissionApproval:
        """Await the decision for ``request_id``.

        Raises:
            ApprovalTimedOut: If ``timeout`` elapses first; the request is cancelled
            ApprovalCancelled: If the request was cancelled by someone else
            asyncio.CancelledError: If the awaiting task itself is cancelled; the
                request is cancelled before the error propagates
        """
        waiter = asyncio.wrap_future(future)
        try:
            if timeout is None:
                return await waiter
            return await asyncio.wait_for(waiter, timeout)
        except TimeoutError:
            self.cancel_approval(request_id)
            raise ApprovalTimedOut(request_id, timeout) from None
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                self.cancel_approval(request_id)
                raise
            raise ApprovalCancelled(request_id) from None

    def close(self) -> None:
        """Cancel every outstanding request and refuse new ones."""
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        for _, future in pending:
            future.cancel()
        if pending:
            logger.info(f"Cancelled {len(pending)} outstanding approvals on close")

    def __enter__(self) -> "PermissionApprovalManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def always_approve(request: PermissionRequest) -> PermissionApproval:
    return PermissionApproval.approved("No approval needed")


def always_deny(request: PermissionRequest) -> PermissionApproval:
    return PermissionApproval.denied(f"Tool {request.tool_name} is not allowed")


class PolicyApprover:
    """Decides by tool-name glob patterns. Deny patterns win over allow patterns."""

    def __init__(
        self, allowed: list[str] | None = None, denied: list[str] | None = None, default_approve: bool = False
    ):
        self.allowed = allowed or []
        self.denied = denied or []
        self.default_approve = default_approve

    def __call__(self, request: PermissionRequest) -> PermissionApproval:
        if any(fnmatch(request.tool_name, pattern) for pattern in self.denied):
            return PermissionApproval.denied(f"Tool {request.tool_name} is denied by policy")
        if any(fnmatch(request.tool_name, pattern) for pattern in self.allowed):
            return PermissionApproval.approved(f"Tool {request.tool_name} is allowed by policy")
        if self.default_approve:
            return PermissionApproval.approved()
        return PermissionApproval.denied(f"No policy allows tool {request.tool_name}")
