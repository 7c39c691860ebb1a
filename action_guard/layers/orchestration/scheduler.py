"""
Scheduled Action Scheduler

Drives scheduled actions through their lifecycle:

    PENDING -> RELEVANCE_CHECK_PASSED -> EXECUTING -> COMPLETED
    PENDING -> SUPPRESSED                (premise no longer holds)
    RELEVANCE_CHECK_PASSED -> AWAITING_APPROVAL -> PENDING | CANCELLED | EXPIRED
    EXECUTING -> FAILED -> PENDING       (retry with exponential backoff)
    PENDING | AWAITING_APPROVAL -> CANCELLED

Every poll processes due actions one at a time, highest priority first.
Suppressed actions are replaced by the validator's alternatives.

The actions map is guarded by a lock that is never held across an await.
"""

import asyncio
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from ...config.settings import SchedulerConfig
from ...core.entities import (
    ActionRelevanceResult,
    ScheduledAction,
    ScheduledActionStatus,
    to_local_naive
)
from ...core.errors import (
    ActionNotAuthorizedError,
    ChannelNotConfiguredError,
    ErrorKind,
    MalformedReferenceError
)
from ...observability.logging import get_logger
from ..validation.validator import RelevanceValidator
from .approval import (
    ApprovalOutcome,
    ApprovalStatus,
    ApprovalWorkflowManager,
    UserApprovalRequest,
    UserApprovalResponse
)
from .channels import ChannelRegistry

logger = get_logger(__name__)

Status = ScheduledActionStatus

FATAL_ERRORS = (ActionNotAuthorizedError, ChannelNotConfiguredError)


@dataclass
class ProcessingReport:
    """What one poll did, by action id."""
    started_at: datetime = field(default_factory=datetime.now)
    processed: list = field(default_factory=list)
    completed: list = field(default_factory=list)
    suppressed: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    retried: list = field(default_factory=list)
    awaiting_approval: list = field(default_factory=list)
    alternatives_scheduled: list = field(default_factory=list)
    skipped: list = field(default_factory=list)


class ScheduledActionScheduler:
    """
    In-memory scheduler for agent actions.

    Usage:
        scheduler = ScheduledActionScheduler(validator, ChannelRegistry.create_default())
        scheduler.schedule_action(action)
        report = await scheduler.process_due_actions()
    """

    def __init__(
        self,
        validator: RelevanceValidator,
        channels: ChannelRegistry = None,
        approvals: Optional[ApprovalWorkflowManager] = None,
        config: SchedulerConfig = None,
        clock: Callable[[], datetime] = None
    ):
        self.validator = validator
        self.channels = channels or ChannelRegistry.create_default()
        self.approvals = approvals
        self.config = config or SchedulerConfig()
        self.clock = clock or datetime.now

        self._lock = threading.Lock()
        self._actions: dict[str, ScheduledAction] = {}
        self._approval_requests: dict[str, str] = {}  # request id -> action id
        self._approvals_requested = 0
        self._poll_lock = asyncio.Lock()

        if self.approvals is not None:
            self.approvals.add_expiry_listener(self._on_approval_expired)

    # =========================================================================
    # Registry
    # =========================================================================

    def schedule_action(self, action: ScheduledAction) -> ScheduledAction:
        """
        Register an action for later execution.

        Aware execution times are converted to local time, and actions
        without their own retry budget get the configured default.
        """
        action.trace_id = action.trace_id or str(uuid4())
        action.execute_at = to_local_naive(action.execute_at)
        if action.max_retry_attempts is None:
            action.max_retry_attempts = self.config.default_max_retry_attempts
        with self._lock:
            self._actions[action.id] = action

        logger.info(
            "action_scheduled",
            action_id=action.id,
            action_type=action.action_type,
            execute_at=action.execute_at.isoformat(),
            priority=action.priority.name,
            trace_id=action.trace_id
        )
        return action

    def cancel_scheduled_action(self, action_id: str, reason: str = "") -> bool:
        """Cancel a pending or awaiting-approval action."""
        with self._lock:
            action = self._actions.get(action_id)
            if action is None or action.status not in (Status.PENDING, Status.AWAITING_APPROVAL):
                return False
            action.transition(Status.CANCELLED, self.clock())
            action.suppression_reason = reason or "Cancelled"

        logger.info("action_cancelled", action_id=action_id, reason=reason, trace_id=action.trace_id)
        return True

    def get_action(self, action_id: str) -> Optional[ScheduledAction]:
        with self._lock:
            return self._actions.get(action_id)

    def get_scheduled_actions(
        self,
        contact_id: str,
        status: Optional[ScheduledActionStatus] = None
    ) -> list[ScheduledAction]:
        """Actions for a contact, ordered by execution time."""
        with self._lock:
            actions = [
                a for a in self._actions.values()
                if a.contact_id == str(contact_id) and (status is None or a.status == status)
            ]
        actions.sort(key=lambda a: a.execute_at)
        return actions

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_due_actions(self, now: datetime = None) -> ProcessingReport:
        """Process every pending action whose execution time has come."""
        async with self._poll_lock:
            now = now or self.clock()
            report = ProcessingReport(started_at=now)

            with self._lock:
                due = [
                    a for a in self._actions.values()
                    if a.status == Status.PENDING and a.execute_at <= now
                ]
            due.sort(key=lambda a: (-a.priority, a.execute_at))

            if due:
                logger.info("processing_due_actions", count=len(due))

            for action in due:
                with self._lock:
                    still_pending = action.status == Status.PENDING
                if not still_pending:
                    report.skipped.append(action.id)
                    continue
                report.processed.append(action.id)
                await self._process(action, now, report)

            return report

    async def _process(self, action: ScheduledAction, now: datetime, report: ProcessingReport) -> None:
        trace_id = action.trace_id

        try:
            action.parse_references()
        except MalformedReferenceError as e:
            action.last_error = str(e)
            action.last_error_kind = ErrorKind.STATE
            self._advance(action, Status.FAILED, now)
            report.failed.append(action.id)
            logger.error("malformed_action_reference", action_id=action.id, error=str(e), trace_id=trace_id)
            return

        relevant = await self.validator.is_action_still_relevant(
            action,
            action.contact_id,
            action.organization_id,
            trace_id,
            use_llm_validation=self.config.use_llm_validation
        )
        action.last_relevance_check = now
        if self._is_cancelled(action):
            report.skipped.append(action.id)
            return

        if not relevant:
            await self._suppress(action, now, report)
            return

        if not self._advance(action, Status.RELEVANCE_CHECK_PASSED, now):
            return

        if await self._needs_approval(action):
            if self._is_cancelled(action):
                report.skipped.append(action.id)
                return
            await self._request_approval(action, now, report)
            return

        await self._execute(action, now, report)

    async def _suppress(self, action: ScheduledAction, now: datetime, report: ProcessingReport) -> None:
        result = action.last_relevance_result
        action.suppression_reason = result.reason if result else "Action no longer relevant"
        if not self._advance(action, Status.SUPPRESSED, now):
            return
        report.suppressed.append(action.id)

        logger.info(
            "action_suppressed",
            action_id=action.id,
            reason=action.suppression_reason,
            trace_id=action.trace_id
        )

        alternatives = await self.validator.suggest_alternative_actions(action, trace_id=action.trace_id)
        for alternative in alternatives:
            self.schedule_action(alternative)
            report.alternatives_scheduled.append(alternative.id)

    async def _needs_approval(self, action: ScheduledAction) -> bool:
        if self.approvals is None or not self.config.require_approval or action.approval_granted:
            return False
        return await self.approvals.requires_approval(
            action,
            self._relevance_result(action),
            action.scheduled_by_agent_id,
            action.trace_id
        )

    async def _request_approval(self, action: ScheduledAction, now: datetime, report: ProcessingReport) -> None:
        result = self._relevance_result(action)
        try:
            request = await self.approvals.create_approval_request(
                action,
                result,
                action.scheduled_by_agent_id,
                reason=f"Approval required for {action.action_type} "
                       f"(relevance confidence {result.confidence_score:.2f})",
                user_overrides=action.parameters.get("userOverrides"),
                trace_id=action.trace_id
            )
        except Exception as e:
            self._handle_failure(action, e, now, report)
            return

        with self._lock:
            self._approval_requests[request.request_id] = action.id
            self._approvals_requested += 1
        if self._advance(action, Status.AWAITING_APPROVAL, now):
            report.awaiting_approval.append(action.id)

    async def _execute(self, action: ScheduledAction, now: datetime, report: ProcessingReport) -> None:
        if not self._advance(action, Status.EXECUTING, now):
            return

        try:
            await self.channels.dispatch(action, action.trace_id)
        except Exception as e:
            self._handle_failure(action, e, now, report)
            return

        action.last_error = None
        action.last_error_kind = None
        self._advance(action, Status.COMPLETED, now)
        report.completed.append(action.id)
        logger.info(
            "action_completed",
            action_id=action.id,
            action_type=action.action_type,
            trace_id=action.trace_id
        )

    def _handle_failure(
        self,
        action: ScheduledAction,
        error: Exception,
        now: datetime,
        report: ProcessingReport
    ) -> None:
        action.last_error = str(error)
        if isinstance(error, ActionNotAuthorizedError):
            action.last_error_kind = ErrorKind.AUTHORIZATION
        else:
            action.last_error_kind = ErrorKind.EXECUTION

        if isinstance(error, FATAL_ERRORS):
            self._advance(action, Status.FAILED, now)
            report.failed.append(action.id)
            logger.error(
                "action_failed_permanently",
                action_id=action.id,
                error=str(error),
                error_type=type(error).__name__,
                trace_id=action.trace_id
            )
            return

        action.retry_attempts += 1
        self._advance(action, Status.FAILED, now)
        if action.max_retry_attempts is None:
            action.max_retry_attempts = self.config.default_max_retry_attempts

        if action.retry_attempts <= action.max_retry_attempts:
            delay = timedelta(minutes=self.config.backoff_base_minutes ** action.retry_attempts)
            action.execute_at = now + delay
            self._advance(action, Status.PENDING, now)
            report.retried.append(action.id)
            logger.warning(
                "action_retry_scheduled",
                action_id=action.id,
                attempt=action.retry_attempts,
                max_attempts=action.max_retry_attempts,
                execute_at=action.execute_at.isoformat(),
                error=str(error),
                trace_id=action.trace_id
            )
        else:
            report.failed.append(action.id)
            logger.error(
                "action_retries_exhausted",
                action_id=action.id,
                attempts=action.retry_attempts,
                error=str(error),
                trace_id=action.trace_id
            )

    def _advance(self, action: ScheduledAction, status: ScheduledActionStatus, now: datetime) -> bool:
        """Transition unless the action was cancelled meanwhile."""
        with self._lock:
            if action.status == Status.CANCELLED:
                return False
            action.transition(status, now)
            return True

    def _is_cancelled(self, action: ScheduledAction) -> bool:
        with self._lock:
            return action.status == Status.CANCELLED

    def _relevance_result(self, action: ScheduledAction) -> ActionRelevanceResult:
        return action.last_relevance_result or ActionRelevanceResult(action_id=action.id)

    # =========================================================================
    # Approval feedback
    # =========================================================================

    async def resolve_approval(self, response: UserApprovalResponse) -> ApprovalOutcome:
        """Apply a user's decision to the waiting action(s)."""
        if self.approvals is None:
            raise RuntimeError("No approval workflow configured")

        outcome = self.approvals.process_approval_response(response)
        if outcome.status is None:
            return outcome

        now = self.clock()
        self._apply_decision(outcome.request_id, outcome.status, outcome.action, response.reason, now)
        for request in outcome.bulk_resolved:
            self._apply_decision(request.request_id, ApprovalStatus.APPROVED, request.action, response.reason, now)

        return outcome

    def _apply_decision(
        self,
        request_id: str,
        status: ApprovalStatus,
        resolved_action: Optional[ScheduledAction],
        reason: str,
        now: datetime
    ) -> None:
        with self._lock:
            action_id = self._approval_requests.pop(request_id, None)
            action = self._actions.get(action_id) if action_id else None
            if action is None or action.status != Status.AWAITING_APPROVAL:
                return

            if status == ApprovalStatus.REJECTED:
                action.suppression_reason = f"Rejected by user: {reason}" if reason else "Rejected by user"
                action.transition(Status.CANCELLED, now)
            elif status == ApprovalStatus.MODIFIED and resolved_action is not None:
                resolved_action.approval_granted = True
                resolved_action.transition(Status.PENDING, now)
                self._actions[action_id] = resolved_action
            elif status == ApprovalStatus.DEFERRED:
                # execute_at was moved by the approval workflow
                action.transition(Status.PENDING, now)
            else:
                action.approval_granted = True
                action.transition(Status.PENDING, now)

        logger.info("approval_decision_applied", action_id=action_id, decision=status.value)

    def _on_approval_expired(self, request: UserApprovalRequest) -> None:
        with self._lock:
            action_id = self._approval_requests.pop(request.request_id, None)
            action = self._actions.get(action_id) if action_id else None
            if action is None or action.status != Status.AWAITING_APPROVAL:
                return
            action.suppression_reason = "Approval request expired"
            action.transition(Status.EXPIRED, self.clock())

        logger.warning("action_approval_expired", action_id=action_id, trace_id=request.trace_id)

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_execution_metrics(self) -> dict:
        """Get metrics about scheduled action processing."""
        with self._lock:
            actions = list(self._actions.values())
            approvals_requested = self._approvals_requested

        if not actions:
            return {"total_actions": 0}

        by_status = Counter(a.status.value for a in actions)
        completed = by_status.get(Status.COMPLETED.value, 0)
        failed = by_status.get(Status.FAILED.value, 0)

        return {
            "total_actions": len(actions),
            "by_status": dict(by_status),
            "completed": completed,
            "failed": failed,
            "suppressed": by_status.get(Status.SUPPRESSED.value, 0),
            "success_rate": completed / (completed + failed) if completed + failed else 0,
            "total_retries": sum(a.retry_attempts for a in actions),
            "total_approvals_requested": approvals_requested,
            "by_action_type": self._group_by_action_type(actions)
        }

    def _group_by_action_type(self, actions: list[ScheduledAction]) -> dict:
        by_type = {}

        for action in actions:
            entry = by_type.setdefault(action.action_type, {"count": 0, "completed": 0, "failed": 0, "suppressed": 0})
            entry["count"] += 1
            if action.status == Status.COMPLETED:
                entry["completed"] += 1
            elif action.status == Status.FAILED:
                entry["failed"] += 1
            elif action.status == Status.SUPPRESSED:
                entry["suppressed"] += 1

        return by_type
