"""
Approval Workflow - Human-in-the-Loop Governance

Scheduled actions that passed their relevance check may still need a human
to confirm them before they go out. The workflow:
- decides whether approval is needed (per the configured override mode)
- keeps time-bounded pending requests per user
- resolves approve / reject / modify / defer decisions
- propagates an approval to similar pending requests (bulk approval)
- expires requests nobody answered

Pending requests live in memory behind a single lock. A request leaves the
pending map the instant it is resolved or expires.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from ...config.settings import ApprovalConfig, UserOverrideMode
from ...core.entities import ActionRelevanceResult, Priority, ScheduledAction, to_local_naive
from ...core.errors import ErrorKind
from ...core.interfaces import AlternativeActionSuggester, ContextProvider
from ...observability.logging import get_logger
from ..validation.alternatives import RuleBasedAlternativeSuggester
from ..validation.llm_bridge import LLMRelevanceBridge
from ..validation.overrides import serialize_for_audit_log

logger = get_logger(__name__)


class ApprovalStatus(Enum):
    """Status of an approval request."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"
    DEFERRED = "deferred"
    EXPIRED = "expired"


class ApprovalDecision(str, Enum):
    """Decision a user can give on a pending request."""
    APPROVE = "Approve"
    REJECT = "Reject"
    MODIFY = "Modify"
    DEFER = "Defer"


DECISION_STATUS = {
    ApprovalDecision.APPROVE: ApprovalStatus.APPROVED,
    ApprovalDecision.REJECT: ApprovalStatus.REJECTED,
    ApprovalDecision.MODIFY: ApprovalStatus.MODIFIED,
    ApprovalDecision.DEFER: ApprovalStatus.DEFERRED,
}


@dataclass
class UserApprovalRequest:
    """
    A request for a user to confirm a scheduled action.

    Carries the relevance verdict and suggested alternatives so the user
    can make an informed decision.
    """
    request_id: str = field(default_factory=lambda: str(uuid4()))
    action: ScheduledAction = field(default_factory=ScheduledAction)
    relevance_result: Optional[ActionRelevanceResult] = None
    approval_reason: str = ""
    user_id: str = ""

    # Audit
    original_user_overrides: dict = field(default_factory=dict)
    alternative_actions: list = field(default_factory=list)

    # Timing
    requested_at: datetime = field(default_factory=datetime.now)
    expires_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    status: ApprovalStatus = ApprovalStatus.PENDING
    trace_id: Optional[str] = None

    def is_expired(self, now: datetime = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now()) > self.expires_at


@dataclass
class UserApprovalResponse:
    """A user's answer to an approval request."""
    request_id: str = ""
    decision: ApprovalDecision = ApprovalDecision.APPROVE
    suggested_modifications: dict = field(default_factory=dict)
    apply_to_similar_actions: bool = False
    reason: str = ""
    user_id: str = ""
    responded_at: datetime = field(default_factory=datetime.now)


@dataclass
class ApprovalOutcome:
    """
    Result of resolving an approval response.

    ``action`` is the action to carry on with, or None when it must not be
    executed (rejected, unknown request, failure).
    """
    request_id: str = ""
    action: Optional[ScheduledAction] = None
    status: Optional[ApprovalStatus] = None
    bulk_resolved: list = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @property
    def should_execute(self) -> bool:
        return self.action is not None


@dataclass
class ApprovalDecisionRecord:
    """Record of a resolved request, kept for governance summaries."""
    request_id: str
    action_id: str
    action_type: str
    user_id: str
    status: ApprovalStatus
    decided_at: datetime
    response_seconds: float = 0.0
    reason: str = ""
    bulk: bool = False


class ApprovalWorkflowManager:
    """
    Manages user approval requests for scheduled actions.

    Responsibilities:
    - Decide whether an action needs approval
    - Create and store pending requests
    - Resolve decisions, including bulk propagation
    - Expire stale requests and notify listeners
    - Summarize decisions for governance
    """

    def __init__(
        self,
        context_provider: ContextProvider,
        config: ApprovalConfig = None,
        llm_bridge: Optional[LLMRelevanceBridge] = None,
        alternative_suggester: Optional[AlternativeActionSuggester] = None,
        clock: Callable[[], datetime] = None
    ):
        self.context_provider = context_provider
        self.config = config or ApprovalConfig()
        self.llm_bridge = llm_bridge
        self.clock = clock or datetime.now
        self.alternative_suggester = alternative_suggester or RuleBasedAlternativeSuggester(clock=self.clock)

        self._lock = threading.Lock()
        self._pending: dict[str, UserApprovalRequest] = {}
        self._decisions: deque[ApprovalDecisionRecord] = deque(maxlen=self.config.decision_history_capacity)
        self._expiry_listeners: list[Callable[[UserApprovalRequest], None]] = []

    def add_expiry_listener(self, callback: Callable[[UserApprovalRequest], None]) -> None:
        """Register a callback invoked for every request that expires."""
        self._expiry_listeners.append(callback)

    # =========================================================================
    # Approval requirement
    # =========================================================================

    async def requires_approval(
        self,
        action: ScheduledAction,
        relevance_result: ActionRelevanceResult,
        user_id: str,
        trace_id: Optional[str] = None
    ) -> bool:
        """Whether a human must confirm the action. Fails toward True."""
        trace_id = trace_id or action.trace_id
        try:
            mode = self.config.override_mode

            if mode == UserOverrideMode.ALWAYS_ASK:
                return True

            if mode == UserOverrideMode.NEVER_ASK:
                return False

            if mode == UserOverrideMode.RISK_BASED:
                if action.action_type in self.config.always_require_approval_for:
                    logger.debug("approval_required_for_action_type", action_type=action.action_type, trace_id=trace_id)
                    return True
                if action.action_type in self.config.never_require_approval_for:
                    return False
                if relevance_result.confidence_score < self.config.user_approval_threshold:
                    logger.debug(
                        "approval_required_low_confidence",
                        confidence=relevance_result.confidence_score,
                        threshold=self.config.user_approval_threshold,
                        trace_id=trace_id
                    )
                    return True
                return False

            if mode == UserOverrideMode.LLM_DECISION:
                if self.llm_bridge is None:
                    logger.warning("llm_decision_mode_without_llm", action_id=action.id, trace_id=trace_id)
                    return True
                context = await self.context_provider.get_context(
                    action.contact_id,
                    action.organization_id,
                    action.scheduled_by_agent_id
                )
                return await self.llm_bridge.recommends_approval(action, relevance_result, context, trace_id)

            logger.warning("unknown_override_mode", mode=str(mode), trace_id=trace_id)
            return True
        except Exception as e:
            logger.error(
                "approval_requirement_check_failed",
                action_id=action.id,
                user_id=user_id,
                error=str(e),
                trace_id=trace_id
            )
            return True

    # =========================================================================
    # Requests
    # =========================================================================

    async def create_approval_request(
        self,
        action: ScheduledAction,
        relevance_result: ActionRelevanceResult,
        user_id: str,
        reason: str,
        user_overrides: dict = None,
        trace_id: Optional[str] = None
    ) -> UserApprovalRequest:
        """Create and store a pending request. Errors propagate."""
        trace_id = trace_id or action.trace_id or str(uuid4())
        now = self.clock()

        request = UserApprovalRequest(
            action=action,
            relevance_result=relevance_result,
            approval_reason=reason,
            user_id=user_id,
            original_user_overrides=dict(user_overrides or {}),
            requested_at=now,
            expires_at=now + timedelta(minutes=self.config.user_approval_timeout_minutes),
            trace_id=trace_id
        )

        context = await self.context_provider.get_context(
            action.contact_id,
            action.organization_id,
            action.scheduled_by_agent_id
        )
        request.alternative_actions = await self.alternative_suggester.suggest(action, context, trace_id)

        with self._lock:
            self._pending[request.request_id] = request

        logger.info(
            "approval_request_created",
            request_id=request.request_id,
            action_id=action.id,
            user_id=user_id,
            expires_at=request.expires_at.isoformat(),
            overrides=serialize_for_audit_log(request.original_user_overrides),
            trace_id=trace_id
        )
        return request

    def get_request(self, request_id: str) -> Optional[UserApprovalRequest]:
        with self._lock:
            return self._pending.get(request_id)

    def get_pending_approvals(self, user_id: str, include_expired: bool = False) -> list[UserApprovalRequest]:
        """Pending requests of a user, oldest first."""
        now = self.clock()
        with self._lock:
            requests = [
                r for r in self._pending.values()
                if r.user_id == user_id
                and r.status == ApprovalStatus.PENDING
                and (include_expired or not r.is_expired(now))
            ]
        requests.sort(key=lambda r: r.requested_at)
        return requests

    # =========================================================================
    # Decisions
    # =========================================================================

    def process_approval_response(self, response: UserApprovalResponse) -> ApprovalOutcome:
        """
        Resolve a pending request.

        Lookup, removal and bulk propagation happen in one critical
        section, so a request is resolved at most once.
        """
        try:
            now = self.clock()
            bulk: list[UserApprovalRequest] = []

            with self._lock:
                request = self._pending.pop(response.request_id, None)
                if request is not None:
                    request.status = DECISION_STATUS[ApprovalDecision(response.decision)]
                    request.resolved_at = now

                    if (
                        request.status == ApprovalStatus.APPROVED
                        and response.apply_to_similar_actions
                        and self.config.enable_bulk_approval
                    ):
                        for other in list(self._pending.values()):
                            if (
                                other.user_id == request.user_id
                                and other.status == ApprovalStatus.PENDING
                                and self._is_similar(other.action, request.action)
                            ):
                                other.status = ApprovalStatus.APPROVED
                                other.resolved_at = now
                                del self._pending[other.request_id]
                                bulk.append(other)

            if request is None:
                logger.warning("approval_request_not_found", request_id=response.request_id)
                return ApprovalOutcome(
                    request_id=response.request_id,
                    error_kind=ErrorKind.STATE,
                    message=f"Approval request {response.request_id} not found"
                )

            self._record_decision(request, response.reason, now)
            for other in bulk:
                self._record_decision(other, response.reason, now, bulk=True)

            logger.info(
                "approval_response_processed",
                request_id=request.request_id,
                decision=request.status.value,
                bulk_resolved=len(bulk),
                trace_id=request.trace_id
            )

            action = self._resolve_action(request, response, now)
            return ApprovalOutcome(
                request_id=request.request_id,
                action=action,
                status=request.status,
                bulk_resolved=bulk,
                message=response.reason
            )
        except Exception as e:
            logger.error("approval_response_failed", request_id=response.request_id, error=str(e))
            return ApprovalOutcome(
                request_id=response.request_id,
                error_kind=ErrorKind.STATE,
                message=f"Failed to process approval response: {e}"
            )

    def _resolve_action(
        self,
        request: UserApprovalRequest,
        response: UserApprovalResponse,
        now: datetime
    ) -> Optional[ScheduledAction]:
        if request.status == ApprovalStatus.REJECTED:
            logger.info("action_rejected", action_id=request.action.id, reason=response.reason)
            return None

        if request.status == ApprovalStatus.MODIFIED:
            if not response.suggested_modifications:
                return request.action
            return apply_modifications(request.action, response.suggested_modifications)

        if request.status == ApprovalStatus.DEFERRED:
            request.action.execute_at = now + timedelta(minutes=self.config.defer_minutes)
            logger.info(
                "action_deferred",
                action_id=request.action.id,
                execute_at=request.action.execute_at.isoformat()
            )

        return request.action

    def _is_similar(self, candidate: ScheduledAction, original: ScheduledAction) -> bool:
        window = timedelta(hours=self.config.bulk_similarity_window_hours)
        return (
            candidate.action_type == original.action_type
            and candidate.contact_id == original.contact_id
            and abs(candidate.execute_at - original.execute_at) < window
        )

    def _record_decision(
        self,
        request: UserApprovalRequest,
        reason: str,
        now: datetime,
        bulk: bool = False
    ) -> None:
        record = ApprovalDecisionRecord(
            request_id=request.request_id,
            action_id=request.action.id,
            action_type=request.action.action_type,
            user_id=request.user_id,
            status=request.status,
            decided_at=now,
            response_seconds=(now - request.requested_at).total_seconds(),
            reason=reason,
            bulk=bulk
        )
        with self._lock:
            self._decisions.append(record)

    # =========================================================================
    # Expiry
    # =========================================================================

    def sweep_expired(self, now: datetime = None) -> list[UserApprovalRequest]:
        """Expire requests past their deadline and notify listeners."""
        now = now or self.clock()

        with self._lock:
            expired = [r for r in self._pending.values() if r.expires_at is not None and r.expires_at < now]
            for request in expired:
                request.status = ApprovalStatus.EXPIRED
                request.resolved_at = now
                del self._pending[request.request_id]

        for request in expired:
            logger.warning(
                "approval_request_expired",
                request_id=request.request_id,
                action_type=request.action.action_type,
                trace_id=request.trace_id
            )
            self._record_decision(request, "expired", now)
            for listener in self._expiry_listeners:
                try:
                    listener(request)
                except Exception as e:
                    logger.error("expiry_listener_failed", request_id=request.request_id, error=str(e))

        logger.debug("approval_sweep_completed", expired=len(expired))
        return expired

    # =========================================================================
    # Governance
    # =========================================================================

    def get_decision_summary(self, days: int = 30) -> dict:
        """Summary of recent approval decisions."""
        cutoff = self.clock() - timedelta(days=days)
        with self._lock:
            recent = [d for d in self._decisions if d.decided_at >= cutoff]
        answered = [d for d in recent if d.status != ApprovalStatus.EXPIRED]

        summary = {
            "total_decisions": len(recent),
            "approved": sum(1 for d in recent if d.status == ApprovalStatus.APPROVED),
            "rejected": sum(1 for d in recent if d.status == ApprovalStatus.REJECTED),
            "modified": sum(1 for d in recent if d.status == ApprovalStatus.MODIFIED),
            "deferred": sum(1 for d in recent if d.status == ApprovalStatus.DEFERRED),
            "expired": sum(1 for d in recent if d.status == ApprovalStatus.EXPIRED),
            "bulk_approved": sum(1 for d in recent if d.bulk),
            "average_response_time_seconds": 0,
            "rejection_reasons": [
                d.reason for d in recent
                if d.status == ApprovalStatus.REJECTED and d.reason
            ]
        }

        if answered:
            summary["average_response_time_seconds"] = sum(
                d.response_seconds for d in answered
            ) / len(answered)

        return summary


def apply_modifications(action: ScheduledAction, modifications: dict) -> ScheduledAction:
    """
    Copy of ``action`` with user modifications applied.

    ``description``, ``executeAt`` (ISO 8601; offsets are converted to local time) and ``priority`` (number or
    name) update the action itself; unparseable values are ignored. Any
    other key is stored in the action's parameters.
    """
    modified = action.clone()

    for key, value in modifications.items():
        name = str(key).lower()

        if name == "description":
            if value is not None:
                modified.description = str(value)
        elif name == "executeat":
            parsed = _parse_datetime(value)
            if parsed is not None:
                modified.execute_at = parsed
        elif name == "priority":
            parsed = _parse_priority(value)
            if parsed is not None:
                modified.priority = parsed
        else:
            modified.parameters[key] = value

    return modified


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return to_local_naive(value)
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return to_local_naive(datetime.fromisoformat(text))
    except ValueError:
        return None


def _parse_priority(value: Any) -> Optional[Priority]:
    if isinstance(value, Priority):
        return value
    try:
        return Priority(int(str(value).strip()))
    except ValueError:
        pass
    try:
        return Priority[str(value).strip().upper()]
    except KeyError:
        return None
