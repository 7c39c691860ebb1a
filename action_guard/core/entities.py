"""
Core Entities - Scheduled Actions and Relevance Verdicts

A scheduled action is an outbound step (email, reminder, recommendation)
that an agent decided on earlier and that fires later. Between the two
moments the contact's situation can change, so every action carries the
relevance criteria that must still hold when it is executed.

Entities:
- ScheduledAction: the action and its lifecycle state
- ContactContext: live view of the contact used to re-check criteria
- ActionRelevanceRequest: input to a relevance validation
- ActionRelevanceResult: immutable verdict of one validation attempt
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from .errors import ErrorKind, MalformedReferenceError


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class Priority(IntEnum):
    """
    Execution priority of a scheduled action.
    Higher values are executed first when several actions are due.
    """
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


class ScheduledActionStatus(Enum):
    """Lifecycle states of a scheduled action."""
    PENDING = "pending"
    RELEVANCE_CHECK_PASSED = "relevance_check_passed"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    SUPPRESSED = "suppressed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# FAILED is only observed at rest once the retry budget is spent or the
# failure was fatal; retried actions pass through it straight back to PENDING.
TERMINAL_STATUSES = frozenset({
    ScheduledActionStatus.FAILED,
    ScheduledActionStatus.COMPLETED,
    ScheduledActionStatus.SUPPRESSED,
    ScheduledActionStatus.CANCELLED,
    ScheduledActionStatus.EXPIRED,
})


class ValidationMethod(str, Enum):
    """How a relevance verdict was reached."""
    RULE_BASED = "RuleBased"
    LLM = "LLM"
    RULE_BASED_PLUS_LLM = "RuleBased+LLM"
    LLM_ERROR = "LLM-Error"
    ERROR = "Error"


@dataclass
class ContactContext:
    """
    Current state of a contact as seen by the relevance checks.

    Deal status and engagement level live in ``additional_data`` under the
    ``dealStatus`` and ``engagementLevel`` keys, the way the context
    provider delivers them.
    """
    contact_id: Optional[str] = None
    organization_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_status: Optional[str] = None
    last_interaction_date: Optional[datetime] = None
    interaction_summary: Optional[str] = None
    additional_data: dict = field(default_factory=dict)
    analysis_timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def minimal(cls, contact_id: Any = None, organization_id: Any = None) -> "ContactContext":
        """Context carrying only identity, used when no fresh data is available."""
        return cls(
            contact_id=str(contact_id) if contact_id is not None else None,
            organization_id=str(organization_id) if organization_id is not None else None,
            interaction_summary="No summary available"
        )

    def to_prompt_dict(self) -> dict:
        """Serializable view embedded in LLM prompts."""
        return {
            "contactId": self.contact_id,
            "organizationId": self.organization_id,
            "contactName": self.contact_name,
            "contactStatus": self.contact_status,
            "lastInteractionDate": self.last_interaction_date.isoformat()
                if self.last_interaction_date else None,
            "interactionSummary": self.interaction_summary,
            "additionalData": self.additional_data,
        }


@dataclass(frozen=True)
class ActionRelevanceResult:
    """
    Verdict of a single relevance validation attempt.

    Results are never mutated; the validator derives stamped copies with
    ``dataclasses.replace``. ``error_kind`` is set whenever the verdict is a
    fail-safe default rather than an actual evaluation.
    """
    action_id: str = ""
    is_relevant: bool = True
    confidence_score: float = 1.0
    reason: str = ""
    validation_method: ValidationMethod = ValidationMethod.RULE_BASED
    failed_criteria: list = field(default_factory=list)
    recommended_action: Optional[str] = None
    alternative_actions: list = field(default_factory=list)
    context_data: dict = field(default_factory=dict)
    checked_at: datetime = field(default_factory=datetime.now)
    checked_by: str = ""
    trace_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def is_fail_safe_default(self) -> bool:
        return self.error_kind is not None


@dataclass
class ScheduledAction:
    """
    An action scheduled for later execution on behalf of an agent.

    Owned by the scheduler while pending. Terminal actions are kept for
    audit only. Every status change is appended to ``status_history``.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    action_type: str = ""
    description: str = ""

    # References
    contact_id: str = ""
    organization_id: str = ""
    scheduled_by_agent_id: str = ""

    # Timing
    scheduled_at: datetime = field(default_factory=datetime.now)
    execute_at: datetime = field(default_factory=datetime.now)

    # Payload and premise
    parameters: dict = field(default_factory=dict)
    relevance_criteria: dict = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM

    # Lifecycle
    status: ScheduledActionStatus = ScheduledActionStatus.PENDING
    suppression_reason: Optional[str] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[ErrorKind] = None
    retry_attempts: int = 0
    max_retry_attempts: Optional[int] = None
    approval_granted: bool = False

    # Last relevance check
    last_relevance_check: Optional[datetime] = None
    last_relevance_result: Optional[ActionRelevanceResult] = None

    trace_id: Optional[str] = None
    status_history: list = field(default_factory=list)

    def __post_init__(self):
        for name in ("contact_id", "organization_id", "scheduled_by_agent_id"):
            value = getattr(self, name)
            if isinstance(value, UUID):
                setattr(self, name, str(value))
        if not isinstance(self.priority, Priority):
            self.priority = Priority(self.priority)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: ScheduledActionStatus, at: datetime = None) -> None:
        """Move to ``status`` and record the transition."""
        self.status_history.append({
            "from_status": self.status.value,
            "to_status": status.value,
            "timestamp": (at or datetime.now()).isoformat()
        })
        self.status = status

    def parse_references(self) -> tuple[UUID, UUID]:
        """
        Parse contact and organization references.

        Raises MalformedReferenceError for unparseable or nil identifiers.
        """
        parsed = []
        for name in ("contact_id", "organization_id"):
            raw = getattr(self, name)
            try:
                value = UUID(str(raw))
            except (TypeError, ValueError):
                raise MalformedReferenceError(f"Invalid {name} '{raw}' on action {self.id}")
            if value.int == 0:
                raise MalformedReferenceError(f"Empty {name} on action {self.id}")
            parsed.append(value)
        return parsed[0], parsed[1]

    def clone(self) -> "ScheduledAction":
        """Deep copy sharing the same identity."""
        return copy.deepcopy(self)


@dataclass
class ActionRelevanceRequest:
    """Request for a relevance validation of one scheduled action."""
    action: ScheduledAction = field(default_factory=ScheduledAction)
    current_context: Optional[ContactContext] = None
    use_llm_validation: bool = False
    user_overrides: dict = field(default_factory=dict)
    additional_context: dict = field(default_factory=dict)
    trace_id: Optional[str] = None
