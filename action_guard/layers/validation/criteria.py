"""
Relevance Criteria

A relevance criterion is a named premise recorded on a scheduled action
(e.g. ``dealStatus: "Active"``) that must still hold against the contact's
current context when the action fires. Criteria are evaluated through a
fixed lookup table; names match case-insensitively with underscores ignored.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from ...core.entities import ContactContext
from ...core.policy import UncertaintyPolicy
from ...observability.logging import get_logger

logger = get_logger(__name__)

CriterionCheck = Callable[[Any, ContactContext], bool]


class CriterionOutcome(Enum):
    """Result of evaluating one criterion."""
    PASSED = "passed"
    FAILED = "failed"
    UNKNOWN = "unknown"
    ERROR = "error"


def normalize_criterion_name(name: str) -> str:
    return str(name).replace("_", "").lower()


def _equals_ignore_case(expected: Any, actual: Any) -> bool:
    if expected is None or actual is None:
        return expected is None and actual is None
    return str(expected).lower() == str(actual).lower()


class CriterionEvaluator:
    """
    Lookup table of criterion checks.

    Built in:
    - dealStatus: equals ``additional_data["dealStatus"]``
    - contactEngagement: equals ``additional_data["engagementLevel"]``
    - lastInteractionAge: days since last interaction <= threshold
    """

    def __init__(
        self,
        policy: UncertaintyPolicy = None,
        clock: Callable[[], datetime] = None
    ):
        self.policy = policy or UncertaintyPolicy()
        self.clock = clock or datetime.now
        self._checks: dict[str, CriterionCheck] = {}

        self.register_criterion("dealStatus", self._check_deal_status)
        self.register_criterion("contactEngagement", self._check_contact_engagement)
        self.register_criterion("lastInteractionAge", self._check_last_interaction_age)

    def register_criterion(self, name: str, check: CriterionCheck) -> None:
        """Add or replace the check for a criterion name."""
        self._checks[normalize_criterion_name(name)] = check

    def is_known(self, name: str) -> bool:
        return normalize_criterion_name(name) in self._checks

    @property
    def known_criteria(self) -> list[str]:
        return sorted(self._checks)

    def evaluate(
        self,
        name: str,
        expected: Any,
        context: ContactContext,
        trace_id: Optional[str] = None
    ) -> CriterionOutcome:
        """Evaluate a single criterion. Never raises."""
        check = self._checks.get(normalize_criterion_name(name))
        if check is None:
            logger.warning("unknown_relevance_criterion", criterion=name, trace_id=trace_id)
            return CriterionOutcome.UNKNOWN

        try:
            passed = check(expected, context)
        except Exception as e:
            logger.error(
                "criterion_evaluation_failed",
                criterion=name,
                error=str(e),
                trace_id=trace_id
            )
            return CriterionOutcome.ERROR

        return CriterionOutcome.PASSED if passed else CriterionOutcome.FAILED

    # Built-in checks

    def _check_deal_status(self, expected: Any, context: ContactContext) -> bool:
        return _equals_ignore_case(expected, (context.additional_data or {}).get("dealStatus"))

    def _check_contact_engagement(self, expected: Any, context: ContactContext) -> bool:
        return _equals_ignore_case(expected, (context.additional_data or {}).get("engagementLevel"))

    def _check_last_interaction_age(self, expected: Any, context: ContactContext) -> bool:
        try:
            max_days = int(str(expected).strip())
        except (TypeError, ValueError):
            logger.warning("unparseable_interaction_age_threshold", threshold=expected)
            return True

        last_interaction = context.last_interaction_date
        if last_interaction is None:
            # No history reads as the oldest possible date
            return self.policy.pass_missing_interaction_history

        return (self.clock() - last_interaction).days <= max_days
