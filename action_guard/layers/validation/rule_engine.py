"""
Rule-based relevance evaluation.

Folds per-criterion outcomes into one verdict: relevant only if no
criterion failed, confidence ``1 - failed / total`` (1.0 when there is
nothing to check).
"""

from datetime import datetime
from typing import Callable, Optional

from ...core.entities import ActionRelevanceResult, ContactContext, ValidationMethod
from ...core.policy import UncertaintyPolicy
from ...observability.logging import get_logger
from .criteria import CriterionEvaluator, CriterionOutcome

logger = get_logger(__name__)


class RuleBasedRelevanceEngine:
    """Evaluates a criteria map against a contact context."""

    CHECKER_NAME = "RelevanceValidator"

    def __init__(
        self,
        evaluator: CriterionEvaluator = None,
        policy: UncertaintyPolicy = None,
        clock: Callable[[], datetime] = None
    ):
        self.policy = policy or UncertaintyPolicy()
        self.clock = clock or datetime.now
        self.evaluator = evaluator or CriterionEvaluator(policy=self.policy, clock=self.clock)

    def evaluate(
        self,
        criteria: dict,
        context: ContactContext,
        trace_id: Optional[str] = None
    ) -> ActionRelevanceResult:
        criteria = criteria or {}
        failed: list[str] = []

        for name, expected in criteria.items():
            outcome = self.evaluator.evaluate(name, expected, context, trace_id)
            if outcome == CriterionOutcome.PASSED:
                continue
            if outcome == CriterionOutcome.UNKNOWN and self.policy.pass_unknown_criteria:
                continue
            failed.append(name)
            logger.debug(
                "relevance_criterion_failed",
                criterion=name,
                expected=expected,
                outcome=outcome.value,
                trace_id=trace_id
            )

        context_data = {
            "contactId": context.contact_id,
            "evaluatedCriteria": list(criteria.keys())
        }

        if not failed:
            return ActionRelevanceResult(
                is_relevant=True,
                confidence_score=1.0,
                reason="All relevance criteria passed",
                validation_method=ValidationMethod.RULE_BASED,
                context_data=context_data,
                checked_at=self.clock(),
                checked_by=self.CHECKER_NAME,
                trace_id=trace_id
            )

        return ActionRelevanceResult(
            is_relevant=False,
            confidence_score=max(0.0, 1.0 - len(failed) / len(criteria)),
            reason=f"Failed criteria: {', '.join(failed)}",
            validation_method=ValidationMethod.RULE_BASED,
            failed_criteria=failed,
            context_data=context_data,
            checked_at=self.clock(),
            checked_by=self.CHECKER_NAME,
            trace_id=trace_id
        )
