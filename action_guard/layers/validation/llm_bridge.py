"""
LLM Relevance Bridge

Second-opinion relevance validation through an LLM, used when the rule
engine is not confident. Also advises the approval workflow in the
LLMDecision mode.

The model answers in JSON which is validated with the Pydantic schemas in
``schemas.py``. Every failure (transport error, timeout, empty answer,
malformed JSON) is folded into a fail-safe verdict; nothing here raises.
"""

import asyncio
import json
import re
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from ...core.entities import (
    ActionRelevanceResult,
    ContactContext,
    ScheduledAction,
    ValidationMethod
)
from ...core.errors import ErrorKind
from ...core.interfaces import LLMService, PromptProvider
from ...core.policy import UncertaintyPolicy
from ...observability.logging import get_logger
from .overrides import serialize_for_llm_prompt
from .schemas import ApprovalRecommendation, RelevanceVerdict

logger = get_logger(__name__)


# =============================================================================
# Prompts
# =============================================================================

RELEVANCE_VALIDATOR_ROLE = "ActionRelevanceValidator"

RELEVANCE_USER_PROMPT = """Analyze whether the following scheduled action is still relevant given the current contact context and user preferences.

SCHEDULED ACTION:
- Type: {action_type}
- Description: {description}
- Scheduled At: {scheduled_at}
- Execute At: {execute_at}
- Relevance Criteria: {criteria}

CURRENT CONTACT CONTEXT:
{context}

USER OVERRIDE PREFERENCES:
{overrides}

EVALUATION INSTRUCTIONS:
1. Determine if the action is still appropriate given the current context
2. Consider if the contact's situation has changed since the action was scheduled
3. Take into account the user's override preferences and constraints
4. Evaluate if executing this action would be helpful or potentially harmful
5. Provide a confidence score between 0.0 and 1.0
6. Explain your reasoning clearly, referencing user overrides where applicable

Respond in JSON format:
{{
"isRelevant": true/false,
"confidenceScore": 0.0-1.0,
"reason": "detailed explanation including how user overrides influenced the decision",
"recommendedAction": "proceed/reschedule/modify/cancel",
"alternativeActions": ["action1", "action2"]
}}"""


APPROVAL_SYSTEM_PROMPT = """You are an AI assistant helping determine if a scheduled action requires human approval.
Consider factors like:
- Action sensitivity and potential impact
- Confidence level of the relevance assessment
- Contact context and relationship status
- Risk of automation errors
- Industry compliance requirements

Respond with JSON: { "requiresApproval": true/false, "reason": "explanation" }"""


APPROVAL_USER_PROMPT = """Evaluate if this action requires human approval:

ACTION:
- Type: {action_type}
- Description: {description}
- Priority: {priority}

RELEVANCE ASSESSMENT:
- Is Relevant: {is_relevant}
- Confidence: {confidence:.2f}
- Reason: {reason}

CONTACT CONTEXT:
- Last Interaction: {last_interaction}
- Summary: {summary}

Should this action require human approval before execution?"""


_FENCE_PATTERN = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

DATE_FORMAT = "%Y-%m-%d %H:%M"


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    match = _FENCE_PATTERN.match(text)
    return match.group(1).strip() if match else text.strip()


class LLMResponseError(ValueError):
    """The LLM answer is empty or does not match the expected schema."""


def parse_relevance_verdict(raw: Optional[str]) -> RelevanceVerdict:
    if not raw or not raw.strip():
        raise LLMResponseError("Empty LLM response")
    try:
        return RelevanceVerdict.model_validate_json(strip_code_fences(raw))
    except ValidationError as e:
        raise LLMResponseError(f"Malformed LLM response: {e.error_count()} validation error(s)") from e


def parse_approval_recommendation(raw: Optional[str]) -> ApprovalRecommendation:
    if not raw or not raw.strip():
        raise LLMResponseError("Empty LLM response")
    try:
        return ApprovalRecommendation.model_validate_json(strip_code_fences(raw))
    except ValidationError as e:
        raise LLMResponseError(f"Malformed LLM response: {e.error_count()} validation error(s)") from e


class LLMRelevanceBridge:
    """
    Asks an LLM whether a scheduled action still makes sense.

    Usage:
        bridge = LLMRelevanceBridge(llm_service, prompt_provider)
        result = await bridge.validate(action, context, user_overrides)
    """

    CHECKER_NAME = "LLM-RelevanceValidator"

    def __init__(
        self,
        llm_service: LLMService,
        prompt_provider: PromptProvider,
        policy: UncertaintyPolicy = None,
        industry_profile: Optional[str] = None,
        clock: Callable[[], datetime] = None
    ):
        self.llm_service = llm_service
        self.prompt_provider = prompt_provider
        self.policy = policy or UncertaintyPolicy()
        self.industry_profile = industry_profile
        self.clock = clock or datetime.now

    def build_relevance_prompt(
        self,
        action: ScheduledAction,
        context: ContactContext,
        user_overrides: Optional[dict] = None
    ) -> str:
        return RELEVANCE_USER_PROMPT.format(
            action_type=action.action_type,
            description=action.description,
            scheduled_at=action.scheduled_at.strftime(DATE_FORMAT),
            execute_at=action.execute_at.strftime(DATE_FORMAT),
            criteria=json.dumps(action.relevance_criteria, default=str),
            context=json.dumps(context.to_prompt_dict(), indent=2, default=str),
            overrides=serialize_for_llm_prompt(user_overrides)
        )

    async def validate(
        self,
        action: ScheduledAction,
        context: ContactContext,
        user_overrides: Optional[dict] = None,
        trace_id: Optional[str] = None
    ) -> ActionRelevanceResult:
        """
        Validate relevance with the LLM.

        Returns a result with method ``LLM`` on success and ``LLM-Error``
        (confidence 0.0, verdict from the uncertainty policy) otherwise.
        """
        try:
            system_prompt = await self.prompt_provider.get_system_prompt(
                RELEVANCE_VALIDATOR_ROLE,
                self.industry_profile
            )
            user_prompt = self.build_relevance_prompt(action, context, user_overrides)
            logger.debug(
                "llm_relevance_prompt",
                action_id=action.id,
                preview=user_prompt[:500],
                trace_id=trace_id
            )
            raw = await self.llm_service.invoke(system_prompt, user_prompt, trace_id)
        except asyncio.TimeoutError:
            return self._error_result(action, "LLM validation timed out", ErrorKind.TRANSPORT, trace_id)
        except Exception as e:
            logger.error("llm_validation_failed", action_id=action.id, error=str(e), trace_id=trace_id)
            return self._error_result(
                action, f"LLM validation failed: {e}", ErrorKind.TRANSPORT, trace_id
            )

        try:
            verdict = parse_relevance_verdict(raw)
        except LLMResponseError as e:
            logger.error("llm_response_unparseable", action_id=action.id, error=str(e), trace_id=trace_id)
            return self._error_result(
                action, f"Failed to parse LLM response: {e}", ErrorKind.PARSE, trace_id
            )

        logger.debug(
            "llm_validation_completed",
            action_id=action.id,
            is_relevant=verdict.is_relevant,
            confidence=verdict.confidence_score,
            trace_id=trace_id
        )
        return ActionRelevanceResult(
            action_id=action.id,
            is_relevant=verdict.is_relevant,
            confidence_score=verdict.confidence_score,
            reason=verdict.reason,
            validation_method=ValidationMethod.LLM,
            recommended_action=verdict.recommended_action,
            alternative_actions=list(verdict.alternative_actions),
            checked_at=self.clock(),
            checked_by=self.CHECKER_NAME,
            trace_id=trace_id
        )

    async def recommends_approval(
        self,
        action: ScheduledAction,
        relevance_result: ActionRelevanceResult,
        context: ContactContext,
        trace_id: Optional[str] = None
    ) -> bool:
        """Ask the LLM whether a human should approve. Any failure means yes."""
        user_prompt = APPROVAL_USER_PROMPT.format(
            action_type=action.action_type,
            description=action.description,
            priority=action.priority.name,
            is_relevant=relevance_result.is_relevant,
            confidence=relevance_result.confidence_score,
            reason=relevance_result.reason,
            last_interaction=context.last_interaction_date.isoformat()
                if context.last_interaction_date else "unknown",
            summary=context.interaction_summary or "No summary available"
        )

        try:
            raw = await self.llm_service.invoke(APPROVAL_SYSTEM_PROMPT, user_prompt, trace_id)
            recommendation = parse_approval_recommendation(raw)
        except Exception as e:
            logger.error(
                "llm_approval_recommendation_failed",
                action_id=action.id,
                error=str(e),
                trace_id=trace_id
            )
            return True

        logger.debug(
            "llm_approval_recommendation",
            action_id=action.id,
            requires_approval=recommendation.requires_approval,
            reason=recommendation.reason,
            trace_id=trace_id
        )
        return recommendation.requires_approval

    def _error_result(
        self,
        action: ScheduledAction,
        reason: str,
        error_kind: ErrorKind,
        trace_id: Optional[str]
    ) -> ActionRelevanceResult:
        return ActionRelevanceResult(
            action_id=action.id,
            is_relevant=self.policy.relevant_when_uncertain,
            confidence_score=0.0,
            reason=reason,
            validation_method=ValidationMethod.LLM_ERROR,
            checked_at=self.clock(),
            checked_by=self.CHECKER_NAME,
            trace_id=trace_id,
            error_kind=error_kind
        )
