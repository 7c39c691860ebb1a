"""
Relevance Validator

Re-checks a scheduled action's premise right before it fires:

1. Fetch fresh contact context (unless the request carries one)
2. Evaluate the action's relevance criteria with the rule engine
3. Escalate to the LLM bridge when the rules are not confident enough
4. Record the verdict in a bounded in-memory audit log

Validation never raises. Unexpected failures become a fail-safe verdict
with method ``Error`` whose relevance follows the uncertainty policy.
"""

import asyncio
import threading
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from ...config.settings import RelevanceConfig
from ...core.entities import (
    ActionRelevanceRequest,
    ActionRelevanceResult,
    ContactContext,
    ScheduledAction,
    ValidationMethod
)
from ...core.errors import ErrorKind
from ...core.interfaces import AlternativeActionSuggester, ContextProvider
from ...core.policy import UncertaintyPolicy
from ...observability.logging import get_logger
from .alternatives import RuleBasedAlternativeSuggester
from .llm_bridge import LLMRelevanceBridge
from .overrides import serialize_for_audit_log, validate_user_overrides
from .rule_engine import RuleBasedRelevanceEngine

logger = get_logger(__name__)


class RelevanceValidator:
    """
    Validates that scheduled actions are still relevant.

    Usage:
        validator = RelevanceValidator(context_provider, llm_bridge=bridge)
        result = await validator.validate_action_relevance(
            ActionRelevanceRequest(action=action, use_llm_validation=True)
        )
    """

    CHECKER_NAME = "RelevanceValidator"

    def __init__(
        self,
        context_provider: ContextProvider,
        llm_bridge: Optional[LLMRelevanceBridge] = None,
        alternative_suggester: Optional[AlternativeActionSuggester] = None,
        config: RelevanceConfig = None,
        clock: Callable[[], datetime] = None
    ):
        self.context_provider = context_provider
        self.llm_bridge = llm_bridge
        self.clock = clock or datetime.now
        self.config = config or RelevanceConfig()
        self.policy = UncertaintyPolicy.from_config(self.config)
        self.rule_engine = RuleBasedRelevanceEngine(policy=self.policy, clock=self.clock)
        self.alternative_suggester = alternative_suggester or RuleBasedAlternativeSuggester(clock=self.clock)
        self._apply_policy()

        self._audit_lock = threading.Lock()
        self._audit_log: deque[ActionRelevanceResult] = deque(maxlen=self.config.audit_log_capacity)

    def _apply_policy(self) -> None:
        self.rule_engine.policy = self.policy
        self.rule_engine.evaluator.policy = self.policy
        if self.llm_bridge is not None:
            self.llm_bridge.policy = self.policy

    async def fetch_context(self, action: ScheduledAction) -> ContactContext:
        return await self.context_provider.get_context(
            action.contact_id,
            action.organization_id,
            action.scheduled_by_agent_id
        )

    async def validate_action_relevance(self, request: ActionRelevanceRequest) -> ActionRelevanceResult:
        """Validate one action. Never raises."""
        trace_id = request.trace_id or str(uuid4())
        action = request.action

        try:
            logger.debug(
                "relevance_validation_started",
                action_id=action.id,
                action_type=action.action_type,
                trace_id=trace_id
            )

            if request.user_overrides:
                valid, issues = validate_user_overrides(request.user_overrides)
                if not valid:
                    logger.warning(
                        "invalid_user_overrides",
                        action_id=action.id,
                        issues=issues,
                        trace_id=trace_id
                    )

            context = request.current_context
            if context is None:
                context = await self.fetch_context(action)

            result = self.rule_engine.evaluate(action.relevance_criteria, context, trace_id)

            if (
                request.use_llm_validation
                and self.config.enable_llm_validation
                and self.llm_bridge is not None
                and result.confidence_score < self.config.minimum_confidence_score
            ):
                llm_result = await self.llm_bridge.validate(
                    action, context, request.user_overrides, trace_id
                )
                if llm_result.confidence_score > result.confidence_score:
                    result = replace(
                        llm_result,
                        validation_method=ValidationMethod.LLM,
                        context_data={**result.context_data, **llm_result.context_data}
                    )
                else:
                    result = replace(result, validation_method=ValidationMethod.RULE_BASED_PLUS_LLM)

            context_data = {**result.context_data, "actionType": action.action_type}
            if request.user_overrides:
                context_data["userOverrides"] = serialize_for_audit_log(request.user_overrides)

            result = replace(
                result,
                action_id=action.id,
                trace_id=trace_id,
                checked_by=result.checked_by or self.CHECKER_NAME,
                context_data=context_data
            )
        except Exception as e:
            logger.error(
                "relevance_validation_failed",
                action_id=getattr(action, "id", None),
                error=str(e),
                trace_id=trace_id
            )
            result = ActionRelevanceResult(
                action_id=getattr(action, "id", ""),
                is_relevant=self.policy.relevant_when_uncertain,
                confidence_score=0.0,
                reason=f"Validation failed: {e}",
                validation_method=ValidationMethod.ERROR,
                context_data={
                    "contactId": getattr(action, "contact_id", None),
                    "actionType": getattr(action, "action_type", None)
                },
                checked_at=self.clock(),
                checked_by=self.CHECKER_NAME,
                trace_id=trace_id,
                error_kind=ErrorKind.VALIDATION
            )

        if self.config.enable_audit_logging:
            self._record(result)

        logger.info(
            "relevance_validation_completed",
            action_id=result.action_id,
            is_relevant=result.is_relevant,
            confidence=result.confidence_score,
            method=result.validation_method.value,
            trace_id=trace_id
        )
        return result

    async def validate_batch(self, requests: list[ActionRelevanceRequest]) -> list[ActionRelevanceResult]:
        """Validate many actions with bounded concurrency; results keep request order."""
        semaphore = asyncio.Semaphore(self.config.batch_concurrency)

        async def _bounded(request: ActionRelevanceRequest) -> ActionRelevanceResult:
            async with semaphore:
                return await self.validate_action_relevance(request)

        results = await asyncio.gather(*(_bounded(request) for request in requests))

        logger.info(
            "batch_validation_completed",
            relevant=sum(1 for r in results if r.is_relevant),
            total=len(results)
        )
        return list(results)

    async def is_action_still_relevant(
        self,
        action: ScheduledAction,
        contact_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        trace_id: Optional[str] = None,
        use_llm_validation: bool = False
    ) -> bool:
        """
        Quick boolean check used right before execution.

        The verdict is stored on ``action.last_relevance_result``. If the
        check itself fails, the uncertainty policy decides (default: still
        relevant).
        """
        trace_id = trace_id or action.trace_id or str(uuid4())
        try:
            result = await self.validate_action_relevance(ActionRelevanceRequest(
                action=action,
                use_llm_validation=use_llm_validation,
                trace_id=trace_id
            ))
            action.last_relevance_result = result
            return result.is_relevant
        except Exception as e:
            logger.error(
                "quick_relevance_check_failed",
                action_id=action.id,
                contact_id=contact_id,
                organization_id=organization_id,
                error=str(e),
                trace_id=trace_id
            )
            return self.policy.relevant_on_quick_check_error

    def evaluate_relevance_criteria(
        self,
        criteria: dict,
        context: ContactContext,
        trace_id: Optional[str] = None
    ) -> ActionRelevanceResult:
        return self.rule_engine.evaluate(criteria, context, trace_id)

    async def validate_with_llm(
        self,
        action: ScheduledAction,
        context: ContactContext,
        user_overrides: Optional[dict] = None,
        trace_id: Optional[str] = None
    ) -> ActionRelevanceResult:
        if self.llm_bridge is None:
            return ActionRelevanceResult(
                action_id=action.id,
                is_relevant=self.policy.relevant_when_uncertain,
                confidence_score=0.0,
                reason="No LLM service configured",
                validation_method=ValidationMethod.LLM_ERROR,
                checked_at=self.clock(),
                checked_by=LLMRelevanceBridge.CHECKER_NAME,
                trace_id=trace_id,
                error_kind=ErrorKind.TRANSPORT
            )
        return await self.llm_bridge.validate(action, context, user_overrides, trace_id)

    async def suggest_alternative_actions(
        self,
        action: ScheduledAction,
        context: Optional[ContactContext] = None,
        trace_id: Optional[str] = None
    ) -> list[ScheduledAction]:
        """Replacement actions for a suppressed one. Returns [] on any error."""
        try:
            if context is None:
                context = await self.fetch_context(action)
            return await self.alternative_suggester.suggest(action, context, trace_id)
        except Exception as e:
            logger.error(
                "alternative_suggestion_failed",
                action_id=action.id,
                error=str(e),
                trace_id=trace_id
            )
            return []

    def get_validation_config(self) -> RelevanceConfig:
        return self.config

    def update_validation_config(self, config: RelevanceConfig) -> bool:
        """Swap the configuration and rebuild the uncertainty policy."""
        try:
            policy = UncertaintyPolicy.from_config(config)
        except ValueError as e:
            logger.error("validation_config_rejected", error=str(e))
            return False

        self.config = config
        self.policy = policy
        self._apply_policy()
        with self._audit_lock:
            if self._audit_log.maxlen != config.audit_log_capacity:
                self._audit_log = deque(self._audit_log, maxlen=config.audit_log_capacity)

        logger.info("validation_config_updated")
        return True

    # =========================================================================
    # Audit log
    # =========================================================================

    def _record(self, result: ActionRelevanceResult) -> None:
        with self._audit_lock:
            self._audit_log.append(result)

    def get_validation_audit_log(
        self,
        contact_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        action_type: Optional[str] = None
    ) -> list[ActionRelevanceResult]:
        """Filtered audit entries, newest first."""
        with self._audit_lock:
            entries = list(self._audit_log)

        if contact_id is not None:
            entries = [
                r for r in entries
                if str(r.context_data.get("contactId")) == str(contact_id)
            ]
        if start_date is not None:
            entries = [r for r in entries if r.checked_at >= start_date]
        if end_date is not None:
            entries = [r for r in entries if r.checked_at <= end_date]
        if action_type:
            entries = [
                r for r in entries
                if str(r.context_data.get("actionType") or "").lower() == action_type.lower()
            ]

        return sorted(reversed(entries), key=lambda r: r.checked_at, reverse=True)

    def clear_audit_log(self) -> int:
        with self._audit_lock:
            count = len(self._audit_log)
            self._audit_log.clear()
        return count
