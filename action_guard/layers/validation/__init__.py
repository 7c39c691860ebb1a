"""
Validation Layer - Action Relevance

Rule-based checks:
- Named relevance criteria evaluated against live contact context
- Confidence from the share of criteria still holding

LLM fallback:
- Second opinion when the rules are not confident
- Approval advice for the LLMDecision mode

Audit:
- Bounded in-memory log of every verdict
"""

from .criteria import CriterionEvaluator, CriterionOutcome, normalize_criterion_name
from .rule_engine import RuleBasedRelevanceEngine
from .schemas import ApprovalRecommendation, RelevanceVerdict
from .llm_bridge import LLMRelevanceBridge, strip_code_fences
from .alternatives import RuleBasedAlternativeSuggester
from .overrides import (
    serialize_for_audit_log,
    serialize_for_llm_prompt,
    validate_user_overrides
)
from .validator import RelevanceValidator

__all__ = [
    "CriterionEvaluator",
    "CriterionOutcome",
    "normalize_criterion_name",
    "RuleBasedRelevanceEngine",
    "ApprovalRecommendation",
    "RelevanceVerdict",
    "LLMRelevanceBridge",
    "strip_code_fences",
    "RuleBasedAlternativeSuggester",
    "serialize_for_audit_log",
    "serialize_for_llm_prompt",
    "validate_user_overrides",
    "RelevanceValidator"
]
