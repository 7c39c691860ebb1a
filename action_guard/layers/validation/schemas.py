"""
Pydantic Schemas for LLM Verdicts

The LLM answers in camelCase JSON; these models validate that payload
before it becomes an ActionRelevanceResult or an approval recommendation.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RelevanceVerdict(BaseModel):
    """Structured output for action relevance validation."""
    model_config = ConfigDict(populate_by_name=True)

    is_relevant: bool = Field(
        alias="isRelevant",
        description="Whether the scheduled action is still appropriate"
    )
    confidence_score: float = Field(
        alias="confidenceScore",
        ge=0.0,
        le=1.0,
        description="Confidence in the verdict (0-1)"
    )
    reason: str = Field(
        default="LLM validation",
        description="Explanation, including how user overrides influenced the decision"
    )
    recommended_action: Optional[str] = Field(
        default=None,
        alias="recommendedAction",
        description="proceed / reschedule / modify / cancel"
    )
    alternative_actions: List[str] = Field(
        default_factory=list,
        alias="alternativeActions",
        description="Alternative actions worth considering instead"
    )

    @field_validator("reason", mode="before")
    @classmethod
    def _default_reason(cls, value):
        return value or "LLM validation"

    @field_validator("alternative_actions", mode="before")
    @classmethod
    def _drop_empty_alternatives(cls, value):
        if value is None:
            return []
        return [item for item in value if item]


class ApprovalRecommendation(BaseModel):
    """Structured output for the approval advisor."""
    model_config = ConfigDict(populate_by_name=True)

    requires_approval: bool = Field(
        alias="requiresApproval",
        description="Whether a human must approve the action before execution"
    )
    reason: str = Field(
        default="LLM recommendation",
        description="Explanation of the recommendation"
    )
