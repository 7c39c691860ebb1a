"""
Settings Management with Pydantic

Provides type-safe configuration with environment variable support for:
- LLM provider used for relevance fallback and approval advice
- Relevance validation thresholds and fail-safe defaults
- Human approval workflow
- Scheduler polling and retry
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMProviderType(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    AZURE_OPENAI = "azure_openai"


class UserOverrideMode(str, Enum):
    """How the approval manager decides whether a human must confirm."""
    ALWAYS_ASK = "AlwaysAsk"
    NEVER_ASK = "NeverAsk"
    RISK_BASED = "RiskBased"
    LLM_DECISION = "LLMDecision"


class LLMConfig(BaseSettings):
    """LLM provider configuration."""
    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        extra="ignore"
    )

    provider: LLMProviderType = LLMProviderType.OPENAI
    model_name: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 1024
    timeout: int = 30

    # API Keys (loaded from environment)
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")

    # Ollama settings
    ollama_base_url: str = "http://localhost:11434"

    # Azure OpenAI settings
    azure_endpoint: Optional[str] = None
    azure_api_version: str = "2024-02-15-preview"
    azure_deployment_name: Optional[str] = None


class RelevanceConfig(BaseSettings):
    """Relevance validation configuration."""
    model_config = SettingsConfigDict(
        env_prefix="RELEVANCE_",
        extra="ignore"
    )

    enable_llm_validation: bool = True
    minimum_confidence_score: float = Field(default=0.7, ge=0.0, le=1.0)
    default_action_on_uncertainty: str = "suppress"
    enable_audit_logging: bool = True
    audit_log_capacity: int = Field(default=10000, gt=0)
    batch_concurrency: int = Field(default=5, gt=0)
    industry_profile: Optional[str] = None

    # Fail-open / fail-closed switches
    pass_unknown_criteria: bool = True
    pass_missing_interaction_history: bool = False
    relevant_on_quick_check_error: bool = True

    @field_validator("default_action_on_uncertainty")
    @classmethod
    def _check_uncertainty_action(cls, value: str) -> str:
        value = value.lower()
        if value not in ("suppress", "proceed"):
            raise ValueError("default_action_on_uncertainty must be 'suppress' or 'proceed'")
        return value


class ApprovalConfig(BaseSettings):
    """Human approval workflow configuration."""
    model_config = SettingsConfigDict(
        env_prefix="APPROVAL_",
        extra="ignore"
    )

    override_mode: UserOverrideMode = UserOverrideMode.RISK_BASED
    user_approval_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    user_approval_timeout_minutes: int = 60
    enable_bulk_approval: bool = True
    bulk_similarity_window_hours: int = 24
    defer_minutes: int = 60
    sweep_interval_seconds: int = 300
    decision_history_capacity: int = Field(default=10000, gt=0)

    always_require_approval_for: list[str] = Field(default_factory=list)
    never_require_approval_for: list[str] = Field(default_factory=list)


class SchedulerConfig(BaseSettings):
    """Scheduled action processing configuration."""
    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore"
    )

    poll_interval_seconds: int = 60
    default_max_retry_attempts: int = 3
    backoff_base_minutes: int = 2
    require_approval: bool = True
    use_llm_validation: bool = False


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Application
    app_name: str = "Action Guard"
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "console"

    # Sub-configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    relevance: RelevanceConfig = Field(default_factory=RelevanceConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        return cls(
            llm=LLMConfig(),
            relevance=RelevanceConfig(),
            approval=ApprovalConfig(),
            scheduler=SchedulerConfig()
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
