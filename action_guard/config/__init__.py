"""
Configuration Management

Centralized configuration for:
- LLM providers (OpenAI, Anthropic, Ollama)
- Relevance validation and fail-safe defaults
- Human approval workflow
- Scheduler polling and retry
"""

from .settings import (
    Settings,
    LLMConfig,
    LLMProviderType,
    RelevanceConfig,
    ApprovalConfig,
    SchedulerConfig,
    UserOverrideMode,
    get_settings
)
from .providers import (
    LLMProvider,
    LangChainLLMService,
    get_chat_model
)

__all__ = [
    "Settings",
    "LLMConfig",
    "LLMProviderType",
    "RelevanceConfig",
    "ApprovalConfig",
    "SchedulerConfig",
    "UserOverrideMode",
    "get_settings",
    "LLMProvider",
    "LangChainLLMService",
    "get_chat_model"
]
