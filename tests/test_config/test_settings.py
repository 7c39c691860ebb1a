"""Tests for settings, the uncertainty policy and the LLM service adapter."""

import asyncio

import pytest
from langchain_core.language_models import FakeListChatModel
from pydantic import ValidationError

from action_guard.config.providers import LangChainLLMService, LLMProvider
from action_guard.config.settings import (
    ApprovalConfig,
    LLMConfig,
    LLMProviderType,
    RelevanceConfig,
    SchedulerConfig,
    Settings,
    UserOverrideMode,
    get_settings,
)
from action_guard.core.policy import UncertaintyAction, UncertaintyPolicy


class TestSettings:
    """Tests for defaults and environment overrides."""

    def test_defaults(self):
        settings = Settings()

        assert settings.relevance.minimum_confidence_score == 0.7
        assert settings.relevance.default_action_on_uncertainty == "suppress"
        assert settings.relevance.audit_log_capacity == 10000
        assert settings.approval.override_mode == UserOverrideMode.RISK_BASED
        assert settings.approval.user_approval_threshold == 0.8
        assert settings.approval.user_approval_timeout_minutes == 60
        assert settings.scheduler.default_max_retry_attempts == 3
        assert settings.scheduler.backoff_base_minutes == 2
        assert settings.scheduler.use_llm_validation is False

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RELEVANCE_MINIMUM_CONFIDENCE_SCORE", "0.55")
        monkeypatch.setenv("APPROVAL_OVERRIDE_MODE", "NeverAsk")
        monkeypatch.setenv("SCHEDULER_POLL_INTERVAL_SECONDS", "5")

        settings = Settings.from_env()

        assert settings.relevance.minimum_confidence_score == 0.55
        assert settings.approval.override_mode == UserOverrideMode.NEVER_ASK
        assert settings.scheduler.poll_interval_seconds == 5

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("LLM_PROVIDER", "anthropic")

        config = LLMConfig()

        assert config.provider == LLMProviderType.ANTHROPIC
        assert config.anthropic_api_key.get_secret_value() == "sk-test"
        assert "sk-test" not in repr(config)

    def test_uncertainty_action_normalized(self):
        assert RelevanceConfig(default_action_on_uncertainty="PROCEED").default_action_on_uncertainty == "proceed"

    def test_invalid_uncertainty_action(self):
        with pytest.raises(ValidationError):
            RelevanceConfig(default_action_on_uncertainty="maybe")

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            RelevanceConfig(minimum_confidence_score=1.5)
        with pytest.raises(ValidationError):
            ApprovalConfig(user_approval_threshold=-0.1)

    def test_scheduler_config(self):
        assert SchedulerConfig(require_approval=False).require_approval is False

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestUncertaintyPolicy:
    """Tests for building the policy from configuration."""

    def test_defaults(self):
        policy = UncertaintyPolicy.from_config(RelevanceConfig())

        assert policy.on_uncertainty == UncertaintyAction.SUPPRESS
        assert policy.relevant_when_uncertain is False
        assert policy.pass_unknown_criteria is True
        assert policy.pass_missing_interaction_history is False
        assert policy.relevant_on_quick_check_error is True

    def test_proceed(self):
        policy = UncertaintyPolicy.from_config(RelevanceConfig(
            default_action_on_uncertainty="proceed",
            pass_unknown_criteria=False
        ))
        assert policy.relevant_when_uncertain is True
        assert policy.pass_unknown_criteria is False


class SlowChatModel:
    """Chat model that never answers in time."""

    async def ainvoke(self, messages):
        await asyncio.sleep(10)


class BlockChatModel:
    """Chat model answering with a list of content blocks."""

    class Response:
        content = [{"type": "text", "text": '{"isRelevant": '}, {"type": "text", "text": "true}"}]

    async def ainvoke(self, messages):
        return self.Response()


class TestLangChainLLMService:
    """Tests for the LangChain-backed LLM service."""

    @pytest.mark.asyncio
    async def test_invoke(self):
        service = LangChainLLMService(FakeListChatModel(responses=['{"isRelevant": true}']))
        assert await service.invoke("system", "user") == '{"isRelevant": true}'

    @pytest.mark.asyncio
    async def test_content_blocks_joined(self):
        service = LangChainLLMService(BlockChatModel())
        assert await service.invoke("system", "user") == '{"isRelevant": true}'

    @pytest.mark.asyncio
    async def test_timeout_propagates(self):
        service = LangChainLLMService(SlowChatModel(), timeout=0.01)
        with pytest.raises(asyncio.TimeoutError):
            await service.invoke("system", "user")

    def test_unsupported_provider(self):
        provider = LLMProvider(LLMConfig())
        provider.config.provider = "carrier-pigeon"
        with pytest.raises(ValueError):
            provider.get_chat_model()
