"""
LLM Provider Factory

Builds the LangChain chat model used by the relevance fallback and exposes
it through the ``LLMService`` interface:
- OpenAI, Anthropic, Ollama and Azure OpenAI chat models
- timeout-bounded async invocation
"""

import asyncio
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from ..core.interfaces import LLMService
from ..observability.logging import get_logger
from .settings import LLMConfig, LLMProviderType, get_settings

logger = get_logger(__name__)


class LLMProvider:
    """
    Factory for chat models using LangChain.

    Supports:
    - OpenAI (GPT-4o, GPT-4o-mini)
    - Anthropic (Claude)
    - Ollama (Llama, Mistral, etc.)
    - Azure OpenAI
    """

    def __init__(self, config: LLMConfig = None):
        self.config = config or get_settings().llm
        self._chat_model = None

    def get_chat_model(self):
        """Get chat model instance (lazy initialization)."""
        if self._chat_model is None:
            self._chat_model = self._create_chat_model()
        return self._chat_model

    def _create_chat_model(self):
        """Create chat model based on provider configuration."""
        provider = self.config.provider

        if provider == LLMProviderType.OPENAI:
            return self._create_openai_chat()
        elif provider == LLMProviderType.ANTHROPIC:
            return self._create_anthropic_chat()
        elif provider == LLMProviderType.OLLAMA:
            return self._create_ollama_chat()
        elif provider == LLMProviderType.AZURE_OPENAI:
            return self._create_azure_openai_chat()
        else:
            raise ValueError(f"Unsupported LLM provider: {provider}")

    def _api_key(self, secret) -> Optional[str]:
        return secret.get_secret_value() if secret else None

    def _create_openai_chat(self):
        """Create OpenAI Chat model."""
        try:
            from langchain_openai import ChatOpenAI
        except ImportError:
            raise ImportError("Install langchain-openai: pip install langchain-openai")

        return ChatOpenAI(
            model=self.config.model_name,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            api_key=self._api_key(self.config.openai_api_key),
            timeout=self.config.timeout
        )

    def _create_anthropic_chat(self):
        """Create Anthropic Chat model."""
        try:
            from langchain_anthropic import ChatAnthropic
        except ImportError:
            raise ImportError("Install langchain-anthropic: pip install langchain-anthropic")

        return ChatAnthropic(
            model=self.config.model_name or "claude-3-5-sonnet-20241022",
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            api_key=self._api_key(self.config.anthropic_api_key),
            timeout=self.config.timeout
        )

    def _create_ollama_chat(self):
        """Create Ollama Chat model for local models."""
        try:
            from langchain_community.chat_models import ChatOllama
        except ImportError:
            raise ImportError("Install langchain-community: pip install langchain-community")

        return ChatOllama(
            model=self.config.model_name or "llama3.2",
            base_url=self.config.ollama_base_url,
            temperature=self.config.temperature
        )

    def _create_azure_openai_chat(self):
        """Create Azure OpenAI Chat model."""
        try:
            from langchain_openai import AzureChatOpenAI
        except ImportError:
            raise ImportError("Install langchain-openai: pip install langchain-openai")

        return AzureChatOpenAI(
            azure_endpoint=self.config.azure_endpoint,
            azure_deployment=self.config.azure_deployment_name,
            api_version=self.config.azure_api_version,
            api_key=self._api_key(self.config.openai_api_key),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens
        )


class LangChainLLMService(LLMService):
    """
    ``LLMService`` backed by a LangChain chat model.

    Each call is bounded by ``timeout`` seconds. Timeouts and transport
    errors propagate to the caller, which turns them into fail-safe verdicts.
    """

    def __init__(self, chat_model, timeout: float = 30.0):
        self.chat_model = chat_model
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: LLMConfig = None) -> "LangChainLLMService":
        config = config or get_settings().llm
        return cls(LLMProvider(config).get_chat_model(), timeout=config.timeout)

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        trace_id: Optional[str] = None
    ) -> Optional[str]:
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt)
        ]
        response = await asyncio.wait_for(
            self.chat_model.ainvoke(messages),
            timeout=self.timeout
        )
        content = getattr(response, "content", response)
        if not isinstance(content, str):
            # Some providers return a list of content blocks
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        logger.debug("llm_invoked", trace_id=trace_id, response_chars=len(content))
        return content


def get_chat_model(config: LLMConfig = None):
    """Get chat model instance."""
    return LLMProvider(config).get_chat_model()
