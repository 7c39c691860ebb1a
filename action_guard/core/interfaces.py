"""
Collaborator Interfaces

The relevance pipeline depends on these external services only through the
abstract signatures below, plus the in-memory implementations used for
local runs and tests.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .entities import ContactContext, ScheduledAction


class ContextProvider(ABC):
    """Supplies live contact context."""

    @abstractmethod
    async def get_context(
        self,
        contact_id: str,
        organization_id: str,
        agent_id: str
    ) -> ContactContext:
        """
        Return current context for a contact.

        Implementations return a minimal context instead of raising.
        """
        pass


class LLMService(ABC):
    """Raw LLM transport."""

    @abstractmethod
    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        trace_id: Optional[str] = None
    ) -> Optional[str]:
        """Return the raw completion text. Empty or None means no answer."""
        pass


class PromptProvider(ABC):
    """Supplies system prompts per validator role."""

    @abstractmethod
    async def get_system_prompt(
        self,
        role: str,
        industry_profile: Optional[str] = None
    ) -> str:
        pass


class ChannelExecutor(ABC):
    """Side-effecting executor for one delivery channel."""

    @abstractmethod
    async def execute(self, action: ScheduledAction, trace_id: Optional[str] = None) -> None:
        """Perform the action. Raises on failure."""
        pass


class AlternativeActionSuggester(ABC):
    """Proposes replacements for actions whose premise no longer holds."""

    @abstractmethod
    async def suggest(
        self,
        action: ScheduledAction,
        context: ContactContext,
        trace_id: Optional[str] = None
    ) -> list[ScheduledAction]:
        pass


class InMemoryContextProvider(ContextProvider):
    """
    Context provider backed by a dict keyed by contact id.

    Unknown contacts get a minimal context.
    """

    def __init__(self, contexts: dict = None):
        self._contexts: dict[str, ContactContext] = dict(contexts or {})

    def put(self, context: ContactContext) -> None:
        self._contexts[str(context.contact_id)] = context

    async def get_context(
        self,
        contact_id: str,
        organization_id: str,
        agent_id: str
    ) -> ContactContext:
        context = self._contexts.get(str(contact_id))
        if context is None:
            return ContactContext.minimal(contact_id, organization_id)
        return context


class StaticPromptProvider(PromptProvider):
    """Serves fixed system prompts by role."""

    DEFAULT_PROMPTS = {
        "ActionRelevanceValidator": (
            "You are an assistant that validates whether a scheduled CRM action "
            "is still relevant given the current state of the contact. Respond "
            "with JSON only."
        ),
    }

    def __init__(self, prompts: dict = None):
        self.prompts = {**self.DEFAULT_PROMPTS, **(prompts or {})}

    async def get_system_prompt(
        self,
        role: str,
        industry_profile: Optional[str] = None
    ) -> str:
        prompt = self.prompts.get(role, "")
        if industry_profile:
            prompt = f"{prompt}\nIndustry profile: {industry_profile}"
        return prompt
