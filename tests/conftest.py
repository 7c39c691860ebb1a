"""Shared test fixtures for the test suite."""

from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

import pytest

from action_guard.core.entities import ContactContext, ScheduledAction
from action_guard.core.interfaces import ChannelExecutor, InMemoryContextProvider, LLMService


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = datetime(2024, 6, 3, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedLLMService(LLMService):
    """Returns queued responses in order; queued exceptions are raised."""

    def __init__(self, responses: list = None):
        self.responses = list(responses or [])
        self.calls: list[tuple[str, str]] = []

    async def invoke(self, system_prompt: str, user_prompt: str, trace_id: Optional[str] = None) -> Optional[str]:
        self.calls.append((system_prompt, user_prompt))
        if not self.responses:
            return None
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingExecutor(ChannelExecutor):
    """Records executed actions; raises ``error`` for the first ``failures`` calls."""

    def __init__(self, failures: int = 0, error: Exception = None):
        self.failures = failures
        self.error = error or RuntimeError("channel unavailable")
        self.executed: list[str] = []
        self.attempts = 0

    async def execute(self, action: ScheduledAction, trace_id: Optional[str] = None) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        self.executed.append(action.id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def contact_id() -> str:
    return str(uuid4())


@pytest.fixture
def organization_id() -> str:
    return str(uuid4())


@pytest.fixture
def context_provider(contact_id, organization_id, clock) -> InMemoryContextProvider:
    """Provider knowing one active, highly engaged contact."""
    return InMemoryContextProvider({
        contact_id: ContactContext(
            contact_id=contact_id,
            organization_id=organization_id,
            contact_name="Dana Whitfield",
            last_interaction_date=clock() - timedelta(days=2),
            interaction_summary="Asked about three-bedroom listings",
            additional_data={"dealStatus": "Active", "engagementLevel": "High"}
        )
    })


@pytest.fixture
def make_action(contact_id, organization_id, clock):
    """Factory for due scheduled actions on the fixture contact."""

    def _make(**overrides) -> ScheduledAction:
        fields = {
            "action_type": "follow_up_email",
            "description": "Follow up on showing",
            "contact_id": contact_id,
            "organization_id": organization_id,
            "scheduled_by_agent_id": "agent-7",
            "scheduled_at": clock() - timedelta(days=1),
            "execute_at": clock(),
        }
        fields.update(overrides)
        return ScheduledAction(**fields)

    return _make


@pytest.fixture
def llm_service() -> ScriptedLLMService:
    """LLM stub; queue answers on ``llm_service.responses``."""
    return ScriptedLLMService()


@pytest.fixture
def executor() -> RecordingExecutor:
    """Channel executor stub; set ``failures`` / ``error`` to make it fail."""
    return RecordingExecutor()
