"""
Channel Dispatch

Maps action-type tags onto a closed set of delivery channels and routes
approved actions to the executor registered for their channel.
"""

from enum import Enum
from typing import Optional

from ...core.entities import ScheduledAction
from ...core.errors import ChannelNotConfiguredError
from ...core.interfaces import ChannelExecutor
from ...observability.logging import get_logger

logger = get_logger(__name__)


class ChannelKind(Enum):
    """Delivery channels."""
    EMAIL = "email"
    SMS = "sms"
    CALENDAR = "calendar"
    PROPERTY = "property"
    TASK = "task"
    GENERIC = "generic"


ACTION_TYPE_CHANNELS = {
    "email": ChannelKind.EMAIL,
    "congrats_email": ChannelKind.EMAIL,
    "follow_up_email": ChannelKind.EMAIL,
    "sms": ChannelKind.SMS,
    "text_message": ChannelKind.SMS,
    "appointment_reminder": ChannelKind.CALENDAR,
    "calendar_event": ChannelKind.CALENDAR,
    "property_recommendation": ChannelKind.PROPERTY,
    "listing_alert": ChannelKind.PROPERTY,
    "task_creation": ChannelKind.TASK,
    "follow_up_task": ChannelKind.TASK,
}


def channel_for(action_type: str) -> ChannelKind:
    """Channel of an action type; unlisted types go to GENERIC."""
    return ACTION_TYPE_CHANNELS.get((action_type or "").lower(), ChannelKind.GENERIC)


class LoggingChannelExecutor(ChannelExecutor):
    """Executor that only logs what it would send."""

    def __init__(self, channel: ChannelKind):
        self.channel = channel
        self.executed_count = 0

    async def execute(self, action: ScheduledAction, trace_id: Optional[str] = None) -> None:
        self.executed_count += 1
        logger.info(
            "channel_action_executed",
            channel=self.channel.value,
            action_id=action.id,
            action_type=action.action_type,
            contact_id=action.contact_id,
            trace_id=trace_id
        )


class ChannelRegistry:
    """Executor lookup by channel."""

    def __init__(self, executors: dict = None):
        self._executors: dict[ChannelKind, ChannelExecutor] = dict(executors or {})

    def register(self, channel: ChannelKind, executor: ChannelExecutor) -> None:
        self._executors[channel] = executor

    def resolve(self, action: ScheduledAction) -> ChannelExecutor:
        """
        Executor for an action.

        Falls back to the GENERIC executor; raises ChannelNotConfiguredError
        when neither is registered.
        """
        channel = channel_for(action.action_type)
        executor = self._executors.get(channel) or self._executors.get(ChannelKind.GENERIC)
        if executor is None:
            raise ChannelNotConfiguredError(
                f"No executor registered for channel '{channel.value}' (action type '{action.action_type}')"
            )
        return executor

    async def dispatch(self, action: ScheduledAction, trace_id: Optional[str] = None) -> None:
        executor = self.resolve(action)
        await executor.execute(action, trace_id)

    @classmethod
    def create_default(cls) -> "ChannelRegistry":
        """Registry with a logging executor for every channel."""
        return cls({kind: LoggingChannelExecutor(kind) for kind in ChannelKind})
