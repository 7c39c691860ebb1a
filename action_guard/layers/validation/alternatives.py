"""
Alternative action suggestions for suppressed actions.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from ...core.entities import ContactContext, ScheduledAction
from ...core.interfaces import AlternativeActionSuggester


# action type -> (replacement type, replacement description)
DEFAULT_SUBSTITUTIONS = {
    "congrats_email": ("follow_up_email", "Follow up on recent activity"),
    "appointment_reminder": ("reschedule_request", "Request to reschedule appointment"),
    "property_recommendation": ("market_update", "Send market update instead"),
}


class RuleBasedAlternativeSuggester(AlternativeActionSuggester):
    """
    Suggests a fixed replacement per action type.

    Replacements run one hour later, copy the original parameters and carry
    no relevance criteria of their own.
    """

    def __init__(
        self,
        substitutions: dict = None,
        delay: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = None
    ):
        self.substitutions = dict(substitutions or DEFAULT_SUBSTITUTIONS)
        self.delay = delay
        self.clock = clock or datetime.now

    async def suggest(
        self,
        action: ScheduledAction,
        context: ContactContext,
        trace_id: Optional[str] = None
    ) -> list[ScheduledAction]:
        substitution = self.substitutions.get((action.action_type or "").lower())
        if substitution is None:
            return []

        action_type, description = substitution
        now = self.clock()
        parameters = dict(action.parameters)
        parameters["alternativeFor"] = action.id

        return [ScheduledAction(
            action_type=action_type,
            description=description,
            contact_id=action.contact_id,
            organization_id=action.organization_id,
            scheduled_by_agent_id=action.scheduled_by_agent_id,
            scheduled_at=now,
            execute_at=now + self.delay,
            parameters=parameters,
            priority=action.priority,
            max_retry_attempts=action.max_retry_attempts,
            trace_id=trace_id or action.trace_id
        )]
