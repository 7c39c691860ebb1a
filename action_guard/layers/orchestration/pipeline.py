"""
Action Pipeline

Wires the relevance validator, approval workflow and scheduler together and
owns the two background jobs:
- scheduler poll (every ``poll_interval_seconds``, first run immediately)
- approval expiry sweep (every ``sweep_interval_seconds``)
"""

from datetime import datetime
from typing import Callable, Optional

from ...config.settings import Settings, get_settings
from ...core.entities import ScheduledAction
from ...core.interfaces import ContextProvider, LLMService, PromptProvider, StaticPromptProvider
from ...observability.logging import get_logger
from ..validation.alternatives import RuleBasedAlternativeSuggester
from ..validation.llm_bridge import LLMRelevanceBridge
from ..validation.validator import RelevanceValidator
from .approval import ApprovalOutcome, ApprovalWorkflowManager, UserApprovalResponse
from .channels import ChannelRegistry
from .scheduler import ScheduledActionScheduler
from .timers import BackgroundTaskRunner, PeriodicTask

logger = get_logger(__name__)

POLL_TASK = "scheduled_action_poll"
SWEEP_TASK = "approval_expiry_sweep"


class ActionPipeline:
    """
    Facade over validation, approvals and scheduling.

    Usage:
        pipeline = ActionPipeline.create_default(context_provider)
        async with pipeline:
            pipeline.schedule_action(action)
            ...
    """

    def __init__(
        self,
        validator: RelevanceValidator,
        scheduler: ScheduledActionScheduler,
        approvals: Optional[ApprovalWorkflowManager] = None,
        settings: Settings = None
    ):
        self.settings = settings or get_settings()
        self.validator = validator
        self.scheduler = scheduler
        self.approvals = approvals

        self.runner = BackgroundTaskRunner()
        self.runner.register(PeriodicTask(
            name=POLL_TASK,
            interval_seconds=self.settings.scheduler.poll_interval_seconds,
            callback=self.scheduler.process_due_actions,
            run_immediately=True
        ))
        if self.approvals is not None:
            self.runner.register(PeriodicTask(
                name=SWEEP_TASK,
                interval_seconds=self.settings.approval.sweep_interval_seconds,
                callback=self.approvals.sweep_expired
            ))

    async def start(self) -> None:
        logger.info("action_pipeline_starting", app=self.settings.app_name)
        await self.runner.start()

    async def stop(self) -> None:
        await self.runner.stop()
        logger.info("action_pipeline_stopped")

    async def __aenter__(self) -> "ActionPipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # Convenience passthroughs

    def schedule_action(self, action: ScheduledAction) -> ScheduledAction:
        return self.scheduler.schedule_action(action)

    def cancel_scheduled_action(self, action_id: str, reason: str = "") -> bool:
        return self.scheduler.cancel_scheduled_action(action_id, reason)

    async def resolve_approval(self, response: UserApprovalResponse) -> ApprovalOutcome:
        return await self.scheduler.resolve_approval(response)

    @classmethod
    def create_default(
        cls,
        context_provider: ContextProvider,
        llm_service: Optional[LLMService] = None,
        prompt_provider: Optional[PromptProvider] = None,
        settings: Settings = None,
        executors: dict = None,
        clock: Callable[[], datetime] = None
    ) -> "ActionPipeline":
        """
        Build a pipeline from settings.

        Without an ``llm_service`` the LLM fallback is skipped and the
        LLMDecision approval mode fails safe to "approval required".
        """
        settings = settings or get_settings()
        clock = clock or datetime.now

        llm_bridge = None
        if llm_service is not None:
            llm_bridge = LLMRelevanceBridge(
                llm_service,
                prompt_provider or StaticPromptProvider(),
                industry_profile=settings.relevance.industry_profile,
                clock=clock
            )

        suggester = RuleBasedAlternativeSuggester(clock=clock)
        validator = RelevanceValidator(
            context_provider,
            llm_bridge=llm_bridge,
            alternative_suggester=suggester,
            config=settings.relevance,
            clock=clock
        )
        approvals = ApprovalWorkflowManager(
            context_provider,
            config=settings.approval,
            llm_bridge=llm_bridge,
            alternative_suggester=suggester,
            clock=clock
        )

        channels = ChannelRegistry.create_default()
        for kind, executor in (executors or {}).items():
            channels.register(kind, executor)

        scheduler = ScheduledActionScheduler(
            validator,
            channels=channels,
            approvals=approvals,
            config=settings.scheduler,
            clock=clock
        )
        return cls(validator, scheduler, approvals=approvals, settings=settings)
