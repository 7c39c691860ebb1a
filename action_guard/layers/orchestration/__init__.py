"""
Orchestration Layer - Scheduling, Approval and Dispatch

Scheduling:
- Due-action polling, highest priority first
- Suppression with substitute actions
- Retry with exponential backoff

Human Approval Gates:
- Override modes (always / never / risk-based / LLM decision)
- Approve, reject, modify, defer
- Bulk approval of similar actions
- Time-bounded requests with expiry sweep

Dispatch:
- Closed set of delivery channels with an executor per channel
"""

from .approval import (
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalStatus,
    ApprovalWorkflowManager,
    UserApprovalRequest,
    UserApprovalResponse,
    apply_modifications
)
from .channels import (
    ChannelKind,
    ChannelRegistry,
    LoggingChannelExecutor,
    channel_for
)
from .timers import BackgroundTaskRunner, PeriodicTask
from .scheduler import ProcessingReport, ScheduledActionScheduler
from .pipeline import ActionPipeline

__all__ = [
    "ApprovalDecision",
    "ApprovalOutcome",
    "ApprovalStatus",
    "ApprovalWorkflowManager",
    "UserApprovalRequest",
    "UserApprovalResponse",
    "apply_modifications",
    "ChannelKind",
    "ChannelRegistry",
    "LoggingChannelExecutor",
    "channel_for",
    "BackgroundTaskRunner",
    "PeriodicTask",
    "ProcessingReport",
    "ScheduledActionScheduler",
    "ActionPipeline"
]
