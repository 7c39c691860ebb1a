#!/usr/bin/env python3
"""
Action Guard - Main Demo

Walks a handful of scheduled CRM actions through the pipeline:
1. Relevance validation (rule-based, with optional LLM fallback)
2. Suppression of stale actions and their replacement
3. Human approval round-trip
4. Audit log and execution metrics

Set LLM_PROVIDER and the matching API key to let an LLM resolve uncertain
verdicts; without one the demo runs rule-based only.
"""

import asyncio
import os
from datetime import datetime, timedelta
from uuid import uuid4

from action_guard.config import LangChainLLMService, Settings, get_settings
from action_guard.core.entities import ActionRelevanceRequest, ContactContext, Priority, ScheduledAction
from action_guard.core.interfaces import InMemoryContextProvider
from action_guard.layers.orchestration import ActionPipeline, ApprovalDecision, UserApprovalResponse
from action_guard.observability import setup_logging

AGENT_ID = "demo-agent"


def build_contacts():
    """Two contacts: one still house hunting, one lost to another brokerage."""
    now = datetime.now()
    active, closed = str(uuid4()), str(uuid4())
    organization = str(uuid4())

    provider = InMemoryContextProvider()
    provider.put(ContactContext(
        contact_id=active,
        organization_id=organization,
        contact_name="Dana Whitfield",
        last_interaction_date=now - timedelta(days=2),
        interaction_summary="Toured two listings, asked about school districts",
        additional_data={"dealStatus": "Active", "engagementLevel": "High"}
    ))
    provider.put(ContactContext(
        contact_id=closed,
        organization_id=organization,
        contact_name="Marco Reyes",
        last_interaction_date=now - timedelta(days=12),
        interaction_summary="Signed with another brokerage",
        additional_data={"dealStatus": "Lost", "engagementLevel": "Low"}
    ))
    return provider, active, closed, organization


def build_llm_service(settings: Settings):
    if not os.getenv("LLM_PROVIDER"):
        return None
    try:
        return LangChainLLMService.from_config(settings.llm)
    except ImportError as e:
        print(f"LLM fallback disabled: {e}")
        return None


def make_action(action_type, contact_id, organization_id, criteria, priority=Priority.MEDIUM, description=""):
    now = datetime.now()
    return ScheduledAction(
        action_type=action_type,
        description=description or action_type.replace("_", " "),
        contact_id=contact_id,
        organization_id=organization_id,
        scheduled_by_agent_id=AGENT_ID,
        scheduled_at=now - timedelta(days=3),
        execute_at=now - timedelta(minutes=1),
        relevance_criteria=criteria,
        priority=priority
    )


async def run_validation_demo(pipeline, active, closed, organization):
    """Validate actions directly, without scheduling them."""
    print("=" * 60)
    print("RELEVANCE VALIDATION")
    print("=" * 60)
    print()

    actions = [
        make_action("follow_up_email", active, organization, {"dealStatus": "Active", "lastInteractionAge": 7}),
        make_action("congrats_email", closed, organization, {"dealStatus": "Closed"}),
        make_action("property_recommendation", closed, organization,
                    {"dealStatus": "Active", "contactEngagement": "High"}),
    ]
    results = await pipeline.validator.validate_batch([
        ActionRelevanceRequest(action=action, use_llm_validation=True) for action in actions
    ])

    print(f"{'Action':<26} {'Relevant':<10} {'Confidence':<12} {'Method':<14}")
    print("-" * 60)
    for action, result in zip(actions, results):
        print(
            f"{action.action_type:<26} {str(result.is_relevant):<10} "
            f"{result.confidence_score:<12.2f} {result.validation_method.value:<14}"
        )
        if result.failed_criteria:
            print(f"    {result.reason}")
    print()


async def run_scheduler_demo(pipeline, active, closed, organization):
    """Schedule actions, poll once, answer the approval request, poll again."""
    print("=" * 60)
    print("SCHEDULED ACTION PROCESSING")
    print("=" * 60)
    print()

    scheduler = pipeline.scheduler
    reminder = scheduler.schedule_action(make_action(
        "appointment_reminder", active, organization, {"dealStatus": "Active"}, Priority.HIGH
    ))
    congrats = scheduler.schedule_action(make_action(
        "congrats_email", closed, organization, {"dealStatus": "Closed"}
    ))
    nudge = scheduler.schedule_action(make_action(
        "follow_up_email", active, organization,
        {"dealStatus": "Active", "contactEngagement": "High"},
        description="Nudge about mortgage pre-approval"
    ))

    report = await scheduler.process_due_actions()
    print("Poll 1:")
    print(f"  Completed:          {len(report.completed)}")
    print(f"  Suppressed:         {len(report.suppressed)}")
    print(f"  Awaiting approval:  {len(report.awaiting_approval)}")
    print(f"  Alternatives added: {len(report.alternatives_scheduled)}")
    print()

    print(f"  {congrats.action_type}: {congrats.status.value} ({congrats.suppression_reason})")
    for alternative_id in report.alternatives_scheduled:
        alternative = scheduler.get_action(alternative_id)
        print(f"    -> replaced by {alternative.action_type} at {alternative.execute_at:%H:%M}")
    print(f"  {reminder.action_type}: {reminder.status.value}")
    print()

    pending = pipeline.approvals.get_pending_approvals(AGENT_ID)
    print(f"Pending approvals for {AGENT_ID}: {len(pending)}")
    for request in pending:
        print(f"  - {request.action.description}: {request.approval_reason}")
        outcome = await pipeline.resolve_approval(UserApprovalResponse(
            request_id=request.request_id,
            decision=ApprovalDecision.MODIFY,
            suggested_modifications={"description": "Softer nudge about pre-approval"},
            reason="Tone it down",
            user_id=AGENT_ID
        ))
        print(f"    Decision: {outcome.status.value}")
    print()

    report = await scheduler.process_due_actions()
    print("Poll 2:")
    print(f"  Completed: {len(report.completed)}")
    print(f"  {nudge.action_type}: {scheduler.get_action(nudge.id).status.value}")
    print()

    metrics = scheduler.get_execution_metrics()
    print("Execution Metrics:")
    print(f"  Total Actions: {metrics['total_actions']}")
    print(f"  Success Rate: {metrics['success_rate']:.0%}")
    print(f"  Approvals Requested: {metrics['total_approvals_requested']}")
    print()


def run_audit_demo(pipeline, active):
    print("=" * 60)
    print("AUDIT LOG")
    print("=" * 60)
    print()

    for result in pipeline.validator.get_validation_audit_log(contact_id=active)[:5]:
        print(
            f"  {result.checked_at:%H:%M:%S} {result.context_data.get('actionType', '?'):<22} "
            f"relevant={result.is_relevant} ({result.validation_method.value})"
        )
    print()

    summary = pipeline.approvals.get_decision_summary()
    print("Approval Decisions:")
    print(f"  Total: {summary['total_decisions']}")
    print(f"  Modified: {summary['modified']}")
    print()


async def run_demo():
    settings = get_settings()
    settings.approval.always_require_approval_for = ["follow_up_email"]
    setup_logging(level="WARNING", format=settings.log_format)

    provider, active, closed, organization = build_contacts()
    pipeline = ActionPipeline.create_default(
        provider,
        llm_service=build_llm_service(settings),
        settings=settings
    )

    await run_validation_demo(pipeline, active, closed, organization)
    await run_scheduler_demo(pipeline, active, closed, organization)
    run_audit_demo(pipeline, active)


def main():
    """Main entry point."""
    print()
    print("+" + "=" * 58 + "+")
    print("|              ACTION GUARD DEMONSTRATION                  |")
    print("|                                                          |")
    print("|  Relevance validation and human approval for             |")
    print("|  scheduled CRM actions                                   |")
    print("+" + "=" * 58 + "+")
    print()

    asyncio.run(run_demo())

    print("=" * 60)
    print("DEMONSTRATION COMPLETE")
    print("=" * 60)
    print()


if __name__ == "__main__":
    main()
