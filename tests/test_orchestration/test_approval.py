"""Unit tests for the approval workflow."""

from datetime import datetime, timedelta, timezone

import pytest

from action_guard.config.settings import ApprovalConfig, UserOverrideMode
from action_guard.core.entities import ActionRelevanceResult, Priority
from action_guard.core.errors import ErrorKind
from action_guard.core.interfaces import StaticPromptProvider
from action_guard.layers.orchestration.approval import (
    ApprovalDecision,
    ApprovalStatus,
    ApprovalWorkflowManager,
    UserApprovalResponse,
    apply_modifications,
)
from action_guard.layers.validation.llm_bridge import LLMRelevanceBridge


def verdict(action, confidence: float) -> ActionRelevanceResult:
    return ActionRelevanceResult(action_id=action.id, confidence_score=confidence, reason="checked")


class TestRequiresApproval:
    """Tests for the approval requirement per override mode."""

    @pytest.fixture(autouse=True)
    def _setup(self, context_provider, make_action, clock, llm_service):
        self.context_provider = context_provider
        self.clock = clock
        self.llm = llm_service
        self.action = make_action()

    def manager(self, llm_bridge=None, **config) -> ApprovalWorkflowManager:
        return ApprovalWorkflowManager(
            self.context_provider,
            config=ApprovalConfig(**config),
            llm_bridge=llm_bridge,
            clock=self.clock
        )

    @pytest.mark.asyncio
    async def test_always_ask(self):
        manager = self.manager(override_mode=UserOverrideMode.ALWAYS_ASK)
        assert await manager.requires_approval(self.action, verdict(self.action, 1.0), "agent-7") is True

    @pytest.mark.asyncio
    async def test_never_ask(self):
        manager = self.manager(override_mode=UserOverrideMode.NEVER_ASK)
        assert await manager.requires_approval(self.action, verdict(self.action, 0.0), "agent-7") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("confidence,expected", [(0.5, True), (0.79, True), (0.8, False), (1.0, False)])
    async def test_risk_based_threshold(self, confidence, expected):
        manager = self.manager(override_mode=UserOverrideMode.RISK_BASED)
        result = await manager.requires_approval(self.action, verdict(self.action, confidence), "agent-7")
        assert result is expected

    @pytest.mark.asyncio
    async def test_risk_based_type_lists(self):
        manager = self.manager(
            always_require_approval_for=["follow_up_email"],
            never_require_approval_for=["sms"]
        )
        assert await manager.requires_approval(self.action, verdict(self.action, 1.0), "agent-7") is True

        self.action.action_type = "sms"
        assert await manager.requires_approval(self.action, verdict(self.action, 0.1), "agent-7") is False

    @pytest.mark.asyncio
    async def test_llm_decision_without_llm_requires_approval(self):
        manager = self.manager(override_mode=UserOverrideMode.LLM_DECISION)
        assert await manager.requires_approval(self.action, verdict(self.action, 1.0), "agent-7") is True

    @pytest.mark.asyncio
    async def test_llm_decision(self):
        bridge = LLMRelevanceBridge(self.llm, StaticPromptProvider())
        manager = self.manager(llm_bridge=bridge, override_mode=UserOverrideMode.LLM_DECISION)

        self.llm.responses.append('{"requiresApproval": false, "reason": "routine"}')
        assert await manager.requires_approval(self.action, verdict(self.action, 0.9), "agent-7") is False

        self.llm.responses.append("cannot decide")
        assert await manager.requires_approval(self.action, verdict(self.action, 0.9), "agent-7") is True


class TestApprovalRequests:
    """Tests for creating, listing and resolving requests."""

    @pytest.fixture(autouse=True)
    def _setup(self, context_provider, make_action, clock):
        self.clock = clock
        self.make_action = make_action
        self.manager = ApprovalWorkflowManager(context_provider, config=ApprovalConfig(), clock=clock)

    async def request_for(self, action, user_id="agent-7", overrides=None):
        return await self.manager.create_approval_request(
            action, verdict(action, 0.5), user_id, "Low confidence", user_overrides=overrides
        )

    def respond(self, request, decision=ApprovalDecision.APPROVE, **kwargs) -> UserApprovalResponse:
        return UserApprovalResponse(request_id=request.request_id, decision=decision, user_id="agent-7", **kwargs)

    @pytest.mark.asyncio
    async def test_create_request(self):
        action = self.make_action(action_type="congrats_email")
        request = await self.request_for(action, overrides={"tone": "formal"})

        assert request.status == ApprovalStatus.PENDING
        assert request.requested_at == self.clock()
        assert request.expires_at == self.clock() + timedelta(minutes=60)
        assert request.original_user_overrides == {"tone": "formal"}
        assert [a.action_type for a in request.alternative_actions] == ["follow_up_email"]
        assert self.manager.get_request(request.request_id) is request

    @pytest.mark.asyncio
    async def test_pending_for_user_oldest_first(self):
        first = await self.request_for(self.make_action())
        self.clock.advance(minutes=5)
        second = await self.request_for(self.make_action())
        await self.request_for(self.make_action(), user_id="someone-else")

        pending = self.manager.get_pending_approvals("agent-7")
        assert [r.request_id for r in pending] == [first.request_id, second.request_id]

    @pytest.mark.asyncio
    async def test_pending_hides_expired(self):
        request = await self.request_for(self.make_action())
        self.clock.advance(minutes=61)

        assert self.manager.get_pending_approvals("agent-7") == []
        assert self.manager.get_pending_approvals("agent-7", include_expired=True) == [request]

    @pytest.mark.asyncio
    async def test_approve(self):
        action = self.make_action()
        request = await self.request_for(action)

        outcome = self.manager.process_approval_response(self.respond(request))

        assert outcome.status == ApprovalStatus.APPROVED
        assert outcome.action is action
        assert outcome.should_execute
        assert outcome.error_kind is None
        assert self.manager.get_request(request.request_id) is None

    @pytest.mark.asyncio
    async def test_request_resolves_once(self):
        request = await self.request_for(self.make_action())
        self.manager.process_approval_response(self.respond(request))

        outcome = self.manager.process_approval_response(self.respond(request))

        assert outcome.status is None
        assert outcome.error_kind == ErrorKind.STATE
        assert not outcome.should_execute

    def test_unknown_request(self):
        outcome = self.manager.process_approval_response(UserApprovalResponse(request_id="nope"))
        assert outcome.error_kind == ErrorKind.STATE
        assert "not found" in outcome.message

    @pytest.mark.asyncio
    async def test_reject(self):
        request = await self.request_for(self.make_action())
        outcome = self.manager.process_approval_response(
            self.respond(request, ApprovalDecision.REJECT, reason="Client asked for a pause")
        )

        assert outcome.status == ApprovalStatus.REJECTED
        assert outcome.action is None
        assert request.status == ApprovalStatus.REJECTED
        assert request.resolved_at == self.clock()

    @pytest.mark.asyncio
    async def test_modify(self):
        action = self.make_action()
        request = await self.request_for(action)

        outcome = self.manager.process_approval_response(self.respond(
            request,
            ApprovalDecision.MODIFY,
            suggested_modifications={
                "description": "Shorter follow-up",
                "executeAt": "2024-06-04T10:00:00",
                "priority": "HIGH",
                "template": "short"
            }
        ))

        modified = outcome.action
        assert outcome.status == ApprovalStatus.MODIFIED
        assert modified is not action
        assert modified.id == action.id
        assert modified.description == "Shorter follow-up"
        assert modified.execute_at == datetime(2024, 6, 4, 10, 0, 0)
        assert modified.priority == Priority.HIGH
        assert modified.parameters["template"] == "short"
        assert action.description == "Follow up on showing"

    @pytest.mark.asyncio
    async def test_modify_without_changes_keeps_action(self):
        action = self.make_action()
        request = await self.request_for(action)
        outcome = self.manager.process_approval_response(self.respond(request, ApprovalDecision.MODIFY))
        assert outcome.action is action

    @pytest.mark.asyncio
    async def test_defer(self):
        action = self.make_action()
        request = await self.request_for(action)
        self.clock.advance(minutes=10)

        outcome = self.manager.process_approval_response(self.respond(request, ApprovalDecision.DEFER))

        assert outcome.status == ApprovalStatus.DEFERRED
        assert outcome.action.execute_at == self.clock() + timedelta(minutes=60)


class TestBulkApproval:
    """Tests for propagating an approval to similar pending requests."""

    @pytest.fixture(autouse=True)
    def _setup(self, context_provider, make_action, clock):
        self.clock = clock
        self.make_action = make_action
        self.context_provider = context_provider
        self.manager = ApprovalWorkflowManager(context_provider, config=ApprovalConfig(), clock=clock)

    async def request_for(self, action, user_id="agent-7", manager=None):
        manager = manager or self.manager
        return await manager.create_approval_request(action, verdict(action, 0.5), user_id, "Low confidence")

    @pytest.mark.asyncio
    async def test_approves_similar_requests(self):
        original = await self.request_for(self.make_action())
        similar = await self.request_for(self.make_action(execute_at=self.clock() + timedelta(hours=2)))
        far_away = await self.request_for(self.make_action(execute_at=self.clock() + timedelta(hours=30)))
        other_type = await self.request_for(self.make_action(action_type="sms"))
        other_user = await self.request_for(self.make_action(), user_id="someone-else")

        outcome = self.manager.process_approval_response(UserApprovalResponse(
            request_id=original.request_id,
            decision=ApprovalDecision.APPROVE,
            apply_to_similar_actions=True
        ))

        assert [r.request_id for r in outcome.bulk_resolved] == [similar.request_id]
        assert similar.status == ApprovalStatus.APPROVED
        assert self.manager.get_request(similar.request_id) is None
        for untouched in (far_away, other_type, other_user):
            assert untouched.status == ApprovalStatus.PENDING
            assert self.manager.get_request(untouched.request_id) is untouched

        summary = self.manager.get_decision_summary()
        assert summary["approved"] == 2
        assert summary["bulk_approved"] == 1

    @pytest.mark.asyncio
    async def test_without_flag_only_one_resolved(self):
        original = await self.request_for(self.make_action())
        similar = await self.request_for(self.make_action())

        outcome = self.manager.process_approval_response(UserApprovalResponse(
            request_id=original.request_id,
            decision=ApprovalDecision.APPROVE
        ))

        assert outcome.bulk_resolved == []
        assert similar.status == ApprovalStatus.PENDING

    @pytest.mark.asyncio
    async def test_rejection_never_propagates(self):
        original = await self.request_for(self.make_action())
        similar = await self.request_for(self.make_action())

        outcome = self.manager.process_approval_response(UserApprovalResponse(
            request_id=original.request_id,
            decision=ApprovalDecision.REJECT,
            apply_to_similar_actions=True
        ))

        assert outcome.bulk_resolved == []
        assert similar.status == ApprovalStatus.PENDING

    @pytest.mark.asyncio
    async def test_disabled_by_config(self):
        manager = ApprovalWorkflowManager(
            self.context_provider,
            config=ApprovalConfig(enable_bulk_approval=False),
            clock=self.clock
        )
        original = await self.request_for(self.make_action(), manager=manager)
        await self.request_for(self.make_action(), manager=manager)

        outcome = manager.process_approval_response(UserApprovalResponse(
            request_id=original.request_id,
            decision=ApprovalDecision.APPROVE,
            apply_to_similar_actions=True
        ))
        assert outcome.bulk_resolved == []


class TestExpiry:
    """Tests for the expiry sweep and the decision summary."""

    @pytest.fixture(autouse=True)
    def _setup(self, context_provider, make_action, clock):
        self.clock = clock
        self.make_action = make_action
        self.manager = ApprovalWorkflowManager(context_provider, config=ApprovalConfig(), clock=clock)
        self.expired = []
        self.manager.add_expiry_listener(self.expired.append)

    async def request_for(self, action):
        return await self.manager.create_approval_request(action, verdict(action, 0.5), "agent-7", "Low confidence")

    @pytest.mark.asyncio
    async def test_not_expired_at_deadline(self):
        await self.request_for(self.make_action())
        self.clock.advance(minutes=60)
        assert self.manager.sweep_expired() == []

    @pytest.mark.asyncio
    async def test_sweep_expires_and_notifies(self):
        request = await self.request_for(self.make_action())
        self.clock.advance(minutes=61)

        swept = self.manager.sweep_expired()

        assert swept == [request]
        assert self.expired == [request]
        assert request.status == ApprovalStatus.EXPIRED
        assert self.manager.get_request(request.request_id) is None

    @pytest.mark.asyncio
    async def test_late_answer_is_rejected(self):
        request = await self.request_for(self.make_action())
        self.clock.advance(minutes=61)
        self.manager.sweep_expired()

        outcome = self.manager.process_approval_response(UserApprovalResponse(request_id=request.request_id))
        assert outcome.error_kind == ErrorKind.STATE
        assert not outcome.should_execute

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_sweep(self):
        def broken(request):
            raise RuntimeError("listener broke")

        self.manager.add_expiry_listener(broken)
        first = await self.request_for(self.make_action())
        second = await self.request_for(self.make_action())
        self.clock.advance(hours=2)

        assert len(self.manager.sweep_expired()) == 2
        assert {r.request_id for r in self.expired} == {first.request_id, second.request_id}

    @pytest.mark.asyncio
    async def test_decision_summary(self):
        approved = await self.request_for(self.make_action())
        rejected = await self.request_for(self.make_action())
        await self.request_for(self.make_action())

        self.clock.advance(minutes=10)
        self.manager.process_approval_response(UserApprovalResponse(request_id=approved.request_id))
        self.clock.advance(minutes=10)
        self.manager.process_approval_response(UserApprovalResponse(
            request_id=rejected.request_id,
            decision=ApprovalDecision.REJECT,
            reason="Wrong timing"
        ))
        self.clock.advance(minutes=60)
        self.manager.sweep_expired()

        summary = self.manager.get_decision_summary()
        assert summary["total_decisions"] == 3
        assert summary["approved"] == 1
        assert summary["rejected"] == 1
        assert summary["expired"] == 1
        assert summary["rejection_reasons"] == ["Wrong timing"]
        assert summary["average_response_time_seconds"] == pytest.approx(900)

    def test_empty_summary(self):
        summary = self.manager.get_decision_summary()
        assert summary["total_decisions"] == 0
        assert summary["average_response_time_seconds"] == 0


class TestApplyModifications:
    """Tests for applying user modifications to an action."""

    def test_unparseable_values_ignored(self, make_action):
        action = make_action()
        modified = apply_modifications(action, {"executeAt": "next tuesday", "priority": "9"})
        assert modified.execute_at == action.execute_at
        assert modified.priority == action.priority

    def test_numeric_priority(self, make_action):
        modified = apply_modifications(make_action(), {"priority": 3})
        assert modified.priority == Priority.CRITICAL

    def test_keys_are_case_insensitive(self, make_action):
        modified = apply_modifications(make_action(), {"ExecuteAt": "2024-07-01T08:00:00"})
        assert modified.execute_at == datetime(2024, 7, 1, 8, 0, 0)

    def test_utc_suffix_converted_to_local_time(self, make_action):
        modified = apply_modifications(make_action(), {"executeAt": "2024-06-03T08:00:00Z"})

        expected = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert modified.execute_at == expected
        assert modified.execute_at.tzinfo is None

    def test_offset_converted_to_local_time(self, make_action):
        modified = apply_modifications(make_action(), {"executeAt": "2024-06-03T10:00:00+02:00"})

        expected = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert modified.execute_at == expected

    def test_aware_datetime_value_converted(self, make_action):
        value = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)
        modified = apply_modifications(make_action(), {"executeAt": value})
        assert modified.execute_at.tzinfo is None


class TestDecisionHistory:
    """Tests for the bounded decision history."""

    @pytest.mark.asyncio
    async def test_history_keeps_most_recent_decisions(self, context_provider, make_action, clock):
        manager = ApprovalWorkflowManager(
            context_provider,
            config=ApprovalConfig(decision_history_capacity=2),
            clock=clock
        )
        for _ in range(3):
            action = make_action()
            request = await manager.create_approval_request(action, verdict(action, 0.5), "agent-7", "Check")
            manager.process_approval_response(UserApprovalResponse(
                request_id=request.request_id,
                decision=ApprovalDecision.REJECT,
                reason="Not now"
            ))

        summary = manager.get_decision_summary()
        assert summary["total_decisions"] == 2
        assert summary["rejected"] == 2
