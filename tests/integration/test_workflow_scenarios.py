"""End-to-end workflow scenarios with a scripted classifier and in-memory capabilities."""

from collections.abc import Callable

import pytest
from langgraph.checkpoint.memory import MemorySaver

from task_orchestrator.core.approvals import ApprovalCoordinator, ResolutionStatus
from task_orchestrator.core.capabilities import CapabilityRegistry
from task_orchestrator.core.context_store import ConversationContextStore
from task_orchestrator.core.errors import WorkflowBusyError
from task_orchestrator.interfaces.langchain.analyzer import FALLBACK_ANALYSIS
from task_orchestrator.interfaces.langchain.engine import WorkflowEngine
from tests.fixtures.workflow_helpers import (
    DELETE_CAPABILITY,
    TODO_CAPABILITIES,
    FakeCapabilityProvider,
    RecordingChannel,
    analysis_payload,
    make_classifier,
)

EngineFactory = Callable[..., WorkflowEngine]

RISKY_STEPS = [
    {"action": "listTodos", "parameters": {}, "description": "List open todos"},
    {"action": "deleteTodo", "parameters": {"id": "t-2"}, "description": "Delete todo t-2"},
    {"action": "createTodo", "parameters": {"title": "Buy milk"}, "description": "Add milk"},
]


@pytest.mark.integration
class TestWorkflowScenarios:
    """The supervised workflow from request to reflection."""

    async def test_compound_request_without_approval(
        self, engine_factory: EngineFactory, recording_channel: RecordingChannel
    ) -> None:
        """Two low-risk steps run back to back and reflection lists both changes."""
        provider = FakeCapabilityProvider(TODO_CAPABILITIES)
        engine = engine_factory(provider=provider)

        outcome = await engine.start(
            "s1", "u1", "Show my todos and add 'Buy milk'", channel=recording_channel
        )

        assert outcome.status == "completed"
        assert outcome.completed_steps == 2
        assert outcome.current_step_index == outcome.total_steps == 2
        assert [name for name, _ in provider.calls] == ["listTodos", "createTodo"]
        assert "**What I did:**" in outcome.final_response
        assert "• Retrieved: List open todos" in outcome.final_response
        assert "• Created: Create todo 'Buy milk'" in outcome.final_response

        state = await engine.get_state("s1")
        assert state["approval_requests"] == []
        assert recording_channel.texts[0] == "✅ Step 1/2 completed\nList open todos"
        assert recording_channel.texts[-1] == outcome.final_response
        assert len(engine.context_store) == 0

    async def test_plan_denied(
        self, engine_factory: EngineFactory, recording_channel: RecordingChannel
    ) -> None:
        """Denying the plan skips execution and ends with a cancellation message."""
        provider = FakeCapabilityProvider(TODO_CAPABILITIES)
        engine = engine_factory(
            make_classifier(analysis=analysis_payload(requires_approval=True)), provider
        )

        outcome = await engine.start("s1", "u1", "Reorganize my todos", channel=recording_channel)

        assert outcome.status == "awaiting_approval"
        request = outcome.pending_approval
        assert request is not None and request.step_id is None
        assert "Plan Approval Required" in recording_channel.texts[0]
        assert engine.coordinator.is_pending(request.id)

        resolved, outcome = await engine.resolve_approval("s1", False, "Not now")

        assert resolved is True
        assert outcome.status == "completed"
        assert outcome.final_response == "❌ Plan execution cancelled.\n\nReason: Not now"
        assert provider.calls == []

        state = await engine.get_state("s1")
        assert state["execution_steps"] == []
        assert state["approval_requests"][0].approved is False
        assert state["reflection"].success is False

    async def test_step_approval_mid_plan(
        self, engine_factory: EngineFactory, recording_channel: RecordingChannel
    ) -> None:
        """A destructive step pauses the plan after the steps before it have run."""
        provider = FakeCapabilityProvider([*TODO_CAPABILITIES, DELETE_CAPABILITY])
        engine = engine_factory(
            make_classifier(
                analysis=analysis_payload(risk_level="medium", estimated_steps=3),
                steps=RISKY_STEPS,
            ),
            provider,
        )

        outcome = await engine.start("s1", "u1", "Replace todo t-2", channel=recording_channel)

        assert outcome.status == "awaiting_approval"
        assert outcome.current_step_index == 1
        assert outcome.completed_steps == 1
        state = await engine.get_state("s1")
        step_two = state["execution_plan"].steps[1]
        assert outcome.pending_approval.step_id == step_two.id
        assert [name for name, _ in provider.calls] == ["listTodos"]

        resolved, outcome = await engine.resolve_approval("s1", True)

        assert resolved is True
        assert outcome.status == "completed"
        assert outcome.completed_steps == 3
        assert [name for name, _ in provider.calls] == [
            "listTodos",
            "deleteTodo",
            "createTodo",
        ]
        state = await engine.get_state("s1")
        assert len(state["approval_requests"]) == 1
        assert state["approval_requests"][0].step_id == step_two.id

    async def test_unresolvable_action_fails_the_step(
        self, engine_factory: EngineFactory, recording_channel: RecordingChannel
    ) -> None:
        """A step with no matching capability is recorded as failed, not raised."""
        provider = FakeCapabilityProvider(TODO_CAPABILITIES)
        engine = engine_factory(
            make_classifier(
                steps=[
                    {"action": "deleteAllItems", "parameters": {}, "description": "Wipe everything"}
                ]
            ),
            provider,
        )

        outcome = await engine.start("s1", "u1", "Delete everything", channel=recording_channel)
        # Destructive steps always ask first
        assert outcome.status == "awaiting_approval"

        _, outcome = await engine.resolve_approval("s1", True)

        assert outcome.status == "completed"
        assert outcome.failed_steps == 1
        assert outcome.current_step_index == 1
        assert provider.calls == []
        state = await engine.get_state("s1")
        (step,) = state["execution_steps"]
        assert step.status == "failed"
        assert "deleteAllItems" in step.error
        assert state["reflection"].failed_steps == 1
        assert "Wipe everything" in state["reflection"].errors[0]
        assert "Completed with issues" in outcome.final_response

    async def test_classification_failure_uses_fallback(
        self, engine_factory: EngineFactory
    ) -> None:
        """A failing classifier never blocks the request."""
        engine = engine_factory(
            make_classifier(
                analysis=RuntimeError("model unavailable"),
                steps=[{"action": "listTodos", "description": "List todos"}],
            )
        )

        outcome = await engine.start("s1", "u1", "What's on my list?")

        assert outcome.status == "completed"
        state = await engine.get_state("s1")
        assert state["task_analysis"] == FALLBACK_ANALYSIS
        assert len(state["execution_plan"].steps) == 1


@pytest.mark.integration
class TestSuspendAndResume:
    """Resume semantics around approval gates."""

    @pytest.fixture
    def gated_classifier(self):
        return make_classifier(analysis=analysis_payload(requires_approval=True))

    async def test_resume_without_decision_is_idempotent(
        self, engine_factory: EngineFactory, gated_classifier, recording_channel: RecordingChannel
    ) -> None:
        """Re-entering a gate with no decision neither duplicates nor re-prompts."""
        engine = engine_factory(gated_classifier)
        first = await engine.start("s1", "u1", "Tidy up", channel=recording_channel)

        second = await engine.resume("s1")
        third = await engine.resume("s1")

        assert second.status == third.status == "awaiting_approval"
        assert second.pending_approval.id == third.pending_approval.id == first.pending_approval.id
        state = await engine.get_state("s1")
        assert len(state["approval_requests"]) == 1
        assert len(engine.coordinator.pending_for("s1")) == 1
        assert len(recording_channel.messages) == 1

    async def test_external_resolution_then_manual_resume(
        self, engine_factory: EngineFactory, gated_classifier
    ) -> None:
        """A decision recorded straight on the coordinator is picked up on resume."""
        engine = engine_factory(gated_classifier, auto_resume=False)
        await engine.start("s1", "u1", "Tidy up")

        assert engine.coordinator.resolve("s1", approved=True) is True
        outcome = await engine.resume("s1")

        assert outcome.status == "completed"
        assert outcome.completed_steps == 2

    async def test_duplicate_replies(
        self, engine_factory: EngineFactory, gated_classifier
    ) -> None:
        """The first reply wins; a late reply with the same id changes nothing."""
        engine = engine_factory(gated_classifier)
        outcome = await engine.start("s1", "u1", "Tidy up")
        request_id = outcome.pending_approval.id

        status, outcome = await engine.resolve_reply("s1", f"approve:{request_id}")
        late_status, late_outcome = await engine.resolve_reply("s1", f"deny:{request_id}")

        assert status is ResolutionStatus.RESOLVED
        assert outcome.status == "completed"
        assert late_status is ResolutionStatus.ALREADY_RESOLVED
        assert late_outcome.completed_steps == 2
        resolved, _ = await engine.resolve_approval("s1", False)
        assert resolved is False

    async def test_reply_for_unknown_request(
        self, engine_factory: EngineFactory, gated_classifier
    ) -> None:
        engine = engine_factory(gated_classifier)
        await engine.start("s1", "u1", "Tidy up")

        status, outcome = await engine.resolve_reply("s1", "approve:not-a-request")

        assert status is ResolutionStatus.NOT_FOUND
        assert outcome.status == "awaiting_approval"
        assert await engine.resolve_reply("s1", "sounds good") is None

    async def test_busy_session_rejects_new_request(
        self, engine_factory: EngineFactory, gated_classifier
    ) -> None:
        engine = engine_factory(gated_classifier)
        await engine.start("s1", "u1", "Tidy up")

        with pytest.raises(WorkflowBusyError):
            await engine.start("s1", "u1", "Something else")

    async def test_sessions_are_isolated(
        self, engine_factory: EngineFactory, gated_classifier
    ) -> None:
        engine = engine_factory(gated_classifier)
        await engine.start("s1", "u1", "Tidy up")
        await engine.start("s2", "u2", "Tidy up too")

        resolved, outcome = await engine.resolve_approval("s2", True)

        assert resolved is True
        assert outcome.session_key == "s2"
        assert outcome.status == "completed"
        assert (await engine.get_outcome("s1")).status == "awaiting_approval"

    async def test_discard_session_releases_checkpoint(
        self, engine_factory: EngineFactory, gated_classifier, recording_channel: RecordingChannel
    ) -> None:
        """A discarded session leaves no checkpoint, approval or channel behind."""
        engine = engine_factory(gated_classifier)
        await engine.start("s1", "u1", "Tidy up", channel=recording_channel)
        await engine.start("s2", "u2", "Tidy up too")

        await engine.discard_session("s1")

        assert await engine.get_state("s1") == {}
        assert await engine.get_outcome("s1") is None
        assert engine.coordinator.pending_for("s1") == []
        assert engine.context_store.get_stats()["active_contexts"] == 0
        assert (await engine.get_outcome("s2")).status == "awaiting_approval"

        outcome = await engine.start("s1", "u1", "Start over")
        assert outcome.status == "awaiting_approval"

    async def test_step_index_never_decreases(
        self, engine_factory: EngineFactory
    ) -> None:
        engine = engine_factory(
            make_classifier(steps=RISKY_STEPS),
            FakeCapabilityProvider([*TODO_CAPABILITIES, DELETE_CAPABILITY]),
        )
        config = {"configurable": {"thread_id": "s1"}}

        await engine.start("s1", "u1", "Replace todo t-2")
        await engine.resolve_approval("s1", True)

        history = [
            snapshot.values.get("current_step_index", 0)
            async for snapshot in engine.graph.aget_state_history(config)
        ]
        history.reverse()
        assert history == sorted(history)
        assert history[-1] == 3

    async def test_resume_after_restart(
        self, gated_classifier, recording_channel: RecordingChannel
    ) -> None:
        """A fresh engine on the same checkpointer can finish a suspended workflow."""
        checkpointer = MemorySaver()
        provider = FakeCapabilityProvider(TODO_CAPABILITIES)

        def build() -> WorkflowEngine:
            return WorkflowEngine(
                gated_classifier,
                CapabilityRegistry(provider),
                coordinator=ApprovalCoordinator(),
                context_store=ConversationContextStore(),
                checkpointer=checkpointer,
            )

        before = build()
        outcome = await before.start("s1", "u1", "Tidy up")
        assert outcome.status == "awaiting_approval"

        after = build()
        assert after.coordinator.pending_for("s1") == []

        resolved, outcome = await after.resolve_approval("s1", True)

        assert resolved is True
        assert outcome.status == "completed"
        assert outcome.completed_steps == 2

    async def test_reply_after_restart(self, gated_classifier) -> None:
        checkpointer = MemorySaver()
        provider = FakeCapabilityProvider(TODO_CAPABILITIES)

        def build() -> WorkflowEngine:
            return WorkflowEngine(
                gated_classifier, CapabilityRegistry(provider), checkpointer=checkpointer
            )

        outcome = await build().start("s1", "u1", "Tidy up")
        request_id = outcome.pending_approval.id

        status, outcome = await build().resolve_reply("s1", f"deny:{request_id} later")

        assert status is ResolutionStatus.RESOLVED
        assert outcome.status == "completed"
        assert outcome.final_response.endswith("Reason: later")
