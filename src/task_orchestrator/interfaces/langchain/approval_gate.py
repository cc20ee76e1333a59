"""Plan and step approval gates."""

import logging
from collections.abc import Callable
from typing import Literal
from uuid import uuid4

from langgraph.graph import END
from langgraph.types import Command

from task_orchestrator.core.approvals import ApprovalCoordinator, ResolutionCallback
from task_orchestrator.core.capabilities import CapabilityRegistry
from task_orchestrator.core.context_store import ConversationContextStore, notify
from task_orchestrator.core.models import (
    ApprovalRequest,
    ApprovalResolution,
    ChannelAction,
    ExecutionPlan,
    ExecutionStep,
    PlanStep,
)
from task_orchestrator.interfaces.langchain.workflow_state import (
    EXECUTE_STEP,
    PLAN_APPROVAL,
    REFLECT,
    STEP_APPROVAL,
    GateNode,
    WorkflowState,
    approval_for_gate,
    plan_gate_key,
    step_gate_key,
)

logger = logging.getLogger(__name__)

RISK_MARKERS = {"high": "🚨", "medium": "⚠️", "low": "ℹ️"}

GateTarget = Literal["execute_step", "reflect", "__end__"]


def approval_actions(request_id: str) -> list[ChannelAction]:
    return [
        ChannelAction(label="✅ Approve", value=f"approve:{request_id}"),
        ChannelAction(label="❌ Deny", value=f"deny:{request_id}"),
    ]


def render_plan_prompt(plan: ExecutionPlan, request_id: str) -> str:
    lines = [
        f"{RISK_MARKERS[plan.risk_level]} **Plan Approval Required**",
        "",
        f"**Request:** {plan.user_intent}",
        f"**Risk Level:** {plan.risk_level.upper()}",
        f"**Estimated Duration:** {plan.estimated_duration}",
        "",
        "**Planned Steps:**",
    ]
    lines += [f"{i}. {step.description}" for i, step in enumerate(plan.steps, 1)]
    lines += [
        "",
        f"Reply `approve:{request_id}` or `deny:{request_id}`, "
        "or use /approve to proceed or /deny to cancel.",
    ]
    return "\n".join(lines)


def render_step_prompt(
    step: PlanStep,
    index: int,
    total: int,
    request_id: str,
    capability: str | None = None,
) -> str:
    lines = [
        f"{RISK_MARKERS[step.risk_level]} **Step Approval Required**",
        "",
        f"**Step {index}/{total}:** {step.description}",
        f"**Action:** {step.action}",
    ]
    if capability and capability != step.action:
        lines.append(f"**Runs Capability:** {capability}")
    lines += [
        f"**Risk Level:** {step.risk_level.upper()}",
        "",
        f"Reply `approve:{request_id}` or `deny:{request_id}`, "
        "or use /approve to proceed or /deny to cancel.",
    ]
    return "\n".join(lines)


def plan_denial_message(feedback: str | None) -> str:
    return f"❌ Plan execution cancelled.\n\nReason: {feedback or 'Denied by user'}"


def step_denial_message(index: int, step: PlanStep, feedback: str | None) -> str:
    return (
        f"❌ Step {index} cancelled: {step.description}\n\n"
        f"Reason: {feedback or 'Denied by user'}"
    )


class ApprovalGate:
    """Suspends the workflow until a human approves or denies a plan or step.

    Suspension is a ``Command(goto=END)`` that leaves ``awaiting_approval`` and
    ``resume_node`` in the checkpoint. Resuming re-enters the same gate, which
    reuses the request it already raised instead of creating a new one.
    """

    def __init__(
        self,
        coordinator: ApprovalCoordinator,
        context_store: ConversationContextStore,
        callback_factory: Callable[[str], ResolutionCallback] | None = None,
        registry: CapabilityRegistry | None = None,
    ):
        self.coordinator = coordinator
        self.context_store = context_store
        self.callback_factory = callback_factory
        self.registry = registry

    async def plan_gate(self, state: WorkflowState) -> Command[GateTarget]:
        plan = state.get("execution_plan")
        if plan is None or not plan.requires_approval:
            return Command(goto=EXECUTE_STEP)

        def build_request() -> ApprovalRequest:
            request_id = str(uuid4())
            return ApprovalRequest(
                id=request_id,
                session_key=state["session_key"],
                plan_id=plan.id,
                action="execute_plan",
                parameters={"step_count": len(plan.steps)},
                description=plan.user_intent,
                risk_level=plan.risk_level,
                message=render_plan_prompt(plan, request_id),
            )

        return await self._run_gate(
            state,
            PLAN_APPROVAL,
            plan_gate_key(plan.id),
            build_request,
            on_denied=lambda resolution: {
                "denial_message": plan_denial_message(resolution.feedback)
            },
        )

    async def step_gate(self, state: WorkflowState) -> Command[GateTarget]:
        plan = state.get("execution_plan")
        index = state.get("current_step_index", 0)
        if plan is None or index >= len(plan.steps):
            return Command(goto=EXECUTE_STEP)

        step = plan.steps[index]
        if not step.requires_approval:
            return Command(goto=EXECUTE_STEP)

        capability = None
        if approval_for_gate(state, step_gate_key(step.id)) is None:
            capability = await self._capability_for(step.action)

        def build_request() -> ApprovalRequest:
            request_id = str(uuid4())
            return ApprovalRequest(
                id=request_id,
                session_key=state["session_key"],
                plan_id=plan.id,
                step_id=step.id,
                action=step.action,
                parameters=step.parameters,
                description=step.description,
                risk_level=step.risk_level,
                message=render_step_prompt(
                    step, index + 1, len(plan.steps), request_id, capability
                ),
            )

        def on_denied(resolution: ApprovalResolution) -> dict:
            skipped = ExecutionStep(
                step_id=step.id,
                status="skipped",
                error=f"Denied: {resolution.feedback or 'no reason given'}",
                completed_at=resolution.resolved_at,
            )
            return {
                "execution_steps": [*state.get("execution_steps", []), skipped],
                "current_step_index": index + 1,
                "denial_message": step_denial_message(
                    index + 1, step, resolution.feedback
                ),
            }

        return await self._run_gate(
            state, STEP_APPROVAL, step_gate_key(step.id), build_request, on_denied
        )

    async def _run_gate(
        self,
        state: WorkflowState,
        node: GateNode,
        gate_key: str,
        build_request: Callable[[], ApprovalRequest],
        on_denied: Callable[[ApprovalResolution], dict],
    ) -> Command[GateTarget]:
        session_key = state["session_key"]
        requests = list(state.get("approval_requests", []))

        request = approval_for_gate(state, gate_key)
        if request is not None and request.is_resolved:
            if request.approved:
                return Command(goto=EXECUTE_STEP)
            return Command(goto=REFLECT)

        callback = self.callback_factory(session_key) if self.callback_factory else None
        if request is None:
            request = build_request()
            requests.append(request)
            self.coordinator.register(session_key, request, callback)
            await notify(
                self.context_store,
                state.get("context_key"),
                request.message,
                approval_actions(request.id),
            )
        else:
            # Re-registering is a no-op unless the coordinator lost its state
            self.coordinator.register(session_key, request, callback)

        resolution = self._resolution_for(state, request)
        if resolution is None:
            logger.info(f"Session {session_key} waiting for approval {request.id}")
            return Command(
                goto=END,
                update={
                    "approval_requests": requests,
                    "awaiting_approval": True,
                    "resume_node": node,
                    "approval_decision": None,
                },
            )

        resolved = request.with_resolution(resolution)
        requests = [resolved if r.id == resolved.id else r for r in requests]
        update = {
            "approval_requests": requests,
            "awaiting_approval": False,
            "resume_node": None,
            "approval_decision": None,
        }
        if resolved.approved:
            return Command(goto=EXECUTE_STEP, update=update)

        logger.info(f"Session {session_key} denied {gate_key}")
        return Command(goto=REFLECT, update={**update, **on_denied(resolution)})

    async def _capability_for(self, action: str) -> str | None:
        """Capability the step would run, shown to the approver."""
        if self.registry is None:
            return None
        try:
            return await self.registry.resolve(action)
        except Exception as e:
            logger.warning(f"Could not resolve '{action}' for the approval prompt: {e}")
            return None

    def _resolution_for(
        self, state: WorkflowState, request: ApprovalRequest
    ) -> ApprovalResolution | None:
        decision = state.get("approval_decision")
        if decision is not None and decision.request_id == request.id:
            return decision
        return self.coordinator.resolution_for(request.id)
