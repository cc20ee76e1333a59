"""LangGraph orchestration for the analyze-plan-approve-execute-reflect workflow."""

import logging
from collections.abc import Callable
from typing import Any

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from task_orchestrator.config import STEP_TIMEOUT_SECONDS
from task_orchestrator.core.approvals import ApprovalCoordinator, ResolutionCallback
from task_orchestrator.core.capabilities import CapabilityRegistry
from task_orchestrator.core.context_store import ConversationContextStore
from task_orchestrator.interfaces.langchain.analyzer import analyze_intent
from task_orchestrator.interfaces.langchain.approval_gate import ApprovalGate
from task_orchestrator.interfaces.langchain.classifier import IntentClassifier
from task_orchestrator.interfaces.langchain.executor import (
    StepExecutor,
    needs_step_approval,
)
from task_orchestrator.interfaces.langchain.planner import generate_plan
from task_orchestrator.interfaces.langchain.reflection import Reflector
from task_orchestrator.interfaces.langchain.workflow_state import (
    ANALYZE_INTENT,
    EXECUTE_STEP,
    GENERATE_PLAN,
    PLAN_APPROVAL,
    REFLECT,
    STEP_APPROVAL,
    WorkflowState,
)

logger = logging.getLogger(__name__)


def route_entry(state: WorkflowState) -> str:
    """Start a new run at analysis, or re-enter the gate a suspended run stopped at."""
    resume_node = state.get("resume_node")
    if state.get("awaiting_approval") and resume_node in (PLAN_APPROVAL, STEP_APPROVAL):
        return resume_node
    return ANALYZE_INTENT


def route_after_execute(state: WorkflowState) -> str:
    """Decide what follows an execute step pass."""
    if state.get("error"):
        return REFLECT
    plan = state.get("execution_plan")
    index = state.get("current_step_index", 0)
    if plan is None or index >= len(plan.steps):
        return REFLECT
    if needs_step_approval(state, plan.steps[index]):
        return STEP_APPROVAL
    return EXECUTE_STEP


def create_workflow_graph(
    classifier: IntentClassifier,
    registry: CapabilityRegistry,
    coordinator: ApprovalCoordinator,
    context_store: ConversationContextStore,
    checkpointer: BaseCheckpointSaver | None = None,
    step_timeout: float = STEP_TIMEOUT_SECONDS,
    callback_factory: Callable[[str], ResolutionCallback] | None = None,
) -> Any:
    """Create the workflow graph.

    Args:
        classifier: Classification capability for analysis, planning and suggestions
        registry: Capability registry used to resolve and invoke step actions
        coordinator: Shared approval coordinator
        context_store: Shared channel registry for notifications
        checkpointer: Checkpoint store keyed by thread id (in-memory by default)
        step_timeout: Seconds allowed for each capability invocation
        callback_factory: Builds the resolution callback registered for a session

    Returns:
        Compiled graph with checkpointing
    """
    graph = StateGraph(WorkflowState)

    gate = ApprovalGate(coordinator, context_store, callback_factory, registry=registry)
    executor = StepExecutor(registry, context_store, timeout=step_timeout)
    reflector = Reflector(classifier, context_store)

    async def describe_capabilities() -> list[dict[str, str]]:
        try:
            return await registry.describe()
        except Exception as e:
            logger.warning(f"Capability discovery failed: {e}")
            return []

    # --- Node Functions ---

    async def analyze_intent_node(state: WorkflowState) -> dict[str, Any]:
        """Classify the request."""
        analysis = await analyze_intent(
            state["user_intent"], classifier, await describe_capabilities()
        )
        return {"task_analysis": analysis}

    async def generate_plan_node(state: WorkflowState) -> dict[str, Any]:
        """Build the execution plan."""
        analysis = state.get("task_analysis")
        assert analysis is not None, "generate_plan runs after analyze_intent"
        plan = await generate_plan(
            state["user_intent"], analysis, classifier, await describe_capabilities()
        )
        return {"execution_plan": plan}

    # --- Build Graph ---

    graph.add_node(ANALYZE_INTENT, analyze_intent_node)
    graph.add_node(GENERATE_PLAN, generate_plan_node)
    graph.add_node(PLAN_APPROVAL, gate.plan_gate)
    graph.add_node(EXECUTE_STEP, executor.execute)
    graph.add_node(STEP_APPROVAL, gate.step_gate)
    graph.add_node(REFLECT, reflector.reflect)

    graph.add_conditional_edges(
        START, route_entry, [ANALYZE_INTENT, PLAN_APPROVAL, STEP_APPROVAL]
    )
    graph.add_edge(ANALYZE_INTENT, GENERATE_PLAN)
    graph.add_edge(GENERATE_PLAN, PLAN_APPROVAL)

    # Approval gates route themselves with Command(goto=...)

    graph.add_conditional_edges(
        EXECUTE_STEP, route_after_execute, [EXECUTE_STEP, STEP_APPROVAL, REFLECT]
    )
    graph.add_edge(REFLECT, END)

    return graph.compile(checkpointer=checkpointer or MemorySaver())
