"""State managed by LangGraph during the analyze-plan-approve-execute-reflect workflow."""

from typing import Any, Literal, TypedDict

from task_orchestrator.core.models import (
    ApprovalRequest,
    ApprovalResolution,
    ExecutionPlan,
    ExecutionStep,
    ReflectionResult,
    TaskAnalysis,
)

ANALYZE_INTENT = "analyze_intent"
GENERATE_PLAN = "generate_plan"
PLAN_APPROVAL = "plan_approval"
EXECUTE_STEP = "execute_step"
STEP_APPROVAL = "step_approval"
REFLECT = "reflect"

GateNode = Literal["plan_approval", "step_approval"]


class WorkflowState(TypedDict, total=False):
    """Checkpointed state of one request, owned by a single session."""

    user_intent: str
    user_id: str
    session_key: str
    context_key: str  # Correlation key into the ConversationContextStore
    task_analysis: TaskAnalysis | None
    execution_plan: ExecutionPlan | None
    current_step_index: int
    execution_steps: list[ExecutionStep]  # Append-only history
    approval_requests: list[ApprovalRequest]
    tool_results: dict[str, dict[str, Any]]  # Raw results keyed by step id
    error: str | None  # Unrecoverable error, routes straight to reflect
    final_response: str | None
    awaiting_approval: bool
    resume_node: GateNode | None  # Gate to re-enter on resume
    approval_decision: ApprovalResolution | None  # Decision carried into a resume
    denial_message: str | None
    reflection: ReflectionResult | None
    completed: bool  # Terminal marker set by reflect
    started_at: float


def initial_state(
    user_intent: str,
    user_id: str,
    session_key: str,
    context_key: str,
    started_at: float,
) -> WorkflowState:
    """Fresh state for a new request; every field is set so nothing leaks from a previous run."""
    return {
        "user_intent": user_intent,
        "user_id": user_id,
        "session_key": session_key,
        "context_key": context_key,
        "task_analysis": None,
        "execution_plan": None,
        "current_step_index": 0,
        "execution_steps": [],
        "approval_requests": [],
        "tool_results": {},
        "error": None,
        "final_response": None,
        "awaiting_approval": False,
        "resume_node": None,
        "approval_decision": None,
        "denial_message": None,
        "reflection": None,
        "completed": False,
        "started_at": started_at,
    }


def latest_approval(state: WorkflowState) -> ApprovalRequest | None:
    requests = state.get("approval_requests") or []
    return requests[-1] if requests else None


def approval_for_gate(state: WorkflowState, gate_key: str) -> ApprovalRequest | None:
    """Most recent approval request raised at the given gate."""
    for request in reversed(state.get("approval_requests") or []):
        if request.gate_key == gate_key:
            return request
    return None


def step_gate_key(step_id: str) -> str:
    return f"step:{step_id}"


def plan_gate_key(plan_id: str) -> str:
    return f"plan:{plan_id}"
