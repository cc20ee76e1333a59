"""Planner module for turning an analyzed request into an execution plan."""

import logging
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from task_orchestrator.core.models import ExecutionPlan, PlanStep, TaskAnalysis
from task_orchestrator.core.policy import requires_step_approval, step_risk
from task_orchestrator.interfaces.langchain.classifier import IntentClassifier

logger = logging.getLogger(__name__)

MAX_PLAN_STEPS = 20

# Keyword rules for the single-step fallback plan, checked in order. A None
# parameter template means the request text becomes the item title.
INTENT_RULES: tuple[tuple[tuple[str, ...], str, dict[str, Any] | None, str], ...] = (
    (("summary", "status", "overview"), "list", {"completed": False}, "Review outstanding items"),
    (("create", "add", "new"), "create", None, "Create a new item"),
    (("list", "show", "what"), "list", {}, "List items"),
    (("timer", "time", "tracking"), "getActiveTimeTracking", {}, "Check active time tracking"),
)


def estimate_duration(step_count: int) -> str:
    """Human-readable duration estimate for a plan of ``step_count`` steps."""
    if step_count <= 1:
        return "< 1 minute"
    if step_count <= 3:
        return "1-2 minutes"
    if step_count <= 5:
        return "2-5 minutes"
    if step_count <= 10:
        return "5-10 minutes"
    return "> 10 minutes"


def infer_step_from_intent(user_intent: str) -> dict[str, Any]:
    """Guess a single step from keywords in the request."""
    lowered = user_intent.lower()
    for keywords, action, parameters, description in INTENT_RULES:
        if any(keyword in lowered for keyword in keywords):
            if parameters is None:
                parameters = {"title": user_intent.strip()}
            return {
                "action": action,
                "parameters": dict(parameters),
                "description": description,
            }
    return {"action": "list", "parameters": {}, "description": "List items"}


def build_plan_step(draft: Mapping[str, Any]) -> PlanStep | None:
    """Validate a proposed step and apply the risk policy.

    Returns:
        PlanStep, or None if the draft has no usable action
    """
    action = draft.get("action")
    if not isinstance(action, str) or not action.strip():
        return None
    action = action.strip()

    parameters = draft.get("parameters")
    if not isinstance(parameters, Mapping):
        parameters = {}
    parameters = dict(parameters)

    description = draft.get("description")
    if not isinstance(description, str) or not description.strip():
        description = f"Run {action}"

    return PlanStep(
        id=str(uuid4()),
        action=action,
        parameters=parameters,
        description=description.strip(),
        requires_approval=(
            draft.get("requires_approval") is True
            or requires_step_approval(action, parameters)
        ),
        risk_level=step_risk(action, parameters),
    )


async def generate_plan(
    user_intent: str,
    analysis: TaskAnalysis,
    classifier: IntentClassifier,
    capabilities: list[dict[str, str]],
) -> ExecutionPlan:
    """Generate an execution plan for an analyzed request.

    Step drafts come from the classification capability. When it fails or
    proposes nothing usable, a single step is inferred from the request text.

    Args:
        user_intent: The user's natural-language request
        analysis: Validated analysis of the request
        classifier: Classification capability
        capabilities: Capability descriptions offered to the classifier

    Returns:
        ExecutionPlan with between 1 and MAX_PLAN_STEPS steps
    """
    drafts: list[Any] = []
    try:
        drafts = list(await classifier.propose_steps(user_intent, analysis, capabilities))
    except Exception as e:
        logger.warning(f"Step proposal failed, inferring from request: {e}")

    steps = [
        step
        for step in (
            build_plan_step(draft) for draft in drafts if isinstance(draft, Mapping)
        )
        if step is not None
    ]
    if not steps:
        fallback = build_plan_step(infer_step_from_intent(user_intent))
        assert fallback is not None
        steps = [fallback]

    if len(steps) > MAX_PLAN_STEPS:
        logger.warning(f"Plan truncated from {len(steps)} to {MAX_PLAN_STEPS} steps")
        steps = steps[:MAX_PLAN_STEPS]

    plan = ExecutionPlan(
        id=str(uuid4()),
        user_intent=user_intent,
        steps=steps,
        requires_approval=analysis.requires_approval or analysis.risk_level == "high",
        risk_level=analysis.risk_level,
        estimated_duration=estimate_duration(len(steps)),
    )
    logger.info(
        f"Generated plan {plan.id} with {len(steps)} steps "
        f"(approval={'required' if plan.requires_approval else 'not required'})"
    )
    return plan
