"""Retrospective summary of a finished workflow."""

import logging
from collections.abc import Mapping
from typing import Any

from task_orchestrator.core.context_store import ConversationContextStore, notify
from task_orchestrator.core.models import ExecutionStep, PlanStep, ReflectionResult
from task_orchestrator.core.policy import split_words
from task_orchestrator.interfaces.langchain.classifier import IntentClassifier
from task_orchestrator.interfaces.langchain.workflow_state import WorkflowState

logger = logging.getLogger(__name__)

MIN_SUGGESTIONS = 2
MAX_SUGGESTIONS = 3
RESULT_PREVIEW_CHARS = 500

FALLBACK_SUGGESTIONS = (
    "Review the results above to confirm they match what you expected",
    "Ask for a status overview to see where things stand",
)
FAILURE_SUGGESTION = "Review failed steps and retry if needed"
FALLBACK_NEXT_ACTIONS = (
    "Continue with your next task",
    "Ask for a summary of outstanding items",
)

# Change line prefixes by action verb, checked in order.
CHANGE_PREFIXES: tuple[tuple[frozenset[str], str], ...] = (
    (frozenset({"start"}), "Started"),
    (frozenset({"stop"}), "Stopped"),
    (frozenset({"create", "add", "new"}), "Created"),
    (frozenset({"update", "edit", "modify", "set", "rename"}), "Updated"),
    (frozenset({"delete", "remove"}), "Deleted"),
    (frozenset({"toggle", "complete"}), "Toggled completion"),
    (frozenset({"list", "get", "show", "fetch", "search", "find", "read"}), "Retrieved"),
)


def describe_change(plan_step: PlanStep | None, execution_step: ExecutionStep) -> str:
    """One human-readable line for a completed step."""
    action = execution_step.capability or (plan_step.action if plan_step else "")
    description = plan_step.description if plan_step else action
    words = set(split_words(action))
    for verbs, prefix in CHANGE_PREFIXES:
        if words & verbs:
            return f"{prefix}: {description}"
    return f"Completed: {description}"


def _clean_items(raw: Any) -> list[str]:
    if not isinstance(raw, list | tuple):
        return []
    return [item.strip() for item in raw if isinstance(item, str) and item.strip()]


def _fill(items: list[str], fallbacks: tuple[str, ...]) -> list[str]:
    filled = list(items)
    for fallback in fallbacks:
        if len(filled) >= MIN_SUGGESTIONS:
            break
        if fallback not in filled:
            filled.append(fallback)
    return filled[:MAX_SUGGESTIONS]


def fallback_suggestions(failed_steps: int) -> tuple[list[str], list[str]]:
    suggestions = [FAILURE_SUGGESTION] if failed_steps else []
    return _fill(suggestions, FALLBACK_SUGGESTIONS), list(FALLBACK_NEXT_ACTIONS)


def format_final_response(reflection: ReflectionResult) -> str:
    if reflection.success:
        lines = [f"✅ **Success!** {reflection.summary}"]
        if reflection.changes:
            lines += ["", "**What I did:**"] + [f"• {c}" for c in reflection.changes]
        if reflection.suggestions:
            lines += ["", "**Suggestions:**"] + [f"• {s}" for s in reflection.suggestions]
        return "\n".join(lines)

    lines = [
        "⚠️ **Completed with issues.**",
        "",
        f"Completed: {reflection.completed_steps}/{reflection.total_steps} steps",
    ]
    if reflection.changes:
        lines += ["", "**What I did:**"] + [f"• {c}" for c in reflection.changes]
    if reflection.errors:
        lines += ["", "**Issues:**"] + [f"• {e}" for e in reflection.errors]
    if reflection.suggestions:
        lines += ["", "**Recommendations:**"] + [
            f"• {s}" for s in reflection.suggestions
        ]
    return "\n".join(lines)


class Reflector:
    """Aggregates step history into a ReflectionResult and the final response."""

    def __init__(
        self, classifier: IntentClassifier, context_store: ConversationContextStore
    ):
        self.classifier = classifier
        self.context_store = context_store

    async def reflect(self, state: WorkflowState) -> dict[str, Any]:
        plan = state.get("execution_plan")
        plan_steps = {step.id: step for step in plan.steps} if plan else {}
        order = {step.id: i for i, step in enumerate(plan.steps, 1)} if plan else {}
        history = state.get("execution_steps", [])

        completed = [s for s in history if s.status == "completed"]
        failed = [s for s in history if s.status == "failed"]
        skipped = [s for s in history if s.status == "skipped"]
        total = len(plan_steps)

        changes = [describe_change(plan_steps.get(s.step_id), s) for s in completed]
        errors = []
        for step in failed:
            plan_step = plan_steps.get(step.step_id)
            label = plan_step.description if plan_step else step.step_id
            errors.append(f"Step {order.get(step.step_id, '?')} ({label}): {step.error}")
        if state.get("error"):
            errors.append(str(state["error"]))

        suggestions, next_actions = await self._suggest(state, plan_steps, failed)

        denial = state.get("denial_message")
        reflection = ReflectionResult(
            success=not failed and not denial and not state.get("error"),
            summary=f"Executed {len(completed)} of {total} planned steps",
            changes=changes,
            errors=errors,
            suggestions=suggestions,
            next_actions=next_actions,
            total_steps=total,
            completed_steps=len(completed),
            failed_steps=len(failed),
            skipped_steps=len(skipped),
        )

        final_response = denial or format_final_response(reflection)
        logger.info(
            f"Session {state.get('session_key')} finished: {len(completed)} completed, "
            f"{len(failed)} failed, {len(skipped)} skipped"
        )
        await notify(self.context_store, state.get("context_key"), final_response)

        return {
            "reflection": reflection,
            "final_response": final_response,
            "awaiting_approval": False,
            "resume_node": None,
            "completed": True,
        }

    async def _suggest(
        self,
        state: WorkflowState,
        plan_steps: dict[str, PlanStep],
        failed: list[ExecutionStep],
    ) -> tuple[list[str], list[str]]:
        history = []
        for step in state.get("execution_steps", []):
            plan_step = plan_steps.get(step.step_id)
            history.append(
                {
                    "action": plan_step.action if plan_step else None,
                    "description": plan_step.description if plan_step else None,
                    "status": step.status,
                    "result": (step.result or "")[:RESULT_PREVIEW_CHARS],
                    "error": step.error,
                }
            )

        try:
            raw = await self.classifier.suggest(state.get("user_intent", ""), history)
        except Exception as e:
            logger.warning(f"Suggestion generation failed, using defaults: {e}")
            return fallback_suggestions(len(failed))

        if not isinstance(raw, Mapping):
            logger.warning("Suggestion response was not a mapping, using defaults")
            return fallback_suggestions(len(failed))

        default_suggestions, default_next = fallback_suggestions(len(failed))
        suggestions = _fill(_clean_items(raw.get("suggestions")), tuple(default_suggestions))
        next_actions = _fill(_clean_items(raw.get("next_actions")), tuple(default_next))
        return suggestions, next_actions
