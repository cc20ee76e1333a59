"""Executor module for running individual plan steps against capabilities."""

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from typing import Any

from task_orchestrator.config import STEP_TIMEOUT_SECONDS
from task_orchestrator.core.capabilities import CapabilityRegistry
from task_orchestrator.core.context_store import ConversationContextStore, notify
from task_orchestrator.core.errors import CapabilityResolutionError
from task_orchestrator.core.models import ExecutionStep, PlanStep
from task_orchestrator.interfaces.langchain.workflow_state import (
    WorkflowState,
    approval_for_gate,
    step_gate_key,
)

logger = logging.getLogger(__name__)


def is_failure_result(result: Any) -> str | None:
    """Return an error description if ``result`` signals failure, else None."""
    if result is None:
        return "Capability returned no result"
    if isinstance(result, str):
        if not result.strip():
            return "Capability returned an empty result"
        if result.strip().lower().startswith("error"):
            return result.strip()
        return None
    if isinstance(result, Mapping):
        if not result:
            return "Capability returned an empty result"
        if result.get("isError") is True or result.get("success") is False:
            return str(result.get("error") or result.get("message") or "Capability reported failure")
        if result.get("error"):
            return str(result["error"])
        return None
    if isinstance(result, list | tuple | set) and not result:
        return "Capability returned an empty result"
    return None


def result_to_text(result: Any) -> str:
    """Serialize a capability result for the step history."""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)


def needs_step_approval(state: WorkflowState, step: PlanStep) -> bool:
    """True if the step requires approval that has not been granted yet."""
    if not step.requires_approval:
        return False
    request = approval_for_gate(state, step_gate_key(step.id))
    return request is None or request.approved is not True


class StepExecutor:
    """Runs the active plan step and records its outcome."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        context_store: ConversationContextStore,
        timeout: float = STEP_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.context_store = context_store
        self.timeout = timeout

    async def execute(self, state: WorkflowState) -> dict[str, Any]:
        """Execute the step at ``current_step_index``.

        Failures of any kind are recorded as a failed ExecutionStep and the
        index still advances; steps are never retried.

        Returns:
            State patch
        """
        plan = state.get("execution_plan")
        if plan is None:
            return {"error": "No execution plan available"}

        index = state.get("current_step_index", 0)
        if index >= len(plan.steps):
            return {}

        step = plan.steps[index]
        if needs_step_approval(state, step):
            # Routing sends the workflow to the step gate first
            return {}

        started_at = time.time()
        capability: str | None = None
        output: str | None = None
        error: str | None = None

        try:
            capability = await self.registry.resolve(step.action)
            if capability is None:
                raise CapabilityResolutionError(step.action)

            result = await asyncio.wait_for(
                self.registry.invoke(capability, dict(step.parameters)),
                timeout=self.timeout,
            )
            error = is_failure_result(result)
            if error is None:
                output = result_to_text(result)
        except CapabilityResolutionError as e:
            error = str(e)
        except TimeoutError:
            error = f"Capability '{capability}' timed out after {self.timeout:g}s"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        execution_step = ExecutionStep(
            step_id=step.id,
            status="failed" if error else "completed",
            capability=capability,
            result=output,
            error=error,
            started_at=started_at,
            completed_at=time.time(),
        )

        position = f"{index + 1}/{len(plan.steps)}"
        tool_results = dict(state.get("tool_results", {}))
        if error:
            logger.warning(
                f"Step {position} ({step.action}) failed for session "
                f"{state.get('session_key')}: {error}"
            )
            message = f"❌ Step {position} failed\n{step.description}\n⚠️ {error}"
        else:
            logger.info(f"Step {position} ({step.action} -> {capability}) completed")
            tool_results[step.id] = {
                "action": step.action,
                "capability": capability,
                "output": output,
            }
            message = f"✅ Step {position} completed\n{step.description}"

        await notify(self.context_store, state.get("context_key"), message)

        return {
            "execution_steps": [*state.get("execution_steps", []), execution_step],
            "current_step_index": index + 1,
            "tool_results": tool_results,
        }
