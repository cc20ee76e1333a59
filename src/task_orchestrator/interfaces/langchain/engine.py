"""High-level entry point for running, suspending and resuming workflows."""

import asyncio
import logging
import threading
import time
from typing import Any, cast
from uuid import uuid4

from langgraph.checkpoint.base import BaseCheckpointSaver

from task_orchestrator.config import STEP_TIMEOUT_SECONDS
from task_orchestrator.core.approvals import (
    ApprovalCoordinator,
    ResolutionCallback,
    ResolutionStatus,
    parse_approval_reply,
)
from task_orchestrator.core.capabilities import CapabilityRegistry
from task_orchestrator.core.context_store import Channel, ConversationContextStore
from task_orchestrator.core.errors import WorkflowBusyError
from task_orchestrator.core.models import ApprovalResolution, WorkflowOutcome
from task_orchestrator.interfaces.langchain.classifier import IntentClassifier
from task_orchestrator.interfaces.langchain.workflow_graph import create_workflow_graph
from task_orchestrator.interfaces.langchain.workflow_state import (
    WorkflowState,
    initial_state,
    latest_approval,
)

RECURSION_LIMIT = 100
FAILURE_MESSAGE = (
    "❌ Sorry, something went wrong while processing your request. Please try again."
)


class WorkflowEngine:
    """Runs one workflow per session on a checkpointed LangGraph graph.

    A run returns as soon as it reaches an approval gate; nothing blocks while
    waiting for a human. Resolving the pending approval, through the
    coordinator or through this class, schedules a resume that reloads the
    checkpoint and re-enters the gate.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        registry: CapabilityRegistry,
        coordinator: ApprovalCoordinator | None = None,
        context_store: ConversationContextStore | None = None,
        checkpointer: BaseCheckpointSaver | None = None,
        step_timeout: float = STEP_TIMEOUT_SECONDS,
        auto_resume: bool = True,
    ):
        """Initialize the engine.

        Args:
            classifier: Classification capability
            registry: Capability registry for step execution
            coordinator: Shared approval coordinator (a private one by default)
            context_store: Shared channel registry (a private one by default)
            checkpointer: LangGraph checkpoint store (in-memory by default)
            step_timeout: Seconds allowed for each capability invocation
            auto_resume: Resume automatically when an approval gets resolved
        """
        self.logger = logging.getLogger(__name__)
        self.coordinator = coordinator or ApprovalCoordinator()
        self.context_store = context_store or ConversationContextStore()
        self.registry = registry
        self.graph = create_workflow_graph(
            classifier,
            registry,
            self.coordinator,
            self.context_store,
            checkpointer=checkpointer,
            step_timeout=step_timeout,
            callback_factory=self._resolution_callback if auto_resume else None,
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()
        self._resume_tasks: dict[str, asyncio.Task] = {}

    def _config(self, session_key: str) -> dict[str, Any]:
        return {
            "configurable": {"thread_id": session_key},
            "recursion_limit": RECURSION_LIMIT,
        }

    def _lock_for(self, session_key: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_key)
            if lock is None:
                lock = self._locks[session_key] = asyncio.Lock()
            return lock

    async def get_state(self, session_key: str) -> WorkflowState:
        """Current checkpointed state of a session (empty if none)."""
        snapshot = await self.graph.aget_state(self._config(session_key))
        return cast(WorkflowState, dict(snapshot.values or {}))

    async def get_outcome(self, session_key: str) -> WorkflowOutcome | None:
        values = await self.get_state(session_key)
        if not values:
            return None
        return self._outcome(session_key, values)

    async def start(
        self,
        session_key: str,
        user_id: str,
        user_intent: str,
        channel: Channel | None = None,
    ) -> WorkflowOutcome:
        """Run a new request until it completes or reaches an approval gate.

        Raises:
            WorkflowBusyError: If the session is still waiting for an approval
        """
        async with self._lock_for(session_key):
            previous = await self.get_state(session_key)
            if previous.get("awaiting_approval"):
                raise WorkflowBusyError(session_key)

            self.coordinator.forget_session(session_key)
            context_key = f"{session_key}:{uuid4().hex}"
            if channel is not None:
                self.context_store.store(context_key, channel)

            self.logger.info(f"Starting workflow for session {session_key}")
            state = initial_state(
                user_intent=user_intent,
                user_id=user_id,
                session_key=session_key,
                context_key=context_key,
                started_at=time.time(),
            )
            return await self._run(session_key, context_key, dict(state))

    async def resume(
        self,
        session_key: str,
        approved: bool | None = None,
        feedback: str | None = None,
        channel: Channel | None = None,
    ) -> WorkflowOutcome:
        """Re-enter a suspended workflow from its checkpoint.

        Without ``approved`` the decision recorded by the coordinator is used;
        if there is none the workflow stays suspended. Passing ``approved``
        resolves the pending request first, which also covers a restart where
        the coordinator no longer knows about it.

        Raises:
            ValueError: If the session has no workflow
        """
        async with self._lock_for(session_key):
            values = await self.get_state(session_key)
            if not values:
                raise ValueError(f"No workflow found for session {session_key}")
            if not values.get("awaiting_approval"):
                return self._outcome(session_key, values)

            context_key = values.get("context_key")
            if channel is not None and context_key:
                self.context_store.store(context_key, channel)

            decision: ApprovalResolution | None = None
            pending = latest_approval(values)
            if pending is not None:
                if approved is not None:
                    self.coordinator.register(session_key, pending)
                    self.coordinator.resolve_by_id(pending.id, approved, feedback)
                decision = self.coordinator.resolution_for(pending.id)

            self.logger.info(
                f"Resuming session {session_key} "
                f"({'with' if decision else 'without'} a decision)"
            )
            return await self._run(
                session_key, context_key, {"approval_decision": decision}
            )

    async def resolve_approval(
        self, session_key: str, approved: bool, feedback: str | None = None
    ) -> tuple[bool, WorkflowOutcome | None]:
        """Approve or deny the pending request of a session and continue the workflow.

        Returns:
            Whether this call resolved a pending request, and the resulting outcome
        """
        if self.coordinator.resolve(session_key, approved, feedback):
            return True, await self._await_resume(session_key)

        values = await self.get_state(session_key)
        pending = latest_approval(values) if values.get("awaiting_approval") else None
        if pending is not None and self._is_orphaned(pending.id):
            return True, await self.resume(session_key, approved, feedback)
        return False, await self.get_outcome(session_key)

    async def resolve_reply(
        self, session_key: str, text: str
    ) -> tuple[ResolutionStatus, WorkflowOutcome | None] | None:
        """Resolve a request named by a correlation reply such as ``approve:<id>``.

        Returns:
            None if ``text`` is not an approval reply, else the resolution
            status and the resulting outcome
        """
        reply = parse_approval_reply(text)
        if reply is None:
            return None

        values = await self.get_state(session_key)
        known = {r.id: r for r in values.get("approval_requests", [])}
        pending_ids = {r.id for r in self.coordinator.pending_for(session_key)}
        if reply.request_id not in known and reply.request_id not in pending_ids:
            return ResolutionStatus.NOT_FOUND, await self.get_outcome(session_key)

        request = known.get(reply.request_id)
        if request is not None and request.is_resolved:
            return ResolutionStatus.ALREADY_RESOLVED, await self.get_outcome(session_key)

        status = self.coordinator.resolve_by_id(
            reply.request_id, reply.approved, reply.feedback
        )
        if status is ResolutionStatus.RESOLVED:
            return status, await self._await_resume(session_key)
        if status is ResolutionStatus.NOT_FOUND and self._is_orphaned(reply.request_id):
            outcome = await self.resume(session_key, reply.approved, reply.feedback)
            return ResolutionStatus.RESOLVED, outcome
        return status, await self.get_outcome(session_key)

    async def discard_session(self, session_key: str) -> None:
        """Release everything held for a session."""
        values = await self.get_state(session_key)
        self.context_store.remove(values.get("context_key"))
        self.coordinator.forget_session(session_key)
        if self.graph.checkpointer is not None:
            await self.graph.checkpointer.adelete_thread(session_key)
        with self._locks_guard:
            self._locks.pop(session_key, None)

    def _is_orphaned(self, request_id: str) -> bool:
        """A persisted request the coordinator has no record of, e.g. after a restart."""
        return (
            not self.coordinator.is_pending(request_id)
            and self.coordinator.resolution_for(request_id) is None
        )

    async def _run(
        self, session_key: str, context_key: str | None, payload: dict[str, Any]
    ) -> WorkflowOutcome:
        try:
            values = await self.graph.ainvoke(payload, self._config(session_key))
        except Exception as e:
            self.logger.error(f"Workflow for session {session_key} failed: {e}")
            self.context_store.remove(context_key)
            self.coordinator.forget_session(session_key)
            return WorkflowOutcome(
                session_key=session_key, status="failed", final_response=FAILURE_MESSAGE
            )

        outcome = self._outcome(session_key, values)
        if outcome.status != "awaiting_approval":
            self.context_store.remove(context_key)
        return outcome

    def _outcome(self, session_key: str, values: dict[str, Any]) -> WorkflowOutcome:
        plan = values.get("execution_plan")
        steps = values.get("execution_steps") or []
        if values.get("awaiting_approval"):
            status = "awaiting_approval"
        elif values.get("completed"):
            status = "completed"
        else:
            status = "failed"

        return WorkflowOutcome(
            session_key=session_key,
            status=status,
            final_response=values.get("final_response"),
            pending_approval=(
                latest_approval(values) if status == "awaiting_approval" else None
            ),
            current_step_index=values.get("current_step_index", 0),
            total_steps=len(plan.steps) if plan else 0,
            completed_steps=sum(1 for s in steps if s.status == "completed"),
            failed_steps=sum(1 for s in steps if s.status == "failed"),
        )

    # --- Automatic resume ---

    def _resolution_callback(self, session_key: str) -> ResolutionCallback:
        """Build the callback a gate registers with the coordinator."""
        loop = asyncio.get_running_loop()

        def on_resolved(resolution: ApprovalResolution) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None

            if running is loop:
                self._schedule_resume(session_key)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(self._schedule_resume, session_key)
            else:
                self.logger.warning(
                    f"Approval {resolution.request_id} resolved after its event loop "
                    "closed; call resume() to continue"
                )

        return on_resolved

    def _schedule_resume(self, session_key: str) -> None:
        existing = self._resume_tasks.get(session_key)
        if existing is not None and not existing.done():
            return

        task = asyncio.ensure_future(self.resume(session_key))
        self._resume_tasks[session_key] = task

        def finished(done: asyncio.Task) -> None:
            if self._resume_tasks.get(session_key) is done:
                del self._resume_tasks[session_key]
            if not done.cancelled() and done.exception() is not None:
                self.logger.error(
                    f"Automatic resume of session {session_key} failed: "
                    f"{done.exception()}"
                )

        task.add_done_callback(finished)

    async def _await_resume(self, session_key: str) -> WorkflowOutcome:
        task = self._resume_tasks.get(session_key)
        if task is not None:
            return await task
        return await self.resume(session_key)
