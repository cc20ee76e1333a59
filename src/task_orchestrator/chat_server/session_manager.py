"""Session management for the stateful workflow server."""

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from task_orchestrator.config import SESSION_TIMEOUT_SECONDS
from task_orchestrator.core.approvals import ResolutionStatus
from task_orchestrator.core.models import ChannelAction, WorkflowOutcome
from task_orchestrator.interfaces.langchain.engine import WorkflowEngine

logger = logging.getLogger(__name__)


class BufferedChannel:
    """Channel that queues outgoing messages until the client polls for them."""

    def __init__(self, max_messages: int = 500):
        self.max_messages = max_messages
        self._messages: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    async def send(self, text: str, actions: list[ChannelAction] | None = None) -> None:
        with self._lock:
            self._messages.append(
                {"text": text, "actions": list(actions or []), "timestamp": time.time()}
            )
            del self._messages[: -self.max_messages]

    def drain(self) -> list[dict[str, Any]]:
        with self._lock:
            messages, self._messages = self._messages, []
        return messages

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


class ChatSession:
    """Represents a single session with metadata."""

    def __init__(self, session_id: str, user_id: str, ttl_seconds: int):
        self.session_id = session_id
        self.user_id = user_id
        self.channel = BufferedChannel()
        self.ttl = timedelta(seconds=ttl_seconds)
        self.created_at = datetime.now()
        self.last_accessed = datetime.now()
        self.message_count = 0

    def update_access(self) -> None:
        """Update the last accessed timestamp."""
        self.last_accessed = datetime.now()

    @property
    def is_expired(self) -> bool:
        return datetime.now() - self.last_accessed > self.ttl


class SessionManager:
    """Manages sessions and routes their requests to the workflow engine."""

    def __init__(
        self,
        engine: WorkflowEngine,
        cleanup_interval: int = 300,
        session_timeout: int = SESSION_TIMEOUT_SECONDS,
    ):
        self.engine = engine
        self.sessions: dict[str, ChatSession] = {}
        self.cleanup_interval = cleanup_interval
        self.session_timeout = session_timeout
        self._cleanup_task: asyncio.Task | None = None

    def _start_cleanup_task(self) -> None:
        """Start the background cleanup task if there's a running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_expired_sessions())

    async def _cleanup_expired_sessions(self) -> None:
        """Background task to clean up expired sessions."""
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                expired = [
                    session_id
                    for session_id, session in self.sessions.items()
                    if session.is_expired
                ]
                for session_id in expired:
                    await self.delete_session(session_id)
                if expired:
                    logger.info(f"Cleaned up {len(expired)} expired sessions")
            except Exception as e:
                logger.error(f"Error in session cleanup: {e}")

    def create_session(self, user_id: str | None = None) -> str:
        """Create a new session."""
        self._start_cleanup_task()
        session_id = str(uuid4())
        self.sessions[session_id] = ChatSession(
            session_id, user_id or session_id, self.session_timeout
        )
        return session_id

    def get_session(self, session_id: str) -> ChatSession | None:
        """Get an existing session by ID."""
        session = self.sessions.get(session_id)
        if session:
            session.update_access()
        return session

    def _require_session(self, session_id: str) -> ChatSession:
        session = self.get_session(session_id)
        if not session:
            raise ValueError(f"Session {session_id} not found")
        return session

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and release its workflow resources."""
        if self.sessions.pop(session_id, None) is None:
            return False
        await self.engine.discard_session(session_id)
        return True

    def get_session_count(self) -> int:
        return len(self.sessions)

    def get_session_info(self, session_id: str) -> dict[str, Any] | None:
        session = self.get_session(session_id)
        if not session:
            return None

        return {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "created_at": session.created_at.isoformat(),
            "last_accessed": session.last_accessed.isoformat(),
            "message_count": session.message_count,
            "is_active": True,
        }

    async def submit_request(self, session_id: str, message: str) -> WorkflowOutcome:
        """Start a workflow for a new request."""
        session = self._require_session(session_id)
        session.message_count += 1
        return await self.engine.start(
            session_id, session.user_id, message, channel=session.channel
        )

    async def resolve_approval(
        self, session_id: str, approved: bool, feedback: str | None = None
    ) -> tuple[bool, WorkflowOutcome | None]:
        self._require_session(session_id)
        return await self.engine.resolve_approval(session_id, approved, feedback)

    async def handle_reply(
        self, session_id: str, message: str
    ) -> tuple[ResolutionStatus, WorkflowOutcome | None] | None:
        session = self._require_session(session_id)
        session.message_count += 1
        return await self.engine.resolve_reply(session_id, message)

    def drain_messages(self, session_id: str) -> list[dict[str, Any]]:
        return self._require_session(session_id).channel.drain()

    async def get_execution_status(self, session_id: str) -> dict[str, Any]:
        """Get current execution state of the session's latest workflow."""
        self._require_session(session_id)
        state = await self.engine.get_state(session_id)
        plan = state.get("execution_plan")
        descriptions = {step.id: step.description for step in plan.steps} if plan else {}
        pending = state.get("approval_requests") or []

        return {
            "session_id": session_id,
            "status": self._determine_status(state),
            "plan_id": plan.id if plan else None,
            "current_step": state.get("current_step_index", 0),
            "total_steps": len(plan.steps) if plan else 0,
            "steps": [
                {
                    "step_id": step.step_id,
                    "description": descriptions.get(step.step_id, ""),
                    "status": step.status,
                    "result": step.result,
                    "error": step.error,
                    "duration": step.duration,
                }
                for step in state.get("execution_steps", [])
            ],
            "pending_approval_id": (
                pending[-1].id if pending and state.get("awaiting_approval") else None
            ),
            "error": state.get("error"),
            "final_response": state.get("final_response"),
        }

    def _determine_status(self, state: dict[str, Any]) -> str:
        """Determine execution status from graph state."""
        if not state:
            return "idle"
        if state.get("awaiting_approval"):
            return "awaiting_approval"
        if state.get("completed"):
            return "completed"
        if state.get("error"):
            return "failed"
        if state.get("current_step_index", 0) > 0:
            return "executing"
        return "planning"

    async def shutdown(self) -> None:
        """Clean shutdown of the session manager."""
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

        for session_id in list(self.sessions):
            await self.delete_session(session_id)
