"""Pydantic models for chat server requests and responses."""

from typing import Any, Literal

from pydantic import BaseModel

from task_orchestrator.core.models import ChannelAction, WorkflowOutcome


class CreateSessionRequest(BaseModel):
    """Request to create a new session."""

    user_id: str | None = None


class CreateSessionResponse(BaseModel):
    """Response containing new session ID."""

    session_id: str


class WorkflowRequest(BaseModel):
    """Request to start a workflow for a message in an existing session."""

    session_id: str
    message: str


class ApprovalDecisionRequest(BaseModel):
    """Approve or deny the pending request of a session."""

    session_id: str
    approved: bool
    feedback: str | None = None


class ReplyRequest(BaseModel):
    """A free-text reply that may carry an approval correlation id."""

    session_id: str
    message: str


class ApprovalDecisionResponse(BaseModel):
    """Result of an approval decision or correlation reply."""

    session_id: str
    resolved: bool
    status: Literal["resolved", "already_resolved", "not_found", "not_a_reply"]
    workflow: WorkflowOutcome | None = None


class StepStatusInfo(BaseModel):
    """Status of one executed step."""

    step_id: str
    description: str
    status: str
    result: str | None = None
    error: str | None = None
    duration: float = 0.0


class ExecutionStatus(BaseModel):
    """Execution status of the latest workflow of a session."""

    session_id: str
    status: Literal["planning", "executing", "awaiting_approval", "completed", "failed", "idle"]
    plan_id: str | None = None
    current_step: int = 0
    total_steps: int = 0
    steps: list[StepStatusInfo] = []
    pending_approval_id: str | None = None
    error: str | None = None
    final_response: str | None = None


class ChannelMessage(BaseModel):
    """A message the workflow sent to the session's channel."""

    text: str
    actions: list[ChannelAction] = []
    timestamp: float


class MessagesResponse(BaseModel):
    """Messages drained from a session's channel."""

    session_id: str
    messages: list[ChannelMessage]


class SessionInfoResponse(BaseModel):
    """Response containing session information."""

    session_id: str
    user_id: str
    created_at: str
    last_accessed: str
    message_count: int
    is_active: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    active_sessions: int = 0
    pending_approvals: int = 0
    details: dict[str, Any] = {}
