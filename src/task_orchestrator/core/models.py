"""Data models shared by the workflow nodes, the coordinator and the HTTP surface."""

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Classification = Literal["simple", "compound", "complex"]
RiskLevel = Literal["low", "medium", "high"]
StepStatus = Literal["pending", "completed", "failed", "skipped"]
OutcomeStatus = Literal["awaiting_approval", "completed", "failed"]


class TaskAnalysis(BaseModel):
    """Classification of a user request."""

    model_config = ConfigDict(frozen=True)

    classification: Classification = "simple"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    requires_approval: bool = False
    risk_level: RiskLevel = "low"
    estimated_steps: int = Field(default=1, ge=1, le=20)
    reasoning: str = ""


class PlanStep(BaseModel):
    """Immutable template for one unit of work."""

    model_config = ConfigDict(frozen=True)

    id: str
    action: str
    parameters: dict[str, Any] = {}
    description: str
    requires_approval: bool = False
    risk_level: RiskLevel = "low"


class ExecutionPlan(BaseModel):
    """Ordered plan generated for a single request."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_intent: str
    steps: list[PlanStep]
    requires_approval: bool
    risk_level: RiskLevel
    estimated_duration: str
    created_at: float = Field(default_factory=time.time)


class ExecutionStep(BaseModel):
    """Recorded outcome of running (or skipping) a plan step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    status: StepStatus
    capability: str | None = None
    result: str | None = None
    error: str | None = None
    started_at: float = Field(default_factory=time.time)
    completed_at: float | None = None

    @property
    def duration(self) -> float:
        if self.completed_at is None:
            return 0.0
        return self.completed_at - self.started_at


class ApprovalResolution(BaseModel):
    """A human decision on a pending approval request."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    approved: bool
    feedback: str | None = None
    resolved_at: float = Field(default_factory=time.time)


class ApprovalRequest(BaseModel):
    """A gate awaiting a human decision, for either a whole plan or one step."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_key: str
    plan_id: str | None = None
    step_id: str | None = None
    action: str
    parameters: dict[str, Any] = {}
    description: str
    risk_level: RiskLevel = "low"
    message: str
    timestamp: float = Field(default_factory=time.time)
    approved: bool | None = None
    feedback: str | None = None
    resolved_at: float | None = None

    @property
    def is_resolved(self) -> bool:
        return self.approved is not None

    @property
    def gate_key(self) -> str:
        """Identifies the gate this request belongs to."""
        if self.step_id is not None:
            return f"step:{self.step_id}"
        return f"plan:{self.plan_id}"

    def with_resolution(self, resolution: ApprovalResolution) -> "ApprovalRequest":
        """Return a resolved copy; an already resolved request is returned unchanged."""
        if self.is_resolved:
            return self
        return self.model_copy(
            update={
                "approved": resolution.approved,
                "feedback": resolution.feedback,
                "resolved_at": resolution.resolved_at,
            }
        )


class Capability(BaseModel):
    """An invokable operation discovered at runtime."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] | None = None


class ChannelAction(BaseModel):
    """A machine-actionable choice attached to an outgoing message."""

    label: str
    value: str


class ReflectionResult(BaseModel):
    """Retrospective summary produced at the end of every workflow."""

    success: bool
    summary: str
    changes: list[str] = []
    errors: list[str] = []
    suggestions: list[str] = []
    next_actions: list[str] = []
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0


class WorkflowOutcome(BaseModel):
    """What a caller gets back after a workflow run or resume returns."""

    session_key: str
    status: OutcomeStatus
    final_response: str | None = None
    pending_approval: ApprovalRequest | None = None
    current_step_index: int = 0
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
