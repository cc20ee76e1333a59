"""Framework-independent services for the task orchestration workflow."""

from task_orchestrator.core.approvals import ApprovalCoordinator, ResolutionStatus
from task_orchestrator.core.capabilities import (
    CapabilityProvider,
    CapabilityRegistry,
    resolve_capability,
)
from task_orchestrator.core.context_store import Channel, ConversationContextStore
from task_orchestrator.core.models import (
    ApprovalRequest,
    ApprovalResolution,
    Capability,
    ExecutionPlan,
    ExecutionStep,
    PlanStep,
    ReflectionResult,
    TaskAnalysis,
    WorkflowOutcome,
)

__all__ = [
    "ApprovalCoordinator",
    "ResolutionStatus",
    "CapabilityProvider",
    "CapabilityRegistry",
    "resolve_capability",
    "Channel",
    "ConversationContextStore",
    "ApprovalRequest",
    "ApprovalResolution",
    "Capability",
    "ExecutionPlan",
    "ExecutionStep",
    "PlanStep",
    "ReflectionResult",
    "TaskAnalysis",
    "WorkflowOutcome",
]
