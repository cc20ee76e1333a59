"""Stateful HTTP server package for supervised task workflows."""

from task_orchestrator.chat_server.models import (
    ApprovalDecisionRequest,
    ApprovalDecisionResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    ExecutionStatus,
    HealthResponse,
    ReplyRequest,
    SessionInfoResponse,
    WorkflowRequest,
)
from task_orchestrator.chat_server.server import ChatServer, main
from task_orchestrator.chat_server.session_manager import (
    BufferedChannel,
    ChatSession,
    SessionManager,
)

__all__ = [
    # Server
    "ChatServer",
    "main",
    # Session Management
    "SessionManager",
    "ChatSession",
    "BufferedChannel",
    # Models
    "CreateSessionRequest",
    "CreateSessionResponse",
    "WorkflowRequest",
    "ApprovalDecisionRequest",
    "ApprovalDecisionResponse",
    "ReplyRequest",
    "ExecutionStatus",
    "SessionInfoResponse",
    "HealthResponse",
]
