"""Stateful HTTP server exposing supervised task workflows."""

import argparse
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from task_orchestrator import __version__
from task_orchestrator.chat_server.models import (
    ApprovalDecisionRequest,
    ApprovalDecisionResponse,
    ChannelMessage,
    CreateSessionRequest,
    CreateSessionResponse,
    ExecutionStatus,
    HealthResponse,
    MessagesResponse,
    ReplyRequest,
    SessionInfoResponse,
    WorkflowRequest,
)
from task_orchestrator.chat_server.session_manager import SessionManager
from task_orchestrator.core.errors import WorkflowBusyError
from task_orchestrator.interfaces.mcp.client import McpCapabilityProvider

logger = logging.getLogger(__name__)


async def _read_json(request: Request) -> dict:
    """Parse a JSON object body; an empty body counts as ``{}``."""
    raw = await request.body()
    if not raw:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


class ChatServer:
    """Stateful HTTP server backed by a SessionManager and a WorkflowEngine."""

    def __init__(
        self,
        session_manager: SessionManager,
        provider: McpCapabilityProvider | None = None,
    ):
        self.session_manager = session_manager
        self.provider = provider

    # Session management endpoints
    async def create_session_endpoint(self, request: Request) -> JSONResponse:
        """Create a new session."""
        try:
            create_request = CreateSessionRequest(**await _read_json(request))
        except (ValueError, ValidationError) as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        session_id = self.session_manager.create_session(user_id=create_request.user_id)
        return JSONResponse(CreateSessionResponse(session_id=session_id).model_dump())

    async def delete_session_endpoint(self, request: Request) -> JSONResponse:
        """Delete a session."""
        session_id = request.path_params["session_id"]
        if not await self.session_manager.delete_session(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse({"message": f"Session {session_id} deleted"})

    async def get_session_info_endpoint(self, request: Request) -> JSONResponse:
        """Get session information."""
        session_info = self.session_manager.get_session_info(
            request.path_params["session_id"]
        )
        if not session_info:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse(SessionInfoResponse(**session_info).model_dump())

    async def get_messages_endpoint(self, request: Request) -> JSONResponse:
        """Drain messages the workflow sent to the session's channel."""
        session_id = request.path_params["session_id"]
        try:
            messages = self.session_manager.drain_messages(session_id)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=404)

        response = MessagesResponse(
            session_id=session_id,
            messages=[ChannelMessage(**message) for message in messages],
        )
        return JSONResponse(response.model_dump(mode="json"))

    # Workflow endpoints
    async def start_workflow_endpoint(self, request: Request) -> JSONResponse:
        """Run a new request until it completes or needs approval."""
        try:
            workflow_request = WorkflowRequest(**await _read_json(request))
        except (ValueError, ValidationError) as e:
            return JSONResponse({"error": f"Invalid request format: {e}"}, status_code=400)

        try:
            outcome = await self.session_manager.submit_request(
                workflow_request.session_id, workflow_request.message
            )
        except WorkflowBusyError as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        except ValueError as e:  # Session not found
            return JSONResponse({"error": str(e)}, status_code=404)
        except Exception as e:
            logger.error(f"Workflow request failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

        return JSONResponse(outcome.model_dump(mode="json"))

    async def approve_endpoint(self, request: Request) -> JSONResponse:
        """Approve or deny the pending request of a session."""
        try:
            decision = ApprovalDecisionRequest(**await _read_json(request))
        except (ValueError, ValidationError) as e:
            return JSONResponse({"error": f"Invalid request format: {e}"}, status_code=400)

        try:
            resolved, outcome = await self.session_manager.resolve_approval(
                decision.session_id, decision.approved, decision.feedback
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except Exception as e:
            logger.error(f"Approval failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

        response = ApprovalDecisionResponse(
            session_id=decision.session_id,
            resolved=resolved,
            status="resolved" if resolved else "not_found",
            workflow=outcome,
        )
        return JSONResponse(response.model_dump(mode="json"))

    async def reply_endpoint(self, request: Request) -> JSONResponse:
        """Resolve an approval from a reply such as ``approve:<request id>``."""
        try:
            reply = ReplyRequest(**await _read_json(request))
        except (ValueError, ValidationError) as e:
            return JSONResponse({"error": f"Invalid request format: {e}"}, status_code=400)

        try:
            result = await self.session_manager.handle_reply(
                reply.session_id, reply.message
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except Exception as e:
            logger.error(f"Reply handling failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

        if result is None:
            response = ApprovalDecisionResponse(
                session_id=reply.session_id, resolved=False, status="not_a_reply"
            )
        else:
            status, outcome = result
            response = ApprovalDecisionResponse(
                session_id=reply.session_id,
                resolved=status.value == "resolved",
                status=status.value,
                workflow=outcome,
            )
        return JSONResponse(response.model_dump(mode="json"))

    async def get_execution_status_endpoint(self, request: Request) -> JSONResponse:
        """Get current execution status."""
        try:
            status = await self.session_manager.get_execution_status(
                request.path_params["session_id"]
            )
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except Exception as e:
            return JSONResponse({"error": str(e)}, status_code=500)

        return JSONResponse(ExecutionStatus(**status).model_dump())

    async def health_check(self, request: Request) -> JSONResponse:
        """Health check endpoint with session and approval metrics."""
        engine = self.session_manager.engine
        approvals = engine.coordinator.get_status()
        response = HealthResponse(
            status="healthy",
            service="task-orchestrator",
            version=__version__,
            active_sessions=self.session_manager.get_session_count(),
            pending_approvals=approvals["pending"],
            details={"contexts": engine.context_store.get_stats()["active_contexts"]},
        )
        return JSONResponse(response.model_dump())

    @asynccontextmanager
    async def lifespan(self, app: Starlette) -> AsyncIterator[None]:
        if self.provider is not None:
            await self.provider.connect()
        try:
            yield
        finally:
            await self.shutdown()

    def create_app(self) -> Starlette:
        """Create the Starlette application with routes and middleware."""
        routes = [
            # Session management
            Route("/sessions", self.create_session_endpoint, methods=["POST"]),
            Route(
                "/sessions/{session_id}",
                self.get_session_info_endpoint,
                methods=["GET"],
            ),
            Route(
                "/sessions/{session_id}",
                self.delete_session_endpoint,
                methods=["DELETE"],
            ),
            Route(
                "/sessions/{session_id}/messages",
                self.get_messages_endpoint,
                methods=["GET"],
            ),
            # Workflow endpoints
            Route("/workflows", self.start_workflow_endpoint, methods=["POST"]),
            Route("/workflows/approve", self.approve_endpoint, methods=["POST"]),
            Route("/workflows/reply", self.reply_endpoint, methods=["POST"]),
            Route(
                "/workflows/{session_id}",
                self.get_execution_status_endpoint,
                methods=["GET"],
            ),
            # Health check
            Route("/health", self.health_check, methods=["GET"]),
        ]

        app = Starlette(routes=routes, lifespan=self.lifespan)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )
        return app

    async def shutdown(self) -> None:
        """Clean shutdown of the server."""
        await self.session_manager.shutdown()
        if self.provider is not None:
            await self.provider.cleanup()


def build_server() -> ChatServer:
    """Wire the server against the configured MCP server and OpenAI model."""
    from task_orchestrator.config import (
        CAPABILITY_ALIASES,
        CAPABILITY_REFRESH_SECONDS,
        MCP_SERVER_URL,
        STEP_TIMEOUT_SECONDS,
    )
    from task_orchestrator.core.capabilities import CapabilityRegistry
    from task_orchestrator.interfaces.langchain.classifier import OpenAIIntentClassifier
    from task_orchestrator.interfaces.langchain.engine import WorkflowEngine

    provider = McpCapabilityProvider(MCP_SERVER_URL)
    registry = CapabilityRegistry(
        provider,
        refresh_interval=CAPABILITY_REFRESH_SECONDS,
        extra_aliases=CAPABILITY_ALIASES,
    )
    engine = WorkflowEngine(
        OpenAIIntentClassifier(), registry, step_timeout=STEP_TIMEOUT_SECONDS
    )
    return ChatServer(SessionManager(engine), provider=provider)


def main() -> None:
    """Main entry point for the workflow server."""
    from task_orchestrator.config import DEFAULT_HOST, DEFAULT_PORT

    parser = argparse.ArgumentParser(
        description="Task orchestration server - supervised multi-step workflows over HTTP"
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="Host to bind to")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help="Port to listen on"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = build_server().create_app()
    logger.info(f"Task orchestration server starting on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
