"""Capability provider that talks to an MCP server over SSE."""

import json
import logging
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession
from mcp.client.sse import sse_client

from task_orchestrator.core.errors import CapabilityInvocationError
from task_orchestrator.core.models import Capability


def _field(obj: Any, *names: str) -> Any:
    """First attribute of ``names`` present on ``obj``.

    mcp 1.x models use camelCase field names, 2.x uses snake_case.
    """
    for name in names:
        if hasattr(obj, name):
            return getattr(obj, name)
    return None


def parse_text_result(text: str) -> Any:
    """Decode a JSON object or array result, else return the text unchanged."""
    stripped = text.strip()
    if not stripped.startswith(("{", "[")):
        return text
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return text


class McpCapabilityProvider:
    """Lists and calls the tools of an MCP server as capabilities."""

    def __init__(self, server_url: str):
        self.server_url = server_url
        self.session: ClientSession | None = None
        self.exit_stack = AsyncExitStack()
        self.logger = logging.getLogger(__name__)

    async def connect(self) -> None:
        """Open the SSE streams and initialize the client session."""
        self.logger.info(f"Connecting to MCP server at {self.server_url}")
        streams = await self.exit_stack.enter_async_context(
            sse_client(url=self.server_url)
        )
        self.session = await self.exit_stack.enter_async_context(
            ClientSession(*streams)
        )
        await self.session.initialize()
        self.logger.info("MCP session initialized")

    async def cleanup(self) -> None:
        """Close the session and streams."""
        await self.exit_stack.aclose()
        self.session = None

    async def __aenter__(self) -> "McpCapabilityProvider":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()

    def _require_session(self) -> ClientSession:
        if self.session is None:
            raise RuntimeError("Session not initialized.")
        return self.session

    async def list_capabilities(self) -> list[Capability]:
        response = await self._require_session().list_tools()
        self.logger.debug(
            f"MCP server tools: {[tool.name for tool in response.tools]}"
        )
        return [
            Capability(
                name=tool.name,
                description=tool.description or "",
                input_schema=_field(tool, "inputSchema", "input_schema"),
            )
            for tool in response.tools
        ]

    async def invoke(self, name: str, parameters: dict[str, Any]) -> Any:
        """Call a tool and return its structured content, decoded JSON or text.

        Raises:
            CapabilityInvocationError: If the server flags the call as an error
        """
        result = await self._require_session().call_tool(name, parameters)
        text = "\n".join(
            getattr(block, "text", "") for block in result.content if hasattr(block, "text")
        )
        if _field(result, "isError", "is_error"):
            raise CapabilityInvocationError(text or f"Tool {name} reported an error")

        structured = _field(result, "structuredContent", "structured_content")
        if structured:
            return structured
        return parse_text_result(text)
