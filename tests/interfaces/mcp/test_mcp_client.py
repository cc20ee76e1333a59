"""Tests for the MCP capability provider."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

from task_orchestrator.core.errors import CapabilityInvocationError
from task_orchestrator.interfaces.mcp.client import McpCapabilityProvider, parse_text_result

CLIENT_MODULE = "task_orchestrator.interfaces.mcp.client"


class TestMcpCapabilityProvider:
    """Test suite for McpCapabilityProvider."""

    @pytest.fixture
    def session(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def provider(self, session: AsyncMock) -> McpCapabilityProvider:
        provider = McpCapabilityProvider("http://localhost:9999/sse")
        provider.session = session
        return provider

    @pytest.mark.unit
    async def test_connect_initializes_session(self) -> None:
        session = AsyncMock()
        streams = (MagicMock(), MagicMock())

        with (
            patch(f"{CLIENT_MODULE}.sse_client") as mock_sse_client,
            patch(f"{CLIENT_MODULE}.ClientSession") as mock_session_class,
        ):
            mock_sse_client.return_value.__aenter__.return_value = streams
            mock_session_class.return_value.__aenter__.return_value = session

            async with McpCapabilityProvider("http://localhost:9999/sse") as provider:
                assert provider.session is session

            mock_sse_client.assert_called_once_with(url="http://localhost:9999/sse")
            mock_session_class.assert_called_once_with(*streams)
            session.initialize.assert_awaited_once()
            assert provider.session is None

    @pytest.mark.unit
    async def test_requires_connection(self) -> None:
        provider = McpCapabilityProvider("http://localhost:9999/sse")

        with pytest.raises(RuntimeError, match="Session not initialized"):
            await provider.list_capabilities()

    @pytest.mark.unit
    async def test_list_capabilities(
        self, provider: McpCapabilityProvider, session: AsyncMock
    ) -> None:
        session.list_tools.return_value = ListToolsResult(
            tools=[
                Tool(
                    name="createTodo",
                    description="Create a todo item",
                    inputSchema={"type": "object", "properties": {"title": {"type": "string"}}},
                ),
                Tool(name="listTodos", inputSchema={"type": "object"}),
            ]
        )

        capabilities = await provider.list_capabilities()

        assert [c.name for c in capabilities] == ["createTodo", "listTodos"]
        assert capabilities[0].input_schema["properties"]["title"] == {"type": "string"}
        assert capabilities[1].description == ""

    @pytest.mark.unit
    async def test_invoke_returns_text(
        self, provider: McpCapabilityProvider, session: AsyncMock
    ) -> None:
        session.call_tool.return_value = CallToolResult(
            content=[
                TextContent(type="text", text="Created todo t-1"),
                TextContent(type="text", text="Title: Buy milk"),
            ]
        )

        result = await provider.invoke("createTodo", {"title": "Buy milk"})

        assert result == "Created todo t-1\nTitle: Buy milk"
        session.call_tool.assert_awaited_once_with("createTodo", {"title": "Buy milk"})

    @pytest.mark.unit
    async def test_invoke_prefers_structured_content(
        self, provider: McpCapabilityProvider, session: AsyncMock
    ) -> None:
        session.call_tool.return_value = SimpleNamespace(
            content=[TextContent(type="text", text='{"id": "t-1"}')],
            isError=False,
            structuredContent={"id": "t-1"},
        )

        assert await provider.invoke("createTodo", {}) == {"id": "t-1"}

    @pytest.mark.unit
    async def test_invoke_error(
        self, provider: McpCapabilityProvider, session: AsyncMock
    ) -> None:
        session.call_tool.return_value = CallToolResult(
            content=[TextContent(type="text", text="Todo not found")], isError=True
        )

        with pytest.raises(CapabilityInvocationError, match="Todo not found"):
            await provider.invoke("updateTodo", {"id": "t-404"})

    @pytest.mark.unit
    async def test_snake_case_result_fields(
        self, provider: McpCapabilityProvider, session: AsyncMock
    ) -> None:
        """Tool and result models that spell their fields in snake_case are read too."""
        session.list_tools.return_value = SimpleNamespace(
            tools=[
                SimpleNamespace(
                    name="listTodos",
                    description="List todos",
                    input_schema={"type": "object"},
                )
            ]
        )
        session.call_tool.side_effect = [
            SimpleNamespace(
                content=[TextContent(type="text", text="ok")],
                is_error=False,
                structured_content=None,
            ),
            SimpleNamespace(
                content=[TextContent(type="text", text="boom")],
                is_error=True,
                structured_content=None,
            ),
        ]

        capabilities = await provider.list_capabilities()

        assert capabilities[0].input_schema == {"type": "object"}
        assert await provider.invoke("listTodos", {}) == "ok"
        with pytest.raises(CapabilityInvocationError, match="boom"):
            await provider.invoke("listTodos", {})

    @pytest.mark.unit
    async def test_invoke_decodes_json_text(
        self, provider: McpCapabilityProvider, session: AsyncMock
    ) -> None:
        session.call_tool.return_value = CallToolResult(
            content=[TextContent(type="text", text='[{"id": "t-1", "title": "Buy milk"}]')]
        )

        result = await provider.invoke("listTodos", {})

        assert result == [{"id": "t-1", "title": "Buy milk"}]


class TestParseTextResult:
    """Test suite for decoding text tool results."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text,expected",
        [
            ('{"id": "t-1"}', {"id": "t-1"}),
            ("  [1, 2]\n", [1, 2]),
            ("Created todo t-1", "Created todo t-1"),
            ("{not json", "{not json"),
            ("", ""),
        ],
    )
    def test_parse_text_result(self, text: str, expected) -> None:
        assert parse_text_result(text) == expected
