"""Capability provider backed by LangChain tools."""

import logging
from collections.abc import Sequence
from typing import Any

from langchain_core.tools import BaseTool

from task_orchestrator.core.errors import CapabilityResolutionError
from task_orchestrator.core.models import Capability

logger = logging.getLogger(__name__)


class ToolCapabilityProvider:
    """Exposes a set of LangChain tools as capabilities.

    Tools can be added or removed at any time; the registry picks up the
    change on its next refresh.
    """

    def __init__(self, tools: Sequence[BaseTool] = ()):
        self._tools: dict[str, BaseTool] = {tool.name: tool for tool in tools}

    def add_tool(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def remove_tool(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    async def list_capabilities(self) -> list[Capability]:
        capabilities = []
        for tool in self._tools.values():
            try:
                schema = tool.get_input_schema().model_json_schema()
            except Exception as e:
                logger.debug(f"No input schema for tool {tool.name}: {e}")
                schema = None
            capabilities.append(
                Capability(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=schema,
                )
            )
        return capabilities

    async def invoke(self, name: str, parameters: dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise CapabilityResolutionError(name)
        return await tool.ainvoke(parameters)
