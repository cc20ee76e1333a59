"""Language-understanding capability used for analysis, planning and reflection."""

import json
from typing import Any, Literal, Protocol, cast

from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field, SecretStr

from task_orchestrator.config import OPENAI_MODEL, OPENAI_TEMPERATURE
from task_orchestrator.core.errors import ClassificationError
from task_orchestrator.core.models import TaskAnalysis

ANALYSIS_PROMPT = """You classify requests for a task assistant that executes actions through tools.

Available capabilities:
{capabilities}

Classify the request:
- simple: a single action
- compound: a few related actions
- complex: many actions or actions that depend on each other's results

Set requires_approval when the request changes or removes data in bulk or cannot be undone.
Set risk_level to high for irreversible or wide-reaching changes, medium for ordinary changes
and low for read-only requests. estimated_steps is the number of tool calls needed."""

PLANNER_PROMPT = """You turn a request into an ordered list of tool calls.

Available capabilities:
{capabilities}

Request analysis: {analysis}

Guidelines:
- One step per tool call, in execution order
- action must be the exact name of one of the capabilities above
- parameters must match the capability's inputs
- description is a short sentence the user will read"""

SUGGESTION_PROMPT = """You review a finished task for the user and propose what to do next.

Given the original request and the step history, return 2 or 3 short suggestions
grounded in what actually happened (retry failures, follow-up actions, checks)
and 2 or 3 concrete next actions the user could ask for."""


class AnalysisOutput(BaseModel):
    """Structured output schema for request classification."""

    classification: Literal["simple", "compound", "complex"]
    confidence: float
    requires_approval: bool
    risk_level: Literal["low", "medium", "high"]
    estimated_steps: int
    reasoning: str


class StepDraft(BaseModel):
    """One proposed tool call."""

    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    description: str
    requires_approval: bool = False


class PlanOutput(BaseModel):
    """Structured output schema for plan generation."""

    steps: list[StepDraft]


class SuggestionOutput(BaseModel):
    """Structured output schema for reflection suggestions."""

    suggestions: list[str]
    next_actions: list[str]


class IntentClassifier(Protocol):
    """Opaque classification capability consumed by the workflow nodes.

    Implementations may return loosely shaped data; callers validate it.
    """

    async def analyze(
        self, user_intent: str, capabilities: list[dict[str, str]]
    ) -> dict[str, Any]:
        ...

    async def propose_steps(
        self,
        user_intent: str,
        analysis: TaskAnalysis,
        capabilities: list[dict[str, str]],
    ) -> list[dict[str, Any]]:
        ...

    async def suggest(
        self, user_intent: str, history: list[dict[str, Any]]
    ) -> dict[str, Any]:
        ...


def format_capabilities(capabilities: list[dict[str, str]]) -> str:
    if not capabilities:
        return "(none discovered)"
    return "\n".join(
        f"- {item['name']} [{item.get('category', 'utility')}]: {item.get('description', '')}"
        for item in capabilities
    )


class OpenAIIntentClassifier:
    """IntentClassifier backed by an OpenAI chat model with structured output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = OPENAI_MODEL,
        temperature: float = OPENAI_TEMPERATURE,
    ):
        kwargs: dict[str, Any] = {"model": model, "temperature": temperature}
        if api_key:
            kwargs["api_key"] = SecretStr(api_key)
        self.llm = ChatOpenAI(**kwargs)

    async def _invoke(
        self, system_prompt: str, schema: type[BaseModel], variables: dict[str, Any]
    ) -> BaseModel:
        structured_llm = self.llm.with_structured_output(
            schema, method="function_calling"
        )
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", system_prompt),
                ("user", "{user_input}"),
            ]
        )
        chain = prompt | structured_llm
        output = await chain.ainvoke(variables)

        if not isinstance(output, schema):
            raise ClassificationError(
                f"Expected {schema.__name__}, got {type(output).__name__}"
            )
        return output

    async def analyze(
        self, user_intent: str, capabilities: list[dict[str, str]]
    ) -> dict[str, Any]:
        output = await self._invoke(
            ANALYSIS_PROMPT,
            AnalysisOutput,
            {
                "user_input": user_intent,
                "capabilities": format_capabilities(capabilities),
            },
        )
        return output.model_dump()

    async def propose_steps(
        self,
        user_intent: str,
        analysis: TaskAnalysis,
        capabilities: list[dict[str, str]],
    ) -> list[dict[str, Any]]:
        output = await self._invoke(
            PLANNER_PROMPT,
            PlanOutput,
            {
                "user_input": user_intent,
                "capabilities": format_capabilities(capabilities),
                "analysis": analysis.model_dump_json(),
            },
        )
        return [step.model_dump() for step in cast(PlanOutput, output).steps]

    async def suggest(
        self, user_intent: str, history: list[dict[str, Any]]
    ) -> dict[str, Any]:
        user_input = (
            f"Original request: {user_intent}\n\n"
            f"Step history:\n{json.dumps(history, indent=2, default=str)}"
        )
        output = await self._invoke(
            SUGGESTION_PROMPT, SuggestionOutput, {"user_input": user_input}
        )
        return output.model_dump()
