"""Interactive console front-end for supervised task workflows."""

import argparse
import asyncio
import getpass
import logging
import os
from uuid import uuid4

from task_orchestrator.config import (
    CAPABILITY_ALIASES,
    CAPABILITY_REFRESH_SECONDS,
    MCP_SERVER_URL,
    STEP_TIMEOUT_SECONDS,
)
from task_orchestrator.core.approvals import ResolutionStatus
from task_orchestrator.core.capabilities import CapabilityRegistry
from task_orchestrator.core.errors import WorkflowBusyError
from task_orchestrator.core.models import ChannelAction, WorkflowOutcome
from task_orchestrator.interfaces.langchain.classifier import OpenAIIntentClassifier
from task_orchestrator.interfaces.langchain.engine import WorkflowEngine
from task_orchestrator.interfaces.mcp.client import McpCapabilityProvider

HELP_TEXT = """Commands:
  /approve [feedback]   approve the pending plan or step
  /deny [reason]        deny the pending plan or step
  approve:<id>          approve a specific request
  deny:<id>             deny a specific request
  exit                  quit"""


class ConsoleChannel:
    """Prints workflow messages to stdout."""

    async def send(self, text: str, actions: list[ChannelAction] | None = None) -> None:
        print(f"\n{text}")
        if actions:
            print("   " + "   ".join(f"[{a.label}: {a.value}]" for a in actions))


def prompt_for_api_key() -> str | None:
    """Prompt for an OpenAI API key when none is configured."""
    print("🔑 No OPENAI_API_KEY found in the environment.")
    api_key = getpass.getpass("Enter your OpenAI API key (input hidden): ").strip()
    if not api_key:
        print("❌ No API key provided. Exiting.")
        return None
    return api_key


def print_outcome(outcome: WorkflowOutcome | None) -> None:
    if outcome is None:
        return
    if outcome.status == "awaiting_approval" and outcome.pending_approval:
        print(f"\n⏸️  Waiting for approval ({outcome.pending_approval.id})")
    elif outcome.status == "failed" and outcome.final_response:
        print(f"\n{outcome.final_response}")


async def handle_command(
    engine: WorkflowEngine, session_key: str, user_id: str, text: str, channel: ConsoleChannel
) -> None:
    lowered = text.lower()
    if lowered.startswith(("/approve", "/deny", "approve:", "deny:")):
        reply = await engine.resolve_reply(session_key, text)
        if reply is not None and reply[0] is not ResolutionStatus.NOT_FOUND:
            status, outcome = reply
            if status is ResolutionStatus.ALREADY_RESOLVED:
                print("ℹ️  That request was already resolved.")
            print_outcome(outcome)
            return

        if lowered.startswith("/"):
            approved = lowered.startswith("/approve")
            feedback = text.split(maxsplit=1)[1] if " " in text else None
            resolved, outcome = await engine.resolve_approval(
                session_key, approved, feedback
            )
            if not resolved:
                print("ℹ️  Nothing is waiting for approval.")
            print_outcome(outcome)
            return

        print("ℹ️  Unknown approval request.")
        return

    try:
        outcome = await engine.start(session_key, user_id, text, channel=channel)
    except WorkflowBusyError as e:
        print(f"⚠️  {e}")
        return
    print_outcome(outcome)


async def async_main() -> None:
    """Async entry point for the console front-end."""
    api_key = os.getenv("OPENAI_API_KEY") or prompt_for_api_key()
    if not api_key:
        return

    provider = McpCapabilityProvider(MCP_SERVER_URL)
    try:
        await provider.connect()
    except Exception as e:
        print(f"❌ Could not connect to capability server at {MCP_SERVER_URL}: {e}")
        return

    try:
        registry = CapabilityRegistry(
            provider,
            refresh_interval=CAPABILITY_REFRESH_SECONDS,
            extra_aliases=CAPABILITY_ALIASES,
        )
        engine = WorkflowEngine(
            OpenAIIntentClassifier(api_key=api_key),
            registry,
            step_timeout=STEP_TIMEOUT_SECONDS,
        )
        channel = ConsoleChannel()
        session_key = str(uuid4())
        user_id = getpass.getuser()

        print("✅ Connected. Describe a task (or 'help', 'exit'):")
        while True:
            text = (await asyncio.to_thread(input, "\n> ")).strip()
            if not text:
                continue
            if text.lower() in ("exit", "quit"):
                break
            if text.lower() == "help":
                print(HELP_TEXT)
                continue
            try:
                await handle_command(engine, session_key, user_id, text, channel)
            except Exception as e:
                logging.getLogger(__name__).debug("Command failed", exc_info=True)
                print(f"❌ Error: {e}")
    finally:
        await provider.cleanup()


def main() -> None:
    """Synchronous entry point that runs the async main function."""
    parser = argparse.ArgumentParser(
        description="Task orchestrator - plan, approve and run multi-step tasks"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Show workflow transitions and tool calls"
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        asyncio.run(async_main())
    except (KeyboardInterrupt, EOFError):
        print("\n👋 Goodbye!")


if __name__ == "__main__":
    main()
