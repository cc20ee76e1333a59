"""
Configuration constants for the task orchestration service.

Values are read from the environment once, at import time, after loading a
``.env`` file if one is found.
"""

import os

from task_orchestrator.utils.env import load_env

load_env()


def _parse_aliases(raw: str) -> dict[str, str]:
    """Parse ``alias=target,alias=target`` into a mapping."""
    aliases: dict[str, str] = {}
    for pair in raw.split(","):
        alias, sep, target = pair.partition("=")
        if sep and alias.strip() and target.strip():
            aliases[alias.strip()] = target.strip()
    return aliases


DEFAULT_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("SERVER_PORT", "8080"))

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0"))

STEP_TIMEOUT_SECONDS = float(os.getenv("STEP_TIMEOUT_SECONDS", "30"))
CAPABILITY_REFRESH_SECONDS = float(os.getenv("CAPABILITY_REFRESH_SECONDS", "300"))
SESSION_TIMEOUT_SECONDS = int(os.getenv("SESSION_TIMEOUT_SECONDS", "3600"))

MCP_SERVER_URL = os.getenv("MCP_SERVER_URL", "http://localhost:8000/sse")
CAPABILITY_ALIASES = _parse_aliases(os.getenv("CAPABILITY_ALIASES", ""))
