"""Risk policy for plan steps."""

import re
from typing import Any

from task_orchestrator.core.models import RiskLevel

DESTRUCTIVE_VERBS = frozenset(
    {"delete", "remove", "purge", "destroy", "drop", "wipe", "erase", "clear"}
)
MUTATING_VERBS = frozenset(
    {
        "update",
        "edit",
        "modify",
        "set",
        "toggle",
        "complete",
        "move",
        "archive",
        "assign",
        "rename",
    }
)
BULK_MARKERS = frozenset({"all", "bulk", "batch", "many", "every", "multiple", "mass"})

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[^A-Za-z0-9]+")


def split_words(name: str) -> list[str]:
    """Split a camelCase, snake_case or kebab-case name into lowercase words."""
    return [part.lower() for part in _WORD_BOUNDARY.split(name) if part]


def is_destructive(action: str) -> bool:
    return bool(DESTRUCTIVE_VERBS.intersection(split_words(action)))


def is_bulk_mutation(action: str, parameters: dict[str, Any] | None = None) -> bool:
    """True if the action changes many records at once.

    Either the action name says so (``bulkUpdate``, ``completeAllTodos``)
    or a mutating action receives a list of several targets or an ``all`` flag.
    """
    words = set(split_words(action))
    if not words & (MUTATING_VERBS | DESTRUCTIVE_VERBS):
        return False
    if words & BULK_MARKERS:
        return True

    for key, value in (parameters or {}).items():
        if key.lower() == "all" and value is True:
            return True
        if isinstance(value, list | tuple) and len(value) > 1:
            return True
    return False


def step_risk(action: str, parameters: dict[str, Any] | None = None) -> RiskLevel:
    if is_destructive(action):
        return "high"
    if is_bulk_mutation(action, parameters):
        return "medium"
    return "low"


def requires_step_approval(action: str, parameters: dict[str, Any] | None = None) -> bool:
    """Destructive and bulk-mutating steps always need a human decision."""
    return is_destructive(action) or is_bulk_mutation(action, parameters)
