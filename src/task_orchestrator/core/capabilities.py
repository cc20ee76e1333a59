"""Mapping logical action names onto runtime-discovered capabilities."""

import logging
import re
import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from task_orchestrator.core.models import Capability
from task_orchestrator.core.policy import BULK_MARKERS, DESTRUCTIVE_VERBS, split_words

logger = logging.getLogger(__name__)

_NAMESPACE_SEPARATORS = re.compile(r"__|[./:]")

VERB_SYNONYMS: dict[str, tuple[str, ...]] = {
    "create": ("add", "new"),
    "list": ("get", "show", "fetch"),
    "get": ("fetch", "show", "read"),
    "update": ("edit", "modify"),
    "delete": ("remove",),
    "toggle": ("complete",),
}

# Heuristic keyword groups, tried in this order.
KEYWORD_PRIORITY: tuple[tuple[str, frozenset[str]], ...] = (
    ("list", frozenset({"list"})),
    ("get", frozenset({"get", "fetch", "read", "show"})),
    ("create", frozenset({"create", "add", "new"})),
    ("update", frozenset({"update", "edit", "modify"})),
    ("delete", frozenset({"delete", "remove"})),
    ("toggle", frozenset({"toggle", "complete", "done"})),
    ("time", frozenset({"time", "timer", "tracking", "track"})),
)

CATEGORY_KEYWORDS: tuple[tuple[str, frozenset[str]], ...] = (
    ("time-tracking", frozenset({"time", "timer", "tracking", "track"})),
    ("analysis", frozenset({"analyze", "analysis", "report", "summary", "stats"})),
    ("integration", frozenset({"sync", "import", "export", "webhook", "integration"})),
    (
        "crud",
        frozenset({"create", "add", "list", "get", "update", "delete", "remove", "toggle"}),
    ),
)

_MIN_SUBSTRING_LENGTH = 4


@runtime_checkable
class CapabilityProvider(Protocol):
    """Source of capabilities and the means to invoke them."""

    async def list_capabilities(self) -> list[Capability]:
        ...

    async def invoke(self, name: str, parameters: dict[str, Any]) -> Any:
        ...


def strip_namespace(name: str) -> str:
    """Drop a server prefix such as ``todo__createTodo`` or ``todo.createTodo``."""
    return _NAMESPACE_SEPARATORS.split(name)[-1] or name


def to_snake(words: Sequence[str]) -> str:
    return "_".join(words)


def to_camel(words: Sequence[str]) -> str:
    if not words:
        return ""
    return words[0] + "".join(word.capitalize() for word in words[1:])


def _compact(name: str) -> str:
    return "".join(split_words(name))


def categorize(capability: Capability) -> str:
    """Assign a capability to crud, time-tracking, analysis, integration or utility."""
    words = set(split_words(strip_namespace(capability.name)))
    words.update(split_words(capability.description))
    for category, keywords in CATEGORY_KEYWORDS:
        if words & keywords:
            return category
    return "utility"


def build_alias_table(
    capabilities: Iterable[Capability], extra_aliases: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Build alias -> capability name for the given capability list.

    Configured aliases are applied first and only when their target exists.
    Generated aliases follow in name order; on collision the first entry wins.
    """
    ordered = sorted(capabilities, key=lambda capability: capability.name)
    by_base: dict[str, str] = {}
    for capability in ordered:
        by_base.setdefault(capability.name, capability.name)
        by_base.setdefault(strip_namespace(capability.name), capability.name)

    table: dict[str, str] = {}
    for alias, target in (extra_aliases or {}).items():
        if target in by_base:
            table.setdefault(alias, by_base[target])

    for capability in ordered:
        base = strip_namespace(capability.name)
        words = split_words(base)
        variants = [base, to_snake(words), to_camel(words)]

        if words and words[0] in VERB_SYNONYMS:
            variants.append(words[0])
            for synonym in VERB_SYNONYMS[words[0]]:
                renamed = [synonym, *words[1:]]
                variants.extend([to_camel(renamed), to_snake(renamed)])
                if len(words) > 1:
                    variants.append(synonym)

        for variant in variants:
            if variant:
                table.setdefault(variant, capability.name)

    return table


def _exact_match(action: str, capabilities: Sequence[Capability]) -> str | None:
    candidates = {action, strip_namespace(action)}
    for capability in capabilities:
        if capability.name in candidates:
            return capability.name
    for capability in capabilities:
        if strip_namespace(capability.name) in candidates:
            return capability.name
    return None


def _heuristic_match(action: str, capabilities: Sequence[Capability]) -> str | None:
    action_words = split_words(strip_namespace(action))
    compact = "".join(action_words)
    if not compact:
        return None

    # camelCase / snake_case / kebab-case spellings of the same name
    for capability in capabilities:
        if _compact(strip_namespace(capability.name)) == compact:
            return capability.name

    if len(compact) >= _MIN_SUBSTRING_LENGTH:
        for capability in capabilities:
            base = _compact(strip_namespace(capability.name))
            if len(base) >= _MIN_SUBSTRING_LENGTH and (compact in base or base in compact):
                return capability.name

    wanted = set(action_words)
    for _, keywords in KEYWORD_PRIORITY:
        if not wanted & keywords:
            continue

        by_name = [
            capability
            for capability in capabilities
            if keywords & set(split_words(strip_namespace(capability.name)))
        ]
        by_description = [
            capability
            for capability in capabilities
            if keywords & set(split_words(capability.description))
        ]
        candidates = by_name or by_description
        if keywords & DESTRUCTIVE_VERBS:
            candidates = _destructive_targets(wanted - keywords, candidates)
        if candidates:
            return _best_overlap(wanted - keywords, candidates)

    return None


def _destructive_targets(
    words: set[str], candidates: list[Capability]
) -> list[Capability]:
    """Keep destructive capabilities whose name shares a target word with the action.

    A bulk action (``deleteAllItems``) only matches a capability that is bulk too.
    """
    bulk = bool(words & BULK_MARKERS)
    targets = words - BULK_MARKERS
    kept = []
    for capability in candidates:
        name_words = set(split_words(strip_namespace(capability.name)))
        if bulk and not name_words & BULK_MARKERS:
            continue
        if targets and not targets & name_words:
            continue
        if not targets and not bulk:
            continue
        kept.append(capability)
    return kept


def _best_overlap(words: set[str], candidates: list[Capability]) -> str:
    def score(capability: Capability) -> tuple[int, str]:
        capability_words = set(split_words(strip_namespace(capability.name)))
        capability_words.update(split_words(capability.description))
        return (-len(words & capability_words), capability.name)

    return min(candidates, key=score).name


def resolve_capability(
    action: str,
    capabilities: Sequence[Capability],
    extra_aliases: Mapping[str, str] | None = None,
    alias_table: Mapping[str, str] | None = None,
) -> str | None:
    """Resolve a logical action name to a concrete capability name.

    Resolution order, first match wins:
        1. exact name, ignoring namespace prefixes
        2. alias table derived from ``capabilities``
        3. heuristics over spelling variants and keyword overlap

    Args:
        action: Action named by a plan step
        capabilities: Currently known capabilities
        extra_aliases: Configured alias -> capability name entries
        alias_table: Precomputed table for ``capabilities``

    Returns:
        Capability name, or None when nothing matches
    """
    if not action or not capabilities:
        return None

    exact = _exact_match(action, capabilities)
    if exact is not None:
        return exact

    table = alias_table
    if table is None:
        table = build_alias_table(capabilities, extra_aliases)
    for candidate in (action, strip_namespace(action)):
        if candidate in table:
            return table[candidate]

    return _heuristic_match(action, capabilities)


class CapabilityRegistry:
    """Cached view over a capability provider.

    The capability list and its alias table are replaced together, so a
    resolution always sees a consistent snapshot even while discovery runs.
    """

    def __init__(
        self,
        provider: CapabilityProvider,
        refresh_interval: float = 300.0,
        extra_aliases: Mapping[str, str] | None = None,
    ):
        self.provider = provider
        self.refresh_interval = refresh_interval
        self.extra_aliases = dict(extra_aliases or {})
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._snapshot: tuple[tuple[Capability, ...], dict[str, str]] = ((), {})
        self._refreshed_at: float | None = None

    async def refresh(self) -> list[Capability]:
        """Rediscover capabilities from the provider."""
        discovered = await self.provider.list_capabilities()
        capabilities = tuple(discovered)
        aliases = build_alias_table(capabilities, self.extra_aliases)
        with self._lock:
            self._snapshot = (capabilities, aliases)
            self._refreshed_at = time.monotonic()
        self.logger.info(f"Discovered {len(capabilities)} capabilities")
        return list(capabilities)

    def _is_stale(self) -> bool:
        with self._lock:
            refreshed_at = self._refreshed_at
        return refreshed_at is None or (
            time.monotonic() - refreshed_at > self.refresh_interval
        )

    async def capabilities(self, force: bool = False) -> list[Capability]:
        if force or self._is_stale():
            return await self.refresh()
        with self._lock:
            return list(self._snapshot[0])

    async def resolve(self, action: str) -> str | None:
        """Resolve ``action`` against the current capability snapshot."""
        if self._is_stale():
            await self.refresh()
        with self._lock:
            capabilities, aliases = self._snapshot

        resolved = resolve_capability(action, capabilities, alias_table=aliases)
        if resolved is None:
            self.logger.warning(f"Could not resolve action '{action}'")
        elif resolved != action:
            self.logger.debug(f"Resolved action '{action}' to '{resolved}'")
        return resolved

    async def invoke(self, name: str, parameters: dict[str, Any]) -> Any:
        return await self.provider.invoke(name, parameters)

    async def describe(self) -> list[dict[str, str]]:
        """Name, description and category of every known capability."""
        return [
            {
                "name": capability.name,
                "description": capability.description,
                "category": categorize(capability),
            }
            for capability in await self.capabilities()
        ]
