"""Correlation-key registry for conversational channels."""

import logging
import threading
import time
from typing import Any, Protocol, runtime_checkable

from task_orchestrator.core.models import ChannelAction

logger = logging.getLogger(__name__)


@runtime_checkable
class Channel(Protocol):
    """Outbound side of a conversation with the requesting user."""

    async def send(self, text: str, actions: list[ChannelAction] | None = None) -> None:
        ...


class ConversationContextStore:
    """Maps opaque correlation keys to channel handles.

    A workflow keeps only the key in its persisted state, so a step running
    later (or after a resume) can still reach the conversation that started it.
    """

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}
        self._stored_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def store(self, key: str, channel: Channel) -> None:
        with self._lock:
            self._channels[key] = channel
            self._stored_at[key] = time.time()
        logger.debug(f"Stored channel for context {key}")

    def get(self, key: str | None) -> Channel | None:
        if key is None:
            return None
        with self._lock:
            return self._channels.get(key)

    def remove(self, key: str | None) -> bool:
        if key is None:
            return False
        with self._lock:
            self._stored_at.pop(key, None)
            removed = self._channels.pop(key, None) is not None
        if removed:
            logger.debug(f"Removed channel for context {key}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def get_stats(self) -> dict[str, Any]:
        """Return the number of live contexts and the age of the oldest one."""
        now = time.time()
        with self._lock:
            keys = list(self._channels)
            oldest = min(self._stored_at.values(), default=None)
        return {
            "active_contexts": len(keys),
            "keys": keys,
            "oldest_age_seconds": None if oldest is None else now - oldest,
        }


async def notify(
    store: ConversationContextStore,
    key: str | None,
    text: str,
    actions: list[ChannelAction] | None = None,
) -> bool:
    """Send a message over the channel registered for ``key``.

    Delivery is best effort: a missing channel or a failing send is logged
    and reported through the return value, never raised.

    Returns:
        True if the channel accepted the message
    """
    channel = store.get(key)
    if channel is None:
        logger.warning(f"No channel registered for context {key}; message dropped")
        return False

    try:
        await channel.send(text, actions)
    except Exception as e:
        logger.error(f"Failed to deliver message for context {key}: {e}")
        return False
    return True
