"""Pending approval tracking with a resolve-once protocol."""

import logging
import re
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, NamedTuple

from task_orchestrator.core.models import ApprovalRequest, ApprovalResolution

logger = logging.getLogger(__name__)

ResolutionCallback = Callable[[ApprovalResolution], None]

_REPLY_PATTERN = re.compile(
    r"^\s*/?(approve|deny)(?::|\s+)([A-Za-z0-9_-]+)(?:\s+(.*))?$",
    re.IGNORECASE | re.DOTALL,
)


class ResolutionStatus(Enum):
    """Outcome of a resolution attempt."""

    RESOLVED = "resolved"
    ALREADY_RESOLVED = "already_resolved"
    NOT_FOUND = "not_found"


class ApprovalReply(NamedTuple):
    request_id: str
    approved: bool
    feedback: str | None


def parse_approval_reply(text: str) -> ApprovalReply | None:
    """Parse a reply that names an approval request.

    Accepts ``approve:<id>``, ``deny:<id>``, ``/approve <id>`` and
    ``/deny <id>``, optionally followed by free-text feedback.
    """
    match = _REPLY_PATTERN.match(text or "")
    if not match:
        return None
    verb, request_id, feedback = match.groups()
    feedback = feedback.strip() if feedback else None
    return ApprovalReply(request_id, verb.lower() == "approve", feedback or None)


class ApprovalCoordinator:
    """Tracks pending approval requests per session.

    Two independent triggers can answer the same request: an external
    command addressed by session (``resolve``) and a reply carrying the
    request id (``resolve_by_id``). Both go through ``_resolve_once`` so
    the first answer wins and every later attempt reports
    ``ALREADY_RESOLVED`` without side effects.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._pending: dict[str, ApprovalRequest] = {}
        self._session_requests: dict[str, list[str]] = {}
        self._callbacks: dict[str, ResolutionCallback] = {}
        self._resolutions: dict[str, ApprovalResolution] = {}
        self._resolved_sessions: dict[str, str] = {}

    def register(
        self,
        session_key: str,
        request: ApprovalRequest,
        callback: ResolutionCallback | None = None,
    ) -> bool:
        """Register a pending request for a session.

        Registering the same request id again is a no-op apart from
        attaching a callback when none is set yet.

        Returns:
            True if the request was newly registered
        """
        with self._lock:
            if request.id in self._resolutions:
                return False
            if request.id in self._pending:
                if callback is not None:
                    self._callbacks.setdefault(request.id, callback)
                return False

            self._pending[request.id] = request
            self._session_requests.setdefault(session_key, []).append(request.id)
            if callback is not None:
                self._callbacks[request.id] = callback

        self.logger.info(
            f"Registered approval {request.id} for session {session_key} "
            f"({request.gate_key})"
        )
        return True

    def resolve(
        self, session_key: str, approved: bool, feedback: str | None = None
    ) -> bool:
        """Resolve the most recent pending request of a session.

        Returns:
            True if a pending request existed and this call resolved it
        """
        with self._lock:
            pending_ids = [
                request_id
                for request_id in self._session_requests.get(session_key, [])
                if request_id in self._pending
            ]
        if not pending_ids:
            self.logger.info(f"No pending approval for session {session_key}")
            return False

        status = self._resolve_once(pending_ids[-1], approved, feedback)
        return status is ResolutionStatus.RESOLVED

    def resolve_by_id(
        self, request_id: str, approved: bool, feedback: str | None = None
    ) -> ResolutionStatus:
        """Resolve a request addressed by its correlation id."""
        return self._resolve_once(request_id, approved, feedback)

    def _resolve_once(
        self, request_id: str, approved: bool, feedback: str | None
    ) -> ResolutionStatus:
        with self._lock:
            if request_id in self._resolutions:
                self.logger.info(f"Approval {request_id} already resolved")
                return ResolutionStatus.ALREADY_RESOLVED

            request = self._pending.pop(request_id, None)
            if request is None:
                return ResolutionStatus.NOT_FOUND

            resolution = ApprovalResolution(
                request_id=request_id, approved=approved, feedback=feedback
            )
            self._resolutions[request_id] = resolution
            self._resolved_sessions[request_id] = request.session_key
            callback = self._callbacks.pop(request_id, None)

        decision = "approved" if approved else "denied"
        self.logger.info(
            f"Approval {request_id} {decision} for session {request.session_key}"
        )

        if callback is not None:
            try:
                callback(resolution)
            except Exception as e:
                self.logger.error(f"Approval callback for {request_id} failed: {e}")

        return ResolutionStatus.RESOLVED

    def resolution_for(self, request_id: str) -> ApprovalResolution | None:
        with self._lock:
            return self._resolutions.get(request_id)

    def is_pending(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    def pending_for(self, session_key: str) -> list[ApprovalRequest]:
        """Pending requests of a session, oldest first."""
        with self._lock:
            return [
                self._pending[request_id]
                for request_id in self._session_requests.get(session_key, [])
                if request_id in self._pending
            ]

    def forget_session(self, session_key: str) -> None:
        """Drop every pending request and recorded resolution of a session."""
        with self._lock:
            for request_id in self._session_requests.pop(session_key, []):
                self._pending.pop(request_id, None)
                self._callbacks.pop(request_id, None)
            resolved = [
                request_id
                for request_id, owner in self._resolved_sessions.items()
                if owner == session_key
            ]
            for request_id in resolved:
                self._resolved_sessions.pop(request_id, None)
                self._resolutions.pop(request_id, None)

    def cleanup(self, max_age_seconds: float) -> int:
        """Discard pending requests older than ``max_age_seconds``.

        Returns:
            Number of discarded requests
        """
        cutoff = time.time() - max_age_seconds
        with self._lock:
            expired = [
                request
                for request in self._pending.values()
                if request.timestamp < cutoff
            ]
            for request in expired:
                self._pending.pop(request.id, None)
                self._callbacks.pop(request.id, None)
                ids = self._session_requests.get(request.session_key, [])
                if request.id in ids:
                    ids.remove(request.id)
                if not ids:
                    self._session_requests.pop(request.session_key, None)

        if expired:
            self.logger.info(f"Discarded {len(expired)} abandoned approval requests")
        return len(expired)

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "pending": len(self._pending),
                "resolved": len(self._resolutions),
                "sessions": sorted(
                    session_key
                    for session_key, ids in self._session_requests.items()
                    if any(request_id in self._pending for request_id in ids)
                ),
            }
