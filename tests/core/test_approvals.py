"""Tests for the approval coordinator and reply parsing."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from task_orchestrator.core.approvals import (
    ApprovalCoordinator,
    ResolutionStatus,
    parse_approval_reply,
)
from task_orchestrator.core.models import ApprovalRequest


def make_request(request_id: str = "req-1", session_key: str = "s1", **overrides) -> ApprovalRequest:
    fields = {
        "id": request_id,
        "session_key": session_key,
        "plan_id": "plan-1",
        "action": "execute_plan",
        "description": "Clean up finished todos",
        "message": "Approve?",
    }
    fields.update(overrides)
    return ApprovalRequest(**fields)


class TestApprovalCoordinator:
    """Test suite for ApprovalCoordinator."""

    @pytest.fixture
    def coordinator(self) -> ApprovalCoordinator:
        return ApprovalCoordinator()

    @pytest.mark.unit
    def test_register_is_idempotent(self, coordinator: ApprovalCoordinator) -> None:
        request = make_request()

        assert coordinator.register("s1", request) is True
        assert coordinator.register("s1", request) is False
        assert coordinator.pending_for("s1") == [request]

    @pytest.mark.unit
    def test_resolve_by_session(self, coordinator: ApprovalCoordinator) -> None:
        """The session-addressed trigger resolves the pending request once."""
        coordinator.register("s1", make_request())

        assert coordinator.resolve("s1", approved=True, feedback="go") is True
        assert coordinator.resolve("s1", approved=False) is False

        resolution = coordinator.resolution_for("req-1")
        assert resolution is not None
        assert resolution.approved is True
        assert resolution.feedback == "go"
        assert coordinator.is_pending("req-1") is False

    @pytest.mark.unit
    def test_resolve_targets_latest_pending_request(
        self, coordinator: ApprovalCoordinator
    ) -> None:
        coordinator.register("s1", make_request("old"))
        coordinator.register("s1", make_request("new", step_id="step-2"))

        coordinator.resolve("s1", approved=False)

        assert coordinator.is_pending("old") is True
        assert coordinator.resolution_for("new").approved is False

    @pytest.mark.unit
    def test_second_trigger_reports_already_resolved(
        self, coordinator: ApprovalCoordinator
    ) -> None:
        """Whichever trigger fires second has no effect."""
        callback = MagicMock()
        coordinator.register("s1", make_request(), callback)

        assert coordinator.resolve("s1", approved=True) is True
        status = coordinator.resolve_by_id("req-1", approved=False, feedback="too late")

        assert status is ResolutionStatus.ALREADY_RESOLVED
        assert coordinator.resolution_for("req-1").approved is True
        callback.assert_called_once()

    @pytest.mark.unit
    def test_unknown_request(self, coordinator: ApprovalCoordinator) -> None:
        assert coordinator.resolve_by_id("missing", True) is ResolutionStatus.NOT_FOUND
        assert coordinator.resolve("nobody", True) is False

    @pytest.mark.unit
    def test_concurrent_triggers_resolve_once(
        self, coordinator: ApprovalCoordinator
    ) -> None:
        """Racing triggers produce exactly one resolution and one callback."""
        callback = MagicMock()
        coordinator.register("s1", make_request(), callback)

        workers = 16
        barrier = threading.Barrier(workers)
        statuses: list[ResolutionStatus] = []
        statuses_lock = threading.Lock()

        def trigger(approved: bool) -> None:
            barrier.wait()
            if approved:
                status = coordinator.resolve_by_id("req-1", True)
            else:
                resolved = coordinator.resolve("s1", False)
                status = (
                    ResolutionStatus.RESOLVED
                    if resolved
                    else ResolutionStatus.ALREADY_RESOLVED
                )
            with statuses_lock:
                statuses.append(status)

        threads = [
            threading.Thread(target=trigger, args=(i % 2 == 0,)) for i in range(workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert statuses.count(ResolutionStatus.RESOLVED) == 1
        callback.assert_called_once()
        (resolution,) = callback.call_args.args
        assert coordinator.resolution_for("req-1") == resolution

    @pytest.mark.unit
    def test_failing_callback_does_not_break_resolution(
        self, coordinator: ApprovalCoordinator
    ) -> None:
        callback = MagicMock(side_effect=RuntimeError("listener gone"))
        coordinator.register("s1", make_request(), callback)

        assert coordinator.resolve_by_id("req-1", True) is ResolutionStatus.RESOLVED
        assert coordinator.resolution_for("req-1") is not None

    @pytest.mark.unit
    def test_forget_session(self, coordinator: ApprovalCoordinator) -> None:
        coordinator.register("s1", make_request("a"))
        coordinator.register("s1", make_request("b", step_id="step-1"))
        coordinator.resolve_by_id("a", True)

        coordinator.forget_session("s1")

        assert coordinator.pending_for("s1") == []
        assert coordinator.resolution_for("a") is None
        assert coordinator.resolve_by_id("b", True) is ResolutionStatus.NOT_FOUND

    @pytest.mark.unit
    def test_cleanup_discards_abandoned_requests(
        self, coordinator: ApprovalCoordinator
    ) -> None:
        coordinator.register("s1", make_request("stale", timestamp=time.time() - 600))
        coordinator.register("s2", make_request("fresh", session_key="s2"))

        assert coordinator.cleanup(max_age_seconds=60) == 1
        assert coordinator.is_pending("stale") is False
        assert coordinator.is_pending("fresh") is True

    @pytest.mark.unit
    def test_get_status(self, coordinator: ApprovalCoordinator) -> None:
        coordinator.register("s1", make_request("a"))
        coordinator.register("s2", make_request("b", session_key="s2"))
        coordinator.resolve_by_id("b", False)

        status = coordinator.get_status()

        assert status == {"pending": 1, "resolved": 1, "sessions": ["s1"]}


class TestParseApprovalReply:
    """Test suite for correlation reply parsing."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("approve:abc-123", ("abc-123", True, None)),
            ("deny:abc-123", ("abc-123", False, None)),
            ("DENY:abc", ("abc", False, None)),
            ("/approve abc-123", ("abc-123", True, None)),
            ("/deny abc-123 not during business hours", ("abc-123", False, "not during business hours")),
            ("  approve:abc  ", ("abc", True, None)),
        ],
    )
    def test_replies(self, text: str, expected: tuple) -> None:
        assert tuple(parse_approval_reply(text)) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text", ["", "please approve", "/approve", "approved:abc", "list my todos"]
    )
    def test_not_a_reply(self, text: str) -> None:
        assert parse_approval_reply(text) is None
