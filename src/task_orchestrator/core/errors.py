"""Exception types raised by the orchestration services."""


class OrchestratorError(Exception):
    """Base class for orchestration errors."""


class CapabilityResolutionError(OrchestratorError, LookupError):
    """An action name could not be mapped to any known capability."""

    def __init__(self, action: str):
        super().__init__(f"No capability found for action '{action}'")
        self.action = action


class CapabilityInvocationError(OrchestratorError):
    """A capability ran but reported a failure."""


class ClassificationError(OrchestratorError):
    """The classification capability returned an unusable response."""


class WorkflowBusyError(OrchestratorError):
    """A session already has a workflow waiting for approval."""

    def __init__(self, session_key: str):
        super().__init__(
            f"Session {session_key} is waiting for an approval decision; "
            "approve or deny it before starting a new request"
        )
        self.session_key = session_key
