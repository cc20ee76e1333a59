"""Global pytest configuration and fixtures."""

# Import shared fixtures
from tests.fixtures.env_helpers import empty_env, mock_env_vars
from tests.fixtures.workflow_helpers import (
    engine_factory,
    recording_channel,
    todo_provider,
)

__all__ = [
    "empty_env",
    "mock_env_vars",
    "engine_factory",
    "recording_channel",
    "todo_provider",
]
