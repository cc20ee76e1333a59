"""Environment and configuration helpers for testing."""

import os
from collections.abc import Generator
from unittest.mock import patch

import pytest


@pytest.fixture
def mock_env_vars() -> Generator[None, None, None]:
    """Mock environment variables for OpenAI and the capability server."""
    with patch.dict(
        os.environ,
        {
            "OPENAI_API_KEY": "sk-test1234567890abcdef",
            "OPENAI_MODEL": "gpt-4o-mini",
            "MCP_SERVER_URL": "http://localhost:9999/sse",
        },
    ):
        yield


@pytest.fixture
def empty_env() -> Generator[None, None, None]:
    """Empty environment variables."""
    with patch.dict(os.environ, {}, clear=True):
        yield
