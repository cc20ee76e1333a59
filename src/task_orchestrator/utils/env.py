"""Environment variable loading for development and installed deployments."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

USER_ENV_PATH = Path.home() / ".task-orchestrator" / ".env"


def load_env(env_file: str | Path | None = None) -> Path | None:
    """Load environment variables from the first .env file found.

    Searches the explicit ``env_file``, then ``./.env``, then
    ``~/.task-orchestrator/.env``. Variables already present in the
    environment are never overridden.

    Returns:
        Path of the loaded file, or None if no file was found
    """
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")

    candidates = [Path(env_file)] if env_file else []
    candidates += [Path.cwd() / ".env", USER_ENV_PATH]

    for env_path in candidates:
        if env_path.is_file():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment from: {env_path}")
            return env_path

    logger.debug(f"No .env file found. Searched paths: {[str(p) for p in candidates]}")
    return None
