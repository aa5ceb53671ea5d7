"""Configuration utilities for loading environment variables."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_PERSISTENCE_DIR = ".flowstate"
DEFAULT_SQLITE_PATH = "flowstate.db"
DEFAULT_MAX_STEPS = 1000
DEFAULT_TOOL_MAX_WORKERS = 8


def load_env(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file.

    This function loads variables from a .env file into the environment.
    It will search for .env in the current directory and parent directories
    if no path is specified.

    Args:
        env_file: Optional path to .env file. If not specified, searches
                 for .env in current and parent directories.

    Example:
        >>> from flowstate.utils.config import load_env
        >>> load_env()  # Loads from .env
        >>> import os
        >>> persistence_dir = os.getenv("FLOWSTATE_PERSISTENCE_DIR")
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()


def get_config(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get configuration value from environment.

    Args:
        key: Configuration key
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    return os.getenv(key, default)


def _get_int(key: str, default: int) -> int:
    raw = get_config(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def get_persistence_dir() -> Path:
    """Directory used by FilePersistence when none is given."""
    return Path(get_config("FLOWSTATE_PERSISTENCE_DIR", DEFAULT_PERSISTENCE_DIR))


def get_sqlite_path() -> str:
    """Database path used by SQLitePersistence when none is given."""
    return get_config("FLOWSTATE_SQLITE_PATH", DEFAULT_SQLITE_PATH)


def get_max_steps() -> int:
    """Safety limit on node invocations per run."""
    return _get_int("FLOWSTATE_MAX_STEPS", DEFAULT_MAX_STEPS)


def get_tool_max_workers() -> int:
    """Upper bound on concurrently running tool calls."""
    return _get_int("FLOWSTATE_TOOL_MAX_WORKERS", DEFAULT_TOOL_MAX_WORKERS)


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a stream handler to the ``flowstate`` logger.

    Args:
        level: Log level name. Defaults to ``FLOWSTATE_LOG_LEVEL`` or WARNING.
    """
    level_name = (level or get_config("FLOWSTATE_LOG_LEVEL", "WARNING")).upper()
    logger = logging.getLogger("flowstate")
    logger.setLevel(level_name)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)
