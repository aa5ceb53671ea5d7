"""Utility functions and helpers."""

from flowstate.utils.config import configure_logging, get_config, load_env
from flowstate.utils.errors import (
    ConfigurationError,
    FlowstateError,
    GraphValidationError,
    InterruptNotFoundError,
    PersistenceError,
    SerializationError,
    SkipRemainingMiddleware,
    WorkflowError,
)

__all__ = [
    "load_env",
    "get_config",
    "configure_logging",
    "FlowstateError",
    "GraphValidationError",
    "ConfigurationError",
    "WorkflowError",
    "SerializationError",
    "PersistenceError",
    "InterruptNotFoundError",
    "SkipRemainingMiddleware",
]
