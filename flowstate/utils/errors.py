"""Custom error classes for Flowstate."""


class FlowstateError(Exception):
    """Base exception for all Flowstate errors."""

    pass


class GraphValidationError(FlowstateError):
    """Raised when graph validation fails."""

    pass


class ConfigurationError(GraphValidationError):
    """Raised when event routing is ambiguous or incomplete.

    Configuration errors are detected before any node runs and are never
    retried.
    """

    pass


class WorkflowError(FlowstateError):
    """Raised when the engine cannot continue a run."""

    pass


class SerializationError(FlowstateError):
    """Raised when a value cannot be converted to or from its persisted form."""

    pass


class PersistenceError(FlowstateError):
    """Raised when a persistence backend fails."""

    pass


class InterruptNotFoundError(PersistenceError):
    """Raised when no interrupt is stored for a workflow id."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"No saved workflow found for ID: {workflow_id}")


class SkipRemainingMiddleware(Exception):
    """Raised by a middleware ``before`` hook to end the before chain.

    Remaining ``before`` hooks are skipped and the node runs normally.
    ``after`` hooks are not suppressed.
    """

    def __init__(self, message: str = "Skipping remaining middleware"):
        super().__init__(message)
