"""Tool call requests and results exchanged with a ToolNode."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from flowstate.core.events import Event


class ToolCall(BaseModel):
    """A single tool invocation requested by a model.

    Attributes:
        id: Identifier the result is keyed by
        name: Registered tool name
        arguments: Keyword arguments passed to the tool
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of one tool call. Exactly one of ``output``/``error`` is meaningful."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    name: str
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, call: ToolCall, output: Any) -> "ToolResult":
        return cls(call_id=call.id, name=call.name, output=output)

    @classmethod
    def from_exception(cls, call: ToolCall, error: BaseException) -> "ToolResult":
        return cls(
            call_id=call.id,
            name=call.name,
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
        )

    @classmethod
    def failure(cls, call: ToolCall, error: str, error_type: str) -> "ToolResult":
        return cls(call_id=call.id, name=call.name, error=error, error_type=error_type)


class ToolCallsEvent(Event):
    """Batch of tool calls to run concurrently."""

    calls: List[ToolCall] = Field(default_factory=list)


class ToolResultsEvent(Event):
    """Results of a tool batch, keyed by call id in request order."""

    results: Dict[str, ToolResult] = Field(default_factory=dict)

    def get(self, call_id: str) -> Optional[ToolResult]:
        return self.results.get(call_id)

    @property
    def completed(self) -> List[str]:
        return [call_id for call_id, result in self.results.items() if result.ok]

    @property
    def failed(self) -> List[str]:
        return [call_id for call_id, result in self.results.items() if not result.ok]

    @property
    def has_errors(self) -> bool:
        return len(self.failed) > 0

    def outputs(self) -> Dict[str, Any]:
        """Outputs of the successful calls."""
        return {call_id: result.output for call_id, result in self.results.items() if result.ok}
