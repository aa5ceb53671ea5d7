"""Shared key-value state threaded through a workflow run."""

import copy
from collections.abc import MutableMapping
from typing import Any, Dict, Iterator, List, Mapping, Optional


class WorkflowState(MutableMapping):
    """Mutable mapping shared by reference across every node of one run.

    Keys are strings. Values must be representable by
    ``flowstate.serialization`` because the whole state is persisted when a
    run is interrupted.

    Example:
        >>> state = WorkflowState({"topic": "billing"})
        >>> state.set("attempts", 1)
        >>> state.append("observations", "Found relevant document")
        ['Found relevant document']
        >>> state.all()
        {'topic': 'billing', 'attempts': 1, 'observations': ['Found relevant document']}
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        self._data: Dict[str, Any] = {}
        if data:
            self.update(data)
        if kwargs:
            self.update(kwargs)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise TypeError(f"WorkflowState keys must be strings, got {type(key).__name__}")
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"

    def set(self, key: str, value: Any) -> None:
        """Set a value in state."""
        self[key] = value

    def has(self, key: str) -> bool:
        return key in self._data

    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        self._data.pop(key, None)

    def all(self) -> Dict[str, Any]:
        """Return a shallow copy of the underlying dictionary."""
        return dict(self._data)

    def append(self, key: str, value: Any) -> List[Any]:
        """Append a value to a list in state, creating the list if needed.

        Args:
            key: State key to append to
            value: Value to append

        Returns:
            The updated list
        """
        if key not in self._data:
            self._data[key] = []
        elif not isinstance(self._data[key], list):
            self._data[key] = [self._data[key]]

        self._data[key].append(value)
        return self._data[key]

    def replace(self, data: Mapping[str, Any]) -> None:
        """Swap the contents in place, keeping this instance's identity."""
        self._data.clear()
        self.update(data)

    def snapshot(self) -> "WorkflowState":
        """Deep copy of the state, detached from further mutations."""
        return type(self)(copy.deepcopy(self._data))
