"""Typed events routed between workflow nodes.

An event's runtime class is its routing key: the graph maps each Event
subclass to the node that consumes it. Events are frozen pydantic models, so
they can be embedded in persisted interrupts and restored without loss.

Every subclass gets a stable type tag (``module:QualName`` unless the class
sets ``event_tag``) and is registered under it when the class is created.
"""

import logging
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

_EVENT_REGISTRY: Dict[str, Type["Event"]] = {}


class Event(BaseModel):
    """Base class for all workflow events.

    Example:
        >>> class FirstEvent(Event):
        ...     message: str
        >>> FirstEvent(message="hello").type_tag()
        '__main__:FirstEvent'
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    event_tag: ClassVar[Optional[str]] = None

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        tag = cls.type_tag()
        existing = _EVENT_REGISTRY.get(tag)
        if existing is not None and existing is not cls:
            logger.warning(
                "Event tag %s re-registered by %s (was %s)",
                tag,
                cls.__qualname__,
                existing.__qualname__,
            )
        _EVENT_REGISTRY[tag] = cls

    @classmethod
    def type_tag(cls) -> str:
        """Stable identifier used when the event is persisted."""
        custom = cls.__dict__.get("event_tag")
        if custom:
            return custom
        return f"{cls.__module__}:{cls.__qualname__}"


class StartEvent(Event):
    """Default event used to start a workflow run."""

    pass


class StopEvent(Event):
    """Terminal event. Producing it ends the run with ``result``."""

    result: Any = None

    def __init__(self, result: Any = None, **data: Any) -> None:
        super().__init__(result=result, **data)


class MergeEvent(Event):
    """Aggregate of the events produced by the predecessors of a join node.

    Lookups are keyed by the producing node's name, so the order in which
    branches completed does not matter.
    """

    events: Dict[str, Event] = Field(default_factory=dict)

    def get(self, node_name: str, default: Optional[Event] = None) -> Optional[Event]:
        """Return the event produced by ``node_name``."""
        return self.events.get(node_name, default)

    def all(self) -> Dict[str, Event]:
        """Return every contribution, in the join's declared order."""
        return dict(self.events)

    def node_names(self) -> List[str]:
        return list(self.events.keys())

    def __getitem__(self, node_name: str) -> Event:
        return self.events[node_name]

    def __contains__(self, node_name: object) -> bool:
        return node_name in self.events

    def __len__(self) -> int:
        return len(self.events)

    def iter_events(self) -> Iterator[Event]:
        return iter(self.events.values())


def get_event_class(tag: str) -> Optional[Type[Event]]:
    """Look up a registered Event subclass by its type tag."""
    return _EVENT_REGISTRY.get(tag)


def registered_event_tags() -> List[str]:
    return sorted(_EVENT_REGISTRY)
