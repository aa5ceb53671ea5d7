"""JSON-compatible encoding for state values, events and interrupts.

Primitives, lists and string-keyed dicts pass through unchanged. Anything
that would lose its type in plain JSON is wrapped in a tagged envelope:

    {"__event__": "<type tag>", "data": {...}}      Event subclasses
    {"__model__": "module:QualName", "data": {...}}  other pydantic models
    {"__tuple__": [...]}                             tuples
    {"__datetime__": "<iso 8601>"}                   datetimes
    {"__dict__": {...}}                              dicts using a reserved key

Model fields are walked recursively, so an event nested inside another event
keeps its concrete subclass after a round trip.
"""

import importlib
import json
from datetime import datetime
from typing import Any, Dict, Type

from pydantic import BaseModel

from flowstate.core.events import Event, get_event_class
from flowstate.utils.errors import SerializationError

EVENT_KEY = "__event__"
MODEL_KEY = "__model__"
TUPLE_KEY = "__tuple__"
DATETIME_KEY = "__datetime__"
DICT_KEY = "__dict__"

_RESERVED_KEYS = {EVENT_KEY, MODEL_KEY, TUPLE_KEY, DATETIME_KEY, DICT_KEY}


def class_path(cls: type) -> str:
    """Import path of a class in ``module:QualName`` form."""
    return f"{cls.__module__}:{cls.__qualname__}"


def import_class(path: str) -> type:
    """Resolve a ``module:QualName`` path produced by :func:`class_path`."""
    module_name, sep, qualname = path.partition(":")
    if not sep or not qualname:
        raise SerializationError(f"Invalid class path: {path!r}")
    if "<locals>" in qualname:
        raise SerializationError(
            f"Cannot import {path!r}: classes defined inside functions are not importable"
        )

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise SerializationError(f"Cannot import module {module_name!r}: {e}") from e

    for attr in qualname.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise SerializationError(f"Cannot resolve {path!r}: {e}") from e

    if not isinstance(target, type):
        raise SerializationError(f"{path!r} does not name a class")
    return target


def resolve_event_class(tag: str) -> Type[Event]:
    """Find the Event subclass for a type tag, importing its module if needed."""
    cls = get_event_class(tag)
    if cls is None and ":" in tag:
        cls = import_class(tag)
        # Importing the module registers the class under its own tag
        cls = get_event_class(tag) or cls
    if cls is None or not (isinstance(cls, type) and issubclass(cls, Event)):
        raise SerializationError(f"Unknown event type tag: {tag!r}")
    return cls


def _dump_fields(model: BaseModel) -> Dict[str, Any]:
    return {name: dump_value(getattr(model, name)) for name in type(model).model_fields}


def dump_value(value: Any) -> Any:
    """Convert a value to a JSON-compatible structure.

    Args:
        value: Value to convert

    Returns:
        Structure made only of dicts, lists, strings, numbers, booleans and None

    Raises:
        SerializationError: If the value (or something inside it) has no
            persisted form
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, Event):
        return {EVENT_KEY: type(value).type_tag(), "data": _dump_fields(value)}

    if isinstance(value, BaseModel):
        return {MODEL_KEY: class_path(type(value)), "data": _dump_fields(value)}

    if isinstance(value, dict):
        dumped = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    f"Dictionary keys must be strings, got {type(key).__name__}"
                )
            dumped[key] = dump_value(item)
        if _RESERVED_KEYS.intersection(dumped):
            return {DICT_KEY: dumped}
        return dumped

    if isinstance(value, list):
        return [dump_value(item) for item in value]

    if isinstance(value, tuple):
        return {TUPLE_KEY: [dump_value(item) for item in value]}

    if isinstance(value, datetime):
        return {DATETIME_KEY: value.isoformat()}

    raise SerializationError(f"Cannot serialize value of type {type(value).__name__}")


def load_value(data: Any) -> Any:
    """Inverse of :func:`dump_value`."""
    if isinstance(data, list):
        return [load_value(item) for item in data]

    if not isinstance(data, dict):
        return data

    if EVENT_KEY in data:
        cls = resolve_event_class(data[EVENT_KEY])
        return _load_model(cls, data.get("data", {}))

    if MODEL_KEY in data:
        cls = import_class(data[MODEL_KEY])
        if not issubclass(cls, BaseModel):
            raise SerializationError(f"{data[MODEL_KEY]!r} is not a pydantic model")
        return _load_model(cls, data.get("data", {}))

    if TUPLE_KEY in data:
        return tuple(load_value(item) for item in data[TUPLE_KEY])

    if DATETIME_KEY in data:
        return datetime.fromisoformat(data[DATETIME_KEY])

    if DICT_KEY in data:
        return {key: load_value(item) for key, item in data[DICT_KEY].items()}

    return {key: load_value(item) for key, item in data.items()}


def _load_model(cls: Type[BaseModel], fields: Dict[str, Any]) -> BaseModel:
    try:
        return cls.model_validate({name: load_value(item) for name, item in fields.items()})
    except ValueError as e:
        raise SerializationError(f"Cannot restore {cls.__qualname__}: {e}") from e


def to_json(value: Any) -> str:
    """Serialize a value to a JSON string."""
    return json.dumps(dump_value(value))


def from_json(text: str) -> Any:
    """Deserialize a JSON string produced by :func:`to_json`."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SerializationError(f"Invalid JSON: {e}") from e
    return load_value(data)
