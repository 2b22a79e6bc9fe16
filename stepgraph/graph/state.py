"""
Agent State - Immutable snapshots of the values shared between nodes.

A state is never changed in place. Every node returns a partial update and
the graph merges it into a brand new state:

    state = AgentState({"x": 1})
    next_state = merge_state(state, {"x": 2}, reducers={})

How each key is combined is decided by the graph definition through
reducers. Keys without a reducer are overwritten.
"""

from collections.abc import Callable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel

# A reducer combines the current value of a key (or None) with an update
Reducer = Callable[[Any, Any], Any]

# Builds the initial state from raw caller input, and every merged state
StateFactory = Callable[[Mapping[str, Any]], "AgentState"]


class AgentState(Mapping[str, Any]):
    """
    Immutable snapshot of named values.

    Behaves as a read-only mapping. Use ``data`` for a mutable copy.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None):
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise TypeError(
                f"State input must be a mapping of key -> value, got {type(data).__name__}"
            )
        self._data = MappingProxyType(dict(data))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return dict(self._data) == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({dict(self._data)!r})"

    @property
    def data(self) -> dict[str, Any]:
        """Copy of the state values as a plain dict."""
        return dict(self._data)

    def value(self, key: str, default: Any = None) -> Any:
        """Get a value by key, falling back to ``default``."""
        return self._data.get(key, default)


def overwrite(current: Any, update: Any) -> Any:
    """Default reducer: the update replaces the current value."""
    return update


def append(current: Any, update: Any) -> tuple:
    """
    Accumulating reducer.

    Values are collected in a tuple. A list or tuple update is appended
    element by element; anything else is appended as a single value.
    """
    existing = tuple(current) if current is not None else ()
    if isinstance(update, list | tuple):
        return existing + tuple(update)
    return existing + (update,)


def merge_state(
    state: AgentState,
    partial: Mapping[str, Any] | None,
    reducers: Mapping[str, Reducer] | None = None,
    factory: StateFactory | None = None,
) -> AgentState:
    """
    Merge a partial update into a state, returning a new state.

    Args:
        state: Current state (left untouched)
        partial: Partial update produced by a node, None means no change
        reducers: Per-key reducers, keys without one are overwritten
        factory: Builds the resulting state, defaults to the type of ``state``

    Returns:
        New state built by ``factory``
    """
    if partial is None:
        partial = {}
    if not isinstance(partial, Mapping):
        raise TypeError(
            f"Partial update must be a mapping of key -> value, got {type(partial).__name__}"
        )

    reducers = reducers or {}
    merged = state.data
    for key, update in partial.items():
        reducer = reducers.get(key, overwrite)
        merged[key] = reducer(merged.get(key), update)

    if factory is None:
        factory = type(state)
    return factory(merged)


def schema_state_factory(
    model: type[BaseModel],
    state_cls: type[AgentState] = AgentState,
) -> StateFactory:
    """
    Build a state factory that validates raw input with a pydantic model.

    Malformed input fails with ``pydantic.ValidationError``. The state holds
    every model field, defaults included. Merged states are built by the
    state class directly, so keys written by nodes are never dropped.

    Example:
        class Inputs(BaseModel):
            question: str
            attempts: int = 0

        factory = schema_state_factory(Inputs)
        factory({"question": "why?"})  # AgentState({'question': 'why?', 'attempts': 0})
    """

    def factory(inputs: Mapping[str, Any]) -> AgentState:
        validated = model.model_validate(dict(inputs) if isinstance(inputs, Mapping) else inputs)
        return state_cls(validated.model_dump())

    return factory
