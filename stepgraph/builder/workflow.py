"""
StateGraph - Incremental construction of a GraphDefinition.

The build process:
1. Add nodes (id + action)
2. Add one outgoing edge per node, direct or conditional
3. Set the entry point (and optionally a finish point)
4. Register reducers for keys that accumulate instead of being overwritten
5. Validate, then compile

Obvious mistakes (duplicate nodes, sentinel ids, a second edge from the same
node) are rejected as soon as they are made. Everything that depends on the
whole graph is checked by validate().
"""

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from stepgraph.graph.edge import (
    END,
    RESERVED_NODE_IDS,
    EdgeConditionSpec,
    EdgeSpec,
    GraphDefinition,
)
from stepgraph.graph.errors import GraphValidationError
from stepgraph.graph.node import NodeSpec
from stepgraph.graph.state import AgentState, Reducer, StateFactory

if TYPE_CHECKING:
    from stepgraph.config import RuntimeConfig
    from stepgraph.graph.compiled import CompiledGraph


class ValidationResult(BaseModel):
    """Result of a validation check."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class StateGraph:
    """
    Builder for graph definitions.

    Usage:
        graph = StateGraph("counter")
        graph.add_node("a", lambda state: {"x": 1})
        graph.add_node("b", lambda state: {"x": state["x"] + 1})
        graph.add_edge("a", "b")
        graph.add_edge("b", END)
        graph.set_entry_point("a")

        compiled = graph.compile()
    """

    def __init__(
        self,
        name: str = "graph",
        state_factory: StateFactory = AgentState,
        description: str = "",
    ):
        self.name = name
        self.description = description
        self.state_factory = state_factory
        self.nodes: dict[str, NodeSpec] = {}
        self.edges: dict[str, EdgeSpec] = {}
        self.reducers: dict[str, Reducer] = {}
        self.entry_point: str | None = None
        self.finish_point: str | None = None

    def add_node(
        self,
        node_id: str,
        action: Callable[..., Any],
        description: str = "",
    ) -> "StateGraph":
        """Register a node action under ``node_id``."""
        if node_id in RESERVED_NODE_IDS:
            raise GraphValidationError([f"Node ID '{node_id}' is reserved"])
        if node_id in self.nodes:
            raise GraphValidationError([f"Duplicate node ID: '{node_id}'"])
        self.nodes[node_id] = NodeSpec(id=node_id, action=action, description=description)
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """Add a direct edge; ``target`` may be END."""
        self._check_source(source)
        self.edges[source] = EdgeSpec(source=source, target=target)
        return self

    def add_conditional_edges(
        self,
        source: str,
        condition: Callable[..., Any],
        mappings: Mapping[Any, str],
    ) -> "StateGraph":
        """Add a conditional edge routing on the key returned by ``condition``."""
        self._check_source(source)
        if not mappings:
            raise GraphValidationError([f"Conditional edge from '{source}' has no mappings"])
        self.edges[source] = EdgeSpec(
            source=source,
            condition=EdgeConditionSpec(action=condition, mappings=dict(mappings)),
        )
        return self

    def _check_source(self, source: str) -> None:
        if source == END:
            raise GraphValidationError([f"'{END}' cannot have outgoing edges"])
        if source in self.edges:
            raise GraphValidationError([f"Node '{source}' already has an outgoing edge"])

    def set_entry_point(self, node_id: str) -> "StateGraph":
        self.entry_point = node_id
        return self

    def set_finish_point(self, node_id: str) -> "StateGraph":
        self.finish_point = node_id
        return self

    def add_reducer(self, key: str, reducer: Reducer) -> "StateGraph":
        """Merge ``key`` with ``reducer`` instead of overwriting it."""
        self.reducers[key] = reducer
        return self

    def validate(self) -> ValidationResult:
        """Validate the graph built so far."""
        if self.entry_point is None:
            return ValidationResult(valid=False, errors=["Entry point is not set"])

        errors = self.build(validate=False).validate()
        warnings = []

        reachable = self._compute_reachable(self.entry_point)
        for node_id in self.nodes:
            if node_id not in reachable:
                warnings.append(f"Node '{node_id}' is unreachable from entry")

        for node_id in self.nodes:
            if node_id not in self.edges and node_id != self.finish_point:
                warnings.append(
                    f"Node '{node_id}' has no outgoing edge; runs reaching it will fail"
                )

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def _compute_reachable(self, start: str) -> set[str]:
        """Compute nodes reachable from start."""
        reachable = set()
        to_visit = [start]

        while to_visit:
            current = to_visit.pop()
            if current in reachable or current == END:
                continue
            reachable.add(current)
            edge = self.edges.get(current)
            if edge is not None and current != self.finish_point:
                to_visit.extend(edge.targets())

        return reachable

    def build(self, validate: bool = True) -> GraphDefinition:
        """
        Produce the immutable GraphDefinition.

        Raises:
            GraphValidationError: If ``validate`` is set and the graph is invalid
        """
        if self.entry_point is None:
            raise GraphValidationError(["Entry point is not set"])

        definition = GraphDefinition(
            id=self.name,
            entry_point=self.entry_point,
            finish_point=self.finish_point,
            nodes=list(self.nodes.values()),
            edges=list(self.edges.values()),
            state_factory=self.state_factory,
            reducers=dict(self.reducers),
            description=self.description,
        )
        if validate:
            errors = definition.validate()
            if errors:
                raise GraphValidationError(errors)
        return definition

    def compile(self, config: "RuntimeConfig | None" = None) -> "CompiledGraph":
        """Validate and compile into a runnable graph."""
        return self.build(validate=True).compile(validate=False, config=config)
